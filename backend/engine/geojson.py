from __future__ import annotations

from typing import Any, Iterator

from shapely.errors import ShapelyError
from shapely.geometry import mapping, shape

from engine.types import GeoJSONFeature
from geo.projection import WGS84, reproject_geometry
from gpkg.connection import GeoPackage, SpatialReferenceSystem
from gpkg.errors import InvalidGeometryError
from gpkg.features import FeatureDao, FeatureRow
from gpkg.index import index_row


_FEATURE_ID_COLUMN = "_feature_id"
_PROPERTIES_PREFIX = "_properties_"


def data_column_map(dao: FeatureDao) -> dict[str, str]:
    """
    column name -> display name, from `gpkg_data_columns`.
    """
    if not dao.gpkg.has_table("gpkg_data_columns"):
        return {}
    rows = dao.gpkg.execute(
        "SELECT column_name, name FROM gpkg_data_columns WHERE table_name = ?",
        (dao.table_name,),
    )
    return {str(r["column_name"]): str(r["name"]) for r in rows if r["name"]}


def feature_row_to_geojson(
    row: FeatureRow,
    srs: SpatialReferenceSystem,
    column_map: dict[str, str] | None = None,
    *,
    pk_column: str = "id",
) -> GeoJSONFeature:
    """
    One feature row as a GeoJSON Feature in EPSG:4326.

    `_feature_id` becomes the feature id (falling back to the row id) and
    `_properties_<name>` columns become plain `<name>` properties.
    """
    geometry = None
    geom = row.geometry
    if geom is not None and not geom.is_empty:
        geometry = mapping(reproject_geometry(geom, srs.crs, WGS84))

    properties: dict[str, Any] = {}
    feature_id: Any = None
    for key, value in row.values.items():
        if key in (row.geometry_column, pk_column, "id"):
            continue
        # binary columns have no GeoJSON form
        if isinstance(value, (bytes, memoryview)):
            continue
        lowered = key.lower()
        if lowered == _FEATURE_ID_COLUMN:
            feature_id = value
        elif lowered.startswith(_PROPERTIES_PREFIX):
            properties[key[len(_PROPERTIES_PREFIX):]] = value
        elif column_map and key in column_map:
            properties[column_map[key]] = value
        else:
            properties[key] = value

    return {
        "type": "Feature",
        "id": feature_id if feature_id is not None else row.id,
        "geometry": geometry,
        "properties": properties,
    }


def dao_row_to_geojson(dao: FeatureDao, row: FeatureRow, column_map: dict[str, str] | None = None) -> GeoJSONFeature:
    return feature_row_to_geojson(row, dao.srs, column_map, pk_column=dao.pk_column)


def iterate_geojson_features(gpkg: GeoPackage, table: str) -> Iterator[GeoJSONFeature]:
    dao = gpkg.get_feature_dao(table)
    column_map = data_column_map(dao)
    for row in dao.iterate_rows():
        yield dao_row_to_geojson(dao, row, column_map)


def feature_collection(features) -> dict[str, Any]:
    return {"type": "FeatureCollection", "features": list(features)}


def get_feature(gpkg: GeoPackage, table: str, feature_id: Any) -> GeoJSONFeature | None:
    """
    Look a feature up by row id, then by `_feature_id`, then by `_properties_id`.
    """
    dao = gpkg.get_feature_dao(table)
    row = None
    row_id = _as_int(feature_id)
    if row_id is not None:
        row = dao.get_row(row_id)
    if row is None:
        for column in (_FEATURE_ID_COLUMN, _PROPERTIES_PREFIX + "id"):
            matches = dao.query_for_eq(column, feature_id)
            if matches:
                row = matches[0]
                break
    if row is None:
        return None
    return dao_row_to_geojson(dao, row, data_column_map(dao))


def add_geojson_feature(gpkg: GeoPackage, feature: GeoJSONFeature, table: str) -> int:
    """
    Insert a GeoJSON feature (EPSG:4326) into `table`, reprojecting into the
    table CRS. Properties without a matching column are dropped.
    """
    dao = gpkg.get_feature_dao(table)
    geometry = feature.get("geometry")
    geom = None
    if geometry:
        try:
            geom = reproject_geometry(shape(geometry), WGS84, dao.crs)
        except (ShapelyError, KeyError, TypeError, ValueError, AttributeError) as e:
            raise InvalidGeometryError(f"Unsupported GeoJSON geometry: {e}") from e
    values = dict(feature.get("properties") or {})
    if feature.get("id") is not None and _FEATURE_ID_COLUMN in dao.column_names():
        values.setdefault(_FEATURE_ID_COLUMN, feature["id"])
    values.pop(dao.pk_column, None)
    return dao.add_row(geom, values)


def add_geojson_feature_and_index(gpkg: GeoPackage, feature: GeoJSONFeature, table: str) -> int:
    row_id = add_geojson_feature(gpkg, feature, table)
    index_row(gpkg, table, row_id)
    return row_id


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    return None
