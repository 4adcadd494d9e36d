from __future__ import annotations

from typing import Iterator

from shapely.geometry import box as shapely_box

from engine.geojson import dao_row_to_geojson, data_column_map
from engine.types import GeoJSONFeature
from geo.bbox import BoundingBox
from geo.projection import WGS84, reproject
from gpkg.connection import GeoPackage
from gpkg.features import FeatureDao, FeatureRow
from gpkg.index import FeatureIndex, get_feature_index


def query_by_bounding_box(
    dao: FeatureDao,
    index: FeatureIndex,
    bbox: BoundingBox,
    *,
    skip_verification: bool = False,
) -> Iterator[FeatureRow]:
    """
    Rows of `dao` whose geometry intersects `bbox` (EPSG:4326).

    The index narrows candidates by envelope; unless `skip_verification`, each
    candidate's actual geometry is tested against the query box as well.
    Rows are fetched one per `next()`.
    """
    query_box = reproject(bbox.normalized(), WGS84, dao.crs)
    probe = None if skip_verification else shapely_box(*query_box.as_bounds())
    for row_id in index.query(query_box):
        row = dao.get_row(row_id)
        if row is None or row.geometry is None or row.geometry.is_empty:
            continue
        if probe is not None and not row.geometry.intersects(probe):
            continue
        yield row


def count_by_bounding_box(dao: FeatureDao, index: FeatureIndex, bbox: BoundingBox) -> int:
    """
    Envelope-level candidate count (no geometry verification).
    """
    return index.count(reproject(bbox.normalized(), WGS84, dao.crs))


def query_table_by_bounding_box(
    gpkg: GeoPackage, table: str, bbox: BoundingBox, *, skip_verification: bool = False
) -> Iterator[FeatureRow]:
    # Resolve eagerly so a missing table or index fails before iteration starts.
    dao = gpkg.get_feature_dao(table)
    index = get_feature_index(gpkg, table)
    return query_by_bounding_box(dao, index, bbox, skip_verification=skip_verification)


def query_geojson_by_bounding_box(
    gpkg: GeoPackage, table: str, bbox: BoundingBox, *, skip_verification: bool = False
) -> Iterator[GeoJSONFeature]:
    dao = gpkg.get_feature_dao(table)
    index = get_feature_index(gpkg, table)
    column_map = data_column_map(dao)
    rows = query_by_bounding_box(dao, index, bbox, skip_verification=skip_verification)
    return (dao_row_to_geojson(dao, row, column_map) for row in rows)
