"""
Entry points over an open GeoPackage.

Unlike the engine functions, these index a feature table on first use, so a
caller can go straight from `open_geopackage` to a query.
"""
from __future__ import annotations

from typing import Any, Iterator

import structlog
from pyproj.exceptions import ProjError
from shapely.errors import ShapelyError

from engine import geojson as geojson_engine
from engine import vector_tile
from engine.feature_query import query_by_bounding_box, query_geojson_by_bounding_box
from engine.nearest import find_closest
from engine.types import ClosestFeature, CoverageIndicator, GeoJSONFeature
from geo.bbox import BoundingBox
from geo.projection import WEB_MERCATOR, WGS84, reproject
from geo.tiles import web_mercator_bbox_from_xyz
from gpkg.connection import GeoPackage
from gpkg.errors import GeoPackageError
from gpkg.features import FeatureRow
from gpkg.index import FeatureIndex, index_feature_table


log = structlog.get_logger(__name__)


def _index(gpkg: GeoPackage, table: str) -> FeatureIndex:
    # Written into the file; later connections adopt it.
    return index_feature_table(gpkg, table, persist=True)


def list_tables(gpkg: GeoPackage) -> dict[str, list[str]]:
    return {"features": gpkg.feature_tables(), "tiles": gpkg.tile_tables()}


def get_features_in_bounding_box(
    gpkg: GeoPackage, table: str, west: float, east: float, south: float, north: float
) -> Iterator[FeatureRow]:
    dao = gpkg.get_feature_dao(table)
    index = _index(gpkg, table)
    return query_by_bounding_box(dao, index, BoundingBox(west, east, south, north))


def query_for_geojson_features_in_table(
    gpkg: GeoPackage, table: str, bbox: BoundingBox
) -> list[GeoJSONFeature]:
    _index(gpkg, table)
    return list(query_geojson_by_bounding_box(gpkg, table, bbox))


def get_geojson_features_in_tile(
    gpkg: GeoPackage, table: str, x: int, y: int, z: int, *, skip_verification: bool = False
) -> list[GeoJSONFeature]:
    _index(gpkg, table)
    bbox = reproject(web_mercator_bbox_from_xyz(x, y, z), WEB_MERCATOR, WGS84)
    return list(
        query_geojson_by_bounding_box(gpkg, table, bbox, skip_verification=skip_verification)
    )


def get_closest_feature_in_xyz_tile(
    gpkg: GeoPackage, table: str, x: int, y: int, z: int, lat: float, lon: float
) -> ClosestFeature | CoverageIndicator | None:
    _index(gpkg, table)
    return find_closest(gpkg, table, x, y, z, lat, lon)


def get_vector_tile_protobuf(gpkg: GeoPackage, table: str, x: int, y: int, z: int) -> bytes:
    _index(gpkg, table)
    return vector_tile.get_vector_tile_protobuf(gpkg, table, x, y, z)


def get_vector_tile(gpkg: GeoPackage, table: str, x: int, y: int, z: int) -> dict[str, Any]:
    return vector_tile.decode_vector_tile(get_vector_tile_protobuf(gpkg, table, x, y, z))


def render_vector_tile(gpkg: GeoPackage, table: str, x: int, y: int, z: int) -> bytes | None:
    """
    Best-effort tile for map clients: failures are logged and yield None.
    """
    try:
        return get_vector_tile_protobuf(gpkg, table, x, y, z)
    except (GeoPackageError, ShapelyError, ProjError, ValueError) as e:
        log.warning("vector_tile_failed", table=table, z=z, x=x, y=y, error=str(e))
        return None


def get_feature(gpkg: GeoPackage, table: str, feature_id: Any) -> GeoJSONFeature | None:
    return geojson_engine.get_feature(gpkg, table, feature_id)


def iterate_geojson_features_from_table(gpkg: GeoPackage, table: str) -> Iterator[GeoJSONFeature]:
    return geojson_engine.iterate_geojson_features(gpkg, table)
