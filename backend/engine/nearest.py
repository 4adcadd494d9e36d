from __future__ import annotations

from dataclasses import dataclass
from functools import reduce
from typing import Callable

import structlog
from pyproj import Transformer
import shapely
from shapely.geometry import Point
from shapely.geometry.base import BaseGeometry

from engine.config import closest_feature_limit
from engine.feature_query import count_by_bounding_box, query_by_bounding_box
from engine.geojson import dao_row_to_geojson, data_column_map
from engine.types import ClosestFeature, CoverageIndicator, GeometryType
from geo.bbox import BoundingBox
from geo.projection import WEB_MERCATOR, WGS84, local_metric_transformer, reproject, reproject_geometry
from geo.tiles import pixel_tolerance_degrees, web_mercator_bbox_from_xyz
from gpkg.connection import GeoPackage
from gpkg.features import FeatureRow
from gpkg.index import get_feature_index


log = structlog.get_logger(__name__)

# Search radius around the query point, in screen pixels of a 256px tile.
SEARCH_PIXELS = 10

_ORIGIN = Point(0.0, 0.0)


def _project(geom: BaseGeometry, t: Transformer) -> BaseGeometry:
    return shapely.transform(geom, t.transform, interleaved=False)


def _line_parts(geom: BaseGeometry) -> list[BaseGeometry]:
    return list(getattr(geom, "geoms", [geom]))


def _to_geometry(geom: BaseGeometry, center: Point, t: Transformer) -> float:
    return _project(geom, t).distance(_ORIGIN)


def _to_lines(geom: BaseGeometry, center: Point, t: Transformer) -> float:
    return min(_project(line, t).distance(_ORIGIN) for line in _line_parts(geom))


def _to_polygon(geom: BaseGeometry, center: Point, t: Transformer) -> float:
    # boundary counts as inside
    if geom.covers(center):
        return 0.0
    return _to_lines(geom.boundary, center, t)


def _to_multipolygon(geom: BaseGeometry, center: Point, t: Transformer) -> float:
    if geom.covers(center):
        return 0.0
    return min(_to_lines(poly.boundary, center, t) for poly in geom.geoms)


_DISTANCE_BY_TYPE: dict[GeometryType, Callable[[BaseGeometry, Point, Transformer], float]] = {
    "Point": _to_geometry,
    "LineString": _to_geometry,
    "MultiLineString": _to_lines,
    "Polygon": _to_polygon,
    "MultiPolygon": _to_multipolygon,
}


def distance_to_point(geom: BaseGeometry, lon: float, lat: float) -> float | None:
    """
    Metres from (lon, lat) to an EPSG:4326 geometry, or None for geometry
    types that are not ranked.
    """
    fn = _DISTANCE_BY_TYPE.get(geom.geom_type)
    if fn is None or geom.is_empty:
        return None
    return float(fn(geom, Point(lon, lat), local_metric_transformer(lon, lat)))


@dataclass(frozen=True)
class _Candidate:
    row: FeatureRow
    geometry_type: str
    distance: float


def _closer(best: _Candidate | None, candidate: _Candidate | None) -> _Candidate | None:
    if candidate is None:
        return best
    if best is None or candidate.distance < best.distance:
        return candidate
    # On a tie a Point incumbent is kept; anything else is replaced.
    if candidate.distance == best.distance and best.geometry_type != "Point":
        return candidate
    return best


def find_closest(
    gpkg: GeoPackage,
    table: str,
    x: int,
    y: int,
    z: int,
    lat: float,
    lon: float,
) -> ClosestFeature | CoverageIndicator | None:
    """
    Closest feature to (lon, lat) within a few pixels, looked up inside XYZ
    tile z/x/y.

    Dense tiles short-circuit to a CoverageIndicator carrying the candidate
    count. Ties on distance resolve towards Point geometries.
    """
    dao = gpkg.get_feature_dao(table)
    index = get_feature_index(gpkg, table)
    tile_box = reproject(web_mercator_bbox_from_xyz(x, y, z), WEB_MERCATOR, WGS84)

    feature_count = count_by_bounding_box(dao, index, tile_box)
    if feature_count > closest_feature_limit():
        log.info("closest_feature_coverage", table=table, z=z, x=x, y=y, feature_count=feature_count)
        return CoverageIndicator(bbox=tile_box, table=table, name=gpkg.name, feature_count=feature_count)

    tolerance = pixel_tolerance_degrees(tile_box, SEARCH_PIXELS)
    search_box = BoundingBox.around(float(lon), float(lat), tolerance)

    def candidate(row: FeatureRow) -> _Candidate | None:
        geom = reproject_geometry(row.geometry, dao.crs, WGS84)
        distance = distance_to_point(geom, float(lon), float(lat))
        if distance is None:
            return None
        return _Candidate(row=row, geometry_type=geom.geom_type, distance=distance)

    rows = query_by_bounding_box(dao, index, search_box)
    best = reduce(_closer, (candidate(row) for row in rows), None)
    if best is None:
        return None
    return ClosestFeature(
        feature=dao_row_to_geojson(dao, best.row, data_column_map(dao)),
        table=table,
        name=gpkg.name,
        distance=best.distance,
    )
