from __future__ import annotations

from functools import lru_cache
from typing import TypeVar

from pyproj import Transformer
import shapely
from shapely.geometry.base import BaseGeometry

from geo.bbox import BoundingBox


WGS84 = "EPSG:4326"
WEB_MERCATOR = "EPSG:3857"

# Latitude where Web Mercator y reaches the square world edge.
MAX_MERCATOR_LAT = 85.05112878

G = TypeVar("G", bound=BaseGeometry)


def crs_code(organization: str, coordsys_id: int) -> str:
    """
    "epsg", 4326 -> "EPSG:4326" (the form pyproj and GeoJSON tooling expect).
    """
    return f"{str(organization).strip().upper()}:{int(coordsys_id)}"


def same_crs(a: str, b: str) -> bool:
    return a.strip().upper() == b.strip().upper()


@lru_cache(maxsize=32)
def transformer(source_crs: str, target_crs: str) -> Transformer:
    return Transformer.from_crs(source_crs, target_crs, always_xy=True)


@lru_cache(maxsize=256)
def local_metric_transformer(lon: float, lat: float) -> Transformer:
    """
    EPSG:4326 -> azimuthal equidistant centred on (lon, lat), in metres.

    Distances measured from the origin of this projection are true geodesic
    distances, which is what nearest-feature ranking needs.
    """
    aeqd = f"+proj=aeqd +lat_0={float(lat)} +lon_0={float(lon)} +datum=WGS84 +units=m"
    return Transformer.from_crs(WGS84, aeqd, always_xy=True)


def clamp_longitude(bbox: BoundingBox) -> BoundingBox:
    """
    Clamp west/east to [-180, 180]. Latitude passes through untouched.
    """
    return BoundingBox(
        min_lon=max(-180.0, bbox.min_lon),
        max_lon=min(bbox.max_lon, 180.0),
        min_lat=bbox.min_lat,
        max_lat=bbox.max_lat,
    )


def reproject(bbox: BoundingBox, source_crs: str, target_crs: str) -> BoundingBox:
    """
    Reproject a bbox. Identical CRSs return the input instance unchanged.
    """
    if same_crs(source_crs, target_crs):
        return bbox
    if same_crs(source_crs, WGS84) and same_crs(target_crs, WEB_MERCATOR):
        # Mercator y is unbounded at the poles.
        bbox = BoundingBox(
            min_lon=bbox.min_lon,
            max_lon=bbox.max_lon,
            min_lat=max(-MAX_MERCATOR_LAT, min(bbox.min_lat, MAX_MERCATOR_LAT)),
            max_lat=max(-MAX_MERCATOR_LAT, min(bbox.max_lat, MAX_MERCATOR_LAT)),
        )
    t = transformer(source_crs.upper(), target_crs.upper())
    bounds = t.transform_bounds(*bbox.as_bounds(), densify_pts=21)
    return BoundingBox.from_bounds(bounds)


def reproject_and_clamp(
    bbox: BoundingBox, source_crs: str, target_crs: str
) -> BoundingBox:
    return reproject(clamp_longitude(bbox), source_crs, target_crs)


def reproject_geometry(geom: G, source_crs: str, target_crs: str) -> G:
    if same_crs(source_crs, target_crs) or geom.is_empty:
        return geom
    t = transformer(source_crs.upper(), target_crs.upper())
    return shapely.transform(geom, t.transform, interleaved=False)
