from __future__ import annotations

import math

from geo.bbox import BoundingBox
from geo.projection import MAX_MERCATOR_LAT


# Half of the EPSG:3857 world width in metres.
WEB_MERCATOR_HALF_WORLD = 20037508.342789244

# Pixel width assumed when converting a tile to a per-pixel tolerance.
TILE_PIXELS = 256


def lonlat_to_tile(zoom: int, lon: float, lat: float) -> tuple[int, int]:
    """
    Convert lon/lat in EPSG:4326 to slippy tile (x, y) at zoom.
    """
    z = int(zoom)
    n = 2**z

    # Clamp to WebMercator-supported latitudes.
    lat = max(-MAX_MERCATOR_LAT, min(MAX_MERCATOR_LAT, float(lat)))

    lon = float(lon)
    lat_rad = math.radians(lat)

    x = int(math.floor((lon + 180.0) / 360.0 * n))
    y = int(
        math.floor(
            (1.0 - math.log(math.tan(lat_rad) + (1.0 / math.cos(lat_rad))) / math.pi)
            / 2.0
            * n
        )
    )
    # Clamp indices to valid tile range.
    x = max(0, min(n - 1, x))
    y = max(0, min(n - 1, y))
    return x, y


def web_mercator_bbox_from_xyz(x: int, y: int, zoom: int) -> BoundingBox:
    """
    XYZ tile bounds in EPSG:3857 metres. Origin top-left, y grows southward.
    """
    n = 2 ** int(zoom)
    size = (2.0 * WEB_MERCATOR_HALF_WORLD) / n
    min_x = -WEB_MERCATOR_HALF_WORLD + int(x) * size
    max_y = WEB_MERCATOR_HALF_WORLD - int(y) * size
    return BoundingBox(
        min_lon=min_x, max_lon=min_x + size, min_lat=max_y - size, max_lat=max_y
    )


def tile_bbox_4326(zoom: int, x: int, y: int) -> BoundingBox:
    """
    Slippy tile (z/x/y) bounds as a WGS84 lon/lat bbox.
    """
    z = int(zoom)
    n = 2**z
    x = int(x)
    y = int(y)

    lon_left = x / n * 360.0 - 180.0
    lon_right = (x + 1) / n * 360.0 - 180.0

    def lat_from_tile_y(tile_y: int) -> float:
        # https://wiki.openstreetmap.org/wiki/Slippy_map_tilenames
        t = math.pi * (1.0 - 2.0 * tile_y / n)
        return math.degrees(math.atan(math.sinh(t)))

    lat_top = lat_from_tile_y(y)
    lat_bottom = lat_from_tile_y(y + 1)

    return BoundingBox(
        min_lon=lon_left, max_lon=lon_right, min_lat=lat_bottom, max_lat=lat_top
    ).normalized()


def pixel_tolerance_degrees(tile_bbox: BoundingBox, pixels: float) -> float:
    """
    Width of `pixels` screen pixels inside a 256px tile, in the bbox's units.
    """
    return float(pixels) * (tile_bbox.width / TILE_PIXELS)
