from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class BoundingBox:
    """
    Rectangle in some CRS, stored as lon/lat-style edges.

    Convention used throughout this repo (matches GeoPackage bounds):
    - min_lon, max_lon, min_lat, max_lat
    - for projected CRSs "lon" is x and "lat" is y
    """

    min_lon: float
    max_lon: float
    min_lat: float
    max_lat: float

    def normalized(self) -> "BoundingBox":
        min_lon = min(self.min_lon, self.max_lon)
        max_lon = max(self.min_lon, self.max_lon)
        min_lat = min(self.min_lat, self.max_lat)
        max_lat = max(self.min_lat, self.max_lat)
        return BoundingBox(
            min_lon=min_lon, max_lon=max_lon, min_lat=min_lat, max_lat=max_lat
        )

    @property
    def width(self) -> float:
        return self.max_lon - self.min_lon

    @property
    def height(self) -> float:
        return self.max_lat - self.min_lat

    def as_bounds(self) -> tuple[float, float, float, float]:
        """
        (minx, miny, maxx, maxy), the order shapely and pyproj expect.
        """
        return (self.min_lon, self.min_lat, self.max_lon, self.max_lat)

    @classmethod
    def from_bounds(cls, bounds: tuple[float, float, float, float]) -> "BoundingBox":
        minx, miny, maxx, maxy = bounds
        return cls(min_lon=minx, max_lon=maxx, min_lat=miny, max_lat=maxy)

    @classmethod
    def around(cls, lon: float, lat: float, half_width: float) -> "BoundingBox":
        return cls(
            min_lon=lon - half_width,
            max_lon=lon + half_width,
            min_lat=lat - half_width,
            max_lat=lat + half_width,
        )

    def intersects(self, other: "BoundingBox") -> bool:
        return not (
            other.max_lon < self.min_lon
            or other.min_lon > self.max_lon
            or other.max_lat < self.min_lat
            or other.min_lat > self.max_lat
        )

    def to_geojson(self) -> dict[str, Any]:
        """
        GeoJSON Polygon feature covering the box (counter-clockwise ring).
        """
        ring = [
            [self.min_lon, self.min_lat],
            [self.max_lon, self.min_lat],
            [self.max_lon, self.max_lat],
            [self.min_lon, self.max_lat],
            [self.min_lon, self.min_lat],
        ]
        return {
            "type": "Feature",
            "properties": {},
            "geometry": {"type": "Polygon", "coordinates": [ring]},
        }
