from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, TypeAlias

from geo.bbox import BoundingBox


# Geometry types the closest-feature ranking understands.
GeometryType = Literal["Point", "LineString", "MultiLineString", "Polygon", "MultiPolygon"]

GeoJSONFeature: TypeAlias = dict[str, Any]


@dataclass(frozen=True)
class CoverageIndicator:
    """
    Stand-in for a tile too dense to pick a single feature from.

    Rendered as the tile's bbox polygon plus the raw candidate count.
    """

    bbox: BoundingBox
    table: str
    name: str
    feature_count: int

    def to_geojson(self) -> GeoJSONFeature:
        gj = self.bbox.to_geojson()
        gj["feature_count"] = self.feature_count
        gj["coverage"] = True
        gj["gp_table"] = self.table
        gj["gp_name"] = self.name
        return gj


@dataclass(frozen=True)
class ClosestFeature:
    feature: GeoJSONFeature
    table: str
    name: str
    # metres
    distance: float

    @property
    def geometry_type(self) -> str | None:
        geom = self.feature.get("geometry") or {}
        return geom.get("type")

    def to_geojson(self) -> GeoJSONFeature:
        return {
            **self.feature,
            "gp_table": self.table,
            "gp_name": self.name,
            "distance": self.distance,
        }
