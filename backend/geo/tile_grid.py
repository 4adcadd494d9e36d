from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Iterator

from geo.bbox import BoundingBox
from geo.projection import WEB_MERCATOR, reproject
from geo.tiles import WEB_MERCATOR_HALF_WORLD


@dataclass(frozen=True)
class TileMatrixSet:
    """
    Total extent and CRS of one tile pyramid (a `gpkg_tile_matrix_set` row).
    """

    table_name: str
    srs_id: int
    crs: str
    bbox: BoundingBox


@dataclass(frozen=True)
class TileMatrix:
    zoom_level: int
    matrix_width: int
    matrix_height: int
    tile_width: int
    tile_height: int
    pixel_x_size: float
    pixel_y_size: float


@dataclass(frozen=True)
class TileGrid:
    """
    Inclusive column (x) / row (y) range at one zoom. Row 0 is the northernmost.
    """

    min_x: int
    max_x: int
    min_y: int
    max_y: int

    @classmethod
    def empty(cls) -> "TileGrid":
        return cls(min_x=0, max_x=-1, min_y=0, max_y=-1)

    @property
    def is_empty(self) -> bool:
        return self.min_x > self.max_x or self.min_y > self.max_y

    @property
    def count(self) -> int:
        if self.is_empty:
            return 0
        return (self.max_x - self.min_x + 1) * (self.max_y - self.min_y + 1)

    def cells(self) -> Iterator[tuple[int, int]]:
        """
        (column, row) pairs, row-major from the north-west corner.
        """
        if self.is_empty:
            return
        for row in range(self.min_y, self.max_y + 1):
            for column in range(self.min_x, self.max_x + 1):
                yield column, row


def grid_from_bounding_box(
    total: BoundingBox, matrix: TileMatrix, bbox: BoundingBox
) -> TileGrid:
    """
    Tile grid of `matrix` covering `bbox` (already in the matrix CRS).

    Min edges floor, max edges ceil-minus-one; results are clamped into the
    matrix. A bbox that misses the total extent yields an empty grid.
    """
    bbox = bbox.normalized()
    if total.width <= 0 or total.height <= 0 or not total.intersects(bbox):
        return TileGrid.empty()
    # Edges past the extent clamp anyway; trimming keeps the math finite.
    bbox = BoundingBox(
        min_lon=max(bbox.min_lon, total.min_lon),
        max_lon=min(bbox.max_lon, total.max_lon),
        min_lat=max(bbox.min_lat, total.min_lat),
        max_lat=min(bbox.max_lat, total.max_lat),
    )

    tile_width = total.width / matrix.matrix_width
    tile_height = total.height / matrix.matrix_height

    min_x = math.floor((bbox.min_lon - total.min_lon) / tile_width)
    max_x = _ceil_minus_one((bbox.max_lon - total.min_lon) / tile_width, min_x)
    # Rows are counted from the top (max latitude) down.
    min_y = math.floor((total.max_lat - bbox.max_lat) / tile_height)
    max_y = _ceil_minus_one((total.max_lat - bbox.min_lat) / tile_height, min_y)

    return TileGrid(
        min_x=_clamp(min_x, matrix.matrix_width),
        max_x=_clamp(max_x, matrix.matrix_width),
        min_y=_clamp(min_y, matrix.matrix_height),
        max_y=_clamp(max_y, matrix.matrix_height),
    )


def tile_to_bounding_box(
    total: BoundingBox, matrix: TileMatrix, column: int, row: int
) -> BoundingBox:
    tile_width = total.width / matrix.matrix_width
    tile_height = total.height / matrix.matrix_height
    min_lon = total.min_lon + tile_width * int(column)
    max_lat = total.max_lat - tile_height * int(row)
    return BoundingBox(
        min_lon=min_lon,
        max_lon=min_lon + tile_width,
        min_lat=max_lat - tile_height,
        max_lat=max_lat,
    )


def grid_to_bounding_box(
    total: BoundingBox, matrix: TileMatrix, grid: TileGrid
) -> BoundingBox | None:
    if grid.is_empty:
        return None
    north_west = tile_to_bounding_box(total, matrix, grid.min_x, grid.min_y)
    south_east = tile_to_bounding_box(total, matrix, grid.max_x, grid.max_y)
    return BoundingBox(
        min_lon=north_west.min_lon,
        max_lon=south_east.max_lon,
        min_lat=south_east.min_lat,
        max_lat=north_west.max_lat,
    )


@dataclass(frozen=True)
class WebZoomMapper:
    """
    Lookup between XYZ ("web") zoom levels and a pyramid's own zoom levels.

    Each matrix is assigned the web zoom whose Web Mercator tile span is
    closest to the matrix tile span. There is no fixed offset; zooms that no
    matrix maps to resolve to None.
    """

    web_to_matrix: dict[int, int] = field(default_factory=dict)

    @classmethod
    def build(
        cls, matrix_set: TileMatrixSet, matrices: Iterable[TileMatrix]
    ) -> "WebZoomMapper":
        world_width = 2.0 * WEB_MERCATOR_HALF_WORLD
        extent = reproject(matrix_set.bbox, matrix_set.crs, WEB_MERCATOR)
        mapping: dict[int, int] = {}
        for tm in sorted(matrices, key=lambda m: m.zoom_level):
            if tm.matrix_width <= 0 or extent.width <= 0:
                continue
            span = extent.width / tm.matrix_width
            web_zoom = int(round(math.log2(world_width / span)))
            mapping.setdefault(web_zoom, tm.zoom_level)
        return cls(web_to_matrix=mapping)

    def web_zoom_to_matrix_zoom(self, web_zoom: int) -> int | None:
        return self.web_to_matrix.get(int(web_zoom))

    def matrix_zoom_to_web_zoom(self, zoom: int) -> int | None:
        for web_zoom, matrix_zoom in self.web_to_matrix.items():
            if matrix_zoom == int(zoom):
                return web_zoom
        return None

    @property
    def min_web_zoom(self) -> int | None:
        return min(self.web_to_matrix) if self.web_to_matrix else None

    @property
    def max_web_zoom(self) -> int | None:
        return max(self.web_to_matrix) if self.web_to_matrix else None


def _ceil_minus_one(value: float, floor_value: int) -> int:
    return max(floor_value, math.ceil(value) - 1)


def _clamp(value: int, size: int) -> int:
    return max(0, min(size - 1, value))
