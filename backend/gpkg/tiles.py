from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

from geo.bbox import BoundingBox
from geo.tile_grid import TileGrid, TileMatrix, TileMatrixSet, WebZoomMapper
from geo.tiles import TILE_PIXELS, WEB_MERCATOR_HALF_WORLD
from gpkg.connection import GeoPackage, SpatialReferenceSystem, quote_identifier
from gpkg.errors import GeoPackageError, TableNotFoundError
from gpkg.sql import (
    CREATE_TILE_TABLE_SQL_TEMPLATE,
    INSERT_CONTENTS_SQL,
    INSERT_TILE_MATRIX_SET_SQL,
    INSERT_TILE_MATRIX_SQL,
)


@dataclass(frozen=True)
class TileRow:
    id: int
    zoom_level: int
    tile_column: int
    tile_row: int
    tile_data: bytes
    values: dict[str, Any]


@dataclass
class TileDao:
    gpkg: GeoPackage
    table_name: str
    srs: SpatialReferenceSystem
    tile_matrix_set: TileMatrixSet
    # zoom_level -> matrix, only for zooms present in gpkg_tile_matrix
    tile_matrices: dict[int, TileMatrix]
    column_names: list[str]
    _web_zoom_mapper: WebZoomMapper | None = field(default=None, repr=False)

    @classmethod
    def load(cls, gpkg: GeoPackage, table: str) -> "TileDao":
        tms_row = gpkg.execute(
            "SELECT srs_id, min_x, min_y, max_x, max_y FROM gpkg_tile_matrix_set WHERE table_name = ?",
            (table,),
        ).fetchone()
        if tms_row is None:
            raise TableNotFoundError(table, "tile matrix set for tile table")
        srs = gpkg.get_srs(int(tms_row["srs_id"]))
        tms = TileMatrixSet(
            table_name=table,
            srs_id=srs.srs_id,
            crs=srs.crs,
            bbox=BoundingBox(
                min_lon=float(tms_row["min_x"]),
                max_lon=float(tms_row["max_x"]),
                min_lat=float(tms_row["min_y"]),
                max_lat=float(tms_row["max_y"]),
            ),
        )
        matrices = {
            int(r["zoom_level"]): TileMatrix(
                zoom_level=int(r["zoom_level"]),
                matrix_width=int(r["matrix_width"]),
                matrix_height=int(r["matrix_height"]),
                tile_width=int(r["tile_width"]),
                tile_height=int(r["tile_height"]),
                pixel_x_size=float(r["pixel_x_size"]),
                pixel_y_size=float(r["pixel_y_size"]),
            )
            for r in gpkg.execute(
                "SELECT * FROM gpkg_tile_matrix WHERE table_name = ? ORDER BY zoom_level",
                (table,),
            )
        }
        column_names = [
            str(r["name"]) for r in gpkg.execute(f"PRAGMA table_info({quote_identifier(table)})")
        ]
        return cls(
            gpkg=gpkg,
            table_name=table,
            srs=srs,
            tile_matrix_set=tms,
            tile_matrices=matrices,
            column_names=column_names,
        )

    @property
    def crs(self) -> str:
        return self.srs.crs

    @property
    def min_zoom(self) -> int | None:
        return min(self.tile_matrices) if self.tile_matrices else None

    @property
    def max_zoom(self) -> int | None:
        return max(self.tile_matrices) if self.tile_matrices else None

    @property
    def web_zoom_mapper(self) -> WebZoomMapper:
        if self._web_zoom_mapper is None:
            self._web_zoom_mapper = WebZoomMapper.build(
                self.tile_matrix_set, self.tile_matrices.values()
            )
        return self._web_zoom_mapper

    def get_tile_matrix(self, zoom: int) -> TileMatrix | None:
        return self.tile_matrices.get(int(zoom))

    def query_for_tile(self, column: int, row: int, zoom: int) -> TileRow | None:
        r = self.gpkg.execute(
            f"SELECT * FROM {quote_identifier(self.table_name)} "
            "WHERE zoom_level = ? AND tile_column = ? AND tile_row = ?",
            (int(zoom), int(column), int(row)),
        ).fetchone()
        return _to_tile_row(r) if r is not None else None

    def query_by_tile_grid(self, grid: TileGrid, zoom: int) -> Iterator[TileRow]:
        """
        Lazy iteration over stored tiles inside `grid`, ordered by row then column.
        """
        if grid.is_empty:
            return
        cur = self.gpkg.execute(
            f"SELECT * FROM {quote_identifier(self.table_name)} "
            "WHERE zoom_level = ? AND tile_column BETWEEN ? AND ? AND tile_row BETWEEN ? AND ? "
            "ORDER BY tile_row, tile_column",
            (int(zoom), grid.min_x, grid.max_x, grid.min_y, grid.max_y),
        )
        for r in cur:
            yield _to_tile_row(r)

    def count(self) -> int:
        row = self.gpkg.execute(
            f"SELECT COUNT(*) FROM {quote_identifier(self.table_name)}"
        ).fetchone()
        return int(row[0])

    def add_tile(self, zoom: int, column: int, row: int, data: bytes) -> int:
        cur = self.gpkg.execute(
            f"INSERT OR REPLACE INTO {quote_identifier(self.table_name)} "
            "(zoom_level, tile_column, tile_row, tile_data) VALUES (?, ?, ?, ?)",
            (int(zoom), int(column), int(row), bytes(data)),
        )
        self.gpkg.conn.commit()
        return int(cur.lastrowid)


def _to_tile_row(r) -> TileRow:
    values = dict(r)
    return TileRow(
        id=int(values["id"]),
        zoom_level=int(values["zoom_level"]),
        tile_column=int(values["tile_column"]),
        tile_row=int(values["tile_row"]),
        tile_data=bytes(values["tile_data"]),
        values=values,
    )


def create_tile_table(
    gpkg: GeoPackage,
    table: str,
    *,
    srs_id: int,
    bbox: BoundingBox,
    matrices: Iterable[TileMatrix],
    contents_bbox: BoundingBox | None = None,
) -> TileDao:
    if gpkg.has_table(table):
        raise GeoPackageError(f"Table already exists: {table!r}")
    gpkg.get_srs(srs_id)

    gpkg.execute(CREATE_TILE_TABLE_SQL_TEMPLATE.format(table=table.replace('"', '""')))
    cb = contents_bbox or bbox
    gpkg.execute(
        INSERT_CONTENTS_SQL,
        (table, "tiles", table, "", cb.min_lon, cb.min_lat, cb.max_lon, cb.max_lat, srs_id),
    )
    gpkg.execute(
        INSERT_TILE_MATRIX_SET_SQL,
        (table, srs_id, bbox.min_lon, bbox.min_lat, bbox.max_lon, bbox.max_lat),
    )
    gpkg.conn.executemany(
        INSERT_TILE_MATRIX_SQL,
        [
            (
                table,
                tm.zoom_level,
                tm.matrix_width,
                tm.matrix_height,
                tm.tile_width,
                tm.tile_height,
                tm.pixel_x_size,
                tm.pixel_y_size,
            )
            for tm in matrices
        ],
    )
    gpkg.conn.commit()
    return gpkg.get_tile_dao(table)


def create_standard_web_mercator_tile_table(
    gpkg: GeoPackage,
    table: str,
    *,
    min_zoom: int,
    max_zoom: int,
    tile_size: int = TILE_PIXELS,
    contents_bbox: BoundingBox | None = None,
) -> TileDao:
    """
    EPSG:3857 pyramid covering the whole Web Mercator world, one XYZ-aligned
    matrix (2^z x 2^z) per zoom in [min_zoom, max_zoom].
    """
    world = BoundingBox(
        min_lon=-WEB_MERCATOR_HALF_WORLD,
        max_lon=WEB_MERCATOR_HALF_WORLD,
        min_lat=-WEB_MERCATOR_HALF_WORLD,
        max_lat=WEB_MERCATOR_HALF_WORLD,
    )
    matrices = []
    for z in range(int(min_zoom), int(max_zoom) + 1):
        n = 2**z
        pixel = world.width / (n * tile_size)
        matrices.append(
            TileMatrix(
                zoom_level=z,
                matrix_width=n,
                matrix_height=n,
                tile_width=tile_size,
                tile_height=tile_size,
                pixel_x_size=pixel,
                pixel_y_size=pixel,
            )
        )
    return create_tile_table(
        gpkg,
        table,
        srs_id=3857,
        bbox=world,
        matrices=matrices,
        contents_bbox=contents_bbox,
    )
