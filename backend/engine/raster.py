from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from geo.bbox import BoundingBox
from geo.projection import WEB_MERCATOR, WGS84, clamp_longitude, reproject
from geo.tile_grid import TileGrid, TileMatrix, grid_from_bounding_box, tile_to_bounding_box
from geo.tiles import web_mercator_bbox_from_xyz
from gpkg.connection import GeoPackage
from gpkg.errors import ZoomOutOfRangeError
from gpkg.tiles import TileDao, TileRow


@dataclass(frozen=True)
class TileInfo:
    """
    One stored tile plus its extent in the pyramid's CRS.
    """

    table_name: str
    id: int
    zoom_level: int
    tile_column: int
    tile_row: int
    bbox: BoundingBox
    projection: str
    values: dict[str, Any]
    data: bytes = field(default=b"", repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "table_name": self.table_name,
            "id": self.id,
            "zoom_level": self.zoom_level,
            "tile_column": self.tile_column,
            "tile_row": self.tile_row,
            "min_x": self.bbox.min_lon,
            "max_x": self.bbox.max_lon,
            "min_y": self.bbox.min_lat,
            "max_y": self.bbox.max_lat,
            "projection": self.projection,
            "values": dict(self.values),
        }


@dataclass(frozen=True)
class TilesInBoundingBox:
    table_name: str
    # None when no matrix answers the requested web zoom
    zoom: int | None
    srs_id: int
    projection: str
    bbox: BoundingBox
    grid: TileGrid
    columns: list[str]
    tiles: list[TileInfo]


@dataclass(frozen=True)
class RasterTileRequest:
    """
    Everything an external compositor needs to paint XYZ tile z/x/y from one
    tile table: the target extent, the source matrix and the source tiles.
    """

    table_name: str
    x: int
    y: int
    z: int
    zoom_level: int
    projection: str
    target_bbox: BoundingBox
    matrix: TileMatrix
    grid: TileGrid
    tiles: list[TileInfo]


def get_tile_from_table(
    gpkg: GeoPackage, table: str, zoom: int, tile_row: int, tile_column: int
) -> TileRow | None:
    return gpkg.get_tile_dao(table).query_for_tile(tile_column, tile_row, zoom)


def get_tiles_in_bounding_box(
    gpkg: GeoPackage,
    table: str,
    zoom: int,
    west: float,
    east: float,
    south: float,
    north: float,
) -> TilesInBoundingBox:
    """
    Stored tiles at matrix zoom `zoom` that overlap a 4326 bbox.
    """
    dao = gpkg.get_tile_dao(table)
    if dao.min_zoom is None or not (dao.min_zoom <= int(zoom) <= dao.max_zoom):
        raise ZoomOutOfRangeError(table, int(zoom), dao.min_zoom, dao.max_zoom)
    return _tiles_in_bbox(dao, int(zoom), BoundingBox(west, east, south, north))


def get_tiles_in_bounding_box_web_zoom(
    gpkg: GeoPackage,
    table: str,
    web_zoom: int,
    west: float,
    east: float,
    south: float,
    north: float,
) -> TilesInBoundingBox:
    dao = gpkg.get_tile_dao(table)
    mapper = dao.web_zoom_mapper
    lo, hi = mapper.min_web_zoom, mapper.max_web_zoom
    if lo is None or not (lo <= int(web_zoom) <= hi):
        raise ZoomOutOfRangeError(table, int(web_zoom), lo, hi)
    zoom = mapper.web_zoom_to_matrix_zoom(int(web_zoom))
    return _tiles_in_bbox(dao, zoom, BoundingBox(west, east, south, north))


def raster_tile_request(
    gpkg: GeoPackage, table: str, x: int, y: int, z: int
) -> RasterTileRequest | None:
    """
    Source tiles for XYZ tile z/x/y, or None when no matrix matches web zoom z.
    """
    dao = gpkg.get_tile_dao(table)
    zoom = dao.web_zoom_mapper.web_zoom_to_matrix_zoom(int(z))
    if zoom is None:
        return None
    matrix = dao.get_tile_matrix(zoom)
    if matrix is None:
        return None
    target = reproject(web_mercator_bbox_from_xyz(x, y, z), WEB_MERCATOR, dao.crs)
    grid = grid_from_bounding_box(dao.tile_matrix_set.bbox, matrix, target)
    tiles = [_tile_info(dao, matrix, row) for row in dao.query_by_tile_grid(grid, zoom)]
    return RasterTileRequest(
        table_name=dao.table_name,
        x=int(x),
        y=int(y),
        z=int(z),
        zoom_level=zoom,
        projection=dao.crs,
        target_bbox=target,
        matrix=matrix,
        grid=grid,
        tiles=tiles,
    )


def _tiles_in_bbox(dao: TileDao, zoom: int | None, requested: BoundingBox) -> TilesInBoundingBox:
    requested = clamp_longitude(requested.normalized())
    matrix = dao.get_tile_matrix(zoom) if zoom is not None else None
    grid = TileGrid.empty()
    tiles: list[TileInfo] = []
    # A box entirely past +-180 comes out of the clamp inverted: nothing overlaps it.
    if matrix is not None and requested.min_lon <= requested.max_lon:
        query_box = reproject(requested, WGS84, dao.crs)
        grid = grid_from_bounding_box(dao.tile_matrix_set.bbox, matrix, query_box)
        tiles = [_tile_info(dao, matrix, row) for row in dao.query_by_tile_grid(grid, zoom)]
    return TilesInBoundingBox(
        table_name=dao.table_name,
        zoom=zoom,
        srs_id=dao.srs.srs_id,
        projection=dao.crs,
        bbox=requested,
        grid=grid,
        columns=list(dao.column_names),
        tiles=tiles,
    )


def _tile_info(dao: TileDao, matrix: TileMatrix, row: TileRow) -> TileInfo:
    values = {k: v for k, v in row.values.items() if k != "tile_data"}
    return TileInfo(
        table_name=dao.table_name,
        id=row.id,
        zoom_level=row.zoom_level,
        tile_column=row.tile_column,
        tile_row=row.tile_row,
        bbox=tile_to_bounding_box(dao.tile_matrix_set.bbox, matrix, row.tile_column, row.tile_row),
        projection=dao.crs,
        values=values,
        data=row.tile_data,
    )
