from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, TypeVar

from fastapi import APIRouter, HTTPException, Query, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from api import geopackage_api
from engine.config import geopackage_path
from engine.geojson import feature_collection
from engine.raster import (
    RasterTileRequest,
    TileInfo,
    TilesInBoundingBox,
    get_tiles_in_bounding_box,
    get_tiles_in_bounding_box_web_zoom,
    raster_tile_request,
)
from geo.bbox import BoundingBox
from gpkg.connection import GeoPackage, open_geopackage


T = TypeVar("T")

router = APIRouter()


class ApiTables(BaseModel):
    name: str
    features: list[str]
    tiles: list[str]


class ApiBBox(BaseModel):
    min_x: float
    max_x: float
    min_y: float
    max_y: float


class ApiGrid(BaseModel):
    min_x: int
    max_x: int
    min_y: int
    max_y: int


class ApiTile(BaseModel):
    id: int
    zoom_level: int
    tile_column: int
    tile_row: int
    bbox: ApiBBox
    projection: str
    values: dict[str, Any]


class ApiTilesInBoundingBox(BaseModel):
    table_name: str
    zoom: int | None
    srs_id: int
    projection: str
    west: float
    east: float
    south: float
    north: float
    grid: ApiGrid
    columns: list[str]
    tiles: list[ApiTile]


class ApiRasterTileRequest(BaseModel):
    table_name: str
    x: int
    y: int
    z: int
    zoom_level: int
    projection: str
    target_bbox: ApiBBox
    grid: ApiGrid
    tiles: list[ApiTile]


def _bbox(b: BoundingBox) -> ApiBBox:
    return ApiBBox(min_x=b.min_lon, max_x=b.max_lon, min_y=b.min_lat, max_y=b.max_lat)


def _tile(t: TileInfo) -> ApiTile:
    return ApiTile(
        id=t.id,
        zoom_level=t.zoom_level,
        tile_column=t.tile_column,
        tile_row=t.tile_row,
        bbox=_bbox(t.bbox),
        projection=t.projection,
        values=t.values,
    )


def _tiles_in_bbox(r: TilesInBoundingBox) -> ApiTilesInBoundingBox:
    return ApiTilesInBoundingBox(
        table_name=r.table_name,
        zoom=r.zoom,
        srs_id=r.srs_id,
        projection=r.projection,
        west=r.bbox.min_lon,
        east=r.bbox.max_lon,
        south=r.bbox.min_lat,
        north=r.bbox.max_lat,
        grid=ApiGrid(**vars(r.grid)),
        columns=r.columns,
        tiles=[_tile(t) for t in r.tiles],
    )


def _raster_request(r: RasterTileRequest) -> ApiRasterTileRequest:
    return ApiRasterTileRequest(
        table_name=r.table_name,
        x=r.x,
        y=r.y,
        z=r.z,
        zoom_level=r.zoom_level,
        projection=r.projection,
        target_bbox=_bbox(r.target_bbox),
        grid=ApiGrid(**vars(r.grid)),
        tiles=[_tile(t) for t in r.tiles],
    )


def _configured_path() -> Path:
    path = geopackage_path()
    if path is None:
        raise HTTPException(status_code=503, detail="GPKG_PATH is not configured")
    return path


def _with_geopackage(path: Path, fn: Callable[..., T], *args: Any) -> T:
    # sqlite connections are bound to the thread that opened them.
    with open_geopackage(path) as gpkg:
        return fn(gpkg, *args)


async def _run(fn: Callable[..., T], *args: Any) -> T:
    return await run_in_threadpool(_with_geopackage, _configured_path(), fn, *args)


@router.get("/health")
async def health():
    return {"ok": True, "geopackage": str(geopackage_path() or "")}


@router.get("/tables", response_model=ApiTables)
async def tables():
    def list_tables(gpkg: GeoPackage) -> ApiTables:
        return ApiTables(name=gpkg.name, **geopackage_api.list_tables(gpkg))

    return await _run(list_tables)


@router.get("/features/{table}/{feature_id}")
async def feature(table: str, feature_id: str):
    found = await _run(geopackage_api.get_feature, table, feature_id)
    if found is None:
        raise HTTPException(status_code=404, detail=f"Feature {feature_id!r} not found in {table!r}")
    return JSONResponse(found)


@router.get("/features/{table}")
async def features_in_bbox(
    table: str,
    west: float = Query(-180.0),
    east: float = Query(180.0),
    south: float = Query(-90.0),
    north: float = Query(90.0),
):
    bbox = BoundingBox(min_lon=west, max_lon=east, min_lat=south, max_lat=north)
    found = await _run(geopackage_api.query_for_geojson_features_in_table, table, bbox)
    return JSONResponse(feature_collection(found))


@router.get("/tiles/vector/{table}/{z}/{x}/{y}.pbf")
async def vector_tile(table: str, z: int, x: int, y: int):
    def render(gpkg: GeoPackage) -> bytes | None:
        # Unknown tables are a client error, not a rendering failure.
        gpkg.get_feature_dao(table)
        return geopackage_api.render_vector_tile(gpkg, table, x, y, z)

    data = await _run(render)
    if data is None:
        return Response(status_code=204)
    return Response(content=data, media_type="application/x-protobuf")


@router.get("/tiles/closest/{table}/{z}/{x}/{y}")
async def closest_feature(table: str, z: int, x: int, y: int, lat: float, lon: float):
    result = await _run(geopackage_api.get_closest_feature_in_xyz_tile, table, x, y, z, lat, lon)
    return JSONResponse(result.to_geojson() if result is not None else None)


@router.get("/tiles/raster/{table}/{z}/{x}/{y}", response_model=ApiRasterTileRequest)
async def raster_tile(table: str, z: int, x: int, y: int):
    request = await _run(raster_tile_request, table, x, y, z)
    if request is None:
        raise HTTPException(status_code=404, detail=f"No tile matrix in {table!r} for zoom {z}")
    return _raster_request(request)


@router.get("/tiles/grid/{table}", response_model=ApiTilesInBoundingBox)
async def tiles_in_bbox(
    table: str,
    zoom: int | None = None,
    web_zoom: int | None = None,
    west: float = Query(-180.0),
    east: float = Query(180.0),
    south: float = Query(-90.0),
    north: float = Query(90.0),
):
    if (zoom is None) == (web_zoom is None):
        raise HTTPException(status_code=422, detail="Pass exactly one of zoom or web_zoom")
    if zoom is not None:
        result = await _run(get_tiles_in_bounding_box, table, zoom, west, east, south, north)
    else:
        result = await _run(
            get_tiles_in_bounding_box_web_zoom, table, web_zoom, west, east, south, north
        )
    return _tiles_in_bbox(result)
