from __future__ import annotations

import json
from typing import Any, Iterable

import mapbox_vector_tile
from mapbox_vector_tile.encoder import on_invalid_geometry_make_valid
from shapely import clip_by_rect
from shapely.geometry import shape
from shapely.geometry.base import BaseGeometry

from engine.feature_query import query_geojson_by_bounding_box
from engine.geojson import feature_collection
from geo.bbox import BoundingBox
from geo.projection import WEB_MERCATOR, WGS84, reproject, reproject_geometry
from geo.tiles import web_mercator_bbox_from_xyz
from gpkg.connection import GeoPackage


# Tile coordinate space and tiling parameters, in extent units.
EXTENT = 4096
BUFFER = 8 * 8
SIMPLIFY_TOLERANCE = 3

_LAT_LIMIT = 89.9
_LON_LIMIT = 1.0e6


def get_vector_tile_protobuf(gpkg: GeoPackage, table: str, x: int, y: int, z: int) -> bytes:
    """
    Mapbox Vector Tile for XYZ tile z/x/y with one layer named after `table`.

    Candidates come from the spatial index without exact verification; the
    clip to the buffered tile does the rest. An empty tile still carries the
    layer, with no features.
    """
    bbox = reproject(web_mercator_bbox_from_xyz(x, y, z), WEB_MERCATOR, WGS84)
    collection = feature_collection(
        query_geojson_by_bounding_box(gpkg, table, bbox, skip_verification=True)
    )
    tile = build_tile_layer(collection, x, y, z)
    layer = {"name": table, "features": tile if tile is not None else []}
    return encode_layers([layer], x, y, z)


def build_tile_layer(
    collection: dict[str, Any],
    x: int,
    y: int,
    z: int,
    *,
    buffer: int = BUFFER,
    extent: int = EXTENT,
) -> list[dict[str, Any]] | None:
    """
    Project, simplify and clip a 4326 FeatureCollection into tile z/x/y.

    Returns encoder-ready features (EPSG:3857 geometries), or None when nothing
    survives the clip.
    """
    bounds = web_mercator_bbox_from_xyz(x, y, z)
    pad = bounds.width * buffer / extent
    tolerance = bounds.width * SIMPLIFY_TOLERANCE / extent
    clip = BoundingBox(
        min_lon=bounds.min_lon - pad,
        max_lon=bounds.max_lon + pad,
        min_lat=bounds.min_lat - pad,
        max_lat=bounds.max_lat + pad,
    )
    features: list[dict[str, Any]] = []
    for feature in collection.get("features") or []:
        geometry = feature.get("geometry")
        if not geometry:
            continue
        # Poles project to infinity; nothing that close reaches a tile anyway.
        geom = clip_by_rect(shape(geometry), -_LON_LIMIT, -_LAT_LIMIT, _LON_LIMIT, _LAT_LIMIT)
        if geom.is_empty:
            continue
        geom = reproject_geometry(geom, WGS84, WEB_MERCATOR)
        if geom.geom_type not in ("Point", "MultiPoint"):
            geom = geom.simplify(tolerance, preserve_topology=True)
        geom = clip_by_rect(geom, *clip.as_bounds())
        properties = tile_properties(feature.get("properties"))
        feature_id = feature.get("id")
        for part in _parts(geom):
            out: dict[str, Any] = {"geometry": part, "properties": properties}
            if isinstance(feature_id, int) and not isinstance(feature_id, bool) and feature_id >= 0:
                out["id"] = feature_id
            features.append(out)
    return features or None


def encode_layers(layers: list[dict[str, Any]], x: int, y: int, z: int) -> bytes:
    bounds = web_mercator_bbox_from_xyz(x, y, z)
    return mapbox_vector_tile.encode(
        layers,
        default_options={
            "quantize_bounds": bounds.as_bounds(),
            "extents": EXTENT,
            "on_invalid_geometry": on_invalid_geometry_make_valid,
        },
    )


def decode_vector_tile(data: bytes) -> dict[str, Any]:
    return mapbox_vector_tile.decode(data)


def tile_properties(properties: dict[str, Any] | None) -> dict[str, Any]:
    """
    MVT values are scalars only: nested values are JSON-encoded and nulls dropped.
    """
    out: dict[str, Any] = {}
    for key, value in (properties or {}).items():
        if value is None or isinstance(value, (bytes, memoryview)):
            continue
        if isinstance(value, (dict, list, tuple)):
            out[str(key)] = json.dumps(value)
        else:
            out[str(key)] = value
    return out


def _parts(geom: BaseGeometry) -> Iterable[BaseGeometry]:
    if geom.is_empty:
        return []
    if geom.geom_type == "GeometryCollection":
        return [g for g in geom.geoms if not g.is_empty]
    return [geom]

