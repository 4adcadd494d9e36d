import sqlite3
import struct

import pytest
from pyproj.exceptions import ProjError
from shapely.errors import GEOSException
from shapely.geometry import Point

from api import geopackage_api
from engine import vector_tile
from gpkg.connection import open_geopackage
from gpkg.features import create_feature_table
from gpkg.index import RTreeIndex, rtree_table_name


def _places(gpkg):
    dao = create_feature_table(gpkg, "places", columns=[("name", "TEXT")])
    dao.add_rows([(Point(-90.0, 45.0), {"name": "west"}), (Point(90.0, 45.0), {"name": "east"})])
    return dao


def _has_rtree_module() -> bool:
    conn = sqlite3.connect(":memory:")
    try:
        conn.execute("CREATE VIRTUAL TABLE t USING rtree(id, minx, maxx)")
    except sqlite3.OperationalError:
        return False
    finally:
        conn.close()
    return True


def _nan_polygon_blob() -> bytes:
    # Little-endian GP header with an XY envelope, then a WKB polygon with a NaN vertex.
    nan = float("nan")
    header = struct.pack("<2sBBi", b"GP", 0, 0x03, 4326) + struct.pack("<4d", 0.0, nan, 0.0, 10.0)
    ring = [(0.0, 0.0), (nan, 10.0), (10.0, 0.0), (0.0, 0.0)]
    wkb = struct.pack("<BII", 1, 3, 1) + struct.pack("<I", len(ring))
    wkb += b"".join(struct.pack("<2d", x, y) for x, y in ring)
    return header + wkb


def test_list_tables(gpkg):
    _places(gpkg)
    assert geopackage_api.list_tables(gpkg) == {"features": ["places"], "tiles": []}


def test_bbox_query_indexes_on_first_use(gpkg):
    _places(gpkg)
    rows = list(geopackage_api.get_features_in_bounding_box(gpkg, "places", -100.0, -80.0, 40.0, 50.0))
    assert [r.values["name"] for r in rows] == ["west"]
    assert "places" in gpkg.indexes


def test_index_is_written_to_the_file_for_later_connections(gpkg, gpkg_path):
    if not _has_rtree_module():
        pytest.skip("sqlite3 built without the rtree module")
    dao = _places(gpkg)
    geopackage_api.get_features_in_bounding_box(gpkg, "places", -180.0, 180.0, -90.0, 90.0)
    assert gpkg.has_table(rtree_table_name("places", dao.geometry_column))
    gpkg.close()

    with open_geopackage(gpkg_path) as reopened:
        found = geopackage_api.get_features_in_bounding_box(reopened, "places", 80.0, 100.0, 40.0, 50.0)
        assert [r.values["name"] for r in found] == ["east"]
        assert isinstance(reopened.indexes["places"], RTreeIndex)


def test_get_vector_tile_decodes_the_layer(gpkg):
    _places(gpkg)
    decoded = geopackage_api.get_vector_tile(gpkg, "places", 0, 0, 1)
    [feature] = decoded["places"]["features"]
    assert feature["properties"] == {"name": "west"}


def test_iterate_geojson_features_from_table(gpkg):
    _places(gpkg)
    names = [f["properties"]["name"] for f in geopackage_api.iterate_geojson_features_from_table(gpkg, "places")]
    assert names == ["west", "east"]


@pytest.mark.parametrize("error", [GEOSException("bad ring"), ProjError("no transform")])
def test_render_vector_tile_failure_yields_none(gpkg, monkeypatch, error):
    _places(gpkg)

    def fail(*args, **kwargs):
        raise error

    monkeypatch.setattr(vector_tile, "get_vector_tile_protobuf", fail)
    assert geopackage_api.render_vector_tile(gpkg, "places", 0, 0, 1) is None


def test_non_finite_geometry_does_not_break_the_tile(gpkg):
    dao = _places(gpkg)
    gpkg.execute(
        f'INSERT INTO "places" ("{dao.geometry_column}", "name") VALUES (?, ?)',
        (_nan_polygon_blob(), "broken"),
    )
    gpkg.conn.commit()

    data = geopackage_api.render_vector_tile(gpkg, "places", 0, 0, 0)
    assert data is not None
    names = sorted(f["properties"]["name"] for f in vector_tile.decode_vector_tile(data)["places"]["features"])
    assert names == ["east", "west"]
