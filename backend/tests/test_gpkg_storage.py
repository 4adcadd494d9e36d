import struct

import pytest
import shapely.wkb
from shapely.geometry import LineString, Point

from geo.bbox import BoundingBox
from gpkg.connection import open_geopackage
from gpkg.errors import GeoPackageError, InvalidGeometryError, TableNotFoundError
from gpkg.features import create_feature_table
from gpkg.geometry import decode_geometry, encode_geometry
from gpkg.tiles import create_standard_web_mercator_tile_table


def test_geometry_blob_carries_srs_and_xy_envelope():
    line = LineString([(1.0, 2.0), (3.0, 5.0)])
    blob = encode_geometry(line, 4326)
    assert blob[:2] == b"GP"

    gd = decode_geometry(blob)
    assert gd.srs_id == 4326
    assert gd.envelope == (1.0, 3.0, 2.0, 5.0)
    assert gd.geometry.equals(line)


def test_big_endian_header_is_decoded():
    pt = Point(7.0, 8.0)
    header = struct.pack(">2sBBi", b"GP", 0, 0, 3857)
    gd = decode_geometry(header + shapely.wkb.dumps(pt, byte_order=0))
    assert gd.srs_id == 3857
    assert gd.envelope is None
    assert gd.geometry.equals(pt)


def test_bare_wkb_is_accepted():
    gd = decode_geometry(shapely.wkb.dumps(Point(1.0, 1.0)))
    assert gd.srs_id == 0
    assert gd.geometry.equals(Point(1.0, 1.0))


def test_garbage_blob_raises_invalid_geometry():
    with pytest.raises(InvalidGeometryError):
        decode_geometry(b"GP\x00\x03" + b"\x00" * 4 + b"\xff\xff")


def test_none_geometry():
    assert decode_geometry(None) is None
    assert decode_geometry(encode_geometry(None, 4326)).is_empty


def test_create_and_reopen_lists_tables(gpkg, gpkg_path):
    create_feature_table(gpkg, "places", columns=[("name", "TEXT")])
    create_standard_web_mercator_tile_table(gpkg, "imagery", min_zoom=0, max_zoom=2)
    gpkg.close()

    with open_geopackage(gpkg_path) as reopened:
        assert reopened.name == "sample"
        assert reopened.feature_tables() == ["places"]
        assert reopened.tile_tables() == ["imagery"]


def test_open_rejects_missing_and_non_geopackage_files(tmp_path):
    with pytest.raises(FileNotFoundError):
        open_geopackage(tmp_path / "nope.gpkg")

    plain = tmp_path / "plain.gpkg"
    plain.write_bytes(b"")
    with pytest.raises(GeoPackageError):
        open_geopackage(plain)


def test_missing_tables_raise_table_not_found(gpkg):
    with pytest.raises(TableNotFoundError):
        gpkg.get_feature_dao("nope")
    with pytest.raises(TableNotFoundError):
        gpkg.get_tile_dao("nope")


def test_feature_dao_rows(gpkg):
    dao = create_feature_table(gpkg, "places", columns=[("name", "TEXT")])
    a = dao.add_row(Point(1.0, 2.0), {"name": "a", "ignored": 1})
    dao.add_rows([(Point(3.0, 4.0), {"name": "b"}), (None, {"name": "c"})])

    assert dao.count() == 3
    assert dao.pk_column == "id"
    row = dao.get_row(a)
    assert row.values["name"] == "a"
    assert row.envelope() == (1.0, 2.0, 1.0, 2.0)
    assert [r.values["name"] for r in dao.query_for_eq("name", "b")] == ["b"]
    assert dao.query_for_eq("no_such_column", "b") == []
    assert dao.get_row(999) is None

    rows = dao.iterate_rows()
    assert next(rows).id == a
    assert [r.values["name"] for r in rows] == ["b", "c"]


def test_feature_table_in_web_mercator_reports_crs(gpkg):
    dao = create_feature_table(gpkg, "merc", srs_id=3857, geometry_type="POINT")
    assert dao.crs == "EPSG:3857"
    assert dao.geometry_type == "POINT"


def test_undefined_srs_reads_as_wgs84(gpkg):
    dao = create_feature_table(gpkg, "raw", srs_id=-1)
    assert not dao.srs.is_defined
    assert dao.crs == "EPSG:4326"


def test_tile_dao_zoom_range_and_tile_lookup(gpkg):
    dao = create_standard_web_mercator_tile_table(gpkg, "imagery", min_zoom=1, max_zoom=3)
    assert (dao.min_zoom, dao.max_zoom) == (1, 3)
    assert dao.get_tile_matrix(2).matrix_width == 4
    assert dao.get_tile_matrix(0) is None

    dao.add_tile(2, 1, 3, b"png-bytes")
    tile = dao.query_for_tile(1, 3, 2)
    assert tile.tile_data == b"png-bytes"
    assert dao.query_for_tile(0, 0, 2) is None
    assert dao.count() == 1


def test_duplicate_table_is_rejected(gpkg):
    create_feature_table(gpkg, "places")
    with pytest.raises(GeoPackageError):
        create_feature_table(gpkg, "places", bbox=BoundingBox(0.0, 1.0, 0.0, 1.0))
