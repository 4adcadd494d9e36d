import inspect
import sqlite3

import pytest
from shapely.geometry import LineString, Point

from engine.feature_query import (
    count_by_bounding_box,
    query_by_bounding_box,
    query_geojson_by_bounding_box,
    query_table_by_bounding_box,
)
from geo.bbox import BoundingBox
from geo.projection import WEB_MERCATOR, WGS84, reproject_geometry
from gpkg.errors import SpatialIndexMissingError
from gpkg.features import create_feature_table
from gpkg.index import (
    RTreeIndex,
    STRtreeIndex,
    create_rtree_index,
    get_feature_index,
    index_feature_table,
    is_indexed,
)


def _diagonal_table(gpkg):
    dao = create_feature_table(gpkg, "lines", columns=[("name", "TEXT")])
    dao.add_row(LineString([(0.0, 0.0), (10.0, 10.0)]), {"name": "diagonal"})
    dao.add_row(Point(50.0, 50.0), {"name": "far"})
    return dao


def test_query_without_index_raises(gpkg):
    _diagonal_table(gpkg)
    assert not is_indexed(gpkg, "lines")
    with pytest.raises(SpatialIndexMissingError):
        query_table_by_bounding_box(gpkg, "lines", BoundingBox(0.0, 1.0, 0.0, 1.0))
    with pytest.raises(SpatialIndexMissingError):
        get_feature_index(gpkg, "lines")


def test_envelope_hit_is_verified_against_geometry(gpkg):
    dao = _diagonal_table(gpkg)
    index = index_feature_table(gpkg, "lines")
    assert isinstance(index, STRtreeIndex)

    # Inside the line's envelope but away from the line itself.
    corner = BoundingBox(min_lon=0.0, max_lon=2.0, min_lat=8.0, max_lat=10.0)
    assert list(query_by_bounding_box(dao, index, corner)) == []
    skipped = list(query_by_bounding_box(dao, index, corner, skip_verification=True))
    assert [r.values["name"] for r in skipped] == ["diagonal"]
    assert count_by_bounding_box(dao, index, corner) == 1


def test_query_is_a_lazy_generator(gpkg):
    dao = _diagonal_table(gpkg)
    index = index_feature_table(gpkg, "lines")
    rows = query_by_bounding_box(dao, index, BoundingBox(-1.0, 60.0, -1.0, 60.0))
    assert inspect.isgenerator(rows)
    assert next(rows).values["name"] == "diagonal"
    assert next(rows).values["name"] == "far"
    with pytest.raises(StopIteration):
        next(rows)


def test_query_reprojects_into_table_crs(gpkg):
    dao = create_feature_table(gpkg, "merc", srs_id=3857, columns=[("name", "TEXT")])
    dao.add_row(reproject_geometry(Point(14.42, 50.08), WGS84, WEB_MERCATOR), {"name": "prague"})
    index_feature_table(gpkg, "merc")

    found = list(
        query_geojson_by_bounding_box(gpkg, "merc", BoundingBox(14.0, 15.0, 50.0, 50.5))
    )
    assert len(found) == 1
    assert found[0]["properties"] == {"name": "prague"}
    lon, lat = found[0]["geometry"]["coordinates"]
    assert lon == pytest.approx(14.42)
    assert lat == pytest.approx(50.08)

    assert list(query_table_by_bounding_box(gpkg, "merc", BoundingBox(0.0, 1.0, 0.0, 1.0))) == []


def test_reindex_picks_up_new_rows(gpkg):
    dao = _diagonal_table(gpkg)
    index_feature_table(gpkg, "lines")
    dao.add_row(Point(30.0, 30.0), {"name": "late"})
    box = BoundingBox(29.0, 31.0, 29.0, 31.0)

    assert list(query_table_by_bounding_box(gpkg, "lines", box)) == []
    index_feature_table(gpkg, "lines", force=True)
    assert [r.values["name"] for r in query_table_by_bounding_box(gpkg, "lines", box)] == ["late"]


def test_existing_rtree_is_adopted(gpkg):
    dao = _diagonal_table(gpkg)
    try:
        create_rtree_index(gpkg, "lines")
    except sqlite3.OperationalError:
        pytest.skip("sqlite3 built without the rtree module")

    index = index_feature_table(gpkg, "lines")
    assert isinstance(index, RTreeIndex)
    corner = BoundingBox(min_lon=0.0, max_lon=2.0, min_lat=8.0, max_lat=10.0)
    assert index.count(corner) == 1
    assert list(query_by_bounding_box(dao, index, corner)) == []
    assert [r.values["name"] for r in query_by_bounding_box(dao, index, BoundingBox(49.0, 51.0, 49.0, 51.0))] == ["far"]
