import pytest

from geo.bbox import BoundingBox
from geo.projection import (
    WEB_MERCATOR,
    WGS84,
    clamp_longitude,
    crs_code,
    reproject,
    reproject_and_clamp,
)
from geo.tiles import (
    WEB_MERCATOR_HALF_WORLD,
    pixel_tolerance_degrees,
    tile_bbox_4326,
    web_mercator_bbox_from_xyz,
)


def test_reproject_same_crs_returns_input_instance():
    b = BoundingBox(min_lon=10.0, max_lon=11.0, min_lat=50.0, max_lat=51.0)
    assert reproject(b, WGS84, "epsg:4326") is b


def test_web_mercator_world_reprojects_to_lonlat_limits():
    world = web_mercator_bbox_from_xyz(0, 0, 0)
    assert world.min_lon == -WEB_MERCATOR_HALF_WORLD
    assert world.max_lat == WEB_MERCATOR_HALF_WORLD

    b = reproject(world, WEB_MERCATOR, WGS84)
    assert b.min_lon == pytest.approx(-180.0)
    assert b.max_lon == pytest.approx(180.0)
    assert b.min_lat == pytest.approx(-85.0511, abs=1e-3)
    assert b.max_lat == pytest.approx(85.0511, abs=1e-3)


def test_reproject_to_web_mercator_keeps_poles_finite():
    b = reproject(BoundingBox(-180.0, 180.0, -90.0, 90.0), WGS84, WEB_MERCATOR)
    assert b.max_lat == pytest.approx(WEB_MERCATOR_HALF_WORLD, rel=1e-6)
    assert b.min_lat == pytest.approx(-WEB_MERCATOR_HALF_WORLD, rel=1e-6)


def test_xyz_bbox_matches_slippy_bbox():
    merc = reproject(web_mercator_bbox_from_xyz(3, 2, 3), WEB_MERCATOR, WGS84)
    slippy = tile_bbox_4326(3, 3, 2)
    assert merc.min_lon == pytest.approx(slippy.min_lon)
    assert merc.max_lon == pytest.approx(slippy.max_lon)
    assert merc.min_lat == pytest.approx(slippy.min_lat, abs=1e-7)
    assert merc.max_lat == pytest.approx(slippy.max_lat, abs=1e-7)


def test_clamp_longitude_leaves_latitude_alone():
    b = clamp_longitude(BoundingBox(min_lon=-200.0, max_lon=200.0, min_lat=-95.0, max_lat=95.0))
    assert (b.min_lon, b.max_lon) == (-180.0, 180.0)
    assert (b.min_lat, b.max_lat) == (-95.0, 95.0)


def test_reproject_and_clamp_identity_still_clamps():
    b = reproject_and_clamp(BoundingBox(-181.0, 10.0, 0.0, 1.0), WGS84, WGS84)
    assert b.min_lon == -180.0


def test_bbox_to_geojson_is_closed_polygon():
    gj = BoundingBox(min_lon=0.0, max_lon=2.0, min_lat=1.0, max_lat=3.0).to_geojson()
    assert gj["type"] == "Feature"
    ring = gj["geometry"]["coordinates"][0]
    assert ring[0] == ring[-1]
    assert [0.0, 1.0] in ring and [2.0, 3.0] in ring


def test_normalized_and_intersects():
    b = BoundingBox(min_lon=5.0, max_lon=1.0, min_lat=4.0, max_lat=2.0).normalized()
    assert (b.min_lon, b.max_lon, b.min_lat, b.max_lat) == (1.0, 5.0, 2.0, 4.0)
    # touching edges count
    assert b.intersects(BoundingBox(5.0, 6.0, 4.0, 7.0))
    assert not b.intersects(BoundingBox(5.1, 6.0, 0.0, 1.0))


def test_pixel_tolerance_is_fraction_of_tile_width():
    tile = tile_bbox_4326(0, 0, 0)
    assert pixel_tolerance_degrees(tile, 10) == pytest.approx(10 * 360.0 / 256)


def test_crs_code():
    assert crs_code("epsg", 3857) == "EPSG:3857"
