from geo.bbox import BoundingBox
from geo.tile_grid import (
    TileGrid,
    TileMatrix,
    TileMatrixSet,
    WebZoomMapper,
    grid_from_bounding_box,
    grid_to_bounding_box,
    tile_to_bounding_box,
)
from geo.tiles import WEB_MERCATOR_HALF_WORLD


WORLD = BoundingBox(min_lon=-180.0, max_lon=180.0, min_lat=-90.0, max_lat=90.0)


def _matrix(zoom: int, width: int, height: int) -> TileMatrix:
    return TileMatrix(
        zoom_level=zoom,
        matrix_width=width,
        matrix_height=height,
        tile_width=256,
        tile_height=256,
        pixel_x_size=360.0 / (width * 256),
        pixel_y_size=180.0 / (height * 256),
    )


def test_single_tile_matrix_always_yields_that_tile():
    m = _matrix(0, 1, 1)
    for b in [
        BoundingBox(-10.0, 10.0, -10.0, 10.0),
        BoundingBox(-180.0, 180.0, -90.0, 90.0),
        BoundingBox(170.0, 200.0, 80.0, 100.0),
    ]:
        assert grid_from_bounding_box(WORLD, m, b) == TileGrid(0, 0, 0, 0)


def test_grid_spans_rows_from_the_top():
    m = _matrix(1, 4, 2)
    g = grid_from_bounding_box(WORLD, m, BoundingBox(-10.0, 10.0, -10.0, 10.0))
    assert g == TileGrid(min_x=1, max_x=2, min_y=0, max_y=1)
    assert g.count == 4


def test_exact_tile_edges_do_not_spill_into_neighbours():
    m = _matrix(1, 4, 2)
    g = grid_from_bounding_box(WORLD, m, BoundingBox(-90.0, 0.0, 0.0, 90.0))
    assert g == TileGrid(min_x=1, max_x=1, min_y=0, max_y=0)


def test_every_tile_round_trips_through_its_bbox():
    m = _matrix(2, 4, 2)
    for row in range(m.matrix_height):
        for column in range(m.matrix_width):
            b = tile_to_bounding_box(WORLD, m, column, row)
            assert grid_from_bounding_box(WORLD, m, b) == TileGrid(column, column, row, row)


def test_bbox_outside_extent_is_empty_grid():
    total = BoundingBox(0.0, 10.0, 0.0, 10.0)
    g = grid_from_bounding_box(total, _matrix(0, 2, 2), BoundingBox(20.0, 30.0, 20.0, 30.0))
    assert g.is_empty
    assert g.count == 0
    assert list(g.cells()) == []
    assert grid_to_bounding_box(total, _matrix(0, 2, 2), g) is None


def test_grid_is_clamped_into_matrix():
    m = _matrix(1, 4, 2)
    g = grid_from_bounding_box(WORLD, m, BoundingBox(100.0, 500.0, -500.0, -10.0))
    assert g == TileGrid(min_x=3, max_x=3, min_y=1, max_y=1)


def test_grid_to_bounding_box_covers_corner_tiles():
    m = _matrix(1, 4, 2)
    b = grid_to_bounding_box(WORLD, m, TileGrid(1, 2, 0, 1))
    assert (b.min_lon, b.max_lon, b.min_lat, b.max_lat) == (-90.0, 90.0, -90.0, 90.0)


def test_cells_are_row_major():
    assert list(TileGrid(0, 1, 0, 1).cells()) == [(0, 0), (1, 0), (0, 1), (1, 1)]


def test_web_zoom_mapper_on_standard_mercator_is_identity():
    h = WEB_MERCATOR_HALF_WORLD
    tms = TileMatrixSet(
        table_name="t", srs_id=3857, crs="EPSG:3857", bbox=BoundingBox(-h, h, -h, h)
    )
    mapper = WebZoomMapper.build(tms, [_matrix(z, 2**z, 2**z) for z in range(0, 4)])
    assert mapper.web_to_matrix == {0: 0, 1: 1, 2: 2, 3: 3}
    assert (mapper.min_web_zoom, mapper.max_web_zoom) == (0, 3)


def test_web_zoom_mapper_lonlat_pyramid_has_no_fixed_offset():
    tms = TileMatrixSet(table_name="t", srs_id=4326, crs="EPSG:4326", bbox=WORLD)
    # 2x1 tiles across 360 degrees: each tile spans half the world.
    mapper = WebZoomMapper.build(tms, [_matrix(0, 2, 1), _matrix(1, 4, 2)])
    assert mapper.web_zoom_to_matrix_zoom(1) == 0
    assert mapper.web_zoom_to_matrix_zoom(2) == 1
    assert mapper.web_zoom_to_matrix_zoom(0) is None
    assert mapper.matrix_zoom_to_web_zoom(1) == 2


def test_empty_mapper():
    mapper = WebZoomMapper()
    assert mapper.min_web_zoom is None
    assert mapper.web_zoom_to_matrix_zoom(3) is None


def test_whole_extent_round_trips_at_grid_level():
    total = BoundingBox(min_lon=-20.0, max_lon=40.0, min_lat=10.0, max_lat=70.0)
    m = _matrix(3, 6, 3)
    grid = grid_from_bounding_box(total, m, total)
    assert grid == TileGrid(0, 5, 0, 2)
    assert grid_to_bounding_box(total, m, grid) == total
