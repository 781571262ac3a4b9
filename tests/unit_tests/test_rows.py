import numpy as np
import pytest
from affine import Affine
from shapely.geometry import box

from conftest import MIXED_COVERAGE, MIXED_VALUES, MIXED_WEIGHTS, NODATA
from zonal_summary.config import SummaryOptions
from zonal_summary.grid import RasterGrid, check_alignment
from zonal_summary.zonal.coverage import cell_coverage
from zonal_summary.zonal.rows import assemble_rows, cell_areas


def _rows(grid, geom, weights=None, **opts):
    offset = check_alignment(grid, weights) if weights is not None else (0, 0)
    cov = cell_coverage(geom, grid)
    return assemble_rows(grid, cov, SummaryOptions(**opts), weights, offset)


def test_nodata_cells_excluded_by_default(mixed_grid, mixed_polygon):
    rows = _rows(mixed_grid, mixed_polygon)
    np.testing.assert_array_equal(rows.value, MIXED_VALUES)
    np.testing.assert_allclose(rows.coverage, MIXED_COVERAGE)
    assert rows.weight is None and rows.x is None and rows.cell is None


def test_include_nodata_keeps_cell_as_nan(mixed_grid, mixed_polygon):
    rows = _rows(mixed_grid, mixed_polygon, include_nodata=True)
    assert len(rows) == 9
    assert np.isnan(rows.value).sum() == 1
    assert NODATA not in rows.value


def test_default_value_substitutes_nodata(mixed_grid, mixed_polygon):
    rows = _rows(mixed_grid, mixed_polygon, default_value=-5)
    assert len(rows) == 9
    assert -5 in rows.value


def test_weights_aligned_with_offset(mixed_grid, mixed_weights, mixed_polygon):
    rows = _rows(mixed_grid, mixed_polygon, weights=mixed_weights)
    np.testing.assert_allclose(rows.weight, MIXED_WEIGHTS)


def test_weights_outside_weight_grid_are_nan():
    grid = RasterGrid.from_array(np.ones((2, 2)), Affine(1, 0, 0, 0, -1, 2))
    weights = RasterGrid.from_array(np.full((1, 2), 3.0), Affine(1, 0, 0, 0, -1, 2))
    rows = _rows(grid, box(0, 0, 2, 2), weights=weights)
    np.testing.assert_array_equal(np.isnan(rows.weight), [False, False, True, True])

    rows = _rows(grid, box(0, 0, 2, 2), weights=weights, default_weight=0.0)
    np.testing.assert_array_equal(rows.weight, [3.0, 3.0, 0.0, 0.0])


def test_auxiliary_columns_on_request(mixed_grid, mixed_polygon):
    rows = _rows(mixed_grid, mixed_polygon, include_xy=True, include_cell=True)
    np.testing.assert_allclose(rows.x, [0.5, 1.5, 2.5, 0.5, 1.5, 2.5, 0.5, 2.5])
    np.testing.assert_allclose(rows.y, [2.5, 2.5, 2.5, 1.5, 1.5, 1.5, 0.5, 0.5])
    np.testing.assert_array_equal(rows.row, [1, 1, 1, 2, 2, 2, 3, 3])
    np.testing.assert_array_equal(rows.col, [1, 2, 3, 1, 2, 3, 1, 3])
    np.testing.assert_array_equal(rows.cell, rows.row * 5 + rows.col)


def test_to_frame_column_order(mixed_grid, mixed_weights, mixed_polygon):
    rows = _rows(
        mixed_grid, mixed_polygon, weights=mixed_weights,
        include_xy=True, include_cell=True, include_area=True,
    )
    assert list(rows.to_frame().columns) == [
        "value", "weight", "x", "y", "cell", "row", "col", "area", "coverage_fraction",
    ]


def test_coverage_area_replaces_fraction():
    grid = RasterGrid.from_array(
        np.ones((4, 4)), Affine(10, 0, 0, 0, -10, 40), crs="EPSG:32633",
    )
    rows = _rows(grid, box(5, 5, 25, 25), coverage_area=True)
    assert rows.coverage_is_area
    assert rows.coverage.sum() == pytest.approx(400.0)
    assert "coverage_area" in rows.to_frame().columns
    assert "area" not in rows.to_frame().columns


def test_min_coverage_frac_drops_small_cells(mixed_grid, mixed_polygon):
    rows = _rows(mixed_grid, mixed_polygon, min_coverage_frac=0.5)
    np.testing.assert_array_equal(rows.value, [2, 4, 5, 6])


def test_planar_cell_area():
    grid = RasterGrid.from_array(np.ones((2, 2)), Affine(30, 0, 0, 0, -30, 60), crs="EPSG:32633")
    np.testing.assert_allclose(cell_areas(grid, np.array([0, 1])), [900.0, 900.0])


def test_geodesic_cell_area_at_equator():
    grid = RasterGrid.from_array(np.ones((2, 1)), Affine(1, 0, 0, 0, -1, 1), crs="EPSG:4326")
    areas = cell_areas(grid, np.array([0, 1, 0]))
    # one degree square at the equator on WGS84, about 12,308 km^2
    assert areas[0] == pytest.approx(1.2308e10, rel=5e-3)
    assert areas[0] == pytest.approx(areas[1])
    assert areas[2] == areas[0]


def test_geodesic_cell_area_shrinks_with_latitude():
    grid = RasterGrid.from_array(np.ones((80, 1)), Affine(1, 0, 0, 0, -1, 80), crs="EPSG:4326")
    areas = cell_areas(grid, np.arange(80))
    assert np.all(np.diff(areas) > 0)
