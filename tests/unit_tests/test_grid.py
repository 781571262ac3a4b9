import numpy as np
import pytest
from affine import Affine

from zonal_summary.errors import GridMismatchError
from zonal_summary.grid import RasterGrid, check_alignment


def _grid(origin=(0.0, 10.0), size=1.0, shape=(10, 10), crs=None):
    return RasterGrid.from_array(
        np.zeros(shape), Affine(size, 0, origin[0], 0, -size, origin[1]), crs=crs,
    )


def test_from_array_geometry():
    grid = _grid(origin=(100.0, 50.0), size=2.0, shape=(3, 4))
    assert grid.shape == (3, 4)
    assert grid.bounds == (100.0, 44.0, 108.0, 50.0)
    assert grid.cell_area == 4.0
    assert grid.transform == Affine(2, 0, 100, 0, -2, 50)


def test_values_are_read_only():
    grid = _grid()
    with pytest.raises(ValueError):
        grid.values[0, 0] = 5


def test_rotated_and_south_up_rejected():
    with pytest.raises(ValueError):
        RasterGrid.from_array(np.zeros((2, 2)), Affine(1, 0.5, 0, 0, -1, 2))
    with pytest.raises(ValueError):
        RasterGrid.from_array(np.zeros((2, 2)), Affine(1, 0, 0, 0, 1, 0))


def test_window_clips_to_grid():
    grid = _grid()
    assert grid.window(2.5, 2.5, 4.5, 3.5) == (6, 8, 2, 5)
    assert grid.window(-5, -5, 20, 20) == (0, 10, 0, 10)
    assert grid.window(10, 0, 12, 10) is None
    assert grid.window(20, 20, 30, 30) is None


def test_cell_centers():
    grid = _grid()
    x, y = grid.cell_centers(np.array([0, 9]), np.array([0, 3]))
    np.testing.assert_allclose(x, [0.5, 3.5])
    np.testing.assert_allclose(y, [9.5, 0.5])


def test_is_nodata_handles_nan_and_sentinel():
    grid = RasterGrid.from_array(
        np.array([[1.0, np.nan], [-1.0, 2.0]]), Affine(1, 0, 0, 0, -1, 2), nodata=-1.0,
    )
    np.testing.assert_array_equal(grid.is_nodata(grid.values), [[False, True], [True, False]])


def test_geographic_flag():
    assert _grid(crs="EPSG:4326").is_geographic
    assert not _grid(crs="EPSG:32633").is_geographic
    assert not _grid().is_geographic


def test_alignment_identical_grids():
    assert check_alignment(_grid(), _grid()) == (0, 0)


def test_alignment_offset_origin():
    primary = _grid(origin=(-1.0, 4.0))
    other = _grid(origin=(0.0, 5.0))
    assert check_alignment(primary, other) == (1, -1)


def test_alignment_different_cell_size():
    with pytest.raises(GridMismatchError):
        check_alignment(_grid(size=1.0), _grid(size=0.5))


def test_alignment_fractional_offset():
    with pytest.raises(GridMismatchError):
        check_alignment(_grid(origin=(0.0, 10.0)), _grid(origin=(0.5, 10.0)))


def test_alignment_crs_mismatch():
    with pytest.raises(GridMismatchError):
        check_alignment(_grid(crs="EPSG:4326"), _grid(crs="EPSG:3857"))
