import numpy as np
import pytest
from affine import Affine

from zonal_summary.grid import RasterGrid

NODATA = 99


@pytest.fixture
def grid3():
    """3x3 grid covering x:[0,3], y:[0,3], cell size 1."""
    values = np.array(
        [
            [1, 1, 3],
            [2, 2, 3],
            [3, 3, 3],
        ]
    )
    return RasterGrid.from_array(values, Affine(1, 0, 0, 0, -1, 3), crs="EPSG:32633")


@pytest.fixture
def grid10():
    """10x10 grid of ones covering x:[0,10], y:[0,10]."""
    return RasterGrid.from_array(
        np.ones((10, 10), dtype=np.int32), Affine(1, 0, 0, 0, -1, 10), crs="EPSG:32633"
    )


@pytest.fixture
def mixed_grid():
    """5x5 grid with a nodata cell, origin offset by one cell from ``mixed_weights``."""
    values = np.array(
        [
            [1, 1, 1, 1, 1],
            [1, 1, 2, 3, 1],
            [1, 4, 5, 6, 1],
            [1, 0, NODATA, 7, 1],
            [1, 1, 1, 1, 1],
        ]
    )
    return RasterGrid.from_array(values, Affine(1, 0, -1, 0, -1, 4), nodata=NODATA)


@pytest.fixture
def mixed_weights():
    weights = np.array(
        [
            [0.3, 0.3, 0.3, 0.3, 0.3],
            [0.1, 0.1, 0.1, 0.1, 0.1],
            [0.2, 0.2, 0.2, 0.2, 0.2],
            [0.4, 0.4, 0.4, 0.4, 0.4],
            [0.5, 0.5, 0.5, 0.5, 0.5],
        ]
    )
    return RasterGrid.from_array(weights, Affine(1, 0, 0, 0, -1, 5))


@pytest.fixture
def mixed_polygon():
    from shapely.geometry import box

    return box(0.5, 0.5, 2.5, 2.5)


# Cells of ``mixed_grid`` under ``mixed_polygon``, row-major, nodata excluded.
MIXED_VALUES = np.array([1, 2, 3, 4, 5, 6, 0, 7])
MIXED_COVERAGE = np.array([0.25, 0.5, 0.25, 0.5, 1, 0.5, 0.25, 0.25])
MIXED_WEIGHTS = np.array([0.2, 0.2, 0.2, 0.4, 0.4, 0.4, 0.5, 0.5])
