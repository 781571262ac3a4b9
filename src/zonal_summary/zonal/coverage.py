"""Exact per-cell coverage fractions of a polygon over a raster grid.

Each candidate cell in the polygon's bounding box is intersected with the
polygon using GEOS (via shapely 2's vectorized API).  Cells the prepared
polygon fully contains short-circuit to a fraction of 1.0; the rest get
``area(cell & polygon) / cell_area``.  Only cells with positive coverage
are returned.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import shapely
from shapely.geometry.base import BaseGeometry

from zonal_summary.errors import GeometryError
from zonal_summary.grid import RasterGrid

# Fractions within this distance of 0 or 1 are snapped.
COVERAGE_TOLERANCE = 1e-12

# Upper bound on candidate cells materialized at once.
_MAX_BLOCK_CELLS = 1_000_000

_POLYGONAL = ("Polygon", "MultiPolygon")


@dataclass(frozen=True, eq=False)
class CellCoverage:
    """Sparse coverage of one geometry: parallel ``rows``/``cols``/``fractions``."""

    rows: np.ndarray
    cols: np.ndarray
    fractions: np.ndarray

    @classmethod
    def empty(cls) -> "CellCoverage":
        return cls(
            rows=np.empty(0, dtype=np.int64),
            cols=np.empty(0, dtype=np.int64),
            fractions=np.empty(0, dtype=np.float64),
        )

    def __len__(self) -> int:
        return len(self.fractions)


def polygonal(geometry) -> BaseGeometry:
    """Validate *geometry* and reduce it to its polygonal content.

    Raises:
        GeometryError: for missing, non-geometry, non-polygonal or invalid
            input.  Invalid rings with zero area are passed through.
    """
    if geometry is None:
        raise GeometryError("Feature has no geometry")
    if not isinstance(geometry, BaseGeometry):
        raise GeometryError(f"Expected a shapely geometry, got {type(geometry).__name__}")

    if geometry.geom_type == "GeometryCollection":
        if geometry.is_empty:
            return geometry
        parts = [p for p in shapely.get_parts(geometry) if p.geom_type in _POLYGONAL]
        if not parts:
            raise GeometryError("GeometryCollection contains no polygons")
        geometry = shapely.union_all(parts)
    elif geometry.geom_type not in _POLYGONAL:
        raise GeometryError(f"Expected a polygonal geometry, got {geometry.geom_type}")

    # Zero-area rings (collinear, degenerate bow-ties) cover nothing.
    if geometry.is_empty or geometry.area == 0:
        return geometry
    if not shapely.is_valid(geometry):
        raise GeometryError(f"Invalid geometry: {shapely.is_valid_reason(geometry)}")
    return geometry


def _block_coverage(
    geometry: BaseGeometry,
    grid: RasterGrid,
    row0: int,
    row1: int,
    col0: int,
    col1: int,
):
    rows, cols = np.meshgrid(
        np.arange(row0, row1, dtype=np.int64),
        np.arange(col0, col1, dtype=np.int64),
        indexing="ij",
    )
    rows = rows.ravel()
    cols = cols.ravel()

    xmin = grid.x_origin + cols * grid.cell_width
    ymax = grid.y_origin - rows * grid.cell_height
    cells = shapely.box(xmin, ymax - grid.cell_height, xmin + grid.cell_width, ymax)

    fractions = np.zeros(len(cells), dtype=np.float64)
    inside = shapely.contains(geometry, cells)
    fractions[inside] = 1.0

    edge = ~inside & shapely.intersects(geometry, cells)
    if edge.any():
        overlap = shapely.area(shapely.intersection(cells[edge], geometry))
        fractions[edge] = overlap / grid.cell_area

    fractions[fractions >= 1.0 - COVERAGE_TOLERANCE] = 1.0
    keep = fractions > COVERAGE_TOLERANCE
    return rows[keep], cols[keep], fractions[keep]


def cell_coverage(geometry, grid: RasterGrid) -> CellCoverage:
    """Coverage fraction of every grid cell *geometry* overlaps.

    Empty or zero-area geometries, and geometries outside the grid, yield
    an empty :class:`CellCoverage`.  Output is ordered row-major.
    """
    geometry = polygonal(geometry)
    if geometry.is_empty or geometry.area == 0:
        return CellCoverage.empty()

    window = grid.window(*geometry.bounds)
    if window is None:
        return CellCoverage.empty()
    row0, row1, col0, col1 = window

    # Prepare a private copy; caller geometries may be shared across threads.
    geometry = shapely.from_wkb(shapely.to_wkb(geometry))
    shapely.prepare(geometry)
    rows_per_block = max(1, _MAX_BLOCK_CELLS // (col1 - col0))
    parts = [
        _block_coverage(geometry, grid, r, min(r + rows_per_block, row1), col0, col1)
        for r in range(row0, row1, rows_per_block)
    ]

    return CellCoverage(
        rows=np.concatenate([p[0] for p in parts]),
        cols=np.concatenate([p[1] for p in parts]),
        fractions=np.concatenate([p[2] for p in parts]),
    )
