"""Assemble per-cell row data for one feature from its coverage."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd
from pyproj import Geod

from zonal_summary.config import SummaryOptions
from zonal_summary.grid import RasterGrid
from zonal_summary.zonal.coverage import CellCoverage

_GEOD = Geod(ellps="WGS84")


@dataclass(frozen=True, eq=False)
class CellRows:
    """Aligned per-cell arrays for one feature.

    ``coverage`` holds coverage fractions, or covered area when
    ``coverage_is_area`` is set.  Optional columns are None unless
    requested.
    """

    value: np.ndarray
    coverage: np.ndarray
    coverage_is_area: bool = False
    weight: Optional[np.ndarray] = None
    area: Optional[np.ndarray] = None
    cell: Optional[np.ndarray] = None
    row: Optional[np.ndarray] = None
    col: Optional[np.ndarray] = None
    x: Optional[np.ndarray] = None
    y: Optional[np.ndarray] = None

    def __len__(self) -> int:
        return len(self.value)

    @property
    def coverage_column(self) -> str:
        return "coverage_area" if self.coverage_is_area else "coverage_fraction"

    def columns(self) -> Dict[str, np.ndarray]:
        """Populated columns, in output order."""
        out: Dict[str, np.ndarray] = {"value": self.value}
        for name in ("weight", "x", "y", "cell", "row", "col", "area"):
            arr = getattr(self, name)
            if arr is not None:
                out[name] = arr
        out[self.coverage_column] = self.coverage
        return out

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.columns())


def geodesic_row_areas(grid: RasterGrid, rows: np.ndarray) -> np.ndarray:
    """Ellipsoidal area in m^2 of cells in each of *rows* (geographic grid).

    A cell's area depends only on its latitude band, so the WGS84 polygon
    area is computed once per distinct row.
    """
    unique, inverse = np.unique(rows, return_inverse=True)
    lon0 = grid.x_origin
    lon1 = grid.x_origin + grid.cell_width
    areas = np.empty(len(unique), dtype=np.float64)
    for i, r in enumerate(unique):
        top = grid.y_origin - r * grid.cell_height
        bottom = top - grid.cell_height
        area, _ = _GEOD.polygon_area_perimeter(
            [lon0, lon1, lon1, lon0], [bottom, bottom, top, top]
        )
        areas[i] = abs(area)
    return areas[inverse]


def cell_areas(grid: RasterGrid, rows: np.ndarray) -> np.ndarray:
    """Per-cell area: planar for projected or unknown CRS, geodesic for geographic."""
    if grid.is_geographic:
        return geodesic_row_areas(grid, rows)
    return np.full(len(rows), grid.cell_area, dtype=np.float64)


def lookup_weights(
    weights: RasterGrid,
    offset: Tuple[int, int],
    rows: np.ndarray,
    cols: np.ndarray,
    default_weight: Optional[float] = None,
) -> np.ndarray:
    """Weight values at primary cells ``(rows, cols)``; NaN where undefined."""
    wrows = rows + offset[0]
    wcols = cols + offset[1]
    nrows, ncols = weights.shape
    inside = (wrows >= 0) & (wrows < nrows) & (wcols >= 0) & (wcols < ncols)

    out = np.full(len(rows), np.nan, dtype=np.float64)
    raw = weights.values[wrows[inside], wcols[inside]]
    vals = raw.astype(np.float64)
    vals[weights.is_nodata(raw)] = np.nan
    out[inside] = vals
    if default_weight is not None:
        out[np.isnan(out)] = default_weight
    return out


def assemble_rows(
    grid: RasterGrid,
    coverage: CellCoverage,
    options: SummaryOptions,
    weights: Optional[RasterGrid] = None,
    weight_offset: Tuple[int, int] = (0, 0),
) -> CellRows:
    """Gather aligned cell arrays for one feature's covered cells.

    Nodata cells are dropped unless ``options.include_nodata`` (values
    become NaN) or ``options.default_value`` (values are substituted).
    """
    rows, cols, fractions = coverage.rows, coverage.cols, coverage.fractions

    if options.min_coverage_frac > 0:
        keep = fractions >= options.min_coverage_frac
        rows, cols, fractions = rows[keep], cols[keep], fractions[keep]

    value = grid.values[rows, cols]
    missing = grid.is_nodata(value)
    if missing.any():
        if options.default_value is not None:
            value = np.where(missing, options.default_value, value)
        elif options.include_nodata:
            value = value.astype(np.float64)
            value[missing] = np.nan
        else:
            keep = ~missing
            rows, cols, fractions, value = rows[keep], cols[keep], fractions[keep], value[keep]

    area = None
    if options.include_area or options.coverage_area:
        area = cell_areas(grid, rows)

    weight = None
    if weights is not None:
        weight = lookup_weights(weights, weight_offset, rows, cols, options.default_weight)

    x = y = None
    if options.include_xy:
        x, y = grid.cell_centers(rows, cols)

    cell = row = col = None
    if options.include_cell:
        cell = rows * grid.shape[1] + cols
        row, col = rows, cols

    return CellRows(
        value=value,
        coverage=fractions * area if options.coverage_area else fractions,
        coverage_is_area=options.coverage_area,
        weight=weight,
        area=area if options.include_area else None,
        cell=cell,
        row=row,
        col=col,
        x=x,
        y=y,
    )
