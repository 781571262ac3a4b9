"""Immutable raster grid descriptor and grid alignment checks."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

import numpy as np
from affine import Affine
from rasterio.crs import CRS

from zonal_summary.errors import GridMismatchError

# Relative tolerance used when comparing cell sizes and origin offsets.
_GRID_RTOL = 1e-9


@dataclass(frozen=True, eq=False)
class RasterGrid:
    """A north-up raster: cell values plus the geometry of the grid.

    ``x_origin``/``y_origin`` is the top-left corner; row ``r`` spans
    ``y_origin - (r + 1) * cell_height`` to ``y_origin - r * cell_height``.
    ``values`` is stored as a read-only view.
    """

    values: np.ndarray
    x_origin: float
    y_origin: float
    cell_width: float
    cell_height: float
    crs: Optional[CRS] = None
    nodata: Optional[float] = None
    levels: Optional[Dict[Any, str]] = field(default=None)

    def __post_init__(self) -> None:
        arr = np.asarray(self.values)
        if arr.ndim != 2:
            raise ValueError(f"Raster values must be 2D, got shape {arr.shape}")
        if self.cell_width <= 0 or self.cell_height <= 0:
            raise ValueError(
                f"Cell size must be positive, got {self.cell_width} x {self.cell_height}"
            )
        view = arr.view()
        view.flags.writeable = False
        object.__setattr__(self, "values", view)
        if self.crs is not None and not isinstance(self.crs, CRS):
            object.__setattr__(self, "crs", CRS.from_user_input(self.crs))
        if self.levels is not None:
            object.__setattr__(self, "levels", dict(self.levels))

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_array(
        cls,
        values: np.ndarray,
        transform: Affine,
        crs: Any = None,
        nodata: Optional[float] = None,
        levels: Optional[Mapping[Any, str]] = None,
    ) -> "RasterGrid":
        """Build a grid from an array and its affine transform.

        Only north-up transforms (no rotation, negative ``e``) are accepted.
        """
        if transform.b != 0 or transform.d != 0:
            raise ValueError("Rotated raster transforms are not supported")
        if transform.e >= 0:
            raise ValueError("Only north-up rasters (negative y cell size) are supported")
        return cls(
            values=values,
            x_origin=transform.c,
            y_origin=transform.f,
            cell_width=transform.a,
            cell_height=-transform.e,
            crs=crs,
            nodata=nodata,
            levels=levels,
        )

    @classmethod
    def from_rasterio(
        cls,
        dataset,
        band: int = 1,
        levels: Optional[Mapping[Any, str]] = None,
    ) -> "RasterGrid":
        """Read *band* of an open rasterio dataset into a grid."""
        if band < 1 or band > dataset.count:
            raise ValueError(f"Band {band} out of range (dataset has {dataset.count})")
        return cls.from_array(
            dataset.read(band),
            dataset.transform,
            crs=dataset.crs,
            nodata=dataset.nodata,
            levels=levels,
        )

    # ------------------------------------------------------------------
    # Geometry of the grid
    # ------------------------------------------------------------------

    @property
    def shape(self) -> Tuple[int, int]:
        return self.values.shape

    @property
    def transform(self) -> Affine:
        return Affine(self.cell_width, 0.0, self.x_origin, 0.0, -self.cell_height, self.y_origin)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """``(minx, miny, maxx, maxy)`` of the whole grid."""
        nrows, ncols = self.shape
        return (
            self.x_origin,
            self.y_origin - nrows * self.cell_height,
            self.x_origin + ncols * self.cell_width,
            self.y_origin,
        )

    @property
    def cell_area(self) -> float:
        return self.cell_width * self.cell_height

    @property
    def is_geographic(self) -> bool:
        return self.crs is not None and bool(self.crs.is_geographic)

    def window(self, minx: float, miny: float, maxx: float, maxy: float) -> Optional[Tuple[int, int, int, int]]:
        """Row/col range ``(row0, row1, col0, col1)`` (half-open) covering a box.

        Returns None when the box does not overlap the grid.
        """
        gminx, gminy, gmaxx, gmaxy = self.bounds
        if maxx <= gminx or minx >= gmaxx or maxy <= gminy or miny >= gmaxy:
            return None
        nrows, ncols = self.shape
        col0 = max(0, int(math.floor((minx - self.x_origin) / self.cell_width)))
        col1 = min(ncols, int(math.ceil((maxx - self.x_origin) / self.cell_width)))
        row0 = max(0, int(math.floor((self.y_origin - maxy) / self.cell_height)))
        row1 = min(nrows, int(math.ceil((self.y_origin - miny) / self.cell_height)))
        if row0 >= row1 or col0 >= col1:
            return None
        return row0, row1, col0, col1

    def cell_centers(self, rows: np.ndarray, cols: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        x = self.x_origin + (np.asarray(cols, dtype=np.float64) + 0.5) * self.cell_width
        y = self.y_origin - (np.asarray(rows, dtype=np.float64) + 0.5) * self.cell_height
        return x, y

    def is_nodata(self, values: np.ndarray) -> np.ndarray:
        """Boolean mask of *values* equal to the nodata sentinel or NaN."""
        values = np.asarray(values)
        mask = np.zeros(values.shape, dtype=bool)
        if np.issubdtype(values.dtype, np.floating):
            mask |= np.isnan(values)
        if self.nodata is not None and not (isinstance(self.nodata, float) and math.isnan(self.nodata)):
            mask |= values == self.nodata
        return mask


def _is_whole(x: float) -> bool:
    return abs(x - round(x)) <= _GRID_RTOL * max(1.0, abs(x))


def check_alignment(primary: RasterGrid, other: RasterGrid, name: str = "weights") -> Tuple[int, int]:
    """Verify *other* shares *primary*'s grid and return its cell offset.

    The two grids must have the same cell size and CRS (when both carry
    one), and their origins must differ by a whole number of cells. The
    returned ``(row_offset, col_offset)`` maps primary cell ``(r, c)`` to
    ``(r + row_offset, c + col_offset)`` in *other*.

    Raises:
        GridMismatchError: on any mismatch.
    """
    if not (
        math.isclose(primary.cell_width, other.cell_width, rel_tol=_GRID_RTOL)
        and math.isclose(primary.cell_height, other.cell_height, rel_tol=_GRID_RTOL)
    ):
        raise GridMismatchError(
            f"{name} raster cell size {other.cell_width} x {other.cell_height} does not "
            f"match primary {primary.cell_width} x {primary.cell_height}"
        )
    if primary.crs is not None and other.crs is not None and primary.crs != other.crs:
        raise GridMismatchError(
            f"{name} raster CRS {other.crs} does not match primary CRS {primary.crs}"
        )

    col_shift = (primary.x_origin - other.x_origin) / primary.cell_width
    row_shift = (other.y_origin - primary.y_origin) / primary.cell_height
    if not (_is_whole(col_shift) and _is_whole(row_shift)):
        raise GridMismatchError(
            f"{name} raster origin ({other.x_origin}, {other.y_origin}) is not aligned "
            f"to primary grid origin ({primary.x_origin}, {primary.y_origin})"
        )
    return int(round(row_shift)), int(round(col_shift))
