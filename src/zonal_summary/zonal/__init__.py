"""Exact-coverage zonal summaries of rasters over polygons."""

from zonal_summary.zonal.coverage import CellCoverage, cell_coverage
from zonal_summary.zonal.driver import summarize
from zonal_summary.zonal.features import Feature, load_features
from zonal_summary.zonal.operations import (
    SCALAR_OPERATIONS,
    TABLE_OPERATIONS,
    BuiltinOperation,
    RowsOperation,
    UserOperation,
    resolve_operation,
)
from zonal_summary.zonal.rows import CellRows, assemble_rows
from zonal_summary.zonal.tables import attach_labels, pivot_fractions

__all__ = [
    "SCALAR_OPERATIONS",
    "TABLE_OPERATIONS",
    "BuiltinOperation",
    "CellCoverage",
    "CellRows",
    "Feature",
    "RowsOperation",
    "UserOperation",
    "assemble_rows",
    "attach_labels",
    "cell_coverage",
    "load_features",
    "pivot_fractions",
    "resolve_operation",
    "summarize",
]
