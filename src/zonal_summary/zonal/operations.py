"""Named reductions and user callables applied to one feature's rows.

An operation is resolved once per call into one of three variants:

* :class:`BuiltinOperation` - one or more named reductions, either all
  scalar (``mode``, ``mean`` ...) or all tabular (``frac``,
  ``weighted_frac``).
* :class:`UserOperation` - a caller-supplied function.
* :class:`RowsOperation` - no reduction; the rows themselves are the output.

Weighted reductions use the coverage column (fraction, or covered area)
as the base weight, multiplied by the weight raster when one is supplied.
A NaN weight anywhere in a feature makes its weighted results NaN.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from zonal_summary.config import SummaryOptions
from zonal_summary.zonal.rows import CellRows

# Relative tolerance for treating two category totals as tied.
_TIE_RTOL = 1e-12


# ---------------------------------------------------------------------------
# Weighted helpers
# ---------------------------------------------------------------------------

def _base_weights(rows: CellRows, use_weights: bool) -> np.ndarray:
    w = rows.coverage.astype(np.float64)
    if use_weights and rows.weight is not None:
        w = w * rows.weight
    return w


def _valid(rows: CellRows) -> np.ndarray:
    """Mask of rows with a usable value (include_nodata can inject NaN)."""
    value = rows.value
    if np.issubdtype(value.dtype, np.floating):
        return ~np.isnan(value)
    return np.ones(len(value), dtype=bool)


def weighted_quantile(values: np.ndarray, weights: np.ndarray, q: float) -> float:
    """Quantile *q* of *values* under *weights*.

    Linear interpolation between order statistics, generalized to weights
    so that equal weights reproduce the usual (type 7) sample quantile.
    """
    n = len(values)
    if n == 0 or np.sum(weights) <= 0:
        return float("nan")
    order = np.argsort(values, kind="stable")
    x = values[order].astype(np.float64)
    w = weights[order]
    if n == 1:
        return float(x[0])

    cumsum = np.cumsum(w)
    idx = np.arange(n)
    s = np.empty(n, dtype=np.float64)
    s[0] = 0.0
    s[1:] = idx[1:] * w[1:] + (n - 1) * cumsum[:-1]
    target = q * (n - 1) * cumsum[-1]

    upper = int(np.searchsorted(s, target, side="right"))
    if upper >= n:
        return float(x[-1])
    lower = upper - 1
    if s[upper] == s[lower]:
        return float(x[lower])
    return float(x[lower] + (target - s[lower]) / (s[upper] - s[lower]) * (x[upper] - x[lower]))


def category_totals(rows: CellRows, use_weights: bool) -> Tuple[np.ndarray, np.ndarray]:
    """Distinct values (ascending) and their summed weights."""
    valid = _valid(rows)
    w = _base_weights(rows, use_weights)[valid]
    values, inverse = np.unique(rows.value[valid], return_inverse=True)
    totals = np.bincount(inverse.ravel(), weights=w, minlength=len(values))
    return values, totals


def _scalar(x: Any) -> Any:
    return x.item() if isinstance(x, np.generic) else x


# ---------------------------------------------------------------------------
# Scalar reductions: fn(rows, use_weights, options) -> {column: value}
# ---------------------------------------------------------------------------

def _stat_count(rows, use_weights, options):
    return float(np.sum(rows.coverage[_valid(rows)]))


def _stat_sum(rows, use_weights, options):
    valid = _valid(rows)
    w = _base_weights(rows, use_weights)[valid]
    return float(np.sum(rows.value[valid].astype(np.float64) * w))


def _stat_mean(rows, use_weights, options):
    valid = _valid(rows)
    w = _base_weights(rows, use_weights)[valid]
    total = np.sum(w)
    if len(w) == 0 or total == 0:
        return float("nan")
    return float(np.sum(rows.value[valid].astype(np.float64) * w) / total)


def _stat_variance(rows, use_weights, options):
    valid = _valid(rows)
    w = _base_weights(rows, use_weights)[valid]
    total = np.sum(w)
    if len(w) == 0 or total == 0:
        return float("nan")
    v = rows.value[valid].astype(np.float64)
    mean = np.sum(v * w) / total
    return float(np.sum(w * (v - mean) ** 2) / total)


def _stat_stdev(rows, use_weights, options):
    return float(np.sqrt(_stat_variance(rows, use_weights, options)))


def _stat_cv(rows, use_weights, options):
    mean = _stat_mean(rows, use_weights, options)
    if mean == 0 or np.isnan(mean):
        return float("nan")
    return _stat_stdev(rows, use_weights, options) / mean


def _stat_min(rows, use_weights, options):
    valid = _valid(rows)
    if not valid.any():
        return float("nan")
    return _scalar(np.min(rows.value[valid]))


def _stat_max(rows, use_weights, options):
    valid = _valid(rows)
    if not valid.any():
        return float("nan")
    return _scalar(np.max(rows.value[valid]))


def _stat_median(rows, use_weights, options):
    valid = _valid(rows)
    return weighted_quantile(rows.value[valid], _base_weights(rows, use_weights)[valid], 0.5)


def quantile_column(q: float) -> str:
    return f"q{q * 100:g}"


def _stat_quantile(rows, use_weights, options):
    valid = _valid(rows)
    values = rows.value[valid]
    w = _base_weights(rows, use_weights)[valid]
    return {quantile_column(q): weighted_quantile(values, w, q) for q in options.quantiles}


def _stat_mode(rows, use_weights, options):
    values, totals = category_totals(rows, use_weights)
    if len(values) == 0 or np.isnan(totals).any():
        return float("nan")
    best = totals.max()
    tied = np.flatnonzero(totals >= best - _TIE_RTOL * abs(best))
    return _scalar(values[tied[0]])


def _stat_minority(rows, use_weights, options):
    values, totals = category_totals(rows, use_weights)
    if np.isnan(totals).any():
        return float("nan")
    positive = np.flatnonzero(totals > 0)
    if len(positive) == 0:
        return float("nan")
    least = totals[positive].min()
    tied = positive[totals[positive] <= least + _TIE_RTOL * abs(least)]
    return _scalar(values[tied[0]])


def _stat_variety(rows, use_weights, options):
    valid = _valid(rows) & (rows.coverage > 0)
    return int(len(np.unique(rows.value[valid])))


def _extreme_center(pick: Callable, axis: str):
    def stat(rows, use_weights, options):
        valid = np.flatnonzero(_valid(rows))
        if len(valid) == 0:
            return float("nan")
        i = valid[pick(rows.value[valid])]
        return float(getattr(rows, axis)[i])
    return stat


# name -> (fn, uses weight raster, requires weight raster, needs x/y)
SCALAR_OPERATIONS: Dict[str, Tuple[Callable, bool, bool, bool]] = {
    "count": (_stat_count, False, False, False),
    "sum": (_stat_sum, True, False, False),
    "mean": (_stat_mean, True, False, False),
    "min": (_stat_min, False, False, False),
    "max": (_stat_max, False, False, False),
    "median": (_stat_median, True, False, False),
    "quantile": (_stat_quantile, True, False, False),
    "variance": (_stat_variance, True, False, False),
    "stdev": (_stat_stdev, True, False, False),
    "coefficient_of_variation": (_stat_cv, True, False, False),
    "mode": (_stat_mode, True, False, False),
    "majority": (_stat_mode, True, False, False),
    "minority": (_stat_minority, True, False, False),
    "variety": (_stat_variety, False, False, False),
    "weighted_mean": (_stat_mean, True, True, False),
    "weighted_sum": (_stat_sum, True, True, False),
    "min_center_x": (_extreme_center(np.argmin, "x"), False, False, True),
    "min_center_y": (_extreme_center(np.argmin, "y"), False, False, True),
    "max_center_x": (_extreme_center(np.argmax, "x"), False, False, True),
    "max_center_y": (_extreme_center(np.argmax, "y"), False, False, True),
}


# ---------------------------------------------------------------------------
# Tabular reductions: fn(rows) -> DataFrame
# ---------------------------------------------------------------------------

def _frac_table(rows: CellRows, use_weights: bool, column: str) -> pd.DataFrame:
    values, totals = category_totals(rows, use_weights)
    grand = totals.sum()
    frac = totals / grand if grand > 0 else np.full(len(totals), np.nan)
    return pd.DataFrame({"value": values, column: frac})


# name -> requires weight raster
TABLE_OPERATIONS: Dict[str, bool] = {
    "frac": False,
    "weighted_frac": True,
}


# ---------------------------------------------------------------------------
# Operation variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BuiltinOperation:
    names: Tuple[str, ...]
    tabular: bool = False
    use_weights: bool = False
    needs_xy: bool = False

    def apply(self, rows: CellRows, options: SummaryOptions) -> Union[Dict[str, Any], pd.DataFrame]:
        if self.tabular:
            frames = [
                _frac_table(rows, self.use_weights and name == "weighted_frac", name)
                for name in self.names
            ]
            out = frames[0]
            for frame in frames[1:]:
                out = out.merge(frame, on="value", how="outer", sort=True)
            return out

        result: Dict[str, Any] = {}
        for name in self.names:
            fn, uses_weights, _, _ = SCALAR_OPERATIONS[name]
            value = fn(rows, self.use_weights and uses_weights, options)
            if isinstance(value, dict):
                result.update(value)
            else:
                result[name] = value
        return result


@dataclass(frozen=True)
class UserOperation:
    func: Callable[..., Any]
    summarize_as_table: bool = False

    def apply(self, rows: CellRows, options: SummaryOptions) -> Any:
        if self.summarize_as_table:
            return self.func(rows.to_frame())
        args = [rows.value, rows.coverage]
        if rows.weight is not None:
            args.append(rows.weight)
        extra = {}
        for name in ("x", "y", "cell", "row", "col", "area"):
            arr = getattr(rows, name)
            if arr is not None:
                extra[name] = arr
        return self.func(*args, **extra)


@dataclass(frozen=True)
class RowsOperation:
    def apply(self, rows: CellRows, options: SummaryOptions) -> pd.DataFrame:
        return rows.to_frame()


Operation = Union[BuiltinOperation, UserOperation, RowsOperation]


def resolve_operation(
    operation: Union[None, str, Sequence[str], Callable[..., Any]],
    has_weights: bool,
    summarize_as_table: bool = False,
) -> Operation:
    """Turn the caller's *operation* argument into an :data:`Operation`.

    Raises:
        ValueError: unknown names, mixed scalar/tabular built-ins, or a
            weight-only reduction without a weight raster.
        TypeError: *operation* is neither None, a name, a list of names
            nor a callable.
    """
    if operation is None:
        return RowsOperation()
    if callable(operation):
        return UserOperation(func=operation, summarize_as_table=summarize_as_table)
    if isinstance(operation, str):
        names: Tuple[str, ...] = (operation,)
    elif isinstance(operation, (list, tuple)) and all(isinstance(n, str) for n in operation):
        names = tuple(operation)
    else:
        raise TypeError(
            f"operation must be None, a name, a list of names or a callable, "
            f"got {type(operation).__name__}"
        )
    if not names:
        raise ValueError("operation list is empty")
    if len(set(names)) != len(names):
        raise ValueError(f"Duplicate operations: {list(names)}")

    unknown = [n for n in names if n not in SCALAR_OPERATIONS and n not in TABLE_OPERATIONS]
    if unknown:
        raise ValueError(f"Unknown operation(s): {unknown}")

    tabular = [n for n in names if n in TABLE_OPERATIONS]
    if tabular and len(tabular) != len(names):
        raise ValueError(
            f"Cannot mix table operations {tabular} with scalar operations in one call"
        )

    requires = [
        n for n in names
        if (TABLE_OPERATIONS[n] if n in TABLE_OPERATIONS else SCALAR_OPERATIONS[n][2])
    ]
    if requires and not has_weights:
        raise ValueError(f"Operation(s) {requires} require a weights raster")

    return BuiltinOperation(
        names=names,
        tabular=bool(tabular),
        use_weights=has_weights,
        needs_xy=any(SCALAR_OPERATIONS[n][3] for n in names if n in SCALAR_OPERATIONS),
    )


def normalize_fragment(result: Any) -> Optional[pd.DataFrame]:
    """Coerce a table-like operation result to a DataFrame.

    Returns None when *result* is a scalar.
    """
    if isinstance(result, pd.DataFrame):
        return result
    if isinstance(result, pd.Series):
        return result.to_frame().T.reset_index(drop=True)
    if isinstance(result, Mapping):
        return pd.DataFrame([dict(result)])
    return None
