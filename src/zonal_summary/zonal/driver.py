"""Run a summary operation over every feature and merge the results."""

from __future__ import annotations

import time
import traceback
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import pandas as pd
from loguru import logger

from zonal_summary.config import SummaryOptions
from zonal_summary.errors import SchemaMismatchError
from zonal_summary.grid import RasterGrid, check_alignment
from zonal_summary.tracking import FeatureResult, FeatureTracker
from zonal_summary.zonal.coverage import cell_coverage
from zonal_summary.zonal.features import Feature, load_features
from zonal_summary.zonal.operations import (
    BuiltinOperation,
    Operation,
    RowsOperation,
    UserOperation,
    normalize_fragment,
    quantile_column,
    resolve_operation,
)
from zonal_summary.zonal.rows import assemble_rows

USER_SCALAR_COLUMN = "result"


@dataclass
class _Outcome:
    index: int
    attributes: Dict[str, Any]
    record: Optional[Dict[str, Any]] = None  # scalar mode
    fragment: Optional[pd.DataFrame] = None  # table mode


@dataclass(frozen=True)
class _Context:
    grid: RasterGrid
    operation: Operation
    options: SummaryOptions
    row_options: SummaryOptions
    weights: Optional[RasterGrid]
    weight_offset: Tuple[int, int]
    tracker: FeatureTracker


def _as_grid(raster: Any, name: str) -> RasterGrid:
    if isinstance(raster, RasterGrid):
        return raster
    if hasattr(raster, "read") and hasattr(raster, "transform"):
        return RasterGrid.from_rasterio(raster)
    raise TypeError(f"{name} must be a RasterGrid or rasterio dataset, got {type(raster).__name__}")


def _summarize_feature(feature: Feature, ctx: _Context) -> Optional[_Outcome]:
    """Process one feature, recording its outcome in ``ctx.tracker``.

    Returns None when the feature failed under the lenient policy.
    """
    t0 = time.perf_counter()
    try:
        coverage = cell_coverage(feature.geometry, ctx.grid)
        rows = assemble_rows(ctx.grid, coverage, ctx.row_options, ctx.weights, ctx.weight_offset)
        result = ctx.operation.apply(rows, ctx.options)
    except Exception as exc:
        ctx.tracker.add_result(FeatureResult(
            index=feature.index,
            status="failed",
            duration_sec=time.perf_counter() - t0,
            error_type=type(exc).__name__,
            error_message=str(exc),
            error_traceback=traceback.format_exc(),
            attributes=feature.attributes,
        ))
        if ctx.options.error_policy == "strict":
            raise
        logger.warning(f"Skipping feature {feature.index}: {type(exc).__name__}: {exc}")
        return None

    outcome = _Outcome(index=feature.index, attributes=feature.attributes)
    if isinstance(ctx.operation, BuiltinOperation) and not ctx.operation.tabular:
        outcome.record = result
    else:
        fragment = normalize_fragment(result)
        if fragment is None:
            outcome.record = {USER_SCALAR_COLUMN: result}
        else:
            outcome.fragment = fragment

    ctx.tracker.add_result(FeatureResult(
        index=feature.index,
        status="success",
        duration_sec=time.perf_counter() - t0,
        n_cells=len(rows),
        n_rows=1 if outcome.fragment is None else len(outcome.fragment),
        attributes=feature.attributes,
    ))
    logger.debug(f"Feature {feature.index}: {len(rows)} cells")
    return outcome


def _run(features: List[Feature], ctx: _Context) -> List[_Outcome]:
    """Process *features* sequentially or on a thread pool; output in feature order."""
    total = len(features)
    every = ctx.options.progress_every
    outcomes: List[_Outcome] = []

    def _collect(outcome: Optional[_Outcome], done: int) -> None:
        if outcome is not None:
            outcomes.append(outcome)
        if done % every == 0 or done == total:
            logger.info(f"Processed {done}/{total} features")

    if ctx.options.max_workers <= 1:
        for done, feature in enumerate(features, start=1):
            _collect(_summarize_feature(feature, ctx), done)
    else:
        with ThreadPoolExecutor(max_workers=ctx.options.max_workers) as pool:
            futures = [pool.submit(_summarize_feature, f, ctx) for f in features]
            try:
                for done, fut in enumerate(as_completed(futures), start=1):
                    _collect(fut.result(), done)
            except BaseException:
                for fut in futures:
                    fut.cancel()
                raise

    outcomes.sort(key=lambda o: o.index)
    return outcomes


def _scalar_columns(operation: Operation, options: SummaryOptions) -> List[str]:
    if isinstance(operation, BuiltinOperation):
        cols: List[str] = []
        for name in operation.names:
            if name == "quantile":
                cols.extend(quantile_column(q) for q in options.quantiles)
            else:
                cols.append(name)
        return cols
    return [USER_SCALAR_COLUMN]


def _table_columns(operation: Operation, options: SummaryOptions, has_weights: bool) -> List[str]:
    """Columns of an empty table result, where they can be known up front."""
    if isinstance(operation, BuiltinOperation):
        return ["value", *operation.names]
    if isinstance(operation, RowsOperation):
        cols = ["value"]
        if has_weights:
            cols.append("weight")
        if options.include_xy:
            cols.extend(["x", "y"])
        if options.include_cell:
            cols.extend(["cell", "row", "col"])
        if options.include_area:
            cols.append("area")
        cols.append("coverage_area" if options.coverage_area else "coverage_fraction")
        return cols
    return []


def _reject_clashes(include_columns: Sequence[str], columns: Sequence[str]) -> None:
    clash = [c for c in include_columns if c in columns]
    if clash:
        raise ValueError(f"include_columns {clash} collide with operation output columns")


def _merge_scalars(
    outcomes: List[_Outcome],
    columns: List[str],
    include_columns: Sequence[str],
) -> Union[pd.Series, pd.DataFrame]:
    _reject_clashes(include_columns, columns)
    index = pd.Index([o.index for o in outcomes], dtype="int64")
    if len(columns) == 1 and not include_columns:
        name = columns[0]
        return pd.Series([o.record[name] for o in outcomes], index=index, name=name)

    records = [{**o.attributes, **o.record} for o in outcomes]
    return pd.DataFrame(records, index=index, columns=[*include_columns, *columns])


def _merge_tables(
    outcomes: List[_Outcome],
    include_columns: Sequence[str],
    empty_columns: List[str],
) -> pd.DataFrame:
    expected: Optional[List[str]] = None
    expected_from = -1
    frames: List[pd.DataFrame] = []
    for o in outcomes:
        frag = o.fragment
        if len(frag.columns) == 0 and len(frag) == 0:
            continue
        cols = list(frag.columns)
        if expected is None:
            expected, expected_from = cols, o.index
        elif set(cols) != set(expected) or len(cols) != len(expected):
            raise SchemaMismatchError(
                f"Feature {o.index} returned columns {cols}, but feature "
                f"{expected_from} returned {expected}"
            )
        else:
            frag = frag[expected]

        _reject_clashes(include_columns, frag.columns)
        frag = frag.reset_index(drop=True)
        for pos, col in enumerate(include_columns):
            frag.insert(pos, col, [o.attributes[col]] * len(frag))
        frames.append(frag)

    if not frames:
        return pd.DataFrame(columns=[*include_columns, *(expected or empty_columns)])
    return pd.concat(frames, ignore_index=True)


def summarize(
    raster: Any,
    features: Any,
    operation: Union[None, str, Sequence[str], Callable[..., Any]] = None,
    *,
    weights: Any = None,
    coverage_area: Optional[bool] = None,
    include_area: Optional[bool] = None,
    include_columns: Optional[Sequence[str]] = None,
    include_xy: Optional[bool] = None,
    include_cell: Optional[bool] = None,
    include_nodata: Optional[bool] = None,
    summarize_as_table: Optional[bool] = None,
    error_policy: Optional[str] = None,
    min_coverage_frac: Optional[float] = None,
    max_workers: Optional[int] = None,
    options: Optional[SummaryOptions] = None,
    tracker: Optional[FeatureTracker] = None,
) -> Union[pd.Series, pd.DataFrame]:
    """Summarize *raster* over each polygon in *features*.

    Args:
        raster: Primary :class:`RasterGrid` (or open rasterio dataset).
        features: GeoDataFrame, GeoSeries, geometries, or
            ``(geometry, attributes)`` pairs.
        operation: A built-in name, a list of names, a callable, or None
            to return the per-cell rows themselves.
        weights: Optional weight raster on the same grid as *raster*.
        options: Base :class:`SummaryOptions`; explicit keyword arguments
            override its fields.
        tracker: Receives one :class:`FeatureResult` per feature.

    Returns:
        For scalar operations, a Series (single column, no passthrough
        columns) or DataFrame indexed by input feature position.  For table
        operations, a DataFrame of all feature fragments concatenated in
        feature order.  ``result.attrs["errors"]`` lists skipped features.

    Raises:
        GridMismatchError: *weights* is not aligned with *raster*.
        SchemaMismatchError: a table operation returned inconsistent columns.
        GeometryError: a malformed geometry under the strict policy.
        ValueError: bad options, or *include_columns* naming an output column.
    """
    opts = (options or SummaryOptions()).merged(
        coverage_area=coverage_area,
        include_area=include_area,
        include_columns=include_columns,
        include_xy=include_xy,
        include_cell=include_cell,
        include_nodata=include_nodata,
        summarize_as_table=summarize_as_table,
        error_policy=error_policy,
        min_coverage_frac=min_coverage_frac,
        max_workers=max_workers,
    ).validate()

    grid = _as_grid(raster, "raster")
    weight_grid = None
    offset = (0, 0)
    if weights is not None:
        weight_grid = _as_grid(weights, "weights")
        offset = check_alignment(grid, weight_grid)

    op = resolve_operation(operation, weight_grid is not None, opts.summarize_as_table)
    feats = load_features(features, opts.include_columns)

    if isinstance(op, BuiltinOperation):
        _reject_clashes(
            opts.include_columns,
            _table_columns(op, opts, False) if op.tabular else _scalar_columns(op, opts),
        )

    row_opts = opts
    if isinstance(op, BuiltinOperation) and op.needs_xy:
        row_opts = replace(opts, include_xy=True)

    tracker = tracker if tracker is not None else FeatureTracker()
    first_result = len(tracker.results)
    ctx = _Context(
        grid=grid,
        operation=op,
        options=opts,
        row_options=row_opts,
        weights=weight_grid,
        weight_offset=offset,
        tracker=tracker,
    )

    op_label = getattr(op, "names", None) or type(op).__name__
    logger.info(
        f"Summarizing {len(feats)} features over {grid.shape[0]}x{grid.shape[1]} grid "
        f"(operation={op_label}, policy={opts.error_policy}, max_workers={opts.max_workers})"
    )
    outcomes = _run(feats, ctx)

    scalar_kinds = {o.record is not None for o in outcomes}
    if len(scalar_kinds) > 1:
        raise SchemaMismatchError(
            "Operation returned scalars for some features and tables for others"
        )
    scalar = scalar_kinds.pop() if scalar_kinds else (
        isinstance(op, BuiltinOperation) and not op.tabular
        or isinstance(op, UserOperation) and not opts.summarize_as_table
    )

    if scalar:
        result = _merge_scalars(outcomes, _scalar_columns(op, opts), opts.include_columns)
    else:
        result = _merge_tables(
            outcomes,
            opts.include_columns,
            _table_columns(op, opts, weight_grid is not None),
        )

    this_call = sorted(tracker.results[first_result:], key=lambda r: r.index)
    errors = [r.error_record() for r in this_call if r.status != "success"]
    result.attrs["errors"] = errors
    if errors:
        logger.warning(f"{len(errors)} of {len(feats)} features skipped")
    logger.info(f"Summarized {len(outcomes)} features -> {len(result)} output rows")
    return result
