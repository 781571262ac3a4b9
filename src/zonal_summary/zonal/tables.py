"""Presentation helpers applied to summary tables after the engine has run."""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

import pandas as pd


def attach_labels(
    table: pd.DataFrame,
    levels: Mapping[Any, str],
    column: str = "value",
    label_column: str = "label",
) -> pd.DataFrame:
    """Return *table* with a *label_column* looked up from *levels*.

    Codes missing from *levels* get a null label.
    """
    if column not in table.columns:
        raise KeyError(f"Column {column!r} not in table")
    out = table.copy()
    out.insert(out.columns.get_loc(column) + 1, label_column, out[column].map(dict(levels)))
    return out


def pivot_fractions(
    table: pd.DataFrame,
    id_columns: Sequence[str],
    frac_column: str = "frac",
    value_column: str = "value",
    levels: Optional[Mapping[Any, str]] = None,
) -> pd.DataFrame:
    """Reshape a long ``frac`` table to one row per feature.

    Output columns are ``<frac_column>_<code or label>``; categories absent
    from a feature are 0.
    """
    if not id_columns:
        raise ValueError("pivot_fractions needs at least one id column")
    keys = table[value_column]
    if levels is not None:
        keys = keys.map(dict(levels)).fillna(keys.astype(str))
    wide = (
        table.assign(_category=keys)
        .pivot_table(
            index=list(id_columns),
            columns="_category",
            values=frac_column,
            aggfunc="sum",
            fill_value=0.0,
            sort=False,
        )
    )
    wide.columns = [f"{frac_column}_{c}" for c in wide.columns]
    return wide.reset_index()
