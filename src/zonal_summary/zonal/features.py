"""Normalize the accepted polygon inputs into one ordered feature list."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from shapely.geometry.base import BaseGeometry


@dataclass(frozen=True)
class Feature:
    """A polygon plus the passthrough attributes copied to its output rows."""

    index: int
    geometry: Any
    attributes: Dict[str, Any] = field(default_factory=dict)


def _from_geodataframe(gdf, include_columns: Sequence[str]) -> List[Feature]:
    missing = [c for c in include_columns if c not in gdf.columns]
    if missing:
        raise KeyError(f"include_columns not found in features: {missing}")
    geoms = list(gdf.geometry)
    if include_columns:
        records = gdf[list(include_columns)].to_dict("records")
    else:
        records = [{} for _ in geoms]
    return [Feature(i, g, rec) for i, (g, rec) in enumerate(zip(geoms, records))]


def _from_pairs(items: Iterable[Any], include_columns: Sequence[str]) -> List[Feature]:
    out: List[Feature] = []
    for i, item in enumerate(items):
        if item is None or isinstance(item, BaseGeometry):
            geometry, attrs = item, {}
        elif isinstance(item, (tuple, list)) and len(item) == 2 and isinstance(item[1], Mapping):
            geometry, attrs = item
        else:
            # Rejected per feature by the rasterizer, under the error policy.
            out.append(Feature(i, item, dict.fromkeys(include_columns)))
            continue
        missing = [c for c in include_columns if c not in attrs]
        if missing:
            raise KeyError(f"Feature {i}: include_columns not found: {missing}")
        out.append(Feature(i, geometry, {c: attrs[c] for c in include_columns}))
    return out


def load_features(features: Any, include_columns: Sequence[str] = ()) -> List[Feature]:
    """Return *features* as an ordered list of :class:`Feature`.

    Accepts a ``geopandas.GeoDataFrame``, a ``GeoSeries``, a single shapely
    geometry, or a sequence of geometries or ``(geometry, attributes)``
    pairs.  Only *include_columns* are kept as attributes.  Items that are
    neither become features with that item as geometry, so they fail
    per feature rather than here.

    Raises:
        KeyError: an included column is missing.
        TypeError: *features* is not a recognized container.
    """
    import geopandas as gpd

    if isinstance(features, gpd.GeoDataFrame):
        return _from_geodataframe(features, include_columns)
    if isinstance(features, gpd.GeoSeries):
        return _from_pairs(list(features), include_columns)
    if isinstance(features, BaseGeometry):
        return _from_pairs([features], include_columns)
    if isinstance(features, (str, bytes)) or not isinstance(features, Iterable):
        raise TypeError(f"Unsupported features input: {type(features).__name__}")
    return _from_pairs(features, include_columns)
