"""Summarize step: raster + polygon files in, CSV table out.

Runs the engine between the file readers (rasterio, geopandas) and a
CSV writer.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

import pandas as pd
from loguru import logger

from zonal_summary.config import AppConfig
from zonal_summary.tracking import FeatureTracker


def read_levels(path: str) -> Dict[Any, str]:
    """Read a ``value,label`` CSV into a code -> label mapping."""
    table = pd.read_csv(path)
    missing = {"value", "label"} - set(table.columns)
    if missing:
        raise ValueError(f"Levels CSV is missing columns: {sorted(missing)}")
    return dict(zip(table["value"], table["label"]))


def _read_polygons(polygons_path: str, raster_crs):
    import geopandas as gpd

    gdf = gpd.read_file(polygons_path)
    logger.info(f"Loaded {len(gdf)} features from {polygons_path}")
    if raster_crs is None:
        logger.warning("Raster has no CRS; using polygons as-is")
    elif gdf.crs is None:
        logger.warning("Polygons have no CRS; assuming raster CRS")
    elif gdf.crs != raster_crs:
        logger.info(f"Reprojecting polygons from {gdf.crs} to {raster_crs}")
        gdf = gdf.to_crs(raster_crs)
    return gdf


def write_result(result, output: str, float_format: Optional[str] = None) -> int:
    """Write a summarize result to CSV; returns the number of rows written."""
    if isinstance(result, pd.Series):
        frame = result.rename_axis("feature").reset_index()
    elif result.index.name is None and isinstance(result.index, pd.RangeIndex):
        frame = result
    else:
        frame = result.rename_axis("feature").reset_index()
    frame.to_csv(output, index=False, float_format=float_format)
    return len(frame)


def run_summarize(
    raster: str,
    polygons: str,
    output: str,
    cfg: AppConfig,
    operations: Optional[Sequence[str]] = None,
    weights: Optional[str] = None,
    levels: Optional[str] = None,
) -> FeatureTracker:
    """Summarize *raster* over the features in *polygons* and write *output*.

    1. Open the raster (and weights raster) with rasterio
    2. Load polygons and reproject them to the raster CRS
    3. Run the engine with ``cfg.summary`` options
    4. Attach category labels (table results with a ``value`` column)
    5. Write the CSV and the per-feature reports
    """
    import rasterio

    from zonal_summary.grid import RasterGrid
    from zonal_summary.zonal import attach_labels, summarize

    ops = list(operations or cfg.operations)
    operation = ops[0] if len(ops) == 1 else ops
    level_map = read_levels(levels) if levels else None

    with rasterio.open(raster) as src:
        grid = RasterGrid.from_rasterio(src, band=cfg.band, levels=level_map)
    weight_grid = None
    if weights:
        with rasterio.open(weights) as wsrc:
            weight_grid = RasterGrid.from_rasterio(wsrc, band=cfg.weights_band)

    gdf = _read_polygons(polygons, grid.crs)

    tracker = FeatureTracker()
    result = summarize(
        grid,
        gdf,
        operation,
        weights=weight_grid,
        options=cfg.summary,
        tracker=tracker,
    )

    if level_map and isinstance(result, pd.DataFrame) and "value" in result.columns:
        result = attach_labels(result, level_map)

    n = write_result(result, output, cfg.output.float_format)
    logger.info(f"Results written to {output} ({n} rows)")

    tracker.print_summary()
    if cfg.output.write_reports:
        tracker.save_reports(cfg.output.report_dir)
    return tracker
