import sys

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
import rasterio
from affine import Affine
from click.testing import CliRunner
from loguru import logger
from shapely.geometry import Polygon, box

from zonal_summary.cli import zonal_summary
from zonal_summary.config import AppConfig
from zonal_summary.exit_codes import ExitCode
from zonal_summary.steps.summarize import read_levels, run_summarize, write_result

CRS = "EPSG:32633"
VALUES = np.array([[1, 1, 3], [2, 2, 3], [3, 3, 3]], dtype=np.int32)


def _write_raster(path, values, transform=Affine(1, 0, 0, 0, -1, 3), nodata=None):
    profile = dict(
        driver="GTiff", height=values.shape[0], width=values.shape[1], count=1,
        dtype=values.dtype, crs=CRS, transform=transform, nodata=nodata,
    )
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(values, 1)
    return str(path)


def _write_polygons(path, geoms, names=None):
    names = names or [f"f{i}" for i in range(len(geoms))]
    gpd.GeoDataFrame({"name": names}, geometry=geoms, crs=CRS).to_file(path, driver="GeoJSON")
    return str(path)


@pytest.fixture
def inputs(tmp_path):
    raster = _write_raster(tmp_path / "classes.tif", VALUES)
    polygons = _write_polygons(tmp_path / "zones.geojson", [box(0, 1, 2, 3), box(2, 0, 3, 3)])
    return raster, polygons


@pytest.fixture
def cfg(tmp_path):
    cfg = AppConfig()
    cfg.output.report_dir = str(tmp_path / "reports")
    return cfg


@pytest.fixture(autouse=True)
def _restore_logger():
    yield
    logger.remove()
    logger.add(sys.stderr)


def test_run_summarize_scalars(tmp_path, inputs, cfg):
    out = tmp_path / "out.csv"
    tracker = run_summarize(*inputs, str(out), cfg, operations=["mode", "variety"])

    table = pd.read_csv(out)
    assert list(table.columns) == ["feature", "mode", "variety"]
    assert table["mode"].tolist() == [1, 3]
    assert table["variety"].tolist() == [2, 1]
    assert len(tracker.succeeded) == 2
    assert list((tmp_path / "reports").glob("feature_report_*.json"))


def test_run_summarize_frac_with_labels(tmp_path, inputs, cfg):
    levels = tmp_path / "levels.csv"
    levels.write_text("value,label\n1,forest\n2,water\n3,urban\n")
    cfg.summary = cfg.summary.merged(include_columns=["name"])
    cfg.output.write_reports = False
    out = tmp_path / "out.csv"
    run_summarize(*inputs, str(out), cfg, operations=["frac"], levels=str(levels))

    table = pd.read_csv(out)
    assert list(table.columns) == ["name", "value", "label", "frac"]
    assert table["label"].tolist() == ["forest", "water", "urban"]
    assert not (tmp_path / "reports").exists()


def test_run_summarize_reprojects_polygons(tmp_path, cfg):
    # a raster in UTM and a polygon given in geographic coordinates
    transform = Affine(100, 0, 500000, 0, -100, 5000000)
    raster = _write_raster(tmp_path / "utm.tif", np.ones((10, 10), dtype=np.int32), transform)
    utm_box = box(500100, 4999100, 500500, 4999500)
    zones = gpd.GeoDataFrame(geometry=[utm_box], crs=CRS).to_crs("EPSG:4326")
    zones.to_file(tmp_path / "zones.geojson", driver="GeoJSON")

    out = tmp_path / "out.csv"
    run_summarize(raster, str(tmp_path / "zones.geojson"), str(out), cfg, operations=["count"])
    assert pd.read_csv(out)["count"].iloc[0] == pytest.approx(16, rel=1e-3)


def test_read_levels_requires_columns(tmp_path):
    path = tmp_path / "levels.csv"
    path.write_text("code,name\n1,a\n")
    with pytest.raises(ValueError):
        read_levels(str(path))


def test_write_result_series_gets_feature_column(tmp_path):
    out = tmp_path / "s.csv"
    assert write_result(pd.Series([1.5, 2.5], index=[0, 2], name="mean"), str(out)) == 2
    assert pd.read_csv(out).to_dict("list") == {"feature": [0, 2], "mean": [1.5, 2.5]}


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def _invoke(tmp_path, monkeypatch, *args):
    monkeypatch.chdir(tmp_path)
    return CliRunner().invoke(zonal_summary, list(args), obj={})


def test_cli_summarize_success(tmp_path, monkeypatch, inputs):
    result = _invoke(tmp_path, monkeypatch, "summarize", *inputs, "-o", "out.csv", "--op", "mode")
    assert result.exit_code == ExitCode.SUCCESS
    assert pd.read_csv(tmp_path / "out.csv")["mode"].tolist() == [1, 3]
    assert list((tmp_path / "zonal_reports").glob("feature_summary_*.csv"))


def test_cli_lenient_partial_failure(tmp_path, monkeypatch):
    raster = _write_raster(tmp_path / "r.tif", VALUES)
    bowtie = Polygon([(0, 0), (4, 4), (4, 0), (0, 2)])
    polygons = _write_polygons(tmp_path / "p.geojson", [box(0, 0, 1, 1), bowtie])

    result = _invoke(
        tmp_path, monkeypatch, "summarize", raster, polygons, "--op", "count",
        "--lenient", "--no-reports",
    )
    assert result.exit_code == ExitCode.PARTIAL_FAILURE
    assert pd.read_csv(tmp_path / "summary.csv")["feature"].tolist() == [0]

    result = _invoke(tmp_path, monkeypatch, "summarize", raster, polygons, "--op", "count",
                     "--no-reports")
    assert result.exit_code == ExitCode.TOTAL_FAILURE


def test_cli_bad_input(tmp_path, monkeypatch, inputs):
    weights = _write_raster(
        tmp_path / "w.tif", np.ones((3, 3), dtype=np.float32), Affine(1, 0, 0.5, 0, -1, 3),
    )
    result = _invoke(tmp_path, monkeypatch, "summarize", *inputs, "--op", "mean",
                     "--weights", weights, "--no-reports")
    assert result.exit_code == ExitCode.BAD_INPUT

    result = _invoke(tmp_path, monkeypatch, "summarize", *inputs, "--op", "nope",
                     "--no-reports")
    assert result.exit_code == ExitCode.BAD_INPUT


def test_cli_no_features(tmp_path, monkeypatch):
    raster = _write_raster(tmp_path / "r.tif", VALUES)
    empty = tmp_path / "empty.geojson"
    empty.write_text('{"type": "FeatureCollection", "features": []}')
    result = _invoke(tmp_path, monkeypatch, "summarize", raster, str(empty), "--no-reports")
    assert result.exit_code == ExitCode.NO_WORK


def test_cli_config_file(tmp_path, monkeypatch, inputs):
    (tmp_path / "zonal.yaml").write_text(
        "zonal:\n  operations: [max]\nsummary:\n  include_columns: [name]\n"
        "output:\n  write_reports: false\n"
    )
    result = _invoke(tmp_path, monkeypatch, "summarize", *inputs)
    assert result.exit_code == ExitCode.SUCCESS
    table = pd.read_csv(tmp_path / "summary.csv")
    assert list(table.columns) == ["feature", "name", "max"]
    assert table["max"].tolist() == [2, 3]


def test_cli_invalid_config_is_bad_input(tmp_path, monkeypatch, inputs):
    (tmp_path / "zonal.yaml").write_text("summary:\n  error_policy: sometimes\n")
    result = _invoke(tmp_path, monkeypatch, "summarize", *inputs, "--no-reports")
    assert result.exit_code == ExitCode.BAD_INPUT
    assert not (tmp_path / "summary.csv").exists()


def test_cli_show_config(tmp_path, monkeypatch):
    result = _invoke(tmp_path, monkeypatch, "--show-config")
    assert result.exit_code == 0
    assert "operations:" in result.output
    assert "error_policy: strict" in result.output


def test_cli_lists_operations(tmp_path, monkeypatch):
    result = _invoke(tmp_path, monkeypatch, "operations")
    assert result.exit_code == 0
    assert "weighted_mean (requires weights)" in result.output
    assert "frac [table]" in result.output
