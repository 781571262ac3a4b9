"""Click CLI: ``zonal-summary`` command group."""

from __future__ import annotations

import click
from loguru import logger

from zonal_summary.config import load_config
from zonal_summary.errors import GeometryError, GridMismatchError, SchemaMismatchError
from zonal_summary.exit_codes import ExitCode, exit_code_from_tracker
from zonal_summary.logging import bind_run_context, new_run_id, setup_logging


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------

@click.group(invoke_without_command=True)
@click.version_option(package_name="zonal-summary", prog_name="zonal-summary")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True),
              help="Path to YAML config.")
@click.option("--log-level", default="INFO",
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
@click.option("--log-format", default="text",
              type=click.Choice(["text", "json"]),
              help="Log output format.")
@click.option("--log-file", default=None, help="Also write DEBUG-level logs to this file.")
@click.option("--run-id", default=None, help="Override auto-generated run ID.")
@click.option("--show-config", is_flag=True, help="Print resolved config as YAML and exit.")
@click.pass_context
def zonal_summary(ctx: click.Context, config_path, log_level, log_format, log_file, run_id,
                  show_config):
    """Exact-coverage zonal summaries of rasters over polygons."""
    ctx.ensure_object(dict)

    run_id = run_id or new_run_id()
    ctx.obj["run_id"] = run_id
    bind_run_context(run_id)
    setup_logging(level=log_level, fmt=log_format, log_file=log_file)
    try:
        ctx.obj["cfg"] = load_config(config_path)
    except (ValueError, TypeError) as exc:
        logger.error(f"Invalid config {config_path or 'zonal.yaml'}: {exc}")
        ctx.exit(ExitCode.BAD_INPUT)
        return

    if show_config:
        import dataclasses
        import yaml as _yaml
        click.echo(_yaml.safe_dump(
            _to_plain(dataclasses.asdict(ctx.obj["cfg"])), default_flow_style=False,
        ))
        ctx.exit(ExitCode.SUCCESS)
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def _to_plain(obj):
    """Tuples -> lists so ``yaml.safe_dump`` accepts the config."""
    if isinstance(obj, dict):
        return {k: _to_plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_plain(v) for v in obj]
    return obj


# ---------------------------------------------------------------------------
# summarize
# ---------------------------------------------------------------------------

@zonal_summary.command()
@click.argument("raster", type=click.Path(exists=True))
@click.argument("polygons", type=click.Path(exists=True))
@click.option("-o", "--output", default="summary.csv", help="Output CSV path.")
@click.option("--op", "operations", multiple=True,
              help="Built-in operation name (repeatable). Defaults to config.")
@click.option("--weights", default=None, type=click.Path(exists=True),
              help="Weight raster on the same grid as RASTER.")
@click.option("--levels", default=None, type=click.Path(exists=True),
              help="CSV with value,label columns for category labels.")
@click.option("--coverage-area", is_flag=True,
              help="Weight cells by covered area instead of coverage fraction.")
@click.option("--include-col", "include_columns", multiple=True,
              help="Polygon attribute to copy into the output (repeatable).")
@click.option("--include-xy", is_flag=True)
@click.option("--include-cell", is_flag=True)
@click.option("--include-area", is_flag=True)
@click.option("--min-coverage-frac", type=float, default=None)
@click.option("--lenient", "error_policy", flag_value="lenient", default=None,
              help="Skip and report features that fail instead of aborting.")
@click.option("--max-workers", type=int, default=None, help="Worker threads.")
@click.option("--report-dir", default=None, help="Directory for per-feature reports.")
@click.option("--no-reports", is_flag=True, help="Don't write per-feature reports.")
@click.pass_context
def summarize(ctx, raster, polygons, output, operations, weights, levels, coverage_area,
              include_columns, include_xy, include_cell, include_area, min_coverage_frac,
              error_policy, max_workers, report_dir, no_reports):
    """Summarize RASTER over every feature in POLYGONS."""
    from zonal_summary.steps.summarize import run_summarize

    cfg = ctx.obj["cfg"]
    cfg.summary = cfg.summary.merged(
        coverage_area=coverage_area or None,
        include_columns=include_columns or None,
        include_xy=include_xy or None,
        include_cell=include_cell or None,
        include_area=include_area or None,
        min_coverage_frac=min_coverage_frac,
        error_policy=error_policy,
        max_workers=max_workers,
    )
    if report_dir:
        cfg.output.report_dir = report_dir
    if no_reports:
        cfg.output.write_reports = False

    try:
        cfg.summary.validate()
        tracker = run_summarize(
            raster, polygons, output, cfg,
            operations=operations or None,
            weights=weights,
            levels=levels,
        )
    except (GridMismatchError, SchemaMismatchError, ValueError, KeyError) as exc:
        logger.error(f"{type(exc).__name__}: {exc}")
        ctx.exit(ExitCode.BAD_INPUT)
        return
    except GeometryError as exc:
        logger.error(f"Aborted on invalid geometry (use --lenient to skip): {exc}")
        ctx.exit(ExitCode.TOTAL_FAILURE)
        return

    if not tracker.results:
        logger.warning("No features to summarize")
        ctx.exit(ExitCode.NO_WORK)
        return
    ctx.exit(exit_code_from_tracker(tracker))


# ---------------------------------------------------------------------------
# operations
# ---------------------------------------------------------------------------

@zonal_summary.command("operations")
def list_operations():
    """List built-in operation names."""
    from zonal_summary.zonal.operations import SCALAR_OPERATIONS, TABLE_OPERATIONS

    for name, (_, uses_weights, requires_weights, _) in sorted(SCALAR_OPERATIONS.items()):
        note = " (requires weights)" if requires_weights else (
            " (weighted when weights given)" if uses_weights else ""
        )
        click.echo(f"{name}{note}")
    for name, requires_weights in sorted(TABLE_OPERATIONS.items()):
        click.echo(f"{name} [table]{' (requires weights)' if requires_weights else ''}")


def main():
    zonal_summary(obj={})


if __name__ == "__main__":
    main()
