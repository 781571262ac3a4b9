"""YAML config loading with dataclass defaults."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from loguru import logger

ERROR_POLICIES = ("strict", "lenient")


@dataclass(frozen=True)
class SummaryOptions:
    """Every recognized option of a :func:`summarize` call.

    Built once per call (from keyword arguments, a YAML file, or both)
    and validated before any feature is processed.
    """

    coverage_area: bool = False
    include_area: bool = False
    include_xy: bool = False
    include_cell: bool = False
    include_nodata: bool = False
    include_columns: Tuple[str, ...] = ()
    summarize_as_table: bool = False
    error_policy: str = "strict"
    min_coverage_frac: float = 0.0
    default_value: Optional[float] = None
    default_weight: Optional[float] = None
    quantiles: Tuple[float, ...] = (0.25, 0.5, 0.75)
    max_workers: int = 1
    progress_every: int = 100

    def validate(self) -> "SummaryOptions":
        if self.error_policy not in ERROR_POLICIES:
            raise ValueError(
                f"error_policy must be one of {ERROR_POLICIES}, got {self.error_policy!r}"
            )
        if not 0.0 <= self.min_coverage_frac <= 1.0:
            raise ValueError(f"min_coverage_frac must be in [0, 1], got {self.min_coverage_frac}")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.progress_every < 1:
            raise ValueError(f"progress_every must be >= 1, got {self.progress_every}")
        for q in self.quantiles:
            if not 0.0 <= q <= 1.0:
                raise ValueError(f"quantiles must lie in [0, 1], got {q}")
        if len(set(self.include_columns)) != len(self.include_columns):
            raise ValueError(f"include_columns has duplicates: {list(self.include_columns)}")
        return self

    def merged(self, **overrides: Any) -> "SummaryOptions":
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if "include_columns" in changes:
            changes["include_columns"] = tuple(changes["include_columns"])
        if "quantiles" in changes:
            changes["quantiles"] = tuple(changes["quantiles"])
        return replace(self, **changes)


@dataclass
class OutputConfig:
    report_dir: str = "zonal_reports"
    write_reports: bool = True
    float_format: Optional[str] = None


@dataclass
class AppConfig:
    operations: Tuple[str, ...] = ("mode",)
    band: int = 1
    weights_band: int = 1
    summary: SummaryOptions = field(default_factory=SummaryOptions)
    output: OutputConfig = field(default_factory=OutputConfig)


def _pick(section: Dict[str, Any], cls) -> Dict[str, Any]:
    """Keep keys of *section* that are fields of *cls*, warning on the rest."""
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(section) - known)
    if unknown:
        logger.warning(f"Ignoring unknown {cls.__name__} keys: {unknown}")
    return {k: v for k, v in section.items() if k in known and v is not None}


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load config from YAML, falling back to defaults for missing keys."""
    if path is None:
        default = Path("zonal.yaml")
        if not default.exists():
            logger.debug("No config file found; using built-in defaults")
            return AppConfig()
        path = str(default)

    logger.info(f"Using config: {path}")
    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    cfg = AppConfig()

    top = raw.get("zonal", {}) or {}
    if top.get("operations"):
        ops = top["operations"]
        cfg.operations = (ops,) if isinstance(ops, str) else tuple(ops)
    for key in ("band", "weights_band"):
        if top.get(key) is not None:
            setattr(cfg, key, int(top[key]))

    summary = _pick(raw.get("summary", {}) or {}, SummaryOptions)
    cfg.summary = SummaryOptions().merged(**summary).validate()

    out = _pick(raw.get("output", {}) or {}, OutputConfig)
    for key, value in out.items():
        setattr(cfg.output, key, value)

    return cfg
