"""Structured exit codes for CLI commands."""

from __future__ import annotations

from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from zonal_summary.tracking import FeatureTracker


class ExitCode(IntEnum):
    SUCCESS = 0
    PARTIAL_FAILURE = 1
    TOTAL_FAILURE = 2
    BAD_INPUT = 3
    NO_WORK = 6  # Polygon layer has no features


def exit_code_from_tracker(tracker: FeatureTracker) -> ExitCode:
    """Derive an exit code from a :class:`FeatureTracker`'s results."""
    failed = sum(1 for r in tracker.results if r.status != "success")
    if failed == len(tracker.results) and tracker.results:
        return ExitCode.TOTAL_FAILURE
    elif failed > 0:
        return ExitCode.PARTIAL_FAILURE
    return ExitCode.SUCCESS
