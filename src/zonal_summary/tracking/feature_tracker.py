"""Collects per-feature outcomes of a summarize call and writes reports."""

from __future__ import annotations

import csv
import json
import os
import threading
from datetime import datetime
from typing import Any, Dict, List

from loguru import logger

from zonal_summary.tracking.feature_result import FeatureResult


class FeatureTracker:
    """Centralized per-feature tracking and reporting.

    Safe to share between worker threads.
    """

    def __init__(self) -> None:
        self.results: List[FeatureResult] = []
        self.start_time = datetime.now()
        self._lock = threading.Lock()

    def add_result(self, result: FeatureResult) -> None:
        with self._lock:
            self.results.append(result)

    @property
    def failed(self) -> List[FeatureResult]:
        return sorted(
            (r for r in self.results if r.status != "success"), key=lambda r: r.index
        )

    @property
    def succeeded(self) -> List[FeatureResult]:
        return sorted(
            (r for r in self.results if r.status == "success"), key=lambda r: r.index
        )

    def errors(self) -> List[Dict[str, Any]]:
        """``{index, error_type, message}`` for every failed feature, in feature order."""
        return [r.error_record() for r in self.failed]

    # ------------------------------------------------------------------
    # Report generation
    # ------------------------------------------------------------------

    def save_reports(self, output_dir: str) -> None:
        """Save a JSON report, a CSV summary and (if any) a failed-features JSON."""
        os.makedirs(output_dir, exist_ok=True)
        timestamp = self.start_time.strftime("%Y%m%d_%H%M%S")
        ordered = sorted(self.results, key=lambda r: r.index)

        json_path = os.path.join(output_dir, f"feature_report_{timestamp}.json")
        with open(json_path, "w") as f:
            json.dump([r.to_dict() for r in ordered], f, indent=2, default=str)

        csv_path = os.path.join(output_dir, f"feature_summary_{timestamp}.csv")
        self._save_csv_summary(csv_path, ordered)

        failed = self.failed
        if failed:
            failed_path = os.path.join(output_dir, f"failed_features_{timestamp}.json")
            with open(failed_path, "w") as f:
                json.dump([r.to_dict() for r in failed], f, indent=2, default=str)

        logger.info(f"Reports saved to {output_dir}/")

    def _save_csv_summary(self, path: str, results: List[FeatureResult]) -> None:
        fieldnames = [
            "index", "status", "duration_sec", "n_cells", "n_rows",
            "error_type", "error_message",
        ]
        with open(path, "w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=fieldnames)
            writer.writeheader()
            for r in results:
                writer.writerow({
                    "index": r.index,
                    "status": r.status,
                    "duration_sec": r.duration_sec,
                    "n_cells": r.n_cells,
                    "n_rows": r.n_rows,
                    "error_type": r.error_type,
                    "error_message": (
                        r.error_message[:100] if r.error_message else None
                    ),
                })

    def print_summary(self) -> None:
        """Log a one-line summary plus a line per failed feature."""
        total = len(self.results)
        if total == 0:
            logger.info("No features were processed.")
            return

        failed = self.failed
        durations = [r.duration_sec for r in self.results if r.duration_sec]
        avg_dur = sum(durations) / len(durations) if durations else 0
        logger.info(
            f"Feature summary: {total - len(failed)} succeeded, {len(failed)} failed "
            f"out of {total} total (avg {avg_dur * 1000:.1f} ms/feature)"
        )
        for r in failed[:20]:
            logger.warning(f"  feature {r.index}: {r.error_type}: {r.error_message}")
        if len(failed) > 20:
            logger.warning(f"  ... and {len(failed) - 20} more failed features")
