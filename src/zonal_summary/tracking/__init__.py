"""Per-feature outcome tracking and reporting."""

from zonal_summary.tracking.feature_result import FeatureResult
from zonal_summary.tracking.feature_tracker import FeatureTracker

__all__ = [
    "FeatureResult",
    "FeatureTracker",
]
