"""Per-feature outcome record."""

from __future__ import annotations

from dataclasses import dataclass, asdict, field
from typing import Any, Dict, Optional


@dataclass
class FeatureResult:
    """Outcome of summarizing one feature."""

    index: int  # position in the input feature sequence
    status: str  # 'success', 'failed'
    duration_sec: Optional[float] = None
    n_cells: Optional[int] = None  # covered cells, after nodata filtering
    n_rows: Optional[int] = None  # output rows produced
    error_type: Optional[str] = None  # exception class name
    error_message: Optional[str] = None
    error_traceback: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def error_record(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "error_type": self.error_type,
            "message": self.error_message,
        }
