"""Loguru setup shared by the CLI and library callers."""

from __future__ import annotations

import sys
import uuid
from typing import Optional

from loguru import logger

_TEXT_FORMAT = "<level>{level: <8}</level> | {extra[run_id]:>8} | {message}"


def setup_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_file: Optional[str] = None,
) -> None:
    """Replace loguru's sinks with a stderr sink (and optionally a file).

    Call once at CLI startup.  The engine itself never touches sinks, so
    library users keep whatever loguru configuration they already have.
    ``fmt="json"`` emits one serialized record per line.
    """
    logger.remove()
    serialize = fmt == "json"
    if serialize:
        logger.add(sys.stderr, level=level.upper(), serialize=True)
    else:
        logger.add(sys.stderr, level=level.upper(), format=_TEXT_FORMAT)

    if log_file:
        logger.add(
            log_file,
            level="DEBUG",
            serialize=serialize,
            format=_TEXT_FORMAT,
            enqueue=True,
        )


def new_run_id() -> str:
    """Generate an 8-char hex run identifier."""
    return uuid.uuid4().hex[:8]


def bind_run_context(run_id: str) -> None:
    """Attach *run_id* to every subsequent record."""
    logger.configure(extra={"run_id": run_id})
