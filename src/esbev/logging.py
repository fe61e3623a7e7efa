"""Logging helpers for the pipeline."""

from __future__ import annotations

import logging
from typing import Iterable


def configure_logging(level: int | str = logging.INFO, handlers: Iterable[logging.Handler] | None = None) -> None:
    """Configure root logging for batch runs.

    Passes log per-record skips at WARNING and pass summaries at INFO, so the
    default level is enough to audit a run.
    """

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=list(handlers) if handlers else None,
    )


__all__ = ["configure_logging"]
