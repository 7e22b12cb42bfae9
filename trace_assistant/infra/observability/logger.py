"""Observability layer: centralized logger setup for API and reducer tracing."""

from __future__ import annotations

import logging

REDUCER_LOGGER_NAME = "trace_assistant.agent.reducer"


def setup_logging(level: str = "INFO", *, reducer_level: str | None = None) -> None:
    """Configure root logger once; reducer loggers may run at their own level."""
    normalized = level.upper()
    logging.basicConfig(
        level=normalized,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        force=True,
    )
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.setLevel(normalized)
        logger.propagate = True
    # Duplicate/pacing decisions are DEBUG noise unless explicitly requested.
    reducer_logger = logging.getLogger(REDUCER_LOGGER_NAME)
    reducer_logger.setLevel((reducer_level or normalized).upper())


def get_logger(name: str) -> logging.Logger:
    """Return a module-level logger instance."""
    return logging.getLogger(name)


def short(text: object, *, limit: int = 120) -> str:
    """Collapse whitespace and clip a value for single-line log output."""
    if text is None:
        return ""
    compact = " ".join(str(text).split())
    if len(compact) <= limit:
        return compact
    return f"{compact[: max(1, limit - 3)].rstrip()}..."
