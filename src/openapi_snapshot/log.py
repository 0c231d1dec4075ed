# src/openapi_snapshot/log.py
from __future__ import annotations

import logging
import os
import sys

import structlog

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def _level_from_env() -> int:
    v = os.environ.get("LOG_LEVEL", "").strip().lower()
    return _LEVELS.get(v, logging.INFO)


def configure_logging(level: int | None = None) -> None:
    """
    Human-readable structured logs on stderr.

    stdout carries the single JSON result line, so nothing else may print there.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level if level is not None else _level_from_env()),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
