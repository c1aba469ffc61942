"""Structured logging setup."""

import logging
import sys

import structlog

from . import config

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """
    Configure structlog for the process.

    Args:
        level: Minimum level name (defaults to CARTFLOW_LOG_LEVEL).
        fmt: "json" or "console" (defaults to CARTFLOW_LOG_FORMAT).
    """
    level = (level or config.log_level()).lower()
    fmt = (fmt or config.log_format()).lower()

    renderer = (
        structlog.dev.ConsoleRenderer()
        if fmt == "console"
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_LEVELS.get(level, logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def get_logger(component: str):
    """
    Return a logger bound to a component name.

    The logger stays lazy until first use, so module-level loggers pick up
    whatever configure_logging() sets later.
    """
    return structlog.get_logger(component=component)
