"""Structured logging setup.

Components accept an optional ``logger`` and otherwise fall back to a
module logger from ``structlog.get_logger``. The verbosity is set once by
the application through ``configure_logging``.
"""

from __future__ import annotations

import logging

import structlog

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def configure_logging(level: str = "info", json: bool = False) -> None:
    """Configure structlog with an explicit verbosity.

    Args:
        level: One of "debug", "info", "warning", "error"
        json: Render events as JSON lines instead of console output

    Raises:
        ValueError: If the level is unknown
    """
    try:
        numeric_level = _LEVELS[level.lower()]
    except KeyError:
        raise ValueError(f"Unknown log level: {level}") from None

    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str, logger: structlog.typing.FilteringBoundLogger | None = None):
    """Return the injected logger bound to a component name, or a module logger."""
    if logger is not None:
        return logger.bind(component=name)
    return structlog.get_logger(name)
