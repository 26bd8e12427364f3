"""Structured logging setup.

All modules log through structlog with snake_case event names and keyword
fields, e.g. ``log.info("watcher_refreshed", watcher_id=...)``.
"""

from __future__ import annotations

import logging
import sys

import structlog


def setup_logging(json_output: bool = True, level: str = "INFO") -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        json_output: Render log lines as JSON (True) or for a console (False).
        level: Minimum log level name.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    # discord.py and uvicorn log through the stdlib
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=log_level,
        force=True,
    )

    renderer: structlog.typing.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> structlog.typing.FilteringBoundLogger:
    """Get a logger bound to a component name.

    Args:
        name: Component name, e.g. "watchers".

    Returns:
        A structlog bound logger.
    """
    return structlog.get_logger().bind(component=name)
