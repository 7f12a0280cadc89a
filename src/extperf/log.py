"""Logging setup for extperf."""

import logging
import sys

import structlog


def configure_logging(level: str = "INFO", stream=None) -> None:
    """
    Configure structlog for console output.

    Args:
        level: Minimum level name ("DEBUG", "INFO", ...). Unknown names fall back to INFO.
        stream: Output stream, defaults to stderr so it never mixes with CLI output.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stderr),
        cache_logger_on_first_use=False,
    )
