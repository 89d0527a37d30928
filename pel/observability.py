"""
Logging setup for applications embedding pel.
"""

import logging
import sys

import structlog

from .config import load_config


def configure_logging(level=None):
    """
    Configures structured logging for pel.

    ``level`` defaults to ``SessionConfig.log_level`` (``PEL_LOG_LEVEL``).

    Console rendering on a TTY, JSON lines otherwise; always on stderr so
    stdout stays free for the host application.
    """
    if level is None:
        level = load_config().log_level

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if sys.stderr.isatty():
        processors = shared_processors + [structlog.dev.ConsoleRenderer()]
    else:
        processors = shared_processors + [structlog.processors.JSONRenderer()]

    numeric_level = logging.getLevelName(str(level).upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Route stdlib logging (jupyter_client, traitlets) to the same stream
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level)

    return structlog.get_logger()
