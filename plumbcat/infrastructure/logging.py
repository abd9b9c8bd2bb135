"""Structured logging configuration using structlog.

JSON lines for deployed services and import jobs, colored console
output for local development.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import Processor

from plumbcat.infrastructure.config import settings


def setup_logging(json_output: bool | None = None, level: str | None = None) -> None:
    """Configure structlog for the application.

    Args:
        json_output: Force JSON rendering. Defaults to ``settings.log_json``.
        level: Log level name. Defaults to ``settings.log_level``.
    """
    use_json = settings.log_json if json_output is None else json_output
    level_name = (level or settings.log_level).upper()
    log_level = logging.getLevelName(level_name)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if use_json:
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=log_level,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.debug else logging.WARNING
    )


def get_logger(name: str | None = None, **initial_context: Any) -> structlog.BoundLogger:
    """Get a logger with initial context bound.

    Args:
        name: Logger name (usually __name__)
        **initial_context: Context to bind, e.g. ``run_id``.

    Returns:
        Bound structlog logger
    """
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger
