"""
Structured logging for tempstash.

The library never configures logging on import. Applications (and the
``tempstash`` CLI) call :func:`configure_logging` once at startup; the
:class:`~tempstash.stash.Stash` facade receives its logger explicitly at
construction and falls back to :func:`get_logger` only when none is given.

Configuration Flow:
    ::

        configure_logging(level="INFO", json_format=None)
            │
            ▼
        structlog processor chain:
          1. merge_contextvars
          2. add_log_level / TimeStamper
          3. _add_service_metadata
          4. JSONRenderer (not a TTY) or ConsoleRenderer (TTY)

Usage:
    >>> from tempstash.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG")
    >>> logger = get_logger("tempstash")
    >>> logger.info("stash_connected", url="sqlite:///stash.db")

Tags:
    logging, structlog, observability, tempstash
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_SERVICE_NAME = "tempstash"


def _add_service_metadata(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service", _SERVICE_NAME)
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "tempstash",
) -> None:
    """Configure structlog for an application embedding tempstash.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name added to every event
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level!r}")

    if json_format is None:
        json_format = not sys.stderr.isatty()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if json_format:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None, **initial_values: Any) -> Any:
    """Get a structlog logger, optionally pre-bound with context values."""
    return structlog.get_logger(name, **initial_values)


__all__ = [
    "configure_logging",
    "get_logger",
]
