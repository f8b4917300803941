"""
Structured logging for stackup.

Configures structlog once at CLI start-up and hands out loggers to every
module. Log events are machine-friendly key/value records
(``stage.started``, ``health.timed_out``, ``provision.step``); the operator-
facing status lines are rendered separately by the CLI with rich.

Usage Flow:
    ::

        configure_logging(level="INFO")
        logger = get_logger(__name__)
        with LogContext(run_id="abc123", stage="start_database"):
            logger.info("health.waiting", unit="database", timeout=120)

Features:
    - JSON output when the stream is not a TTY, colored console otherwise
    - Context propagation (run_id, stage) via contextvars
    - Service-level metadata on every event

Tags:
    logging, structlog, observability, stackup
"""

from __future__ import annotations

import logging
import sys
from enum import Enum
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_SERVICE_NAME = "stackup"


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def _add_service_metadata(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service", _SERVICE_NAME)
    return event_dict


def configure_logging(
    level: str | LogLevel = LogLevel.INFO,
    json_format: bool | None = None,
    service: str = "stackup",
    stream: Any = None,
) -> None:
    """Configure structured logging for the process.

    Args:
        level: Log level name, case-insensitive; ValueError if unknown
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name included in every event
        stream: Output stream, defaults to stderr so stdout stays clean for reports
    """
    level = LogLevel(level.upper())
    global _SERVICE_NAME
    _SERVICE_NAME = service
    stream = stream or sys.stderr

    if json_format is None:
        json_format = not stream.isatty()

    processors: list[Processor] = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if json_format:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.value)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Context manager for scoped logging context.

    Example:
        with LogContext(run_id="abc123"):
            logger.info("stage.started")
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args) -> None:
        unbind_context(*self._context.keys())


__all__ = [
    "LogContext",
    "LogLevel",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "unbind_context",
]
