"""
Structured logging configuration for the object cache.

This module provides a centralized setup for structured logging using
`structlog`. Log entries are enriched with the service name, the logger name
and the cache session name, and are rendered either as JSON or as console
key/value text depending on the monitoring settings.
"""

import logging
import sys
from functools import partial
from typing import Any, Dict, Optional

import structlog

from objcache.core.config import Settings, get_settings


def setup_structured_logging(settings: Optional[Settings] = None) -> None:
    """Configures structured logging for the process.

    The stdlib root logger is configured first so that `structlog` output and
    third-party library output (pymemcache) share one stream and level. The
    cache ``debug`` flag forces the DEBUG level so that every cache operation
    is logged.

    Args:
        settings: Settings to configure from; defaults to the process settings.
    """
    settings = settings or get_settings()
    level = getattr(logging, settings.effective_log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )
    logging.getLogger().setLevel(level)

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.monitoring.log_json
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    shared_processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        partial(
            _add_service_context,
            service=settings.monitoring.service_name,
            session=settings.cache.persistent_id,
        ),
        renderer,
    ]

    structlog.configure(
        processors=shared_processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _add_service_context(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any],
    service: str,
    session: str,
) -> Dict[str, Any]:
    """Adds service context to log entries.

    Args:
        logger: The standard library logger instance.
        method_name: The name of the logging method (e.g., 'info', 'error').
        event_dict: The log entry to be enriched.
        service: Service name bound when logging was configured.
        session: Cache session name bound when logging was configured.

    Returns:
        The enriched log entry dictionary.
    """
    event_dict.setdefault("service", service)
    event_dict.setdefault("session", session)
    event_dict.setdefault("component", getattr(logger, "name", "unknown"))

    if method_name in ("error", "exception", "critical"):
        event_dict.setdefault("error_type", "cache_error")
        if "exc_info" in event_dict and method_name == "exception":
            event_dict["error_type"] = "exception"

    return event_dict


def log_cache_operation(
    logger,
    operation: str,
    wire_key: Optional[str],
    success: bool,
    duration_ms: Optional[float] = None,
    error: Optional[str] = None,
) -> None:
    """Logs a standardized message for a cache operation.

    Successful operations are logged at DEBUG so they only appear when the
    cache ``debug`` flag (or a DEBUG log level) is active. Failures carrying
    an error message are logged as warnings.

    Args:
        logger: The `structlog` logger instance to use.
        operation: The cache operation (e.g., 'get', 'set', 'incr').
        wire_key: The namespaced key sent to the backing store, if any.
        success: Whether the operation succeeded.
        duration_ms: The duration of the round trip in milliseconds.
        error: An error message if the operation failed.
    """
    log_data = {
        "operation": operation,
        "wire_key": wire_key,
        "success": success,
    }
    if duration_ms is not None:
        log_data["duration_ms"] = round(duration_ms, 3)

    if error:
        log_data["error"] = error
        logger.warning("Cache operation failed", **log_data)
    else:
        logger.debug("Cache operation completed", **log_data)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Retrieves a `structlog` logger instance.

    Args:
        name: The name of the logger, typically the module's `__name__`.

    Returns:
        A configured `structlog` logger instance.
    """
    return structlog.get_logger(name)


def get_contextual_logger(name: str, **extra_context) -> structlog.stdlib.BoundLogger:
    """Retrieves a logger with additional, permanently bound context.

    Args:
        name: The name of the logger, typically the module's `__name__`.
        **extra_context: Keyword arguments to be bound to the logger's context.

    Returns:
        A `structlog` logger with the specified context bound to it.
    """
    logger = structlog.get_logger(name)
    return logger.bind(**extra_context) if extra_context else logger
