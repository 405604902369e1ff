"""
Structured logging configuration using structlog.

This module provides centralized logging configuration for the worker loop,
the Celery tasks and the API. It supports both development (human-readable)
and production (JSON) formats.
"""

import logging
import sys
from typing import Any, Dict, MutableMapping, Optional

import structlog
from structlog.types import Processor

from bloodwatch.core.config import settings

# Event keys that may carry a webhook URL or chat id
SENSITIVE_TARGET_KEYS = ("target", "webhook_url", "chat_id")

# These log full request URLs at INFO, webhook tokens included
NOISY_HTTP_LOGGERS = ("httpx", "httpcore")


def redact_targets(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor masking notifier targets passed as plain values."""
    for key in SENSITIVE_TARGET_KEYS:
        value = event_dict.get(key)
        if value is not None:
            event_dict[key] = mask_target(str(value))
    return event_dict


def configure_logging() -> None:
    """
    Configure structured logging for the worker, Celery and the API.

    - Development: colored console output
    - Anything else: one JSON object per line
    - Level from LOG_LEVEL, INFO when unrecognized
    """
    is_development = settings.APP_ENV.lower() in ("development", "dev", "local")
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )
    for name in NOISY_HTTP_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    processors: list[Processor] = [
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        # file:line of the log call
        structlog.processors.CallsiteParameterAdder(
            parameters=[
                structlog.processors.CallsiteParameter.FILENAME,
                structlog.processors.CallsiteParameter.LINENO,
            ]
        ),
        redact_targets,
    ]

    if is_development:
        processors.extend(
            [
                structlog.dev.set_exc_info,
                structlog.dev.ConsoleRenderer(colors=True),
            ]
        )
    else:
        # Tracebacks rendered into the event before JSON encoding
        processors.extend(
            [
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ]
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def add_cycle_context(source_key: str, cycle_id: Optional[str] = None) -> Dict[str, Any]:
    """Add ingestion-cycle context to logs."""
    context: Dict[str, Any] = {"source_key": source_key}
    if cycle_id:
        context["cycle_id"] = cycle_id
    return context


def mask_target(target: Optional[str]) -> str:
    """Mask a notifier target (webhook URL or chat id) for log output."""
    trimmed = (target or "").strip()
    if not trimmed:
        return "***"
    if "://" in trimmed:
        scheme, _, rest = trimmed.partition("://")
        host = rest.split("/", 1)[0]
        return f"{scheme}://{host}/***" if host else "***"
    suffix = trimmed if len(trimmed) <= 4 else trimmed[-4:]
    return f"***{suffix}"
