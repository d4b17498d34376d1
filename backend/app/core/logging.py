"""Structured logging configuration using structlog.

Development (DEBUG=true) renders colored console lines; everything else
emits one JSON object per event so log shippers can index the keyword
context (job_key, user_id, correlation_id, ...) directly.

The HTTP and WebSocket client libraries log every request at INFO. AI
status polling and monitor heartbeats would drown the service's own
events, so those loggers are capped at ``third_party_log_level``.
"""

from __future__ import annotations

import logging
import sys
from typing import cast

import structlog

from app.core.config import Settings, get_settings

NOISY_LOGGERS = ("httpx", "httpcore", "hpack", "aiohttp.client", "aiohttp.access", "websockets")


def _resolve_level(name: str, default: int) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else default


def configure_logging(settings: Settings | None = None) -> None:
    """Configure structlog and the standard library root logger."""
    settings = settings or get_settings()

    default_level = logging.DEBUG if settings.debug else logging.INFO
    log_level = _resolve_level(settings.log_level, default_level) if settings.log_level else default_level

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    third_party_level = _resolve_level(settings.third_party_log_level, logging.WARNING)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.debug:
        processors: list[structlog.types.Processor] = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            # JSONRenderer must be last
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name. If None, uses the calling module's name.

    Returns:
        A structured logger instance.
    """
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))
