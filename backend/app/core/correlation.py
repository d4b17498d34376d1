"""Correlation ID middleware for request tracing.

Each HTTP request gets a correlation_id (taken from the X-Correlation-ID
header or freshly generated) that is bound to structlog's contextvars for
the duration of the request and echoed back in the response headers.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

CORRELATION_HEADER = "X-Correlation-ID"


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Bind a correlation_id to every log line emitted while serving a request."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_HEADER] = correlation_id
            return response
        finally:
            # Prevent leakage into the next request handled by this task
            structlog.contextvars.unbind_contextvars("correlation_id", "user_id")


def get_correlation_id() -> str | None:
    """Get the current correlation_id from context.

    Returns:
        The current correlation_id, or None outside a request.
    """
    return structlog.contextvars.get_contextvars().get("correlation_id")
