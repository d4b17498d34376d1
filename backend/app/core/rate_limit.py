"""Rate limiting configuration for API endpoints.

Uses slowapi with in-memory storage. Limits are process-local, which
matches the process-local monitor and connection state of this service.

Rate Limit Tiers:
- STATUS_CHECK: on-demand AI status checks (60/min) - each one is an
  outbound call to the AI service
- STANDARD: framework and comparison operations (100/min)
- HEALTH: monitoring endpoints (300/min)
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from app.core.config import get_settings
from app.core.correlation import get_correlation_id

if TYPE_CHECKING:
    from starlette.requests import Request as StarletteRequest

logger = structlog.get_logger(__name__)

settings = get_settings()


def _get_rate_limit_key(request: StarletteRequest) -> str:
    """Get rate limit key from request.

    Uses the user_id bound by get_current_user when available so that
    authenticated users get per-user limits, otherwise the client IP.

    Args:
        request: FastAPI request object.

    Returns:
        Rate limit key string.
    """
    ctx = structlog.contextvars.get_contextvars()
    if ctx.get("user_id"):
        return f"user:{ctx['user_id']}"

    return get_remote_address(request)


limiter = Limiter(
    key_func=_get_rate_limit_key,
    storage_uri="memory://",
    default_limits=["1000/hour"],
)


def _get_rate_limit_str(value: int) -> str:
    """Convert rate limit integer to slowapi format string."""
    return f"{value}/minute"


STATUS_CHECK_RATE_LIMIT = _get_rate_limit_str(settings.rate_limit_status_check)
STANDARD_RATE_LIMIT = _get_rate_limit_str(settings.rate_limit_default)
HEALTH_RATE_LIMIT = _get_rate_limit_str(settings.rate_limit_health)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return the project error envelope with standard rate limit headers.

    Args:
        request: The FastAPI request object.
        exc: The RateLimitExceeded exception.

    Returns:
        JSONResponse with 429 status.
    """
    # All tiers are per-minute windows
    retry_after = 60
    reset_time = datetime.now(UTC).timestamp() + retry_after

    limit = None
    if isinstance(exc.detail, str):
        # "30 per 1 minute"
        parts = exc.detail.split()
        if "per" in parts and parts.index("per") > 0:
            try:
                limit = int(parts[parts.index("per") - 1])
            except ValueError:
                limit = None

    logger.warning(
        "rate_limit_exceeded",
        endpoint=request.url.path,
        method=request.method,
        limit=limit,
        client_ip=get_remote_address(request),
        correlation_id=get_correlation_id(),
    )

    headers = {
        "Retry-After": str(retry_after),
        "X-RateLimit-Remaining": "0",
        "X-RateLimit-Reset": str(int(reset_time)),
    }
    if limit is not None:
        headers["X-RateLimit-Limit"] = str(limit)

    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": "RATE_LIMIT_EXCEEDED",
                "message": f"Rate limit exceeded. Try again in {retry_after} seconds.",
                "details": {
                    "limit": limit,
                    "retry_after": retry_after,
                },
            }
        },
        headers=headers,
    )
