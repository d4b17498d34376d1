"""Health check endpoints."""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request

from app.api.deps import get_container
from app.core.config import Settings, get_settings
from app.core.rate_limit import HEALTH_RATE_LIMIT, limiter
from app.services.container import ServiceContainer

router = APIRouter(prefix="/health", tags=["health"])
logger = structlog.get_logger(__name__)


@router.get("")
@limiter.limit(HEALTH_RATE_LIMIT)
async def health_check(
    request: Request,  # Required for rate limiter
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """Basic health check endpoint.

    Returns:
        Health status with version info.
    """
    return {
        "data": {
            "status": "healthy",
            "service": "framework-compare-backend",
            "version": settings.api_version,
        }
    }


@router.get("/ready")
@limiter.limit(HEALTH_RATE_LIMIT)
async def readiness_check(
    request: Request,  # Required for rate limiter
    settings: Settings = Depends(get_settings),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Readiness check with dependency status.

    Returns:
        Detailed readiness status.
    """
    checks: dict[str, bool] = {
        "supabase_configured": settings.is_configured,
        "ai_service_configured": settings.is_ai_configured,
        "reconciliation_running": container.poller.is_running
        or not settings.reconciliation_enabled,
    }

    all_healthy = all(checks.values())

    logger.debug("readiness_check", checks=checks, healthy=all_healthy)

    return {
        "data": {
            "status": "ready" if all_healthy else "not_ready",
            "checks": checks,
        }
    }


@router.get("/live")
async def liveness_check() -> dict[str, Any]:
    """Liveness check endpoint.

    Simple check to verify the service is running.

    Returns:
        Simple alive status.
    """
    return {
        "data": {
            "status": "alive",
        }
    }
