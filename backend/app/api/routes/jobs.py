"""Job monitoring and reconciliation routes.

Operational endpoints for the AI job machinery:
- live monitor and notification socket statistics
- running a reconciliation sweep on demand (admin only)
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request

from app.api.deps import get_bridge, get_poller, get_registry
from app.api.errors import from_service_error
from app.api.ws.connection_manager import ConnectionRegistry
from app.core.rate_limit import STANDARD_RATE_LIMIT, limiter
from app.core.security import get_current_user, require_role
from app.models.auth import AuthenticatedUser
from app.services.ai.bridge import AIJobBridge
from app.services.exceptions import ServiceError
from app.services.reconciliation import ReconciliationPoller

router = APIRouter(prefix="/jobs", tags=["jobs"])
logger = structlog.get_logger(__name__)


@router.get("/monitors")
@limiter.limit(STANDARD_RATE_LIMIT)
async def get_monitor_stats(
    request: Request,  # Required for rate limiter
    user: AuthenticatedUser = Depends(get_current_user),
    bridge: AIJobBridge = Depends(get_bridge),
    registry: ConnectionRegistry = Depends(get_registry),
    poller: ReconciliationPoller = Depends(get_poller),
) -> dict[str, Any]:
    """Active AI monitors, notification sockets and poller state of this process."""
    return {
        "data": {
            "monitors": bridge.get_stats(),
            "connections": registry.get_stats(),
            "reconciliation": poller.get_stats(),
        }
    }


@router.post("/reconcile")
async def run_reconciliation(
    admin: AuthenticatedUser = Depends(require_role("admin")),
    poller: ReconciliationPoller = Depends(get_poller),
) -> dict[str, Any]:
    """Run one reconciliation sweep now and return its counts."""
    try:
        report = await poller.run_once()
    except ServiceError as e:
        raise from_service_error(e) from None

    logger.info("reconciliation_triggered", admin_id=admin.id, **report.to_dict())
    return {"data": report.to_dict()}
