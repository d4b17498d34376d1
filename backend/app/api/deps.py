"""Dependency injection for API routes.

This module provides FastAPI dependencies for:
- The process-scoped service container (``app.state.container``)
- The services routes call into
- Path parameter parsing shared by the framework routes

``HTTPConnection`` is used instead of ``Request`` so the same
dependencies work for HTTP routes and the notification WebSocket.
"""

import structlog
from fastapi import Depends, Path, status
from starlette.requests import HTTPConnection

from app.api.errors import api_error
from app.api.ws.connection_manager import ConnectionRegistry
from app.models.processing import SubjectKind
from app.services.ai.bridge import AIJobBridge
from app.services.comparison.orchestrator import ComparisonOrchestrator
from app.services.container import ServiceContainer
from app.services.identity_service import IdentityService
from app.services.processing.service import FrameworkProcessingService
from app.services.reconciliation import ReconciliationPoller

logger = structlog.get_logger(__name__)

# Short path names accepted next to the enum values
_KIND_ALIASES = {
    "user": SubjectKind.USER_FRAMEWORK,
    "expert": SubjectKind.EXPERT_FRAMEWORK,
    SubjectKind.USER_FRAMEWORK.value: SubjectKind.USER_FRAMEWORK,
    SubjectKind.EXPERT_FRAMEWORK.value: SubjectKind.EXPERT_FRAMEWORK,
}


def get_container(conn: HTTPConnection) -> ServiceContainer:
    """Get the service container built during application startup."""
    container = getattr(conn.app.state, "container", None)
    if container is None:
        logger.error("service_container_missing")
        raise api_error(
            status.HTTP_503_SERVICE_UNAVAILABLE, "SERVICE_UNAVAILABLE", "Service is starting up"
        )
    return container


def get_registry(container: ServiceContainer = Depends(get_container)) -> ConnectionRegistry:
    return container.registry


def get_bridge(container: ServiceContainer = Depends(get_container)) -> AIJobBridge:
    return container.bridge


def get_identity_service(
    container: ServiceContainer = Depends(get_container),
) -> IdentityService:
    return container.identity


def get_processing_service(
    container: ServiceContainer = Depends(get_container),
) -> FrameworkProcessingService:
    return container.processing


def get_orchestrator(
    container: ServiceContainer = Depends(get_container),
) -> ComparisonOrchestrator:
    return container.orchestrator


def get_poller(container: ServiceContainer = Depends(get_container)) -> ReconciliationPoller:
    return container.poller


def get_subject_kind(
    kind: str = Path(..., description="Framework kind: user or expert"),
) -> SubjectKind:
    """Parse the ``{kind}`` path segment of framework routes."""
    subject_kind = _KIND_ALIASES.get(kind.lower())
    if subject_kind is None:
        raise api_error(
            status.HTTP_404_NOT_FOUND,
            "UNKNOWN_FRAMEWORK_KIND",
            f"Unknown framework kind: {kind}",
            {"allowed": ["user", "expert"]},
        )
    return subject_kind
