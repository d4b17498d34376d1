"""Process-scoped service graph.

Built once in the FastAPI lifespan and stored on ``app.state.container``.
The connection registry and the bridge's monitor map are process-local:
they do not survive a restart, and a multi-instance deployment only
monitors the jobs started by each instance (the poller covers the rest).

Shutdown order: stop the poller, close every AI monitor (bounded by
``monitor_shutdown_timeout``), then close the AI HTTP client.
"""

from dataclasses import dataclass

import structlog
from supabase import Client

from app.api.ws.connection_manager import ConnectionRegistry
from app.core.config import Settings, get_settings
from app.services.ai.bridge import AIJobBridge, WSConnector
from app.services.ai.client import AIServiceClient
from app.services.comparison.orchestrator import ComparisonOrchestrator
from app.services.comparison.repository import ComparisonRepository
from app.services.identity_service import IdentityService
from app.services.processing.repository import FrameworkRepository
from app.services.processing.service import FrameworkProcessingService
from app.services.reconciliation import ReconciliationPoller
from app.services.storage_service import StorageService
from app.services.supabase.client import create_supabase_client

logger = structlog.get_logger(__name__)


@dataclass
class ServiceContainer:
    """Everything the routes and background tasks share."""

    settings: Settings
    registry: ConnectionRegistry
    ai_client: AIServiceClient
    bridge: AIJobBridge
    identity: IdentityService
    storage: StorageService
    frameworks: FrameworkRepository
    comparisons: ComparisonRepository
    processing: FrameworkProcessingService
    orchestrator: ComparisonOrchestrator
    poller: ReconciliationPoller

    async def startup(self) -> None:
        if self.settings.reconciliation_enabled and self.settings.is_configured:
            await self.poller.start()
        else:
            logger.info(
                "reconciliation_poller_disabled",
                enabled=self.settings.reconciliation_enabled,
                database_configured=self.settings.is_configured,
            )

    async def shutdown(self) -> None:
        await self.poller.stop()
        await self.bridge.close_all(self.settings.monitor_shutdown_timeout)
        await self.ai_client.aclose()
        logger.info("service_container_shutdown")


def build_container(
    settings: Settings | None = None,
    supabase_client: Client | None = None,
    ai_client: AIServiceClient | None = None,
    connector: WSConnector | None = None,
) -> ServiceContainer:
    """Wire the service graph.

    Args:
        settings: Optional settings override.
        supabase_client: Optional Supabase client. Built from ``settings`` if not provided.
        ai_client: Optional AI HTTP client.
        connector: Optional WebSocket connector for the bridge.
    """
    settings = settings or get_settings()
    client = supabase_client if supabase_client is not None else create_supabase_client(settings)

    registry = ConnectionRegistry()
    ai_client = ai_client or AIServiceClient(settings)
    bridge = AIJobBridge(ai_client, settings, connector=connector)
    identity = IdentityService(client)
    storage = StorageService(client, settings)
    frameworks = FrameworkRepository(client)
    comparisons = ComparisonRepository(client)
    processing = FrameworkProcessingService(frameworks, bridge, registry, storage)
    orchestrator = ComparisonOrchestrator(comparisons, frameworks, bridge, registry, settings)
    poller = ReconciliationPoller(frameworks, processing, comparisons, orchestrator, settings)

    return ServiceContainer(
        settings=settings,
        registry=registry,
        ai_client=ai_client,
        bridge=bridge,
        identity=identity,
        storage=storage,
        frameworks=frameworks,
        comparisons=comparisons,
        processing=processing,
        orchestrator=orchestrator,
        poller=poller,
    )
