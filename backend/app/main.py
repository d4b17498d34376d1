"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from slowapi.errors import RateLimitExceeded

from app.api.errors import register_exception_handlers
from app.api.routes import comparisons, frameworks, health, jobs, ws
from app.core.config import get_settings
from app.core.correlation import CorrelationMiddleware
from app.core.logging import configure_logging
from app.core.rate_limit import limiter, rate_limit_exceeded_handler
from app.services.container import build_container

# Configure structured logging on module load
configure_logging()

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler.

    Builds the process-scoped service container (unless one was already
    installed on ``app.state``), starts the reconciliation poller, and on
    shutdown closes every AI monitor before the process exits.
    """
    logger.info("application_starting", app_name=app.title)

    settings = get_settings()
    if not settings.is_configured:
        logger.warning(
            "application_not_fully_configured",
            message="Supabase credentials not set. Persistence will be unavailable.",
        )
    if not settings.is_ai_configured:
        logger.warning(
            "ai_service_not_configured",
            message="AI_BASE_URL not set. AI processing will be unavailable.",
            hint="Set AI_BASE_URL in .env file",
        )

    container = getattr(app.state, "container", None)
    if container is None:
        container = build_container(settings)
        app.state.container = container

    await container.startup()

    yield

    logger.info("application_shutting_down")
    try:
        await container.shutdown()
    except Exception as e:
        logger.warning("service_container_shutdown_failed", error=str(e))


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Framework AI processing and comparison - Backend API",
        version=settings.api_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    # Custom OpenAPI schema with Bearer token auth
    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema
        openapi_schema = get_openapi(
            title=settings.app_name,
            version=settings.api_version,
            description="Framework AI processing and comparison - Backend API",
            routes=app.routes,
        )
        openapi_schema.setdefault("components", {})["securitySchemes"] = {
            "BearerAuth": {
                "type": "http",
                "scheme": "bearer",
                "bearerFormat": "JWT",
            }
        }
        openapi_schema["security"] = [{"BearerAuth": []}]
        app.openapi_schema = openapi_schema
        return app.openapi_schema

    app.openapi = custom_openapi

    # Middleware execution order is LIFO (last added runs first):
    # CORS is added last so its headers reach 401/403/500 responses too
    app.add_middleware(CorrelationMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Correlation-ID"],
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    register_exception_handlers(app)

    app.include_router(health.router, prefix="/api")
    app.include_router(frameworks.router, prefix="/api")
    app.include_router(comparisons.router, prefix="/api")
    app.include_router(jobs.router, prefix="/api")

    # Notification sockets live at /ws/{relay}
    app.include_router(ws.router)

    return app


# Create the application instance
app = create_app()


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint.

    Returns:
        Welcome message with API documentation link.
    """
    payload: dict[str, str] = {
        "message": "Framework Compare Backend API",
        "health": "/api/health",
    }

    if get_settings().debug:
        payload["docs"] = "/docs"

    return payload
