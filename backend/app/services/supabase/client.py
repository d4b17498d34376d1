"""Supabase client for the framework and comparison tables.

The backend connects with the service role key, so row level security is
bypassed. Ownership is enforced in the repositories instead: framework
lookups filter on ``uploaded_by`` and comparison lookups on ``user_id``.

supabase-py is synchronous. Repositories and the storage service wrap
each call in ``asyncio.to_thread`` so the loop carrying notification
sockets and AI job monitors never blocks on a database round trip.

The underlying httpx client is pinned to HTTP/1.1. Multiplexed HTTP/2
streams through the Supabase edge were dropped mid-request
(ConnectionTerminated) under the reconciliation poller's burst of reads.
"""

from functools import lru_cache

import httpx
import structlog
from supabase import Client, create_client
from supabase.lib.client_options import SyncClientOptions

from app.core.config import Settings, get_settings

logger = structlog.get_logger(__name__)


def _build_http_client(settings: Settings) -> httpx.Client:
    timeout = httpx.Timeout(settings.supabase_timeout_seconds, connect=10.0)
    return httpx.Client(
        transport=httpx.HTTPTransport(retries=settings.supabase_http_retries, http2=False),
        timeout=timeout,
        limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        http2=False,
    )


def create_supabase_client(settings: Settings) -> Client | None:
    """Create a Supabase client from explicit settings.

    The service key is preferred; the anon key is accepted for local
    setups where RLS policies already expose the tables.

    Returns:
        The client, or None when the URL or both keys are missing. Health
        readiness and the repositories treat None as "database not
        configured" rather than failing at startup.
    """
    key = settings.supabase_service_key or settings.supabase_key
    if not settings.supabase_url or not key:
        logger.warning(
            "supabase_not_configured",
            has_url=bool(settings.supabase_url),
            has_service_key=bool(settings.supabase_service_key),
        )
        return None

    try:
        client = create_client(
            supabase_url=settings.supabase_url,
            supabase_key=key,
            options=SyncClientOptions(httpx_client=_build_http_client(settings)),
        )
    except Exception as e:
        logger.error("supabase_client_creation_failed", error=str(e))
        return None

    logger.info(
        "supabase_client_created",
        using_service_key=bool(settings.supabase_service_key),
        bucket=settings.storage_bucket,
    )
    return client


@lru_cache(maxsize=1)
def get_supabase_client() -> Client | None:
    """Process-wide client built from the cached settings."""
    return create_supabase_client(get_settings())
