"""Identity collaborator used to authenticate notification sockets.

A user's ``token_version`` is bumped whenever they log out everywhere.
Tokens issued before the bump carry an older version and are refused.
"""

import asyncio

import structlog
from supabase import Client

from app.services.exceptions import DatabaseNotConfiguredError

logger = structlog.get_logger(__name__)


class IdentityService:
    """Reads user identity attributes from the ``users`` table."""

    def __init__(self, client: Client | None):
        self.client = client

    def _fetch_token_version(self, user_id: str) -> int | None:
        if self.client is None:
            raise DatabaseNotConfiguredError()

        response = (
            self.client.table("users")
            .select("id, token_version")
            .eq("id", user_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return int(response.data[0].get("token_version") or 0)

    async def get_token_version(self, user_id: str) -> int | None:
        """Current token version for a user, or None if the user is unknown."""
        return await asyncio.to_thread(self._fetch_token_version, user_id)
