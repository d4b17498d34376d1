"""Supabase persistence for comparison jobs (``framework_comparisons``).

At most one pending/in-process comparison may exist per
(user_id, user_framework_id, expert_framework_id). ``find_active`` is the
best-effort check; the partial unique index on that triple catches the
race where two requests pass the check together, and the resulting
unique violation is reported as ComparisonInProgressError.
"""

import asyncio
from datetime import UTC, datetime
from typing import Any

import structlog
from postgrest.exceptions import APIError as PostgrestAPIError
from supabase import Client

from app.models.comparison import ACTIVE_COMPARISON_STATUSES, ComparisonJob, ComparisonStatus
from app.services.exceptions import ComparisonInProgressError, DatabaseNotConfiguredError

logger = structlog.get_logger(__name__)

TABLE = "framework_comparisons"
_ACTIVE = sorted(s.value for s in ACTIVE_COMPARISON_STATUSES)


def _is_unique_violation(error: Exception) -> bool:
    if isinstance(error, PostgrestAPIError) and error.code == "23505":
        return True
    error_str = str(error).lower()
    return "23505" in error_str or "duplicate key" in error_str


class ComparisonRepository:
    """Reads and conditionally updates comparison rows."""

    def __init__(self, client: Client | None):
        self.client = client

    def _table(self):
        if self.client is None:
            raise DatabaseNotConfiguredError()
        return self.client.table(TABLE)

    def _find_active_sync(
        self,
        user_id: str,
        user_framework_id: str,
        expert_framework_id: str,
    ) -> ComparisonJob | None:
        response = (
            self._table()
            .select("*")
            .eq("user_id", user_id)
            .eq("user_framework_id", user_framework_id)
            .eq("expert_framework_id", expert_framework_id)
            .in_("status", _ACTIVE)
            .eq("is_active", True)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return ComparisonJob.from_row(response.data[0])

    async def find_active(
        self,
        user_id: str,
        user_framework_id: str,
        expert_framework_id: str,
    ) -> ComparisonJob | None:
        """Pending or in-process comparison for the same triple, if any."""
        return await asyncio.to_thread(
            self._find_active_sync, user_id, user_framework_id, expert_framework_id
        )

    def _create_sync(self, row: dict[str, Any]) -> ComparisonJob:
        try:
            response = self._table().insert(row).execute()
        except Exception as e:
            if _is_unique_violation(e):
                logger.warning(
                    "comparison_create_conflict",
                    user_id=row["user_id"],
                    user_framework_id=row["user_framework_id"],
                    expert_framework_id=row["expert_framework_id"],
                )
                raise ComparisonInProgressError(None) from None
            raise
        return ComparisonJob.from_row(response.data[0])

    async def create(
        self,
        user_id: str,
        user_framework_id: str,
        user_framework_job_id: str,
        expert_framework_id: str,
        expert_framework_job_id: str,
    ) -> ComparisonJob:
        """Insert a pending comparison.

        Raises:
            ComparisonInProgressError: The unique index rejected the insert.
        """
        row = {
            "user_id": user_id,
            "user_framework_id": user_framework_id,
            "user_framework_job_id": user_framework_job_id,
            "expert_framework_id": expert_framework_id,
            "expert_framework_job_id": expert_framework_job_id,
            "status": ComparisonStatus.PENDING.value,
            "processed_at": datetime.now(UTC).isoformat(),
            "results": [],
            "results_count": 0,
            "is_active": True,
        }
        return await asyncio.to_thread(self._create_sync, row)

    def _get_sync(self, comparison_id: str, user_id: str | None) -> ComparisonJob | None:
        query = self._table().select("*").eq("id", comparison_id).eq("is_active", True)
        if user_id is not None:
            query = query.eq("user_id", user_id)
        response = query.limit(1).execute()
        if not response.data:
            return None
        return ComparisonJob.from_row(response.data[0])

    async def get(self, comparison_id: str, user_id: str | None = None) -> ComparisonJob | None:
        return await asyncio.to_thread(self._get_sync, comparison_id, user_id)

    def _update_sync(self, comparison_id: str, update: dict[str, Any]) -> ComparisonJob | None:
        response = (
            self._table()
            .update(update)
            .eq("id", comparison_id)
            .in_("status", _ACTIVE)
            .execute()
        )
        if not response.data:
            return None
        return ComparisonJob.from_row(response.data[0])

    async def update_active(
        self,
        comparison_id: str,
        update: dict[str, Any],
    ) -> ComparisonJob | None:
        """Update a comparison only while it is still pending or in-process.

        Returns:
            The updated job, or None if it had already reached a terminal status.
        """
        update = {**update, "processed_at": datetime.now(UTC).isoformat()}
        return await asyncio.to_thread(self._update_sync, comparison_id, update)

    def _find_stale_sync(self, cutoff: datetime, limit: int) -> list[ComparisonJob]:
        response = (
            self._table()
            .select("*")
            .in_("status", _ACTIVE)
            .lt("processed_at", cutoff.isoformat())
            .eq("is_active", True)
            .order("processed_at")
            .limit(limit)
            .execute()
        )
        return [ComparisonJob.from_row(row) for row in response.data or []]

    async def find_stale(self, cutoff: datetime, limit: int = 100) -> list[ComparisonJob]:
        """Pending/in-process comparisons last written before ``cutoff``."""
        return await asyncio.to_thread(self._find_stale_sync, cutoff, limit)
