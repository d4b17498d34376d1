"""Supabase persistence for framework processing state.

Every write that changes ``ai_status`` is conditional on the current
status, so concurrent writers (live stream vs reconciliation poller)
cannot overwrite a terminal state or apply completion twice:

    UPDATE {table} SET ... WHERE id = ? AND ai_status IN ('pending','uploaded','processing')

The supabase-py client is synchronous; each call runs in a worker thread.
"""

import asyncio
from datetime import UTC, datetime
from typing import Any

import structlog
from supabase import Client

from app.models.processing import (
    NON_TERMINAL_STATUSES,
    RECONCILABLE_STATUSES,
    SUBJECT_CONFIG,
    ExtractionStatus,
    FrameworkRecord,
    ProcessingStatus,
    SubjectKind,
)
from app.services.exceptions import DatabaseNotConfiguredError

logger = structlog.get_logger(__name__)

_NON_TERMINAL = sorted(s.value for s in NON_TERMINAL_STATUSES)
_RECONCILABLE = sorted(s.value for s in RECONCILABLE_STATUSES)


class FrameworkRepository:
    """Reads and conditionally updates ``user_frameworks``/``expert_frameworks``."""

    def __init__(self, client: Client | None):
        self.client = client

    def _table(self, kind: SubjectKind):
        if self.client is None:
            raise DatabaseNotConfiguredError()
        return self.client.table(SUBJECT_CONFIG[kind].table)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _get_sync(
        self,
        kind: SubjectKind,
        framework_id: str,
        owner_id: str | None,
    ) -> FrameworkRecord | None:
        query = self._table(kind).select("*").eq("id", framework_id).eq("is_active", True)
        if owner_id is not None:
            query = query.eq("uploaded_by", owner_id)
        response = query.limit(1).execute()
        if not response.data:
            return None
        return FrameworkRecord.from_row(kind, response.data[0])

    async def get(
        self,
        kind: SubjectKind,
        framework_id: str,
        owner_id: str | None = None,
    ) -> FrameworkRecord | None:
        """Fetch an active framework, optionally restricted to its owner."""
        return await asyncio.to_thread(self._get_sync, kind, framework_id, owner_id)

    def _find_stale_sync(
        self,
        kind: SubjectKind,
        cutoff: datetime,
        limit: int,
    ) -> list[FrameworkRecord]:
        response = (
            self._table(kind)
            .select("*")
            .in_("ai_status", _RECONCILABLE)
            .lt("ai_processed_at", cutoff.isoformat())
            .not_.is_("ai_job_id", "null")
            .eq("is_active", True)
            .order("ai_processed_at")
            .limit(limit)
            .execute()
        )
        return [FrameworkRecord.from_row(kind, row) for row in response.data or []]

    async def find_stale(
        self,
        kind: SubjectKind,
        cutoff: datetime,
        limit: int = 100,
    ) -> list[FrameworkRecord]:
        """Jobs in uploaded/processing with a job id, last written before ``cutoff``."""
        return await asyncio.to_thread(self._find_stale_sync, kind, cutoff, limit)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _record_upload_sync(
        self,
        kind: SubjectKind,
        framework_id: str,
        job_id: str,
        status: ProcessingStatus,
        extraction_status: ExtractionStatus,
    ) -> FrameworkRecord | None:
        now = datetime.now(UTC).isoformat()
        response = (
            self._table(kind)
            .update(
                {
                    "ai_job_id": job_id,
                    "ai_status": status.value,
                    "ai_extraction_status": extraction_status.value,
                    "ai_processed_at": now,
                    "ai_error_message": None,
                    "ai_extracted_items": [],
                    "ai_item_count": 0,
                    "ai_extracted_at": None,
                }
            )
            .eq("id", framework_id)
            # New job only when none is outstanding (re-upload after failure is allowed)
            .or_("ai_job_id.is.null,ai_status.eq.failed")
            .execute()
        )
        if not response.data:
            return None
        return FrameworkRecord.from_row(kind, response.data[0])

    async def record_upload(
        self,
        kind: SubjectKind,
        framework_id: str,
        job_id: str,
        status: ProcessingStatus = ProcessingStatus.UPLOADED,
        extraction_status: ExtractionStatus = ExtractionStatus.PENDING,
    ) -> FrameworkRecord | None:
        """Attach a freshly uploaded AI job to a framework.

        Returns:
            The updated record, or None if another non-failed job got there first.
        """
        record = await asyncio.to_thread(
            self._record_upload_sync,
            kind,
            framework_id,
            job_id,
            status,
            extraction_status,
        )
        logger.info(
            "framework_upload_recorded",
            kind=kind.value,
            framework_id=framework_id,
            job_id=job_id,
            applied=record is not None,
        )
        return record

    def _apply_update_sync(
        self,
        kind: SubjectKind,
        framework_id: str,
        update: dict[str, Any],
    ) -> FrameworkRecord | None:
        response = (
            self._table(kind)
            .update(update)
            .eq("id", framework_id)
            .in_("ai_status", _NON_TERMINAL)
            .execute()
        )
        if not response.data:
            return None
        return FrameworkRecord.from_row(kind, response.data[0])

    async def apply_update(
        self,
        kind: SubjectKind,
        framework_id: str,
        update: dict[str, Any],
    ) -> FrameworkRecord | None:
        """Apply a planned transition if the job is still non-terminal.

        Returns:
            The updated record, or None when the row was already terminal
            (another path won the race).
        """
        return await asyncio.to_thread(self._apply_update_sync, kind, framework_id, update)

    def _append_summary_sync(self, framework_id: str, summary: dict[str, Any]) -> bool:
        if self.client is None:
            raise DatabaseNotConfiguredError()
        # Append and duplicate check must stay a single statement
        response = self.client.rpc(
            "append_comparison_summary",
            {"p_framework_id": framework_id, "p_summary": summary},
        ).execute()
        return response.data is True

    async def append_comparison_summary(
        self,
        framework_id: str,
        summary: dict[str, Any],
    ) -> bool:
        """Append a comparison summary to a user framework's result list.

        The append and its comparisonId check run in one database statement
        (``append_comparison_summary``), so concurrent completions for the
        same framework each land exactly once.

        Returns:
            True if the summary was appended.
        """
        appended = await asyncio.to_thread(self._append_summary_sync, framework_id, summary)
        logger.info(
            "comparison_summary_appended" if appended else "comparison_summary_skipped",
            framework_id=framework_id,
            comparison_id=summary.get("comparisonId"),
        )
        return appended
