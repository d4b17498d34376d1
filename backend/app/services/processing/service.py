"""Framework AI processing orchestration.

Flow:
    start()  -> storage read -> bridge.upload -> record_upload -> monitor -> notify
    stream   -> interpret_message -> plan_transition -> conditional update -> notify
    poller   -> bridge.check_status -> interpret_status_report -> same path

The live stream and the poller converge on ``apply``, which only writes
when ``plan_transition`` produces a change and the row is still
non-terminal. The notification is delivered by whichever path wins.
"""

from typing import Any

import structlog

from app.api.ws.connection_manager import ConnectionRegistry
from app.core.reliability_logging import log_reconciliation_repaired
from app.models.auth import AuthenticatedUser
from app.models.notification import ProcessingNotification
from app.models.processing import (
    FrameworkRecord,
    LiveStatus,
    ProcessingJob,
    ProcessingStatus,
    SubjectKind,
)
from app.services.ai.bridge import (
    AIJobBridge,
    EventHandler,
    StreamClosed,
    StreamError,
    StreamEvent,
    StreamMessage,
)
from app.services.exceptions import (
    ConflictError,
    FrameworkNotFoundError,
    JobAlreadyActiveError,
    PreconditionFailedError,
)
from app.services.processing.repository import FrameworkRepository
from app.services.processing.transitions import (
    EventKind,
    ProcessingEvent,
    failed,
    interpret_message,
    interpret_status_report,
    plan_transition,
)
from app.services.storage_service import StorageService

logger = structlog.get_logger(__name__)


def _status_message(job: ProcessingJob) -> str:
    if job.status == ProcessingStatus.COMPLETED:
        return f"AI processing completed. {job.item_count} items extracted."
    if job.status == ProcessingStatus.FAILED:
        return "AI processing failed"
    if job.status == ProcessingStatus.UPLOADED:
        return "Framework uploaded for AI processing"
    return "AI processing in progress"


class FrameworkProcessingService:
    """Drives one framework document through AI processing."""

    def __init__(
        self,
        repository: FrameworkRepository,
        bridge: AIJobBridge,
        registry: ConnectionRegistry,
        storage: StorageService,
    ):
        self.repository = repository
        self.bridge = bridge
        self.registry = registry
        self.storage = storage

    async def _get_owned(
        self,
        kind: SubjectKind,
        framework_id: str,
        user: AuthenticatedUser,
    ) -> FrameworkRecord:
        record = await self.repository.get(kind, framework_id, owner_id=user.id)
        if record is None:
            raise FrameworkNotFoundError(framework_id)
        return record

    # -------------------------------------------------------------------------
    # API operations
    # -------------------------------------------------------------------------

    async def start(
        self,
        kind: SubjectKind,
        framework_id: str,
        user: AuthenticatedUser,
    ) -> ProcessingJob:
        """Upload a framework document to the AI service and supervise the job.

        Raises:
            FrameworkNotFoundError: Unknown framework or not owned by the user.
            JobAlreadyActiveError: A non-failed job is already outstanding.
            StorageError: The stored document failed local validation.
            UploadFailure: The AI service rejected or did not take the upload;
                the framework's state is left unchanged.
        """
        record = await self._get_owned(kind, framework_id, user)
        current = record.processing
        if current.job_id and current.status != ProcessingStatus.FAILED:
            raise JobAlreadyActiveError(framework_id, current.status.value)

        document = await self.storage.read_document(record.storage_path)
        result = await self.bridge.upload(kind, document)

        updated = await self.repository.record_upload(kind, framework_id, result.job_id)
        if updated is None:
            logger.warning(
                "framework_upload_lost_race",
                kind=kind.value,
                framework_id=framework_id,
                job_id=result.job_id,
            )
            raise ConflictError(
                "Framework already has an active AI job",
                {"framework_id": framework_id},
            )

        self.watch(updated)
        await self.notify(updated)

        logger.info(
            "framework_processing_started",
            kind=kind.value,
            framework_id=framework_id,
            job_id=result.job_id,
            user_id=user.id,
        )
        return updated.processing

    async def get_job(
        self,
        kind: SubjectKind,
        framework_id: str,
        user: AuthenticatedUser,
    ) -> ProcessingJob:
        """Persisted processing state, for clients re-syncing after reconnect."""
        record = await self._get_owned(kind, framework_id, user)
        return record.processing

    async def check_status(
        self,
        kind: SubjectKind,
        framework_id: str,
        user: AuthenticatedUser,
    ) -> LiveStatus:
        """Ask the AI service for the job's current status. Persists nothing."""
        record = await self._get_owned(kind, framework_id, user)
        job_id = record.processing.job_id
        if not job_id:
            raise PreconditionFailedError("Framework has not been sent for AI processing")

        report = await self.bridge.check_status(kind, job_id)
        return LiveStatus(
            framework_id=framework_id,
            processing=record.processing,
            ai_status=report.status,
            ai_item_count=len(report.items),
            ai_error=report.error,
        )

    # -------------------------------------------------------------------------
    # Stream handling
    # -------------------------------------------------------------------------

    def watch(self, record: FrameworkRecord) -> bool:
        """Start (or keep) the live monitor for a framework's AI job."""
        job_id = record.processing.job_id
        if not job_id:
            return False
        return self.bridge.monitor_job(record.kind, job_id, self._handler(record.kind, record.id))

    def _handler(self, kind: SubjectKind, framework_id: str) -> EventHandler:
        async def on_event(event: StreamEvent) -> None:
            await self.handle_stream_event(kind, framework_id, event)

        return on_event

    async def handle_stream_event(
        self,
        kind: SubjectKind,
        framework_id: str,
        event: StreamEvent,
    ) -> None:
        if isinstance(event, StreamMessage):
            await self.apply(kind, framework_id, interpret_message(event.payload), source="stream")
        elif isinstance(event, StreamError):
            await self.apply(kind, framework_id, failed(event.reason), source="stream")
        elif isinstance(event, StreamClosed):
            # Completion missed here is repaired by the reconciliation poller
            logger.debug(
                "processing_monitor_closed",
                kind=kind.value,
                framework_id=framework_id,
                close_code=event.code,
            )

    async def apply(
        self,
        kind: SubjectKind,
        framework_id: str,
        event: ProcessingEvent,
        source: str,
    ) -> FrameworkRecord | None:
        """Persist an event's transition and notify the owner.

        Returns:
            The updated record, or None if nothing changed.
        """
        if event.kind == EventKind.IGNORED:
            return None

        record = await self.repository.get(kind, framework_id)
        if record is None:
            logger.warning(
                "processing_event_for_missing_framework",
                kind=kind.value,
                framework_id=framework_id,
                source=source,
            )
            return None

        update = plan_transition(record.processing, event)
        if update is None:
            logger.debug(
                "processing_transition_skipped",
                kind=kind.value,
                framework_id=framework_id,
                status=record.processing.status.value,
                event_kind=event.kind.value,
                source=source,
            )
            return None

        updated = await self.repository.apply_update(kind, framework_id, update)
        if updated is None:
            logger.info(
                "processing_transition_lost_race",
                kind=kind.value,
                framework_id=framework_id,
                event_kind=event.kind.value,
                source=source,
            )
            return None

        logger.info(
            "processing_state_changed",
            kind=kind.value,
            framework_id=framework_id,
            job_id=updated.processing.job_id,
            status=updated.processing.status.value,
            extraction_status=updated.processing.control_extraction_status.value,
            source=source,
        )
        await self.notify(updated, event.message)
        return updated

    async def reconcile(self, record: FrameworkRecord) -> str:
        """Re-query a stale job and repair its state.

        Returns:
            "completed", "failed" or "unchanged".
        """
        job_id = record.processing.job_id
        if not job_id:
            return "unchanged"

        report = await self.bridge.check_status(record.kind, job_id)
        event = interpret_status_report(report)
        updated = await self.apply(record.kind, record.id, event, source="reconciliation")
        if updated is None:
            return "unchanged"

        outcome = updated.processing.status.value
        log_reconciliation_repaired(
            subject_id=record.id,
            kind=record.kind.value,
            job_id=job_id,
            outcome=outcome,
            owner_id=updated.owner_id,
        )
        return outcome

    async def notify(self, record: FrameworkRecord, message: str | None = None) -> int:
        """Deliver the record's current processing state to its owner's sockets."""
        if not record.owner_id:
            return 0

        job = record.processing
        completed = job.status == ProcessingStatus.COMPLETED
        frame = ProcessingNotification(
            framework_id=record.id,
            kind=record.kind.value,
            job_id=job.job_id,
            status=job.status.value,
            control_extraction_status=job.control_extraction_status.value,
            message=message or _status_message(job),
            item_count=job.item_count if completed else None,
            extracted_items=job.extracted_items if completed else None,
            error_message=job.error_message,
        )
        payload: dict[str, Any] = frame.to_message()
        return await self.registry.deliver(record.owner_id, payload)
