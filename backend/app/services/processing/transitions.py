"""Processing state transitions.

Pure functions: AI frames and status reports are interpreted into
``ProcessingEvent`` values, and ``plan_transition`` turns an event plus
the current ``ProcessingJob`` into the column update to persist (or None
when nothing should change).

Rules:
- A terminal job (completed or failed) is never changed again. Applying
  ``completed`` twice is a no-op, so the live stream and the
  reconciliation poller can both observe completion safely.
- ``control_extraction_status`` only moves forward while non-terminal
  (pending < started < processing) and becomes terminal together with
  ``status``.
- Extracted items, item count and extracted_at are written in the same
  update that sets ``status = completed``.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from app.models.ai import AIStatusReport, extract_items
from app.models.processing import ExtractionStatus, ProcessingJob, ProcessingStatus

DEFAULT_FAILURE_MESSAGE = "AI processing failed"

_EXTRACTION_ORDER = {
    ExtractionStatus.PENDING: 0,
    ExtractionStatus.STARTED: 1,
    ExtractionStatus.PROCESSING: 2,
}

_PROGRESS_STATUSES = {
    "uploaded": ProcessingStatus.UPLOADED,
    "processing": ProcessingStatus.PROCESSING,
    "in-progress": ProcessingStatus.PROCESSING,
    "in-process": ProcessingStatus.PROCESSING,
    "started": ProcessingStatus.PROCESSING,
    "upload-completed": ProcessingStatus.PROCESSING,
}
_COMPLETED_STATUSES = {"completed", "done"}
_FAILED_STATUSES = {"failed", "error"}


class EventKind(str, Enum):
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"
    IGNORED = "ignored"


@dataclass(frozen=True)
class ProcessingEvent:
    """Something the AI service told us about a job."""

    kind: EventKind
    status: ProcessingStatus | None = None
    extraction_status: ExtractionStatus | None = None
    items: list[Any] = field(default_factory=list)
    error: str | None = None
    message: str | None = None


IGNORED = ProcessingEvent(EventKind.IGNORED)


def _normalize(value: Any) -> str:
    return str(value or "").strip().lower().replace("_", "-")


def _extraction_hint(payload: dict[str, Any]) -> ExtractionStatus | None:
    raw = payload.get("controlExtractionStatus") or payload.get("control_extraction_status")
    if raw is None:
        return None
    try:
        return ExtractionStatus(_normalize(raw))
    except ValueError:
        return None


def completed(items: list[Any], message: str | None = None) -> ProcessingEvent:
    return ProcessingEvent(
        EventKind.COMPLETED,
        status=ProcessingStatus.COMPLETED,
        extraction_status=ExtractionStatus.COMPLETED,
        items=list(items),
        message=message,
    )


def failed(error: str | None) -> ProcessingEvent:
    return ProcessingEvent(
        EventKind.FAILED,
        status=ProcessingStatus.FAILED,
        extraction_status=ExtractionStatus.FAILED,
        error=error or DEFAULT_FAILURE_MESSAGE,
    )


def interpret_message(payload: dict[str, Any]) -> ProcessingEvent:
    """Interpret one JSON frame from a job's live stream.

    A ``completed`` frame without any result list is ignored; the
    reconciliation poller picks the job up from the status endpoint.
    """
    status = _normalize(payload.get("status"))
    message = payload.get("message")

    if status in _COMPLETED_STATUSES:
        items = extract_items(payload)
        if items is None:
            return IGNORED
        return completed(items, message)

    if status in _FAILED_STATUSES:
        return failed(payload.get("error") or message)

    if status in _PROGRESS_STATUSES:
        extraction = _extraction_hint(payload)
        if extraction is None and status != "uploaded":
            extraction = ExtractionStatus.STARTED
        return ProcessingEvent(
            EventKind.PROGRESS,
            status=_PROGRESS_STATUSES[status],
            extraction_status=extraction,
            message=message,
        )

    # Frames that only carry the extraction sub-phase
    extraction = _extraction_hint(payload)
    if extraction is not None and extraction in _EXTRACTION_ORDER:
        return ProcessingEvent(
            EventKind.PROGRESS,
            status=ProcessingStatus.PROCESSING,
            extraction_status=extraction,
            message=message,
        )

    return IGNORED


def interpret_status_report(report: AIStatusReport) -> ProcessingEvent:
    """Interpret a status endpoint response for reconciliation.

    Completion requires a non-empty result list. Anything else that is
    not a failure leaves the job alone.
    """
    status = _normalize(report.status)
    if status in _COMPLETED_STATUSES and report.items:
        return completed(report.items)
    if status in _FAILED_STATUSES or report.error:
        return failed(report.error)
    return IGNORED


def plan_transition(
    job: ProcessingJob,
    event: ProcessingEvent,
    now: datetime | None = None,
) -> dict[str, Any] | None:
    """Column update for applying ``event`` to ``job``, or None for no change.

    The returned dict uses the ``ai_*`` column names of the framework
    tables.
    """
    if event.kind == EventKind.IGNORED or job.is_terminal:
        return None

    now = now or datetime.now(UTC)
    timestamp = now.isoformat()

    if event.kind == EventKind.COMPLETED:
        return {
            "ai_status": ProcessingStatus.COMPLETED.value,
            "ai_extraction_status": ExtractionStatus.COMPLETED.value,
            "ai_extracted_items": event.items,
            "ai_item_count": len(event.items),
            "ai_extracted_at": timestamp,
            "ai_processed_at": timestamp,
            "ai_error_message": None,
        }

    if event.kind == EventKind.FAILED:
        return {
            "ai_status": ProcessingStatus.FAILED.value,
            "ai_extraction_status": ExtractionStatus.FAILED.value,
            "ai_error_message": event.error or DEFAULT_FAILURE_MESSAGE,
            "ai_processed_at": timestamp,
        }

    update: dict[str, Any] = {}

    # uploaded never moves a job back from processing
    if event.status is not None and event.status != job.status:
        if not (
            event.status == ProcessingStatus.UPLOADED
            and job.status == ProcessingStatus.PROCESSING
        ):
            update["ai_status"] = event.status.value

    if event.extraction_status in _EXTRACTION_ORDER:
        current = _EXTRACTION_ORDER.get(job.control_extraction_status, 0)
        if _EXTRACTION_ORDER[event.extraction_status] > current:
            update["ai_extraction_status"] = event.extraction_status.value

    if not update:
        return None

    update["ai_processed_at"] = timestamp
    return update


def apply_update(job: ProcessingJob, update: dict[str, Any]) -> ProcessingJob:
    """Return a copy of ``job`` with a planned column update applied."""
    changes: dict[str, Any] = {}
    column_map = {
        "ai_status": "status",
        "ai_extraction_status": "control_extraction_status",
        "ai_extracted_items": "extracted_items",
        "ai_item_count": "item_count",
        "ai_extracted_at": "extracted_at",
        "ai_processed_at": "processed_at",
        "ai_error_message": "error_message",
        "ai_job_id": "job_id",
    }
    for column, value in update.items():
        if column in column_map:
            changes[column_map[column]] = value
    return ProcessingJob.model_validate({**job.model_dump(), **changes})
