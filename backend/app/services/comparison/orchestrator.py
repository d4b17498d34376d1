"""Comparison orchestration over two completed framework jobs.

A comparison is accepted only when the user framework and the expert
framework have both completed AI processing and no other comparison for
the same triple is pending or in-process. The AI comparison stream is
supervised by the bridge under the key ``comparison:<id>``.

On completion the full result list and its mean score are stored on the
comparison, a summary is appended to the user framework's
``comparison_results`` and the owner is notified. An error frame, a
stream error or a close before completion marks the comparison ``error``.
"""

import statistics
from datetime import UTC, datetime
from typing import Any

import structlog

from app.api.ws.connection_manager import ConnectionRegistry
from app.core.config import Settings, get_settings
from app.core.reliability_logging import log_comparison_monitor_lost
from app.models.ai import extract_items
from app.models.auth import AuthenticatedUser
from app.models.comparison import ComparisonJob, ComparisonStatus, ComparisonSummary
from app.models.notification import ComparisonNotification
from app.models.processing import FrameworkRecord, ProcessingStatus, SubjectKind
from app.services.ai.bridge import (
    AIJobBridge,
    EventHandler,
    StreamClosed,
    StreamError,
    StreamEvent,
    StreamMessage,
    comparison_key,
)
from app.services.comparison.repository import ComparisonRepository
from app.services.exceptions import (
    ComparisonInProgressError,
    ComparisonNotFoundError,
    FrameworkNotFoundError,
    PreconditionFailedError,
)
from app.services.processing.repository import FrameworkRepository

logger = structlog.get_logger(__name__)

INVALID_DATA_MESSAGE = "Invalid comparison data received"
MONITOR_LOST_MESSAGE = "Comparison monitor lost before completion"
# RFC 6455 abnormal closure, used when no close frame was received
ABNORMAL_CLOSE_CODE = 1006

_COMPLETED = {"completed", "done"}
_ERROR = {"error", "failed"}
_PROGRESS = {"pending", "in-process", "in-progress", "processing", "started"}


def mean_score(items: list[Any], field: str) -> float | None:
    """Mean of a numeric per-item score field, rounded to 4 places.

    Items without a numeric value for ``field`` are left out.
    """
    scores: list[float] = []
    for item in items:
        value = item.get(field) if isinstance(item, dict) else None
        if value is None or isinstance(value, bool):
            continue
        try:
            scores.append(float(value))
        except (TypeError, ValueError):
            continue
    if not scores:
        return None
    return round(statistics.fmean(scores), 4)


def _require_completed(record: FrameworkRecord, label: str) -> str:
    job = record.processing
    if job.status != ProcessingStatus.COMPLETED or not job.job_id:
        raise PreconditionFailedError(
            f"{label} AI processing is not completed",
            {"framework_id": record.id, "status": job.status.value},
        )
    return job.job_id


class ComparisonOrchestrator:
    """Creates comparisons and drives them to a terminal state."""

    def __init__(
        self,
        comparisons: ComparisonRepository,
        frameworks: FrameworkRepository,
        bridge: AIJobBridge,
        registry: ConnectionRegistry,
        settings: Settings | None = None,
    ):
        self.comparisons = comparisons
        self.frameworks = frameworks
        self.bridge = bridge
        self.registry = registry
        self.settings = settings or get_settings()

    # -------------------------------------------------------------------------
    # API operations
    # -------------------------------------------------------------------------

    async def start(
        self,
        user: AuthenticatedUser,
        user_framework_id: str,
        expert_framework_id: str,
    ) -> ComparisonJob:
        """Start a comparison of a user framework against an expert framework.

        Raises:
            FrameworkNotFoundError: Either framework is missing (or the user
                framework is not owned by the caller).
            PreconditionFailedError: Either framework has not completed AI
                processing. No comparison record is created.
            ComparisonInProgressError: A pending/in-process comparison exists.
        """
        user_framework = await self.frameworks.get(
            SubjectKind.USER_FRAMEWORK, user_framework_id, owner_id=user.id
        )
        if user_framework is None:
            raise FrameworkNotFoundError(user_framework_id)

        expert_framework = await self.frameworks.get(
            SubjectKind.EXPERT_FRAMEWORK, expert_framework_id
        )
        if expert_framework is None:
            raise FrameworkNotFoundError(expert_framework_id)

        user_job_id = _require_completed(user_framework, "User framework")
        expert_job_id = _require_completed(expert_framework, "Expert framework")

        existing = await self.comparisons.find_active(
            user.id, user_framework_id, expert_framework_id
        )
        if existing is not None:
            raise ComparisonInProgressError(existing.id)

        job = await self.comparisons.create(
            user_id=user.id,
            user_framework_id=user_framework_id,
            user_framework_job_id=user_job_id,
            expert_framework_id=expert_framework_id,
            expert_framework_job_id=expert_job_id,
        )
        job = (
            await self.comparisons.update_active(
                job.id, {"status": ComparisonStatus.IN_PROCESS.value}
            )
            or job
        )

        self.bridge.monitor_comparison(job.id, user_job_id, expert_job_id, self._handler(job.id))
        await self.notify(job, "Framework comparison started")

        logger.info(
            "comparison_started",
            comparison_id=job.id,
            user_id=user.id,
            user_framework_id=user_framework_id,
            expert_framework_id=expert_framework_id,
        )
        return job

    async def get(self, comparison_id: str, user: AuthenticatedUser) -> ComparisonJob:
        job = await self.comparisons.get(comparison_id, user_id=user.id)
        if job is None:
            raise ComparisonNotFoundError(comparison_id)
        return job

    # -------------------------------------------------------------------------
    # Stream handling
    # -------------------------------------------------------------------------

    def _handler(self, comparison_id: str) -> EventHandler:
        async def on_event(event: StreamEvent) -> None:
            await self.handle_stream_event(comparison_id, event)

        return on_event

    async def handle_stream_event(self, comparison_id: str, event: StreamEvent) -> None:
        if isinstance(event, StreamMessage):
            payload = event.payload
            status = str(payload.get("status", "")).strip().lower().replace("_", "-")
            message = payload.get("message")

            if status in _COMPLETED:
                items = extract_items(payload)
                if items is None:
                    await self.fail(comparison_id, INVALID_DATA_MESSAGE)
                else:
                    await self.complete(comparison_id, items)
            elif status in _ERROR:
                await self.fail(
                    comparison_id,
                    payload.get("error") or message or "Framework comparison failed",
                )
            elif status in _PROGRESS:
                await self.progress(comparison_id, message)

        elif isinstance(event, StreamError):
            await self.fail(comparison_id, event.reason)

        elif isinstance(event, StreamClosed):
            code = event.code if event.code is not None else ABNORMAL_CLOSE_CODE
            # No-op when a terminal frame was already applied
            await self.fail(comparison_id, f"AI connection closed unexpectedly (Code: {code})")

    async def progress(self, comparison_id: str, message: str | None) -> ComparisonJob | None:
        """Refresh an in-process comparison and relay the progress message."""
        job = await self.comparisons.update_active(
            comparison_id, {"status": ComparisonStatus.IN_PROCESS.value}
        )
        if job is not None:
            await self.notify(job, message or "Framework comparison in progress")
        return job

    async def complete(
        self,
        comparison_id: str,
        items: list[Any],
    ) -> ComparisonJob | None:
        """Persist results, fan the summary out to the user framework, notify."""
        score = mean_score(items, self.settings.comparison_score_field)
        job = await self.comparisons.update_active(
            comparison_id,
            {
                "status": ComparisonStatus.COMPLETED.value,
                "results": items,
                "results_count": len(items),
                "mean_score": score,
                "error_message": None,
            },
        )
        if job is None:
            logger.info("comparison_completion_skipped", comparison_id=comparison_id)
            return None

        summary = ComparisonSummary(
            comparison_id=job.id,
            expert_framework_id=job.expert_framework_id,
            results_count=job.results_count,
            mean_score=job.mean_score,
            results=job.results,
            completed_at=datetime.now(UTC),
        )
        try:
            await self.frameworks.append_comparison_summary(
                job.user_framework_id,
                summary.model_dump(mode="json", by_alias=True),
            )
        except Exception as e:
            # The comparison row is already completed; the owner is still told
            logger.error(
                "comparison_summary_append_failed",
                comparison_id=job.id,
                user_framework_id=job.user_framework_id,
                error=str(e),
                exc_info=True,
            )

        logger.info(
            "comparison_completed",
            comparison_id=job.id,
            results_count=job.results_count,
            mean_score=job.mean_score,
        )
        await self.notify(job, "Framework comparison completed")
        return job

    async def fail(self, comparison_id: str, error_message: str) -> ComparisonJob | None:
        """Mark a still-active comparison as ``error``."""
        job = await self.comparisons.update_active(
            comparison_id,
            {
                "status": ComparisonStatus.ERROR.value,
                "error_message": error_message,
            },
        )
        if job is None:
            return None

        logger.warning(
            "comparison_failed",
            comparison_id=comparison_id,
            error_message=error_message,
        )
        await self.notify(job, "Framework comparison failed")
        return job

    async def mark_monitor_lost(self, job: ComparisonJob) -> bool:
        """Reconciliation: fail a stale comparison with no live monitor here.

        Returns:
            True if the comparison was marked as error.
        """
        if self.bridge.is_monitoring(comparison_key(job.id)):
            return False

        updated = await self.fail(job.id, MONITOR_LOST_MESSAGE)
        if updated is None:
            return False

        log_comparison_monitor_lost(
            comparison_id=job.id,
            user_id=job.user_id,
            status=job.status.value,
        )
        return True

    async def notify(self, job: ComparisonJob, message: str) -> int:
        completed = job.status == ComparisonStatus.COMPLETED
        frame = ComparisonNotification(
            comparison_id=job.id,
            status=job.status.value,
            message=message,
            results_count=job.results_count if completed else None,
            mean_score=job.mean_score if completed else None,
            results=job.results if completed else None,
            error_message=job.error_message,
        )
        return await self.registry.deliver(job.user_id, frame.to_message())
