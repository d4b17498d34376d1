"""Reconciliation poller for AI jobs whose live monitor missed the outcome.

Every ``reconciliation_interval_seconds`` the poller:
1. Selects framework jobs in uploaded/processing with a job id whose
   ``ai_processed_at`` is older than ``reconciliation_stale_minutes``
2. Calls the AI status endpoint for each and applies the same idempotent
   transition the live stream would have applied (completed or failed)
3. Marks stale pending/in-process comparisons without a live monitor in
   this process as error; the AI service has no comparison status endpoint

Jobs that are fresh or already terminal are never touched. The poller and
the live monitor may both observe completion for the same job; the
conditional update lets only one of them write and notify.
"""

import asyncio
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta

import structlog

from app.core.config import Settings, get_settings
from app.models.processing import RECONCILABLE_STATUSES, FrameworkRecord, SubjectKind
from app.services.comparison.orchestrator import ComparisonOrchestrator
from app.services.comparison.repository import ComparisonRepository
from app.services.exceptions import StatusCheckFailure
from app.services.processing.repository import FrameworkRepository
from app.services.processing.service import FrameworkProcessingService

logger = structlog.get_logger(__name__)


@dataclass
class ReconciliationReport:
    """Counts from one sweep."""

    checked: int = 0
    completed: int = 0
    failed: int = 0
    unchanged: int = 0
    errors: int = 0
    comparisons_checked: int = 0
    comparisons_failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def _parse_timestamp(value: datetime | str | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value


def is_stale(record: FrameworkRecord, cutoff: datetime) -> bool:
    """Candidate check, repeated in code on top of the query filter."""
    job = record.processing
    if not job.job_id or job.status not in RECONCILABLE_STATUSES:
        return False
    processed_at = _parse_timestamp(job.processed_at)
    return processed_at is not None and processed_at < cutoff


class ReconciliationPoller:
    """Timer-driven sweep repairing processing and comparison state.

    Example:
        >>> poller = ReconciliationPoller(...)
        >>> await poller.start()
        >>> report = await poller.run_once()
        >>> await poller.stop()
    """

    def __init__(
        self,
        frameworks: FrameworkRepository,
        processing: FrameworkProcessingService,
        comparisons: ComparisonRepository,
        orchestrator: ComparisonOrchestrator,
        settings: Settings | None = None,
    ) -> None:
        self.frameworks = frameworks
        self.processing = processing
        self.comparisons = comparisons
        self.orchestrator = orchestrator
        self.settings = settings or get_settings()
        self._running = False
        self._task: asyncio.Task | None = None
        self._last_report: ReconciliationReport | None = None
        self._last_run_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> dict:
        return {
            "running": self._running,
            "interval_seconds": self.settings.reconciliation_interval_seconds,
            "stale_minutes": self.settings.reconciliation_stale_minutes,
            "last_run_at": self._last_run_at.isoformat() if self._last_run_at else None,
            "last_report": self._last_report.to_dict() if self._last_report else None,
        }

    async def start(self) -> None:
        """Start the periodic sweep."""
        if self._running:
            logger.debug("reconciliation_poller_already_running")
            return

        self._running = True
        self._task = asyncio.create_task(self._loop(), name="reconciliation-poller")
        logger.info(
            "reconciliation_poller_started",
            interval_seconds=self.settings.reconciliation_interval_seconds,
            stale_minutes=self.settings.reconciliation_stale_minutes,
        )

    async def stop(self) -> None:
        """Stop the periodic sweep gracefully."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("reconciliation_poller_stopped")

    async def _loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.settings.reconciliation_interval_seconds)
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "reconciliation_sweep_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )

    async def run_once(self, now: datetime | None = None) -> ReconciliationReport:
        """Run one sweep over every subject kind and over comparisons."""
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(minutes=self.settings.reconciliation_stale_minutes)
        report = ReconciliationReport()

        for kind in SubjectKind:
            await self._sweep_frameworks(kind, cutoff, report)

        await self._sweep_comparisons(cutoff, report)

        self._last_report = report
        self._last_run_at = now
        if report.checked or report.comparisons_checked:
            logger.info("reconciliation_sweep_complete", **report.to_dict())
        return report

    async def _sweep_frameworks(
        self,
        kind: SubjectKind,
        cutoff: datetime,
        report: ReconciliationReport,
    ) -> None:
        candidates = await self.frameworks.find_stale(
            kind, cutoff, limit=self.settings.reconciliation_batch_limit
        )
        for record in candidates:
            if not is_stale(record, cutoff):
                continue

            report.checked += 1
            try:
                outcome = await self.processing.reconcile(record)
            except StatusCheckFailure as e:
                report.errors += 1
                logger.warning(
                    "reconciliation_status_check_failed",
                    kind=kind.value,
                    framework_id=record.id,
                    job_id=record.processing.job_id,
                    error=e.message,
                )
                continue
            except Exception as e:
                report.errors += 1
                logger.error(
                    "reconciliation_record_failed",
                    kind=kind.value,
                    framework_id=record.id,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                continue

            if outcome == "completed":
                report.completed += 1
            elif outcome == "failed":
                report.failed += 1
            else:
                report.unchanged += 1

    async def _sweep_comparisons(self, cutoff: datetime, report: ReconciliationReport) -> None:
        stale = await self.comparisons.find_stale(
            cutoff, limit=self.settings.reconciliation_batch_limit
        )
        for job in stale:
            processed_at = _parse_timestamp(job.processed_at)
            if not job.is_active or processed_at is None or processed_at >= cutoff:
                continue

            report.comparisons_checked += 1
            try:
                if await self.orchestrator.mark_monitor_lost(job):
                    report.comparisons_failed += 1
            except Exception as e:
                report.errors += 1
                logger.error(
                    "reconciliation_comparison_failed",
                    comparison_id=job.id,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
