"""Tests for processing state transitions."""

from datetime import UTC, datetime

import pytest

from app.models.ai import AIStatusReport
from app.models.processing import ExtractionStatus, ProcessingJob, ProcessingStatus
from app.services.processing.transitions import (
    DEFAULT_FAILURE_MESSAGE,
    EventKind,
    apply_update,
    completed,
    failed,
    interpret_message,
    interpret_status_report,
    plan_transition,
)

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


def job(
    status: ProcessingStatus = ProcessingStatus.UPLOADED,
    extraction: ExtractionStatus = ExtractionStatus.PENDING,
) -> ProcessingJob:
    return ProcessingJob(job_id="abc", status=status, control_extraction_status=extraction)


class TestInterpretMessage:
    @pytest.mark.parametrize("key", ["data", "controls", "results"])
    def test_completed_with_result_list(self, key: str) -> None:
        event = interpret_message({"status": "completed", key: [{"id": 1}, {"id": 2}]})

        assert event.kind == EventKind.COMPLETED
        assert event.items == [{"id": 1}, {"id": 2}]

    def test_done_is_treated_as_completed(self) -> None:
        assert interpret_message({"status": "DONE", "data": []}).kind == EventKind.COMPLETED

    def test_completed_without_result_list_is_ignored(self) -> None:
        assert interpret_message({"status": "completed"}).kind == EventKind.IGNORED

    def test_failure_prefers_error_then_message(self) -> None:
        assert interpret_message({"status": "error", "error": "OCR crashed"}).error == "OCR crashed"
        assert interpret_message({"status": "failed", "message": "bad scan"}).error == "bad scan"
        assert interpret_message({"status": "failed"}).error == DEFAULT_FAILURE_MESSAGE

    def test_progress_status_defaults_extraction_to_started(self) -> None:
        event = interpret_message({"status": "in_progress"})

        assert event.kind == EventKind.PROGRESS
        assert event.status == ProcessingStatus.PROCESSING
        assert event.extraction_status == ExtractionStatus.STARTED

    def test_uploaded_frame_carries_no_extraction_hint(self) -> None:
        event = interpret_message({"status": "uploaded"})

        assert event.status == ProcessingStatus.UPLOADED
        assert event.extraction_status is None

    def test_extraction_only_frame(self) -> None:
        event = interpret_message({"controlExtractionStatus": "processing"})

        assert event.kind == EventKind.PROGRESS
        assert event.extraction_status == ExtractionStatus.PROCESSING

    def test_unknown_frames_are_ignored(self) -> None:
        assert interpret_message({"type": "heartbeat"}).kind == EventKind.IGNORED


class TestInterpretStatusReport:
    def test_completed_requires_items(self) -> None:
        with_items = AIStatusReport(status="completed", items=[{"id": 1}])
        without_items = AIStatusReport(status="completed", items=[])

        assert interpret_status_report(with_items).kind == EventKind.COMPLETED
        assert interpret_status_report(without_items).kind == EventKind.IGNORED

    def test_failure(self) -> None:
        event = interpret_status_report(AIStatusReport(status="failed", error="timeout"))

        assert event.kind == EventKind.FAILED
        assert event.error == "timeout"

    def test_still_processing_is_ignored(self) -> None:
        assert interpret_status_report(AIStatusReport(status="processing")).kind == EventKind.IGNORED


class TestPlanTransition:
    def test_completion_writes_results_in_one_update(self) -> None:
        update = plan_transition(job(), completed([{"id": 1}, {"id": 2}]), now=NOW)

        assert update == {
            "ai_status": "completed",
            "ai_extraction_status": "completed",
            "ai_extracted_items": [{"id": 1}, {"id": 2}],
            "ai_item_count": 2,
            "ai_extracted_at": NOW.isoformat(),
            "ai_processed_at": NOW.isoformat(),
            "ai_error_message": None,
        }

    def test_failure_sets_both_statuses(self) -> None:
        update = plan_transition(job(ProcessingStatus.PROCESSING), failed("boom"), now=NOW)

        assert update["ai_status"] == "failed"
        assert update["ai_extraction_status"] == "failed"
        assert update["ai_error_message"] == "boom"

    @pytest.mark.parametrize("status", [ProcessingStatus.COMPLETED, ProcessingStatus.FAILED])
    def test_terminal_jobs_never_change(self, status: ProcessingStatus) -> None:
        terminal = job(status, ExtractionStatus(status.value))

        assert plan_transition(terminal, completed([{"id": 1}])) is None
        assert plan_transition(terminal, failed("late")) is None
        assert plan_transition(terminal, interpret_message({"status": "processing"})) is None

    def test_completion_applied_twice_is_a_noop(self) -> None:
        first = job(ProcessingStatus.PROCESSING)
        update = plan_transition(first, completed([{"id": 1}]), now=NOW)
        after = apply_update(first, update)

        assert after.status == ProcessingStatus.COMPLETED
        assert after.item_count == 1
        assert plan_transition(after, completed([{"id": 1}, {"id": 2}])) is None

    def test_uploaded_never_moves_processing_back(self) -> None:
        current = job(ProcessingStatus.PROCESSING, ExtractionStatus.STARTED)

        assert plan_transition(current, interpret_message({"status": "uploaded"})) is None

    def test_extraction_status_only_moves_forward(self) -> None:
        current = job(ProcessingStatus.PROCESSING, ExtractionStatus.PROCESSING)

        backwards = interpret_message({"status": "processing", "controlExtractionStatus": "started"})
        assert plan_transition(current, backwards) is None

        earlier = job(ProcessingStatus.PROCESSING, ExtractionStatus.STARTED)
        forwards = interpret_message({"controlExtractionStatus": "processing"})
        assert plan_transition(earlier, forwards, now=NOW) == {
            "ai_extraction_status": "processing",
            "ai_processed_at": NOW.isoformat(),
        }

    def test_progress_from_uploaded(self) -> None:
        update = plan_transition(job(), interpret_message({"status": "processing"}), now=NOW)

        assert update == {
            "ai_status": "processing",
            "ai_extraction_status": "started",
            "ai_processed_at": NOW.isoformat(),
        }


class TestApplyUpdate:
    def test_completion_with_scalar_items_applies(self) -> None:
        event = interpret_message({"status": "completed", "data": ["A.5 Policies", 7]})
        update = plan_transition(job(ProcessingStatus.PROCESSING), event, now=NOW)

        applied = apply_update(job(ProcessingStatus.PROCESSING), update)

        assert applied.status == ProcessingStatus.COMPLETED
        assert applied.extracted_items == ["A.5 Policies", 7]
        assert applied.item_count == 2
