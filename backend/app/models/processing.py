"""Processing state models for framework documents analyzed by the AI service.

A framework record (user-owned or expert-owned) embeds one ProcessingJob in
its ``ai_*`` columns. Two status fields move in parallel:

- ``status``: pending -> uploaded -> processing -> completed | failed
- ``control_extraction_status``: pending -> started -> processing -> completed | failed

Both reach a terminal value together when the job finishes.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SubjectKind(str, Enum):
    """Which family of framework documents a job belongs to."""

    USER_FRAMEWORK = "user_framework"
    EXPERT_FRAMEWORK = "expert_framework"


class ProcessingStatus(str, Enum):
    """Overall AI processing status of a framework document."""

    PENDING = "pending"
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ExtractionStatus(str, Enum):
    """Finer-grained control extraction sub-phase."""

    PENDING = "pending"
    STARTED = "started"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({ProcessingStatus.COMPLETED, ProcessingStatus.FAILED})
NON_TERMINAL_STATUSES = frozenset(
    {ProcessingStatus.PENDING, ProcessingStatus.UPLOADED, ProcessingStatus.PROCESSING}
)
# Statuses the reconciliation poller looks at
RECONCILABLE_STATUSES = frozenset({ProcessingStatus.UPLOADED, ProcessingStatus.PROCESSING})


@dataclass(frozen=True)
class SubjectConfig:
    """Per-kind table and AI path settings."""

    table: str
    ai_prefix_setting: str


SUBJECT_CONFIG: dict[SubjectKind, SubjectConfig] = {
    SubjectKind.USER_FRAMEWORK: SubjectConfig(
        table="user_frameworks",
        ai_prefix_setting="ai_user_path_prefix",
    ),
    SubjectKind.EXPERT_FRAMEWORK: SubjectConfig(
        table="expert_frameworks",
        ai_prefix_setting="ai_expert_path_prefix",
    ),
}


class ProcessingJob(BaseModel):
    """AI processing state embedded in a framework record.

    Uses camelCase aliases for API responses.
    """

    model_config = ConfigDict(populate_by_name=True)

    job_id: str | None = Field(None, alias="jobId", description="AI service job UUID")
    status: ProcessingStatus = Field(ProcessingStatus.PENDING, description="Overall status")
    control_extraction_status: ExtractionStatus = Field(
        ExtractionStatus.PENDING,
        alias="controlExtractionStatus",
        description="Extraction sub-phase status",
    )
    processed_at: datetime | None = Field(
        None, alias="processedAt", description="Timestamp of last status write"
    )
    error_message: str | None = Field(None, alias="errorMessage")
    extracted_items: list[Any] = Field(
        default_factory=list,
        alias="extractedItems",
        description="Analysis results, empty until completion",
    )
    item_count: int = Field(0, alias="itemCount")
    extracted_at: datetime | None = Field(None, alias="extractedAt")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class FrameworkRecord(BaseModel):
    """A framework document row together with its processing state."""

    id: str
    owner_id: str | None = None
    kind: SubjectKind
    framework_name: str | None = None
    storage_path: str | None = None
    is_active: bool = True
    processing: ProcessingJob = Field(default_factory=ProcessingJob)
    comparison_results: list[dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_row(cls, kind: SubjectKind, row: dict[str, Any]) -> "FrameworkRecord":
        """Build a record from a ``user_frameworks``/``expert_frameworks`` row."""
        processing = ProcessingJob(
            job_id=row.get("ai_job_id"),
            status=row.get("ai_status") or ProcessingStatus.PENDING,
            control_extraction_status=row.get("ai_extraction_status")
            or ExtractionStatus.PENDING,
            processed_at=row.get("ai_processed_at"),
            error_message=row.get("ai_error_message"),
            extracted_items=row.get("ai_extracted_items") or [],
            item_count=row.get("ai_item_count") or 0,
            extracted_at=row.get("ai_extracted_at"),
        )
        return cls(
            id=row["id"],
            owner_id=row.get("uploaded_by"),
            kind=kind,
            framework_name=row.get("framework_name"),
            storage_path=row.get("storage_path"),
            is_active=row.get("is_active", True),
            processing=processing,
            comparison_results=row.get("comparison_results") or [],
        )


class ProcessingJobResponse(BaseModel):
    """API response wrapper for a framework's processing state."""

    data: ProcessingJob


class LiveStatus(BaseModel):
    """Persisted state plus what the AI service currently reports."""

    model_config = ConfigDict(populate_by_name=True)

    framework_id: str = Field(..., alias="frameworkId")
    processing: ProcessingJob
    ai_status: str | None = Field(None, alias="aiStatus")
    ai_item_count: int = Field(0, alias="aiItemCount")
    ai_error: str | None = Field(None, alias="aiError")


class LiveStatusResponse(BaseModel):
    """API response wrapper for an on-demand status check."""

    data: LiveStatus
