"""Comparison job models.

A comparison composes one completed user framework job and one completed
expert framework job into a scored result set produced by the AI service.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ComparisonStatus(str, Enum):
    """Comparison job status.

    ``done`` is emitted by some AI service versions instead of
    ``completed`` and is treated the same way.
    """

    PENDING = "pending"
    IN_PROCESS = "in-process"
    COMPLETED = "completed"
    ERROR = "error"
    DONE = "done"


ACTIVE_COMPARISON_STATUSES = frozenset({ComparisonStatus.PENDING, ComparisonStatus.IN_PROCESS})
TERMINAL_COMPARISON_STATUSES = frozenset(
    {ComparisonStatus.COMPLETED, ComparisonStatus.ERROR, ComparisonStatus.DONE}
)


class ComparisonJob(BaseModel):
    """Persisted comparison job (``framework_comparisons`` row)."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    user_id: str = Field(..., alias="userId")
    user_framework_id: str = Field(..., alias="userFrameworkId")
    user_framework_job_id: str = Field(..., alias="userFrameworkJobId")
    expert_framework_id: str = Field(..., alias="expertFrameworkId")
    expert_framework_job_id: str = Field(..., alias="expertFrameworkJobId")
    status: ComparisonStatus = ComparisonStatus.PENDING
    processed_at: datetime | None = Field(None, alias="processedAt")
    error_message: str | None = Field(None, alias="errorMessage")
    results: list[Any] = Field(default_factory=list)
    results_count: int = Field(0, alias="resultsCount")
    mean_score: float | None = Field(None, alias="meanScore")
    created_at: datetime | None = Field(None, alias="createdAt")

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_COMPARISON_STATUSES

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ComparisonJob":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            user_framework_id=row["user_framework_id"],
            user_framework_job_id=row["user_framework_job_id"],
            expert_framework_id=row["expert_framework_id"],
            expert_framework_job_id=row["expert_framework_job_id"],
            status=row.get("status") or ComparisonStatus.PENDING,
            processed_at=row.get("processed_at"),
            error_message=row.get("error_message"),
            results=row.get("results") or [],
            results_count=row.get("results_count") or 0,
            mean_score=row.get("mean_score"),
            created_at=row.get("created_at"),
        )


class ComparisonSummary(BaseModel):
    """Copy of a completed comparison appended to the user framework record."""

    comparison_id: str = Field(..., alias="comparisonId")
    expert_framework_id: str = Field(..., alias="expertFrameworkId")
    results_count: int = Field(..., alias="resultsCount")
    mean_score: float | None = Field(None, alias="meanScore")
    results: list[Any] = Field(default_factory=list)
    completed_at: datetime = Field(..., alias="completedAt")

    model_config = ConfigDict(populate_by_name=True)


class ComparisonCreateRequest(BaseModel):
    """Request body for starting a comparison."""

    model_config = ConfigDict(populate_by_name=True)

    user_framework_id: str = Field(..., alias="userFrameworkId", min_length=1)
    expert_framework_id: str = Field(..., alias="expertFrameworkId", min_length=1)


class ComparisonResponse(BaseModel):
    """API response wrapper for a comparison job."""

    data: ComparisonJob
