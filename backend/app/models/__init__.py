"""Pydantic models module."""

from app.models.auth import AuthenticatedUser, JWTClaims
from app.models.comparison import (
    ComparisonCreateRequest,
    ComparisonJob,
    ComparisonResponse,
    ComparisonStatus,
    ComparisonSummary,
)
from app.models.processing import (
    ExtractionStatus,
    FrameworkRecord,
    LiveStatus,
    LiveStatusResponse,
    ProcessingJob,
    ProcessingJobResponse,
    ProcessingStatus,
    SubjectKind,
)

__all__ = [
    # Auth models
    "AuthenticatedUser",
    "JWTClaims",
    # Processing models
    "ExtractionStatus",
    "FrameworkRecord",
    "LiveStatus",
    "LiveStatusResponse",
    "ProcessingJob",
    "ProcessingJobResponse",
    "ProcessingStatus",
    "SubjectKind",
    # Comparison models
    "ComparisonCreateRequest",
    "ComparisonJob",
    "ComparisonResponse",
    "ComparisonStatus",
    "ComparisonSummary",
]
