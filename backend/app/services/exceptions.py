"""Service-layer exceptions.

These exceptions are used within services and DO NOT extend HTTPException.
Routes catch them and convert to the structured HTTP error envelope.
"""

from typing import Any


class ServiceError(Exception):
    """Base class for all service-layer exceptions.

    Attributes:
        code: Machine-readable error code (e.g., "FRAMEWORK_NOT_FOUND").
        message: Human-readable error message.
        details: Optional additional context.
        status_code: Suggested HTTP status code for API responses.
        is_retryable: Whether the operation can be retried.
    """

    code: str = "SERVICE_ERROR"
    status_code: int = 500
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        *,
        is_retryable: bool | None = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        if is_retryable is not None:
            self.is_retryable = is_retryable
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "is_retryable": self.is_retryable,
        }


class DatabaseNotConfiguredError(ServiceError):
    """Supabase credentials are missing."""

    code = "DATABASE_NOT_CONFIGURED"
    status_code = 503

    def __init__(self) -> None:
        super().__init__("Database is not configured")


class NotFoundError(ServiceError):
    """Resource not found."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(
        self,
        resource: str,
        resource_id: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        message = f"{resource} with ID {resource_id} not found"
        super().__init__(message, details)
        self.resource = resource
        self.resource_id = resource_id


class FrameworkNotFoundError(NotFoundError):
    """Framework not found (or not owned by the caller)."""

    code = "FRAMEWORK_NOT_FOUND"

    def __init__(self, framework_id: str) -> None:
        super().__init__("Framework", framework_id)


class ComparisonNotFoundError(NotFoundError):
    """Comparison not found (or not owned by the caller)."""

    code = "COMPARISON_NOT_FOUND"

    def __init__(self, comparison_id: str) -> None:
        super().__init__("Comparison", comparison_id)


class ConflictError(ServiceError):
    """Resource conflict (e.g., duplicate, concurrent write)."""

    code = "CONFLICT"
    status_code = 409

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)


class JobAlreadyActiveError(ConflictError):
    """A non-failed AI job already exists for the framework."""

    code = "AI_JOB_ALREADY_ACTIVE"

    def __init__(self, framework_id: str, status: str) -> None:
        super().__init__(
            f"Framework is already {status} in AI service",
            {"framework_id": framework_id, "status": status},
        )


class ComparisonInProgressError(ConflictError):
    """A pending or in-process comparison exists for the same pair."""

    code = "COMPARISON_IN_PROGRESS"

    def __init__(self, comparison_id: str | None) -> None:
        super().__init__(
            "Framework comparison is already in progress for these frameworks",
            {"comparison_id": comparison_id} if comparison_id else {},
        )


class PreconditionFailedError(ServiceError):
    """The request is valid but the resource is not in the required state."""

    code = "PRECONDITION_FAILED"
    status_code = 400


class UploadFailure(ServiceError):
    """Handing a document to the AI service failed.

    The framework's processing state is left untouched when this is raised.
    """

    code = "AI_UPLOAD_FAILED"
    status_code = 502


class AIServiceUnavailableError(UploadFailure):
    """Network error or 5xx from the AI service."""

    code = "AI_SERVICE_UNAVAILABLE"
    status_code = 503
    is_retryable = True


class AIPayloadTooLargeError(UploadFailure):
    """The AI service rejected the file as too large (HTTP 413)."""

    code = "PAYLOAD_TOO_LARGE"
    status_code = 413


class AIUnsupportedFileTypeError(UploadFailure):
    """The AI service rejected the file type (HTTP 415)."""

    code = "UNSUPPORTED_FILE_TYPE"
    status_code = 415


class StatusCheckFailure(ServiceError):
    """The AI status endpoint could not be queried."""

    code = "AI_STATUS_CHECK_FAILED"
    status_code = 503
    is_retryable = True
