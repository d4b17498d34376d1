"""Models for responses returned by the external AI service.

The AI service is not consistent about field names across versions: the
job id may arrive as ``jobId``, ``job_id`` or ``uuid`` and result lists as
``data``, ``controls`` or ``results``. These models normalize that.
"""

from typing import Any

from pydantic import BaseModel, Field

RESULT_LIST_KEYS = ("data", "controls", "results")


def extract_items(payload: dict[str, Any]) -> list[Any] | None:
    """Return the first list found under a known result key, else None."""
    for key in RESULT_LIST_KEYS:
        value = payload.get(key)
        if isinstance(value, list):
            return value
    return None


class AIUploadResult(BaseModel):
    """Response of ``POST {prefix}/upload``."""

    job_id: str
    status: str = "uploaded"
    control_extraction_status: str = "pending"
    filename: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AIUploadResult":
        """Normalize an upload response body.

        Raises:
            KeyError: If no job id is present in the payload.
        """
        job_id = payload.get("jobId") or payload.get("job_id") or payload.get("uuid")
        if not job_id:
            raise KeyError("job id")
        return cls(
            job_id=str(job_id),
            status=payload.get("status") or "uploaded",
            control_extraction_status=payload.get("controlExtractionStatus")
            or payload.get("control_extraction_status")
            or "pending",
            filename=payload.get("filename"),
        )


class AIStatusReport(BaseModel):
    """Response of ``GET {prefix}/status/{job_id}``."""

    status: str | None = None
    items: list[Any] = Field(default_factory=list)
    error: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AIStatusReport":
        status = payload.get("status")
        error = payload.get("error") or payload.get("error_message")
        if error is None and str(status).lower() in ("failed", "error"):
            error = payload.get("message")
        return cls(
            status=str(status).lower() if status is not None else None,
            items=extract_items(payload) or [],
            error=str(error) if error is not None else None,
            raw=payload,
        )
