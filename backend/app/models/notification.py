"""Outbound notification socket frames.

CRITICAL: Field aliases must match what the browser client reads
(camelCase). Frames are serialized with ``to_message()`` which drops
unset optional fields.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

PROCESSING_NOTIFICATION_TYPE = "framework-ai-processing"
COMPARISON_NOTIFICATION_TYPE = "framework-comparison"


class _Frame(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_message(self) -> dict[str, Any]:
        """Dump with camelCase keys, omitting None values."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ConnectionAck(_Frame):
    """Sent immediately after a notification socket is accepted."""

    type: Literal["connection"] = "connection"
    status: Literal["connected"] = "connected"


class ProcessingNotification(_Frame):
    """Progress or outcome of a framework's AI processing job."""

    type: str = PROCESSING_NOTIFICATION_TYPE
    framework_id: str = Field(..., alias="frameworkId")
    kind: str
    job_id: str | None = Field(None, alias="jobId")
    status: str
    control_extraction_status: str | None = Field(None, alias="controlExtractionStatus")
    message: str
    item_count: int | None = Field(None, alias="itemCount")
    extracted_items: list[Any] | None = Field(None, alias="extractedItems")
    error_message: str | None = Field(None, alias="errorMessage")


class ComparisonNotification(_Frame):
    """Progress or outcome of a comparison job."""

    type: str = COMPARISON_NOTIFICATION_TYPE
    comparison_id: str = Field(..., alias="comparisonId")
    status: str
    message: str
    results_count: int | None = Field(None, alias="resultsCount")
    mean_score: float | None = Field(None, alias="meanScore")
    results: list[Any] | None = None
    error_message: str | None = Field(None, alias="errorMessage")
