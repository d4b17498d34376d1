"""HTTP client for the external AI analysis service.

Endpoints (per subject kind prefix, e.g. ``/user`` or ``/expert``):
- ``POST {prefix}/upload``           multipart file -> {jobId, status, controlExtractionStatus}
- ``GET  {prefix}/status/{job_id}``  current status (+ results when complete)
- ``WS   {prefix}/stream/{job_id}``  live progress frames
- ``WS   /compare?user_job=&expert_job=``  comparison stream

Uploads are never retried here; a failed upload surfaces to the caller
as an UploadFailure kind and the framework's state is left unchanged.
"""

from urllib.parse import urlencode

import httpx
import structlog

from app.core.config import Settings, get_settings
from app.models.ai import AIStatusReport, AIUploadResult
from app.models.processing import SUBJECT_CONFIG, SubjectKind
from app.services.exceptions import (
    AIPayloadTooLargeError,
    AIServiceUnavailableError,
    AIUnsupportedFileTypeError,
    StatusCheckFailure,
    UploadFailure,
)

logger = structlog.get_logger(__name__)


class AIServiceClient:
    """Thin async wrapper over the AI service's HTTP API."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            settings: Optional settings override.
            transport: Optional httpx transport (tests pass a MockTransport).
        """
        self.settings = settings or get_settings()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating if necessary."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.ai_base_url.rstrip("/"),
                timeout=httpx.Timeout(
                    self.settings.ai_request_timeout,
                    connect=self.settings.ai_connect_timeout,
                ),
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def path_prefix(self, kind: SubjectKind) -> str:
        return getattr(self.settings, SUBJECT_CONFIG[kind].ai_prefix_setting).rstrip("/")

    def stream_url(self, kind: SubjectKind, job_id: str) -> str:
        """WebSocket URL of a job's live progress stream."""
        base = self.settings.resolved_ai_ws_base_url
        return f"{base}{self.path_prefix(kind)}/stream/{job_id}"

    def comparison_url(self, user_job_id: str, expert_job_id: str) -> str:
        """WebSocket URL of a comparison stream over two completed jobs."""
        base = self.settings.resolved_ai_ws_base_url
        query = urlencode({"user_job": user_job_id, "expert_job": expert_job_id})
        return f"{base}{self.settings.ai_compare_path}?{query}"

    async def upload(
        self,
        kind: SubjectKind,
        filename: str,
        content: bytes,
        content_type: str,
    ) -> AIUploadResult:
        """Upload a document for analysis.

        Args:
            kind: Subject kind selecting the AI path prefix.
            filename: Original file name.
            content: File bytes.
            content_type: MIME type of the file.

        Returns:
            Normalized upload result carrying the AI job id.

        Raises:
            AIServiceUnavailableError: Network error, timeout or 5xx.
            AIPayloadTooLargeError: HTTP 413.
            AIUnsupportedFileTypeError: HTTP 415.
            UploadFailure: Any other non-2xx or a response without a job id.
        """
        if not self.settings.is_ai_configured:
            raise AIServiceUnavailableError("AI service is not configured")

        path = f"{self.path_prefix(kind)}/upload"
        logger.info(
            "ai_upload_starting",
            kind=kind.value,
            filename=filename,
            file_size=len(content),
        )

        try:
            response = await self._get_client().post(
                path,
                files={"file": (filename, content, content_type)},
            )
        except (httpx.ConnectError, httpx.TimeoutException) as e:
            logger.error(
                "ai_upload_unreachable",
                kind=kind.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise AIServiceUnavailableError(
                "AI service is unavailable. Please try again later."
            ) from e
        except httpx.HTTPError as e:
            logger.error("ai_upload_transport_error", kind=kind.value, error=str(e))
            raise UploadFailure(f"AI upload failed: {e!s}") from e

        status_code = response.status_code
        if status_code == 413:
            raise AIPayloadTooLargeError("File too large for AI processing")
        if status_code == 415:
            raise AIUnsupportedFileTypeError("Unsupported file type for AI processing")
        if status_code >= 500:
            logger.error("ai_upload_server_error", kind=kind.value, status_code=status_code)
            raise AIServiceUnavailableError(
                "AI service internal error",
                {"upstream_status": status_code},
            )
        if not response.is_success:
            logger.error(
                "ai_upload_rejected",
                kind=kind.value,
                status_code=status_code,
                body=response.text[:500],
            )
            raise UploadFailure(
                f"AI upload failed with HTTP {status_code}",
                {"upstream_status": status_code},
            )

        try:
            result = AIUploadResult.from_payload(response.json())
        except (ValueError, KeyError) as e:
            raise UploadFailure("AI service returned no job id") from e

        logger.info(
            "ai_upload_complete",
            kind=kind.value,
            job_id=result.job_id,
            status=result.status,
        )
        return result

    async def check_status(self, kind: SubjectKind, job_id: str) -> AIStatusReport:
        """Query a job's current status.

        Idempotent and side-effect free on our side; safe to call as
        often as needed.

        Raises:
            StatusCheckFailure: If the status endpoint cannot be queried.
        """
        if not self.settings.is_ai_configured:
            raise StatusCheckFailure("AI service is not configured")

        path = f"{self.path_prefix(kind)}/status/{job_id}"
        try:
            response = await self._get_client().get(path)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as e:
            logger.warning(
                "ai_status_check_failed",
                kind=kind.value,
                job_id=job_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise StatusCheckFailure(
                f"AI status check failed: {e!s}",
                {"job_id": job_id},
            ) from e
        except ValueError as e:
            raise StatusCheckFailure(
                "AI status response was not valid JSON",
                {"job_id": job_id},
            ) from e

        if not isinstance(payload, dict):
            raise StatusCheckFailure("Unexpected AI status payload", {"job_id": job_id})

        report = AIStatusReport.from_payload(payload)
        logger.debug(
            "ai_status_checked",
            kind=kind.value,
            job_id=job_id,
            status=report.status,
            item_count=len(report.items),
        )
        return report
