"""Tests for the AI service HTTP client."""

import httpx
import pytest

from app.core.config import Settings
from app.models.processing import SubjectKind
from app.services.ai.client import AIServiceClient
from app.services.exceptions import (
    AIPayloadTooLargeError,
    AIServiceUnavailableError,
    AIUnsupportedFileTypeError,
    StatusCheckFailure,
    UploadFailure,
)


def _client(settings: Settings, handler) -> AIServiceClient:
    return AIServiceClient(settings, transport=httpx.MockTransport(handler))


async def _upload(client: AIServiceClient, kind: SubjectKind = SubjectKind.USER_FRAMEWORK):
    try:
        return await client.upload(kind, "controls.pdf", b"%PDF-1.7", "application/pdf")
    finally:
        await client.aclose()


class TestUrls:
    def test_stream_url_uses_kind_prefix_and_ws_scheme(self, test_settings: Settings) -> None:
        client = AIServiceClient(test_settings)

        assert client.stream_url(SubjectKind.USER_FRAMEWORK, "abc") == "ws://ai.test/user/stream/abc"
        assert (
            client.stream_url(SubjectKind.EXPERT_FRAMEWORK, "xyz")
            == "ws://ai.test/expert/stream/xyz"
        )

    def test_comparison_url_carries_both_job_ids(self, test_settings: Settings) -> None:
        client = AIServiceClient(test_settings)

        assert (
            client.comparison_url("u-job", "e-job")
            == "ws://ai.test/compare?user_job=u-job&expert_job=e-job"
        )

    def test_explicit_ws_base_url_wins(self) -> None:
        settings = Settings(ai_base_url="https://ai.example", ai_ws_base_url="wss://stream.example/")
        client = AIServiceClient(settings)

        assert client.stream_url(SubjectKind.USER_FRAMEWORK, "a") == "wss://stream.example/user/stream/a"


class TestUpload:
    async def test_posts_multipart_to_kind_prefix(self, test_settings: Settings) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={"jobId": "abc", "status": "uploaded", "controlExtractionStatus": "pending"},
            )

        result = await _upload(_client(test_settings, handler), SubjectKind.EXPERT_FRAMEWORK)

        assert result.job_id == "abc"
        assert result.status == "uploaded"
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/expert/upload"
        assert b'filename="controls.pdf"' in seen[0].content

    @pytest.mark.parametrize("key", ["jobId", "job_id", "uuid"])
    async def test_job_id_field_variants_are_normalized(
        self, test_settings: Settings, key: str
    ) -> None:
        client = _client(test_settings, lambda r: httpx.Response(200, json={key: "job-7"}))

        result = await _upload(client)

        assert result.job_id == "job-7"
        assert result.control_extraction_status == "pending"

    async def test_missing_job_id_is_an_upload_failure(self, test_settings: Settings) -> None:
        client = _client(test_settings, lambda r: httpx.Response(200, json={"status": "ok"}))

        with pytest.raises(UploadFailure):
            await _upload(client)

    async def test_413_maps_to_payload_too_large(self, test_settings: Settings) -> None:
        client = _client(test_settings, lambda r: httpx.Response(413))

        with pytest.raises(AIPayloadTooLargeError) as exc_info:
            await _upload(client)

        assert exc_info.value.status_code == 413
        assert exc_info.value.code == "PAYLOAD_TOO_LARGE"

    async def test_415_maps_to_unsupported_file_type(self, test_settings: Settings) -> None:
        client = _client(test_settings, lambda r: httpx.Response(415))

        with pytest.raises(AIUnsupportedFileTypeError):
            await _upload(client)

    async def test_5xx_maps_to_unavailable(self, test_settings: Settings) -> None:
        client = _client(test_settings, lambda r: httpx.Response(502))

        with pytest.raises(AIServiceUnavailableError) as exc_info:
            await _upload(client)

        assert exc_info.value.is_retryable
        assert exc_info.value.details == {"upstream_status": 502}

    async def test_other_4xx_is_a_generic_upload_failure(self, test_settings: Settings) -> None:
        client = _client(test_settings, lambda r: httpx.Response(422, text="bad file"))

        with pytest.raises(UploadFailure) as exc_info:
            await _upload(client)

        assert type(exc_info.value) is UploadFailure
        assert exc_info.value.status_code == 502

    async def test_connect_error_maps_to_unavailable(self, test_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(AIServiceUnavailableError):
            await _upload(_client(test_settings, handler))

    async def test_unconfigured_ai_service_is_unavailable(self) -> None:
        client = AIServiceClient(Settings(ai_base_url=""))

        with pytest.raises(AIServiceUnavailableError):
            await _upload(client)


class TestCheckStatus:
    async def test_reports_status_and_items(self, test_settings: Settings) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200, json={"status": "Completed", "controls": [{"id": 1}]})

        client = _client(test_settings, handler)
        report = await client.check_status(SubjectKind.USER_FRAMEWORK, "abc")
        await client.aclose()

        assert seen == ["/user/status/abc"]
        assert report.status == "completed"
        assert report.items == [{"id": 1}]

    async def test_failed_report_takes_message_as_error(self, test_settings: Settings) -> None:
        client = _client(
            test_settings,
            lambda r: httpx.Response(200, json={"status": "failed", "message": "OCR failed"}),
        )

        report = await client.check_status(SubjectKind.USER_FRAMEWORK, "abc")
        await client.aclose()

        assert report.error == "OCR failed"

    @pytest.mark.parametrize(
        "response",
        [httpx.Response(500), httpx.Response(200, text="<html>"), httpx.Response(200, json=[1])],
    )
    async def test_unusable_responses_raise_status_check_failure(
        self, test_settings: Settings, response: httpx.Response
    ) -> None:
        client = _client(test_settings, lambda r: response)

        with pytest.raises(StatusCheckFailure):
            await client.check_status(SubjectKind.USER_FRAMEWORK, "abc")
        await client.aclose()
