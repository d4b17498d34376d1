"""Pytest configuration and shared fixtures.

The persistence and AI collaborators are replaced by in-memory fakes that
keep the same conditional-update semantics as the Supabase repositories,
so the services under test run unchanged.
"""

import asyncio
import json
import time
from collections.abc import AsyncGenerator, Callable, Iterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock

import aiohttp
import httpx
import jwt
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketState

from app.api.ws.connection_manager import ConnectionRegistry
from app.core.config import Settings, get_settings
from app.core.rate_limit import limiter
from app.main import app
from app.models.comparison import ACTIVE_COMPARISON_STATUSES, ComparisonJob
from app.models.processing import (
    NON_TERMINAL_STATUSES,
    ExtractionStatus,
    FrameworkRecord,
    ProcessingJob,
    ProcessingStatus,
    SubjectKind,
)
from app.services.ai.bridge import AIJobBridge
from app.services.ai.client import AIServiceClient
from app.services.comparison.orchestrator import ComparisonOrchestrator
from app.services.container import ServiceContainer
from app.services.exceptions import ComparisonInProgressError
from app.services.processing import transitions
from app.services.processing.service import FrameworkProcessingService
from app.services.reconciliation import ReconciliationPoller
from app.services.storage_service import StorageService

# Test JWT secret for testing purposes only
TEST_JWT_SECRET = "test-secret-key-for-testing-only-do-not-use-in-production"

USER_ID = "user-123"
OTHER_USER_ID = "user-456"


# =============================================================================
# Settings and tokens
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings with JWT and AI configured and the poller disabled."""
    return Settings(
        jwt_secret=TEST_JWT_SECRET,
        ai_base_url="http://ai.test",
        supabase_url="",
        supabase_key="",
        supabase_service_key="",
        reconciliation_enabled=False,
        reconciliation_stale_minutes=5,
        monitor_shutdown_timeout=1.0,
        websocket_ping_interval=30,
    )


def make_token(
    user_id: str = USER_ID,
    token_version: int = 0,
    role: str = "user",
    secret: str = TEST_JWT_SECRET,
    expires_in: int = 3600,
    audience: str = "authenticated",
) -> str:
    """Encode a JWT the way the auth service issues them."""
    now = int(time.time())
    payload = {
        "sub": user_id,
        "email": f"{user_id}@example.com",
        "role": role,
        "aud": audience,
        "iat": now,
        "exp": now + expires_in,
        "token_version": token_version,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def token_factory() -> Callable[..., str]:
    return make_token


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token()}"}


# =============================================================================
# In-memory persistence fakes
# =============================================================================


def make_framework(
    framework_id: str,
    kind: SubjectKind = SubjectKind.USER_FRAMEWORK,
    owner_id: str | None = USER_ID,
    status: ProcessingStatus = ProcessingStatus.PENDING,
    job_id: str | None = None,
    processed_at: datetime | None = None,
    items: list[dict[str, Any]] | None = None,
    storage_path: str | None = "frameworks/user-123/controls.pdf",
) -> FrameworkRecord:
    terminal = status in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED)
    extraction = (
        ExtractionStatus(status.value)
        if terminal
        else ExtractionStatus.STARTED
        if status == ProcessingStatus.PROCESSING
        else ExtractionStatus.PENDING
    )
    return FrameworkRecord(
        id=framework_id,
        owner_id=owner_id,
        kind=kind,
        framework_name=f"Framework {framework_id}",
        storage_path=storage_path,
        processing=ProcessingJob(
            job_id=job_id,
            status=status,
            control_extraction_status=extraction,
            processed_at=processed_at,
            extracted_items=items or [],
            item_count=len(items or []),
        ),
    )


class InMemoryFrameworkRepository:
    """FrameworkRepository stand-in with the same conditional writes."""

    def __init__(self) -> None:
        self.records: dict[tuple[SubjectKind, str], FrameworkRecord] = {}
        self.apply_calls = 0
        self.append_error: Exception | None = None

    def add(self, record: FrameworkRecord) -> FrameworkRecord:
        self.records[(record.kind, record.id)] = record
        return record

    def current(self, kind: SubjectKind, framework_id: str) -> FrameworkRecord:
        return self.records[(kind, framework_id)]

    async def get(
        self,
        kind: SubjectKind,
        framework_id: str,
        owner_id: str | None = None,
    ) -> FrameworkRecord | None:
        record = self.records.get((kind, framework_id))
        if record is None or not record.is_active:
            return None
        if owner_id is not None and record.owner_id != owner_id:
            return None
        return record

    async def find_stale(
        self,
        kind: SubjectKind,
        cutoff: datetime,
        limit: int = 100,
    ) -> list[FrameworkRecord]:
        found = []
        for (record_kind, _), record in self.records.items():
            job = record.processing
            if record_kind != kind or not job.job_id:
                continue
            if job.status not in (ProcessingStatus.UPLOADED, ProcessingStatus.PROCESSING):
                continue
            if job.processed_at is None or job.processed_at >= cutoff:
                continue
            found.append(record)
        return found[:limit]

    async def record_upload(
        self,
        kind: SubjectKind,
        framework_id: str,
        job_id: str,
        status: ProcessingStatus = ProcessingStatus.UPLOADED,
        extraction_status: ExtractionStatus = ExtractionStatus.PENDING,
    ) -> FrameworkRecord | None:
        record = self.records.get((kind, framework_id))
        if record is None:
            return None
        job = record.processing
        if job.job_id and job.status != ProcessingStatus.FAILED:
            return None
        updated = record.model_copy(
            update={
                "processing": ProcessingJob(
                    job_id=job_id,
                    status=status,
                    control_extraction_status=extraction_status,
                    processed_at=datetime.now(UTC),
                )
            }
        )
        self.records[(kind, framework_id)] = updated
        return updated

    async def apply_update(
        self,
        kind: SubjectKind,
        framework_id: str,
        update: dict[str, Any],
    ) -> FrameworkRecord | None:
        self.apply_calls += 1
        record = self.records.get((kind, framework_id))
        if record is None or record.processing.status not in NON_TERMINAL_STATUSES:
            return None
        updated = record.model_copy(
            update={"processing": transitions.apply_update(record.processing, update)}
        )
        self.records[(kind, framework_id)] = updated
        return updated

    async def append_comparison_summary(
        self,
        framework_id: str,
        summary: dict[str, Any],
    ) -> bool:
        if self.append_error is not None:
            raise self.append_error
        record = self.records.get((SubjectKind.USER_FRAMEWORK, framework_id))
        if record is None:
            return False
        existing = record.comparison_results
        if any(r.get("comparisonId") == summary.get("comparisonId") for r in existing):
            return False
        self.records[(SubjectKind.USER_FRAMEWORK, framework_id)] = record.model_copy(
            update={"comparison_results": [*existing, summary]}
        )
        return True


class InMemoryComparisonRepository:
    """ComparisonRepository stand-in with the same conditional writes."""

    def __init__(self) -> None:
        self.jobs: dict[str, ComparisonJob] = {}
        self._next_id = 1

    def add(self, job: ComparisonJob) -> ComparisonJob:
        self.jobs[job.id] = job
        return job

    def _active_for(self, user_id: str, uf_id: str, ef_id: str) -> ComparisonJob | None:
        for job in self.jobs.values():
            if (
                job.user_id == user_id
                and job.user_framework_id == uf_id
                and job.expert_framework_id == ef_id
                and job.status in ACTIVE_COMPARISON_STATUSES
            ):
                return job
        return None

    async def find_active(
        self,
        user_id: str,
        user_framework_id: str,
        expert_framework_id: str,
    ) -> ComparisonJob | None:
        return self._active_for(user_id, user_framework_id, expert_framework_id)

    async def create(
        self,
        user_id: str,
        user_framework_id: str,
        user_framework_job_id: str,
        expert_framework_id: str,
        expert_framework_job_id: str,
    ) -> ComparisonJob:
        # Mirrors the partial unique index on active comparisons
        if self._active_for(user_id, user_framework_id, expert_framework_id):
            raise ComparisonInProgressError(None)
        job = ComparisonJob(
            id=f"cmp-{self._next_id}",
            user_id=user_id,
            user_framework_id=user_framework_id,
            user_framework_job_id=user_framework_job_id,
            expert_framework_id=expert_framework_id,
            expert_framework_job_id=expert_framework_job_id,
            processed_at=datetime.now(UTC),
            created_at=datetime.now(UTC),
        )
        self._next_id += 1
        self.jobs[job.id] = job
        return job

    async def get(self, comparison_id: str, user_id: str | None = None) -> ComparisonJob | None:
        job = self.jobs.get(comparison_id)
        if job is None or (user_id is not None and job.user_id != user_id):
            return None
        return job

    async def update_active(
        self,
        comparison_id: str,
        update: dict[str, Any],
    ) -> ComparisonJob | None:
        job = self.jobs.get(comparison_id)
        if job is None or not job.is_active:
            return None
        updated = ComparisonJob.model_validate(
            {**job.model_dump(), **update, "processed_at": datetime.now(UTC)}
        )
        self.jobs[comparison_id] = updated
        return updated

    async def find_stale(self, cutoff: datetime, limit: int = 100) -> list[ComparisonJob]:
        return [
            job
            for job in self.jobs.values()
            if job.is_active and job.processed_at is not None and job.processed_at < cutoff
        ][:limit]


class InMemoryIdentityService:
    """Token versions keyed by user id."""

    def __init__(self, versions: dict[str, int] | None = None) -> None:
        self.versions = versions if versions is not None else {USER_ID: 0}

    async def get_token_version(self, user_id: str) -> int | None:
        return self.versions.get(user_id)


# =============================================================================
# Notification sockets
# =============================================================================


class RecordingWebSocket:
    """Accepted browser socket that records every text frame."""

    def __init__(self, fail_sends: bool = False) -> None:
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[str] = []
        self.fail_sends = fail_sends

    async def send_text(self, text: str) -> None:
        if self.fail_sends:
            raise RuntimeError("socket is gone")
        self.sent.append(text)

    @property
    def messages(self) -> list[dict[str, Any]]:
        return [json.loads(text) for text in self.sent]

    def close(self) -> None:
        self.client_state = WebSocketState.DISCONNECTED
        self.application_state = WebSocketState.DISCONNECTED


# =============================================================================
# AI service fakes
# =============================================================================


def text_frame(payload: Any) -> SimpleNamespace:
    data = payload if isinstance(payload, str) else json.dumps(payload)
    return SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=data)


class FakeAISocket:
    """Scripted AI-side WebSocket.

    Yields its frames in order, then ends the way a remote close would,
    with ``remote_close_code``. ``hang=True`` keeps the socket open after
    the scripted frames until it is cancelled.
    """

    def __init__(
        self,
        frames: list[Any] | None = None,
        remote_close_code: int | None = 1000,
        hang: bool = False,
        error: Exception | None = None,
    ) -> None:
        self._frames = [f if isinstance(f, SimpleNamespace) else text_frame(f) for f in frames or []]
        self.remote_close_code = remote_close_code
        self.hang = hang
        self._error = error
        self.close_code: int | None = None
        self.closed = False

    def __aiter__(self) -> "FakeAISocket":
        return self

    async def __anext__(self) -> SimpleNamespace:
        await asyncio.sleep(0)
        if self._frames and not self.closed:
            return self._frames.pop(0)
        if self.hang and not self.closed:
            await asyncio.Event().wait()
        if self.close_code is None:
            self.close_code = self.remote_close_code
        self.closed = True
        raise StopAsyncIteration

    def exception(self) -> Exception | None:
        return self._error

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            if self.close_code is None:
                self.close_code = 1000


class FakeConnector:
    """``url -> async context manager`` handing out scripted sockets.

    Sockets are matched by URL substring; ``errors`` entries raise on
    connect instead.
    """

    def __init__(self) -> None:
        self.sockets: dict[str, FakeAISocket] = {}
        self.errors: dict[str, Exception] = {}
        self.urls: list[str] = []

    def script(self, url_fragment: str, socket: FakeAISocket) -> FakeAISocket:
        self.sockets[url_fragment] = socket
        return socket

    def fail(self, url_fragment: str, error: Exception) -> None:
        self.errors[url_fragment] = error

    def __call__(self, url: str):
        self.urls.append(url)

        @asynccontextmanager
        async def connect():
            for fragment, error in self.errors.items():
                if fragment in url:
                    raise error
            socket = next(
                (s for fragment, s in self.sockets.items() if fragment in url),
                FakeAISocket(hang=True),
            )
            try:
                yield socket
            finally:
                await socket.close()

        return connect()


def ai_transport(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.MockTransport:
    return httpx.MockTransport(handler)


def default_ai_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path.endswith("/upload"):
        return httpx.Response(200, json={"jobId": "job-abc", "status": "uploaded"})
    return httpx.Response(200, json={"status": "processing"})


def make_storage(settings: Settings, content: bytes = b"%PDF-1.7 controls") -> StorageService:
    client = MagicMock()
    client.storage.from_.return_value.download.return_value = content
    return StorageService(client, settings)


# =============================================================================
# Service graph
# =============================================================================


class Harness(SimpleNamespace):
    """Bag of wired services plus their fakes."""


def build_harness(
    settings: Settings,
    handler: Callable[[httpx.Request], httpx.Response] = default_ai_handler,
) -> Harness:
    frameworks = InMemoryFrameworkRepository()
    comparisons = InMemoryComparisonRepository()
    identity = InMemoryIdentityService()
    registry = ConnectionRegistry()
    connector = FakeConnector()
    ai_client = AIServiceClient(settings, transport=ai_transport(handler))
    bridge = AIJobBridge(ai_client, settings, connector=connector)
    storage = make_storage(settings)
    processing = FrameworkProcessingService(frameworks, bridge, registry, storage)
    orchestrator = ComparisonOrchestrator(comparisons, frameworks, bridge, registry, settings)
    poller = ReconciliationPoller(frameworks, processing, comparisons, orchestrator, settings)
    container = ServiceContainer(
        settings=settings,
        registry=registry,
        ai_client=ai_client,
        bridge=bridge,
        identity=identity,
        storage=storage,
        frameworks=frameworks,
        comparisons=comparisons,
        processing=processing,
        orchestrator=orchestrator,
        poller=poller,
    )
    return Harness(
        settings=settings,
        frameworks=frameworks,
        comparisons=comparisons,
        identity=identity,
        registry=registry,
        connector=connector,
        ai_client=ai_client,
        bridge=bridge,
        storage=storage,
        processing=processing,
        orchestrator=orchestrator,
        poller=poller,
        container=container,
    )


@pytest_asyncio.fixture
async def harness_factory(
    test_settings: Settings,
) -> AsyncGenerator[Callable[..., Harness], None]:
    """Build service graphs over in-memory fakes; monitors are closed afterwards."""
    built: list[Harness] = []

    def factory(
        handler: Callable[[httpx.Request], httpx.Response] = default_ai_handler,
        settings: Settings | None = None,
    ) -> Harness:
        h = build_harness(settings or test_settings, handler)
        built.append(h)
        return h

    yield factory

    for h in built:
        await h.bridge.close_all(timeout=1.0)
        await h.ai_client.aclose()


@pytest.fixture
def harness(harness_factory: Callable[..., Harness]) -> Harness:
    return harness_factory()


@pytest.fixture
def framework_factory() -> Callable[..., FrameworkRecord]:
    return make_framework


@pytest.fixture
def ai_socket() -> type[FakeAISocket]:
    return FakeAISocket


@pytest.fixture
def ws_frame() -> Callable[[Any], SimpleNamespace]:
    return text_frame


@pytest.fixture
def browser_socket() -> Callable[..., RecordingWebSocket]:
    """Create a recording socket, registered for a user when a harness is given."""

    def factory(
        h: Harness | None = None,
        user_id: str = USER_ID,
        fail_sends: bool = False,
    ) -> RecordingWebSocket:
        ws = RecordingWebSocket(fail_sends=fail_sends)
        if h is not None:
            h.registry.register(user_id, ws)
        return ws

    return factory


@pytest.fixture
def api_harness(test_settings: Settings) -> Harness:
    return build_harness(test_settings)


@pytest.fixture
def test_client(test_settings: Settings, api_harness: Harness) -> Iterator[TestClient]:
    """TestClient over the real app with the fake service graph installed."""
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.state.container = api_harness.container
    limiter.reset()
    try:
        with TestClient(app) as client:
            yield client
    finally:
        app.dependency_overrides.clear()
        app.state.container = None
