"""AI job bridge: upload, status checks and supervised job streams.

Each outstanding AI job gets exactly one WebSocket to the AI service,
keyed by its job key (the AI job id, or ``comparison:<id>`` for
comparison streams). A monitor is two tasks joined by a per-job channel:

    pump      AI socket -> parse -> typed events -> JobChannel
    consumer  JobChannel -> on_event handler (in arrival order)

The pump publishes ``StreamMessage`` per JSON frame, ``StreamError`` for
socket errors and unparsable frames, and always ends with
``StreamClosed`` unless the monitor was cancelled by ``close_all``. It
closes the AI socket as soon as a terminal frame has been relayed.

There is no reconnect. A monitor that dies silently is covered by the
reconciliation poller.

Example:
    >>> bridge = AIJobBridge(AIServiceClient())
    >>> bridge.monitor_job(SubjectKind.USER_FRAMEWORK, "abc", handler)
    True
    >>> bridge.monitor_job(SubjectKind.USER_FRAMEWORK, "abc", handler)
    False
    >>> await bridge.close_all(timeout=5.0)
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from typing import Any

import aiohttp
import structlog

from app.core.config import Settings, get_settings
from app.core.reliability_logging import (
    log_monitor_closed,
    log_monitor_error,
    log_monitor_started,
)
from app.models.ai import AIStatusReport, AIUploadResult
from app.models.processing import SubjectKind
from app.services.ai.client import AIServiceClient
from app.services.storage_service import StoredDocument

logger = structlog.get_logger(__name__)

TERMINAL_FRAME_STATUSES = frozenset({"completed", "done", "failed", "error"})


# =============================================================================
# Events
# =============================================================================


@dataclass(frozen=True)
class StreamMessage:
    """A parsed JSON frame from the AI service."""

    job_key: str
    payload: dict[str, Any]


@dataclass(frozen=True)
class StreamError:
    """Socket-level error or unparsable frame."""

    job_key: str
    reason: str


@dataclass(frozen=True)
class StreamClosed:
    """The AI socket is gone. Always the last event of a monitor."""

    job_key: str
    code: int | None
    messages_received: int = 0


StreamEvent = StreamMessage | StreamError | StreamClosed
EventHandler = Callable[[StreamEvent], Awaitable[None]]
WSConnector = Callable[[str], AbstractAsyncContextManager[Any]]


def is_terminal_frame(payload: dict[str, Any]) -> bool:
    return str(payload.get("status", "")).lower() in TERMINAL_FRAME_STATUSES


_CHANNEL_CLOSED = object()


class JobChannel:
    """Single-consumer async channel of stream events for one job."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    def publish(self, event: StreamEvent) -> None:
        if self._closed:
            return
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CHANNEL_CLOSED)

    def __aiter__(self) -> "JobChannel":
        return self

    async def __anext__(self) -> StreamEvent:
        item = await self._queue.get()
        if item is _CHANNEL_CLOSED:
            raise StopAsyncIteration
        return item


@dataclass(eq=False)
class MonitorHandle:
    """Tasks and channel supervising one AI job stream."""

    job_key: str
    url: str
    channel: JobChannel = field(default_factory=JobChannel)
    pump_task: asyncio.Task | None = None
    consumer_task: asyncio.Task | None = None
    messages_received: int = 0

    @property
    def tasks(self) -> list[asyncio.Task]:
        return [t for t in (self.pump_task, self.consumer_task) if t is not None]

    async def wait(self) -> None:
        """Wait until the stream has ended and every event was handled."""
        await asyncio.gather(*self.tasks, return_exceptions=True)


# =============================================================================
# Bridge
# =============================================================================


class AIJobBridge:
    """Uploads documents and supervises one AI socket per job key.

    The monitor map is process-local and lives on the event loop thread;
    entries are only added or removed one at a time, so no lock is used.
    """

    def __init__(
        self,
        client: AIServiceClient,
        settings: Settings | None = None,
        connector: WSConnector | None = None,
    ):
        """Initialize the bridge.

        Args:
            client: HTTP client for upload and status calls.
            settings: Optional settings override.
            connector: Optional ``url -> async context manager`` yielding a
                WebSocket. Defaults to an aiohttp ``ws_connect``.
        """
        self.client = client
        self.settings = settings or get_settings()
        self._connector = connector or self._aiohttp_connect
        self._session: aiohttp.ClientSession | None = None
        self._monitors: dict[str, MonitorHandle] = {}

    # -------------------------------------------------------------------------
    # HTTP delegates
    # -------------------------------------------------------------------------

    async def upload(self, kind: SubjectKind, document: StoredDocument) -> AIUploadResult:
        """Hand a document to the AI service. Raises UploadFailure kinds."""
        return await self.client.upload(
            kind,
            filename=document.filename,
            content=document.content,
            content_type=document.content_type,
        )

    async def check_status(self, kind: SubjectKind, job_id: str) -> AIStatusReport:
        """Side-effect free status query. Raises StatusCheckFailure."""
        return await self.client.check_status(kind, job_id)

    # -------------------------------------------------------------------------
    # Monitors
    # -------------------------------------------------------------------------

    def monitor_job(self, kind: SubjectKind, job_id: str, on_event: EventHandler) -> bool:
        """Supervise a processing job's progress stream."""
        return self.monitor(job_id, self.client.stream_url(kind, job_id), on_event)

    def monitor_comparison(
        self,
        comparison_id: str,
        user_job_id: str,
        expert_job_id: str,
        on_event: EventHandler,
    ) -> bool:
        """Supervise a comparison stream carrying both AI job ids."""
        return self.monitor(
            comparison_key(comparison_id),
            self.client.comparison_url(user_job_id, expert_job_id),
            on_event,
        )

    def monitor(self, job_key: str, url: str, on_event: EventHandler) -> bool:
        """Open one supervised socket for a job key.

        A second call for a key that is already monitored is a no-op.

        Returns:
            True if a new monitor was started, False if one already exists.
        """
        if job_key in self._monitors:
            logger.debug("monitor_already_active", job_key=job_key)
            return False

        handle = MonitorHandle(job_key=job_key, url=url)
        self._monitors[job_key] = handle
        handle.pump_task = asyncio.create_task(
            self._pump(handle), name=f"ai-monitor-pump:{job_key}"
        )
        handle.consumer_task = asyncio.create_task(
            self._consume(handle, on_event), name=f"ai-monitor-consumer:{job_key}"
        )
        log_monitor_started(job_key=job_key, url=url)
        return True

    def is_monitoring(self, job_key: str) -> bool:
        return job_key in self._monitors

    def handle_for(self, job_key: str) -> MonitorHandle | None:
        return self._monitors.get(job_key)

    @property
    def active_keys(self) -> list[str]:
        return list(self._monitors)

    def get_stats(self) -> dict[str, Any]:
        return {
            "active_monitors": len(self._monitors),
            "job_keys": self.active_keys,
        }

    def _aiohttp_connect(self, url: str) -> AbstractAsyncContextManager[Any]:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(
                    total=None,
                    sock_connect=self.settings.ai_connect_timeout,
                ),
            )
        return self._session.ws_connect(url, heartbeat=self.settings.monitor_heartbeat_seconds)

    async def _pump(self, handle: MonitorHandle) -> None:
        """Relay frames from the AI socket onto the job channel."""
        channel = handle.channel
        close_code: int | None = None
        cancelled = False

        try:
            async with self._connector(handle.url) as ws:
                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        try:
                            payload = json.loads(msg.data)
                        except ValueError as e:
                            reason = f"Invalid JSON frame from AI service: {e}"
                            log_monitor_error(job_key=handle.job_key, reason=reason)
                            channel.publish(StreamError(handle.job_key, reason))
                            break
                        if not isinstance(payload, dict):
                            reason = "Unexpected frame shape from AI service"
                            log_monitor_error(job_key=handle.job_key, reason=reason)
                            channel.publish(StreamError(handle.job_key, reason))
                            break

                        handle.messages_received += 1
                        channel.publish(StreamMessage(handle.job_key, payload))
                        if is_terminal_frame(payload):
                            # Leaving the context closes the AI socket
                            break

                    elif msg.type == aiohttp.WSMsgType.ERROR:
                        error = ws.exception()
                        reason = str(error) if error else "WebSocket error"
                        log_monitor_error(job_key=handle.job_key, reason=reason)
                        channel.publish(StreamError(handle.job_key, reason))
                        break

            close_code = ws.close_code

        except asyncio.CancelledError:
            cancelled = True
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            reason = f"AI connection failed: {e!s}"
            log_monitor_error(job_key=handle.job_key, reason=reason)
            channel.publish(StreamError(handle.job_key, reason))

        finally:
            if self._monitors.get(handle.job_key) is handle:
                del self._monitors[handle.job_key]
            if not cancelled:
                channel.publish(
                    StreamClosed(handle.job_key, close_code, handle.messages_received)
                )
            channel.close()
            log_monitor_closed(
                job_key=handle.job_key,
                close_code=close_code,
                messages_received=handle.messages_received,
            )

    async def _consume(self, handle: MonitorHandle, on_event: EventHandler) -> None:
        """Hand events to the handler in order; handler failures never stop the stream."""
        async for event in handle.channel:
            try:
                await on_event(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "monitor_handler_failed",
                    job_key=handle.job_key,
                    event_type=type(event).__name__,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )

    async def close_all(self, timeout: float | None = None) -> None:
        """Close every outstanding monitor. Called once at shutdown.

        Args:
            timeout: Max seconds to wait for monitors to finish closing.
                Defaults to ``monitor_shutdown_timeout``.
        """
        timeout = self.settings.monitor_shutdown_timeout if timeout is None else timeout
        handles = list(self._monitors.values())
        tasks = [task for handle in handles for task in handle.tasks]

        for task in tasks:
            task.cancel()

        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=timeout)
            if pending:
                logger.warning(
                    "monitor_shutdown_timeout",
                    pending_tasks=len(pending),
                    timeout=timeout,
                )

        self._monitors.clear()

        if self._session is not None:
            await self._session.close()
            self._session = None

        logger.info("ai_job_bridge_closed", monitors_closed=len(handles))


def comparison_key(comparison_id: str) -> str:
    return f"comparison:{comparison_id}"
