"""Reliability Event Logging Module.

Provides standardized logging for the events that matter when diagnosing
lost or stuck AI jobs:
- Notification socket lifecycle (client side)
- AI job monitor lifecycle (AI-service side)
- Reconciliation repairs

All events follow a consistent schema for easy querying:
- event_type: The type of reliability event
- user_id: User the event concerns (if applicable)
- job_key: Monitor key ("<job_id>" or "comparison:<id>") (if applicable)
- subject_id: Framework or comparison ID (if applicable)
- timestamp: ISO format timestamp
- details: Additional event-specific data
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


# =============================================================================
# Event Types
# =============================================================================


class ReliabilityEventType(str, Enum):
    """Reliability event types for consistent categorization."""

    # Notification sockets
    WEBSOCKET_CONNECTED = "websocket_connected"
    WEBSOCKET_DISCONNECTED = "websocket_disconnected"
    WEBSOCKET_REJECTED = "websocket_rejected"
    WEBSOCKET_HEARTBEAT_TIMEOUT = "websocket_heartbeat_timeout"

    # AI job monitors
    MONITOR_STARTED = "monitor_started"
    MONITOR_CLOSED = "monitor_closed"
    MONITOR_ERROR = "monitor_error"

    # Reconciliation
    RECONCILIATION_REPAIRED = "reconciliation_repaired"
    COMPARISON_MONITOR_LOST = "comparison_monitor_lost"


# =============================================================================
# Logging Functions
# =============================================================================


def log_reliability_event(
    event_type: ReliabilityEventType,
    *,
    user_id: str | None = None,
    job_key: str | None = None,
    subject_id: str | None = None,
    level: str = "info",
    **details: Any,
) -> None:
    """Log a reliability event with standardized schema.

    Args:
        event_type: The type of reliability event.
        user_id: User ID (from auth).
        job_key: Monitor key of the AI job (if applicable).
        subject_id: Framework or comparison ID (if applicable).
        level: structlog level method to use.
        **details: Additional event-specific data.

    Example:
        >>> log_reliability_event(
        ...     ReliabilityEventType.MONITOR_CLOSED,
        ...     job_key="job-123",
        ...     close_code=1000,
        ... )
    """
    getattr(logger, level)(
        event_type.value,
        event_category="reliability",
        event_type=event_type.value,
        user_id=user_id,
        job_key=job_key,
        subject_id=subject_id,
        timestamp=datetime.now(UTC).isoformat(),
        **details,
    )


# =============================================================================
# Notification Sockets
# =============================================================================


def log_websocket_connected(
    *,
    user_id: str,
    relay: str,
    connection_count: int,
) -> None:
    """Log an accepted notification socket.

    Args:
        user_id: Authenticated user.
        relay: Relay path the client connected on.
        connection_count: Sockets the user now has open.
    """
    log_reliability_event(
        ReliabilityEventType.WEBSOCKET_CONNECTED,
        user_id=user_id,
        relay=relay,
        connection_count=connection_count,
    )


def log_websocket_disconnected(
    *,
    user_id: str,
    relay: str,
    reason: str,
    duration_ms: int | None = None,
) -> None:
    """Log a closed notification socket."""
    log_reliability_event(
        ReliabilityEventType.WEBSOCKET_DISCONNECTED,
        user_id=user_id,
        relay=relay,
        disconnect_reason=reason,
        duration_ms=duration_ms,
    )


def log_websocket_rejected(*, relay: str, reason: str) -> None:
    """Log a notification socket refused during the handshake."""
    log_reliability_event(
        ReliabilityEventType.WEBSOCKET_REJECTED,
        level="warning",
        relay=relay,
        reject_reason=reason,
    )


def log_websocket_heartbeat_timeout(*, user_id: str, relay: str) -> None:
    log_reliability_event(
        ReliabilityEventType.WEBSOCKET_HEARTBEAT_TIMEOUT,
        level="warning",
        user_id=user_id,
        relay=relay,
    )


# =============================================================================
# AI Job Monitors
# =============================================================================


def log_monitor_started(*, job_key: str, url: str) -> None:
    log_reliability_event(
        ReliabilityEventType.MONITOR_STARTED,
        job_key=job_key,
        url=url,
    )


def log_monitor_closed(
    *,
    job_key: str,
    close_code: int | None,
    messages_received: int,
) -> None:
    """Log the end of an AI job monitor.

    A close_code of None means the connection was never established
    or was torn down locally.
    """
    log_reliability_event(
        ReliabilityEventType.MONITOR_CLOSED,
        job_key=job_key,
        close_code=close_code,
        messages_received=messages_received,
    )


def log_monitor_error(*, job_key: str, reason: str) -> None:
    log_reliability_event(
        ReliabilityEventType.MONITOR_ERROR,
        level="warning",
        job_key=job_key,
        reason=reason,
    )


# =============================================================================
# Reconciliation
# =============================================================================


def log_reconciliation_repaired(
    *,
    subject_id: str,
    kind: str,
    job_id: str | None,
    outcome: str,
    owner_id: str | None = None,
) -> None:
    """Log a processing record repaired by the reconciliation poller.

    Args:
        subject_id: Framework ID.
        kind: Subject kind ("user_framework" or "expert_framework").
        job_id: AI job ID.
        outcome: "completed" or "failed".
        owner_id: Framework owner.
    """
    log_reliability_event(
        ReliabilityEventType.RECONCILIATION_REPAIRED,
        user_id=owner_id,
        job_key=job_id,
        subject_id=subject_id,
        kind=kind,
        outcome=outcome,
    )


def log_comparison_monitor_lost(
    *,
    comparison_id: str,
    user_id: str | None,
    status: str,
) -> None:
    log_reliability_event(
        ReliabilityEventType.COMPARISON_MONITOR_LOST,
        level="warning",
        user_id=user_id,
        job_key=f"comparison:{comparison_id}",
        subject_id=comparison_id,
        previous_status=status,
    )
