"""Connection registry for outbound notification sockets.

Tracks live browser sockets per user identity (a user may hold several,
one per tab) and delivers fire-and-forget messages to all of them.

Delivery is at-most-once per connected socket and best-effort: a message
for a user with no live socket is dropped. There is no outbound queue;
reconnecting clients re-read persisted state from the status endpoints.

All state lives on the event loop thread. Handlers only add or remove
single entries, so no lock is taken.
"""

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = structlog.get_logger(__name__)


@dataclass(eq=False)
class ClientConnection:
    """Metadata for one accepted notification socket."""

    websocket: WebSocket
    user_id: str
    relay: str = "default"
    connected_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )


class ConnectionRegistry:
    """Per-user sets of live notification sockets.

    Example:
        >>> registry = ConnectionRegistry()
        >>> conn = registry.register("user-123", websocket)
        >>> await registry.deliver("user-123", {"type": "framework-ai-processing"})
        >>> registry.unregister(conn)
    """

    def __init__(self) -> None:
        # user_id -> set of ClientConnection
        self._connections: dict[str, set[ClientConnection]] = {}

    def register(
        self,
        user_id: str,
        websocket: WebSocket,
        relay: str = "default",
    ) -> ClientConnection:
        """Track an already-authenticated, already-accepted socket.

        Args:
            user_id: Authenticated user ID.
            websocket: The accepted WebSocket.
            relay: Relay path segment the client connected on.

        Returns:
            ClientConnection handle to pass to ``unregister``.
        """
        conn = ClientConnection(websocket=websocket, user_id=user_id, relay=relay)
        self._connections.setdefault(user_id, set()).add(conn)

        logger.info(
            "notification_socket_registered",
            user_id=user_id,
            relay=relay,
            user_connections=len(self._connections[user_id]),
            total_connections=self.total_connections,
        )
        return conn

    def unregister(self, conn: ClientConnection) -> None:
        """Remove one socket, pruning the user entry when it becomes empty."""
        connections = self._connections.get(conn.user_id)
        if connections is None:
            return

        connections.discard(conn)
        if not connections:
            del self._connections[conn.user_id]

        logger.info(
            "notification_socket_unregistered",
            user_id=conn.user_id,
            relay=conn.relay,
            total_connections=self.total_connections,
        )

    async def deliver(self, user_id: str, message: dict[str, Any]) -> int:
        """Send a message to every open socket of a user.

        The message is serialized once. Sockets that are no longer open are
        skipped; they are removed by their own close handler.

        Args:
            user_id: Target user ID.
            message: JSON-serializable message.

        Returns:
            Number of sockets the message was written to.
        """
        # Snapshot: the set can change while we await sends
        connections = list(self._connections.get(user_id, ()))
        if not connections:
            logger.debug(
                "notification_dropped_no_connections",
                user_id=user_id,
                message_type=message.get("type"),
            )
            return 0

        text = json.dumps(message, default=str)
        sent_count = 0

        for conn in connections:
            if not conn.is_open:
                continue
            try:
                await conn.websocket.send_text(text)
                sent_count += 1
            except Exception as e:
                logger.warning(
                    "notification_send_failed",
                    user_id=user_id,
                    relay=conn.relay,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        logger.debug(
            "notification_delivered",
            user_id=user_id,
            message_type=message.get("type"),
            sent_count=sent_count,
            total_connections=len(connections),
        )
        return sent_count

    def get_user_connection_count(self, user_id: str) -> int:
        return len(self._connections.get(user_id, ()))

    @property
    def total_connections(self) -> int:
        return sum(len(conns) for conns in self._connections.values())

    @property
    def connected_users(self) -> list[str]:
        return list(self._connections)

    def get_stats(self) -> dict[str, Any]:
        """Get registry statistics for the monitoring endpoint."""
        return {
            "total_connections": self.total_connections,
            "connected_users": len(self._connections),
        }
