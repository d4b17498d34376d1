"""WebSocket route for real-time notifications.

Browsers connect to ``/ws/{relay}?token=<JWT>``. Routing is per user, so
any relay name is accepted; it is only recorded for diagnostics.
"""

import asyncio
import json
import time
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from app.api.deps import get_identity_service, get_registry
from app.api.ws.auth import WebSocketAuthError, authenticate_websocket, close_with_error
from app.api.ws.connection_manager import ConnectionRegistry
from app.core.config import Settings, get_settings
from app.core.reliability_logging import (
    log_websocket_connected,
    log_websocket_disconnected,
    log_websocket_heartbeat_timeout,
    log_websocket_rejected,
)
from app.models.notification import ConnectionAck
from app.services.identity_service import IdentityService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/ws", tags=["websocket"])


@router.websocket("/{relay}")
async def notification_socket(
    websocket: WebSocket,
    relay: str,
    token: Annotated[str | None, Query()] = None,
    registry: ConnectionRegistry = Depends(get_registry),
    identity: IdentityService = Depends(get_identity_service),
    settings: Settings = Depends(get_settings),
) -> None:
    """Notification socket for framework processing and comparison updates.

    Query Parameters:
        token: JWT authentication token (required)

    Message Format (outbound from server):
        {"type": "connection", "status": "connected"}              on accept
        {"type": "framework-ai-processing", "frameworkId": ..., ...}
        {"type": "framework-comparison", "comparisonId": ..., ...}

    Message Format (inbound from client):
        {"type": "ping"}  -> Server responds with {"type": "pong"}

    Close Codes:
        1008: Missing or invalid token, or token version no longer current
    """
    try:
        user = await authenticate_websocket(token, settings, identity)
    except WebSocketAuthError as e:
        log_websocket_rejected(relay=relay, reason=e.code)
        # Must accept before closing with a close code the client can read
        await websocket.accept()
        await close_with_error(websocket, e.close_code, e.message)
        return

    await websocket.accept()
    conn = registry.register(user.id, websocket, relay)
    connected_at = time.monotonic()
    disconnect_reason = "server_closed"

    try:
        await websocket.send_json(ConnectionAck().to_message())
        log_websocket_connected(
            user_id=user.id,
            relay=relay,
            connection_count=registry.get_user_connection_count(user.id),
        )

        while True:
            try:
                message = await asyncio.wait_for(
                    websocket.receive(),
                    timeout=float(settings.websocket_ping_interval),
                )
            except asyncio.TimeoutError:
                # Idle client: send a server ping to keep the connection alive
                try:
                    await websocket.send_json({"type": "ping"})
                except Exception:
                    log_websocket_heartbeat_timeout(user_id=user.id, relay=relay)
                    disconnect_reason = "ping_failed"
                    break
                continue

            if message.get("type") == "websocket.disconnect":
                disconnect_reason = "client_disconnected"
                break

            text_data = message.get("text")
            if not text_data:
                continue
            try:
                msg = json.loads(text_data)
            except json.JSONDecodeError:
                logger.debug("websocket_invalid_client_message", user_id=user.id)
                continue
            if isinstance(msg, dict) and msg.get("type") == "ping":
                await websocket.send_json({"type": "pong"})

    except WebSocketDisconnect:
        disconnect_reason = "client_disconnected"
    except Exception as e:
        disconnect_reason = f"error: {type(e).__name__}"
        logger.error(
            "websocket_error",
            user_id=user.id,
            relay=relay,
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
    finally:
        registry.unregister(conn)
        log_websocket_disconnected(
            user_id=user.id,
            relay=relay,
            reason=disconnect_reason,
            duration_ms=int((time.monotonic() - connected_at) * 1000),
        )
