"""WebSocket API package for real-time notifications.

Components:
- connection_manager: per-user registry of live notification sockets
- auth: JWT + token-version authentication for socket handshakes
"""

from app.api.ws.connection_manager import ClientConnection, ConnectionRegistry

__all__ = [
    "ClientConnection",
    "ConnectionRegistry",
]
