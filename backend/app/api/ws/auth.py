"""WebSocket authentication helpers.

Validates the JWT passed via the ``token`` query parameter of a
notification socket and checks that its embedded token version still
matches the user's current one. Reuses the core security module's JWT
decoding logic.
"""

import structlog
from fastapi import WebSocket
from jwt.exceptions import PyJWTError

from app.core.config import Settings
from app.core.security import decode_jwt, user_from_payload
from app.models.auth import AuthenticatedUser
from app.services.identity_service import IdentityService

logger = structlog.get_logger(__name__)


# RFC 6455 policy violation
WS_CLOSE_POLICY_VIOLATION = 1008
WS_CLOSE_SERVER_ERROR = 1011


class WebSocketAuthError(Exception):
    """Raised when WebSocket authentication fails."""

    def __init__(self, code: str, message: str, close_code: int = WS_CLOSE_POLICY_VIOLATION):
        self.code = code
        self.message = message
        self.close_code = close_code
        super().__init__(message)


async def authenticate_websocket(
    token: str | None,
    settings: Settings,
    identity: IdentityService,
) -> AuthenticatedUser:
    """Authenticate a notification socket using its JWT.

    Args:
        token: JWT token from query parameter.
        settings: Application settings.
        identity: Identity collaborator providing the current token version.

    Returns:
        AuthenticatedUser if authentication succeeds.

    Raises:
        WebSocketAuthError: If the token is missing, invalid, or revoked.
    """
    if not token:
        logger.debug("websocket_auth_failed", reason="missing_token")
        raise WebSocketAuthError("MISSING_TOKEN", "Authentication token required")

    try:
        payload = decode_jwt(token, settings)
        user = user_from_payload(payload)
    except (PyJWTError, KeyError, ValueError) as e:
        logger.warning(
            "websocket_auth_failed",
            reason="invalid_token",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise WebSocketAuthError("INVALID_TOKEN", "Invalid or expired token") from e

    try:
        current_version = await identity.get_token_version(user.id)
    except Exception as e:
        logger.error(
            "websocket_auth_error",
            reason="identity_lookup_failed",
            user_id=user.id,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise WebSocketAuthError(
            "AUTH_ERROR",
            "Authentication failed",
            WS_CLOSE_SERVER_ERROR,
        ) from e

    if current_version is None:
        logger.warning("websocket_auth_failed", reason="unknown_user", user_id=user.id)
        raise WebSocketAuthError("UNKNOWN_USER", "User not found")

    if current_version != user.token_version:
        logger.warning(
            "websocket_auth_failed",
            reason="token_version_mismatch",
            user_id=user.id,
            token_version=user.token_version,
            current_version=current_version,
        )
        raise WebSocketAuthError("TOKEN_REVOKED", "Token is no longer valid")

    structlog.contextvars.bind_contextvars(user_id=user.id)
    logger.debug("websocket_auth_success", user_id=user.id)
    return user


async def close_with_error(
    websocket: WebSocket,
    code: int,
    reason: str,
) -> None:
    """Close a WebSocket with an error code and reason.

    Args:
        websocket: The WebSocket to close.
        code: WebSocket close code.
        reason: Human-readable close reason.
    """
    try:
        await websocket.close(code=code, reason=reason)
    except RuntimeError:
        # Connection already closed
        logger.debug("websocket_close_skipped", code=code)
