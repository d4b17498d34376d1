"""Security utilities for JWT validation."""

import jwt
import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt.exceptions import PyJWTError

from app.core.config import Settings, get_settings
from app.models.auth import AuthenticatedUser

logger = structlog.get_logger(__name__)

# HTTP Bearer token scheme
bearer_scheme = HTTPBearer(auto_error=False)


def decode_jwt(token: str, settings: Settings) -> dict:
    """Decode and verify a JWT issued by the auth service.

    Args:
        token: The JWT token string.
        settings: Application settings.

    Returns:
        Decoded JWT payload.

    Raises:
        PyJWTError: If token validation fails.
        ValueError: If no JWT secret is configured.
    """
    if not settings.jwt_secret:
        raise ValueError("JWT secret not configured")
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        audience=settings.jwt_audience,
    )


def user_from_payload(payload: dict) -> AuthenticatedUser:
    """Build the AuthenticatedUser for a decoded JWT payload."""
    return AuthenticatedUser(
        id=str(payload["sub"]),
        email=payload.get("email"),
        role=payload.get("role", "user"),
        token_version=int(payload.get("token_version", 0)),
    )


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={
            "error": {
                "code": code,
                "message": message,
                "details": {},
            }
        },
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> AuthenticatedUser:
    """Validate JWT token and extract user information.

    Args:
        credentials: HTTP Bearer token credentials.
        settings: Application settings containing the JWT secret.

    Returns:
        AuthenticatedUser with user information from JWT claims.

    Raises:
        HTTPException: If token is missing, invalid, or expired.
    """
    if credentials is None:
        logger.debug("jwt_validation_failed", reason="missing_token")
        raise _unauthorized("UNAUTHORIZED", "Missing authentication token")

    if not settings.jwt_secret:
        logger.error("jwt_validation_failed", reason="missing_jwt_secret")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": {
                    "code": "SERVER_ERROR",
                    "message": "Authentication service misconfigured",
                    "details": {},
                }
            },
        )

    try:
        payload = decode_jwt(credentials.credentials, settings)
        user = user_from_payload(payload)
    except jwt.ExpiredSignatureError:
        logger.warning("jwt_validation_failed", reason="token_expired")
        raise _unauthorized("TOKEN_EXPIRED", "Authentication token has expired") from None
    except (PyJWTError, KeyError, ValueError) as e:
        logger.warning(
            "jwt_validation_failed",
            reason="invalid_token",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise _unauthorized("INVALID_TOKEN", "Invalid or expired token") from None

    # Bind user context to all subsequent logs in this request
    structlog.contextvars.bind_contextvars(user_id=user.id)
    logger.debug("jwt_validation_success", user_id=user.id)

    return user


def require_role(*allowed_roles: str):
    """Create a dependency that requires one of the given roles.

    Example:
        @router.post("/jobs/reconcile")
        async def reconcile(user: AuthenticatedUser = Depends(require_role("admin"))):
            ...
    """

    async def role_checker(
        user: AuthenticatedUser = Depends(get_current_user),
    ) -> AuthenticatedUser:
        if user.role not in allowed_roles:
            logger.warning(
                "access_denied",
                user_id=user.id,
                required_roles=list(allowed_roles),
                user_role=user.role,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": {
                        "code": "FORBIDDEN",
                        "message": "You don't have permission to access this resource",
                        "details": {},
                    }
                },
            )
        return user

    return role_checker
