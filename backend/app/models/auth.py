"""Authentication models for JWT claims and user information."""

from pydantic import BaseModel, Field


class JWTClaims(BaseModel):
    """JWT claims issued by the auth service.

    ``token_version`` is bumped server-side whenever the user logs out
    everywhere; tokens carrying an older version are no longer accepted
    on the notification socket.
    """

    sub: str = Field(..., description="User ID")
    aud: str = Field(..., description="Audience - should be 'authenticated'")
    exp: int = Field(..., description="Expiration timestamp (Unix epoch)")
    iat: int = Field(..., description="Issued at timestamp (Unix epoch)")
    email: str | None = Field(None, description="User email address")
    role: str = Field("user", description="User role")
    token_version: int = Field(0, description="User token version at issue time")


class AuthenticatedUser(BaseModel):
    """Authenticated user information extracted from JWT.

    This is the standardized user object returned by auth dependencies
    for use throughout the application.
    """

    id: str = Field(..., description="User ID (from JWT 'sub' claim)")
    email: str | None = Field(None, description="User email address")
    role: str = Field("user", description="User role")
    token_version: int = Field(0, description="Token version embedded in the JWT")
