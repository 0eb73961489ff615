"""
Forum Edge — Pydantic Schemas
===============================

What:  Models for the auth session exchanged with the external auth service
       and for the JSON bodies this service returns.
Why:   The auth service's JSON is validated once at the boundary; everything
       downstream works with typed objects.

Wire format notes:
    The session cookie holds the same JSON the auth service returns from
    its token endpoint: access_token, refresh_token, expires_at (epoch
    seconds), token_type, user. Unknown fields are ignored so newer auth
    service versions do not break decoding.
"""

import time
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ══════════════════════════════════════════════════════════════════════════
# Auth Session Models — What the auth service returns
# ══════════════════════════════════════════════════════════════════════════


class AuthUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    email: Optional[str] = None
    role: Optional[str] = None


class AuthSession(BaseModel):
    """
    A session as stored in the auth cookie.

    expires_at:
        Epoch seconds. Some token responses only carry expires_in, so
        `from_token_response` fills it in relative to now.
    """

    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: str
    expires_at: Optional[int] = None
    expires_in: Optional[int] = None
    token_type: str = "bearer"
    user: Optional[AuthUser] = None

    @classmethod
    def from_token_response(cls, payload: dict) -> "AuthSession":
        session = cls.model_validate(payload)
        if session.expires_at is None and session.expires_in is not None:
            session.expires_at = int(time.time()) + session.expires_in
        return session

    def is_expired(self, margin_seconds: int = 10) -> bool:
        """Expired, or about to expire within `margin_seconds`."""
        if self.expires_at is None:
            return False
        return self.expires_at <= int(time.time()) + margin_seconds


# ══════════════════════════════════════════════════════════════════════════
# Response Models — What the API returns to clients
# ══════════════════════════════════════════════════════════════════════════


class RateLimitErrorResponse(BaseModel):
    """Body of a 429 answer from the edge gate."""

    error: str = Field(default="Too Many Requests")
    message: str = Field(description="Human-readable reason")
    resetAt: str = Field(description="When the window resets (ISO 8601, UTC)")


class ErrorResponse(BaseModel):
    """
    Standardized error body for failures raised inside route handlers.

    Fields:
        error: Machine-readable error code
        message: Human-readable description
        request_id: Correlation ID for tracing this error in server logs
    """

    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class SessionResponse(BaseModel):
    authenticated: bool
    user_id: Optional[str] = None
    email: Optional[str] = None


class HealthResponse(BaseModel):
    """
    Health check response showing service and dependency status.

    auth_service is informational only: an unreachable auth service
    degrades sessions to anonymous, it does not stop the edge.
    """

    status: str = Field(description="Overall service status: healthy, degraded")
    version: str = Field(description="Application version")
    auth_service: str = Field(description="Auth service status: available, unavailable, unconfigured")
    rate_limiting: str = Field(description="active or disabled")
    uptime_seconds: float = Field(description="Seconds since service started")
