"""
Forum Edge — Custom Exception Hierarchy
=========================================

What:  Application-specific exceptions raised inside the edge pipeline.
Why:   Each failure class has a different recovery policy at the edge:
       some are fatal for the request, some degrade to "anonymous".
How:   Each exception carries a message and optional context dict.
       Global exception handlers (registered in main.py) turn the ones that
       escape a route handler into structured JSON error responses.

Exception Hierarchy:
    ForumEdgeError (base)
    ├── NonceGenerationError       → 500 (fatal: no HTML without a CSP nonce)
    ├── AuthServiceError           → 503 from routes; recovered inside the gate
    └── InvalidSessionCookieError  → never surfaces; treated as "no session"

Note:
    Rate limit rejections are not exceptions. The limiter returns a
    RateLimitResult and the gate answers 429 directly, because a rejected
    request must not reach any handler that could refresh a session.
"""

from typing import Any, Dict, Optional


class ForumEdgeError(Exception):
    """
    Base exception for all edge errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class NonceGenerationError(ForumEdgeError):
    """
    Raised when the OS randomness source cannot produce a CSP nonce.

    HTTP:    500 Internal Server Error
    Policy:  Fatal for the request. Serving HTML without a matching nonce
             would either break every inline script or require dropping the
             nonce from the policy, which is a security regression.
    """

    def __init__(
        self,
        message: str = "Unable to generate a content security policy nonce",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class AuthServiceError(ForumEdgeError):
    """
    Raised when the external auth service fails or answers unexpectedly.

    What:    Network error, timeout, or a 5xx / malformed response.
    HTTP:    503 Service Unavailable (only when a route calls the service)
    Inside the gate: caught and logged; the request continues unauthenticated.
    """

    def __init__(
        self,
        message: str = "Authentication service is temporarily unavailable",
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if status_code is not None:
            ctx["status_code"] = status_code
        super().__init__(message=message, context=ctx)
        self.status_code = status_code


class InvalidSessionCookieError(ForumEdgeError):
    """
    Raised when a session cookie cannot be decoded.

    Tampered, truncated, or foreign cookies are indistinguishable from
    "no session" for the purposes of the edge, so the propagator catches
    this and proceeds anonymously.
    """

    def __init__(
        self,
        message: str = "Session cookie could not be decoded",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
