"""
Forum Edge — Abstract Auth Session Service
============================================

What:  Contract for the external identity provider the edge refreshes
       sessions against.
Why:   The session propagator only needs "who is this token", "trade this
       refresh token for a new session", and "revoke". Keeping that behind
       an interface lets tests substitute an in-memory fake and keeps the
       Supabase specifics in one module.
Who:   Implemented by SupabaseAuthService; consumed by SessionPropagator,
       the session routes, and the health route.
"""

from abc import ABC, abstractmethod
from typing import Optional

from forum_edge.schemas.edge import AuthSession, AuthUser


class AuthSessionService(ABC):
    """
    Abstract interface for validating and refreshing auth sessions.

    Contract:
        - "Token is not valid" is a normal answer (None), not an exception.
        - Transport failures, timeouts and 5xx answers raise AuthServiceError.
        - Implementations never retry; the edge cannot afford the latency.
    """

    @abstractmethod
    async def get_user(self, access_token: str) -> Optional[AuthUser]:
        """
        Resolve the user an access token belongs to.

        Returns:
            The user, or None when the token is expired, revoked or malformed.

        Raises:
            AuthServiceError: The service could not be asked.
        """
        ...

    @abstractmethod
    async def refresh_session(self, refresh_token: str) -> Optional[AuthSession]:
        """
        Exchange a refresh token for a new session.

        Returns:
            The new session, or None when the refresh token was rejected
            (already used, revoked, or belongs to a deleted user).

        Raises:
            AuthServiceError: The service could not be asked.
        """
        ...

    @abstractmethod
    async def sign_out(self, access_token: str) -> None:
        """Revoke the session behind an access token."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """True if the service is reachable. Never raises."""
        ...

    async def aclose(self) -> None:
        """Release network resources. No-op unless the implementation holds any."""
        return None
