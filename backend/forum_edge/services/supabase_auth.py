"""
Forum Edge — Supabase Auth Service
====================================

What:  AuthSessionService implementation over the Supabase Auth (GoTrue)
       REST API.
Why:   Identities and sessions live in the managed backend; the edge only
       asks it to validate and refresh tokens on each request.
How:   One shared httpx.AsyncClient with a short timeout, the project's
       anon key sent as `apikey` on every call.
Who:   Created by create_app(); used by SessionPropagator and the
       /api/auth routes.

Endpoints used:
    GET  /auth/v1/user                              → who owns this token
    POST /auth/v1/token?grant_type=refresh_token    → new session
    POST /auth/v1/logout                            → revoke session
    GET  /auth/v1/health                            → reachability

Error Translation:
    401/403 on /user, 400/401 on /token   → None (token not valid)
    any other non-2xx, transport error,
    token that cannot be sent as a header → AuthServiceError
    Nothing is retried: a slow auth service must cost one timeout, not three.
"""

import logging
import time
from typing import Optional

import httpx
from pydantic import ValidationError

from forum_edge import __version__
from forum_edge.config import Settings
from forum_edge.exceptions import AuthServiceError
from forum_edge.schemas.edge import AuthSession, AuthUser
from forum_edge.services.auth_base import AuthSessionService

logger = logging.getLogger(__name__)


class SupabaseAuthService(AuthSessionService):
    """
    Supabase Auth REST client.

    Args:
        app_settings: Supplies supabase_url, supabase_anon_key and the timeout.
        client: Pre-built httpx client (tests pass one with a MockTransport).
    """

    # Token answers the service gives for a bad refresh token
    REJECTED_REFRESH_STATUSES = {400, 401, 403}
    REJECTED_USER_STATUSES = {401, 403}

    def __init__(self, app_settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.base_url = app_settings.supabase_url.rstrip("/")
        self.configured = bool(self.base_url and app_settings.supabase_anon_key)
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(app_settings.session_refresh_timeout),
            headers={
                "apikey": app_settings.supabase_anon_key,
                "X-Client-Info": f"forum-edge/{__version__}",
            },
        )

        logger.info(
            "SupabaseAuthService initialized for %s (timeout=%.1fs)",
            self.base_url or "<unconfigured>",
            app_settings.session_refresh_timeout,
        )

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        if not self.configured:
            raise AuthServiceError(
                message="Authentication service is not configured",
                context={"path": path},
            )

        start_time = time.perf_counter()
        # Tokens come from a client-controlled cookie; a non-ASCII one fails
        # header encoding (UnicodeEncodeError) before anything is sent
        try:
            response = await self._client.request(method, path, **kwargs)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.warning(
                "Auth service %s %s failed after %.0fms: %s",
                method, path, duration_ms, str(e),
            )
            raise AuthServiceError(
                context={"path": path, "error_type": type(e).__name__},
            ) from e

        logger.debug(
            "Auth service %s %s → %d in %.0fms",
            method, path, response.status_code,
            (time.perf_counter() - start_time) * 1000,
        )
        return response

    @staticmethod
    def _bearer(access_token: str) -> dict:
        return {"Authorization": f"Bearer {access_token}"}

    def _unexpected(self, response: httpx.Response, path: str) -> AuthServiceError:
        logger.warning("Auth service %s answered %d", path, response.status_code)
        return AuthServiceError(status_code=response.status_code, context={"path": path})

    async def get_user(self, access_token: str) -> Optional[AuthUser]:
        path = "/auth/v1/user"
        response = await self._request("GET", path, headers=self._bearer(access_token))

        if response.status_code in self.REJECTED_USER_STATUSES:
            return None
        if response.status_code != 200:
            raise self._unexpected(response, path)

        try:
            return AuthUser.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise AuthServiceError(
                message="Authentication service returned a malformed user",
                context={"path": path},
            ) from e

    async def refresh_session(self, refresh_token: str) -> Optional[AuthSession]:
        path = "/auth/v1/token"
        response = await self._request(
            "POST",
            path,
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )

        if response.status_code in self.REJECTED_REFRESH_STATUSES:
            logger.info("Refresh token rejected by auth service (%d)", response.status_code)
            return None
        if response.status_code != 200:
            raise self._unexpected(response, path)

        try:
            return AuthSession.from_token_response(response.json())
        except (ValueError, ValidationError) as e:
            raise AuthServiceError(
                message="Authentication service returned a malformed session",
                context={"path": path},
            ) from e

    async def sign_out(self, access_token: str) -> None:
        path = "/auth/v1/logout"
        response = await self._request("POST", path, headers=self._bearer(access_token))

        # An already-invalid token means there is nothing left to revoke
        if response.status_code in (200, 204) or response.status_code in self.REJECTED_USER_STATUSES:
            return
        raise self._unexpected(response, path)

    async def health_check(self) -> bool:
        if not self.configured:
            return False
        try:
            response = await self._request("GET", "/auth/v1/health")
        except AuthServiceError:
            return False
        return response.status_code == 200

    async def aclose(self) -> None:
        await self._client.aclose()
