"""
Forum Edge — Session Propagation
==================================

What:  Reads the auth session cookie, validates or refreshes it against the
       auth service, runs the downstream app, and writes refreshed cookies
       onto the response it produced.
Why:   Access tokens are short-lived. Refreshing at the edge means every
       handler sees a valid session (or none) without handling expiry itself.
How:   One bounded exchange with the auth service per request. Anything that
       goes wrong degrades to "anonymous for this request"; nothing here can
       fail the request.

Cookie Format:
    Name:   sb-<project-ref>-auth-token (or AUTH_COOKIE_NAME)
    Value:  "base64-" + base64url(JSON session), unpadded
    Large sessions are split into <name>.0, <name>.1, ... chunks, which is
    how browser clients of the same auth service store them.

Flow:
    no cookie / undecodable cookie   → anonymous, cookies untouched
    token valid                      → user resolved, cookies untouched
    token expired or rejected        → refresh
        refresh accepted             → new cookies written
        refresh rejected             → cookies cleared (signed out)
    auth service error / timeout     → anonymous, cookies untouched
"""

import asyncio
import base64
import binascii
import json
import logging
from typing import List, Mapping, NamedTuple, Optional, Tuple

from pydantic import ValidationError
from starlette.middleware.base import RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from forum_edge.config import Settings
from forum_edge.exceptions import AuthServiceError, InvalidSessionCookieError
from forum_edge.schemas.edge import AuthSession, AuthUser
from forum_edge.services.auth_base import AuthSessionService

logger = logging.getLogger(__name__)

BASE64_PREFIX = "base64-"
MAX_CHUNK_SIZE = 3180
COOKIE_MAX_AGE = 400 * 24 * 60 * 60


class CookieWrite(NamedTuple):
    """A pending cookie change. value=None deletes the cookie."""

    name: str
    value: Optional[str]


class SessionState(NamedTuple):
    user: Optional[AuthUser]
    session: Optional[AuthSession]
    cookie_writes: List[CookieWrite]


ANONYMOUS = SessionState(user=None, session=None, cookie_writes=[])


class SessionCookieCodec:
    """Encodes sessions into (possibly chunked) cookies and back."""

    def __init__(self, name: str):
        self.name = name

    def present_names(self, cookies: Mapping[str, str]) -> List[str]:
        names = [self.name] if self.name in cookies else []
        index = 0
        while f"{self.name}.{index}" in cookies:
            names.append(f"{self.name}.{index}")
            index += 1
        return names

    def read_raw(self, cookies: Mapping[str, str]) -> Optional[str]:
        if self.name in cookies:
            return cookies[self.name]
        chunks = [cookies[name] for name in self.present_names(cookies)]
        return "".join(chunks) if chunks else None

    def decode(self, raw: str) -> AuthSession:
        try:
            if raw.startswith(BASE64_PREFIX):
                encoded = raw[len(BASE64_PREFIX):]
                payload = base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4))
            else:
                payload = raw.encode("utf-8")
            return AuthSession.model_validate(json.loads(payload))
        except (binascii.Error, UnicodeDecodeError, ValueError, ValidationError) as e:
            raise InvalidSessionCookieError(
                context={"cookie": self.name, "error_type": type(e).__name__},
            ) from e

    def read(self, cookies: Mapping[str, str]) -> Optional[AuthSession]:
        """
        Returns:
            The stored session, or None when no session cookie is present.

        Raises:
            InvalidSessionCookieError: A cookie is present but unreadable.
        """
        raw = self.read_raw(cookies)
        if not raw:
            return None
        return self.decode(raw)

    def encode(self, session: AuthSession) -> List[Tuple[str, str]]:
        payload = session.model_dump_json(exclude_none=True).encode("utf-8")
        value = BASE64_PREFIX + base64.urlsafe_b64encode(payload).decode("ascii").rstrip("=")

        if len(value) <= MAX_CHUNK_SIZE:
            return [(self.name, value)]
        return [
            (f"{self.name}.{index}", value[start:start + MAX_CHUNK_SIZE])
            for index, start in enumerate(range(0, len(value), MAX_CHUNK_SIZE))
        ]

    def replace(self, cookies: Mapping[str, str], session: AuthSession) -> List[CookieWrite]:
        """New cookies for `session`, plus deletions of stale chunks."""
        writes = [CookieWrite(name, value) for name, value in self.encode(session)]
        written = {write.name for write in writes}
        writes.extend(
            CookieWrite(name, None)
            for name in self.present_names(cookies)
            if name not in written
        )
        return writes

    def clear(self, cookies: Mapping[str, str]) -> List[CookieWrite]:
        return [CookieWrite(name, None) for name in self.present_names(cookies)]


class SessionPropagator:
    """
    Session refresh stage of the edge pipeline.

    Args:
        auth_service: The identity provider client.
        app_settings: Supplies the cookie name, timeout and cookie security.
    """

    def __init__(self, auth_service: AuthSessionService, app_settings: Settings):
        self.auth_service = auth_service
        self.codec = SessionCookieCodec(app_settings.session_cookie_name)
        self.timeout = app_settings.session_refresh_timeout
        self.secure_cookies = not app_settings.is_development

    async def update_session(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        state = await self.resolve(request)

        # Downstream handlers read the session from request state
        request.state.user = state.user
        request.state.auth_session = state.session

        response = await call_next(request)
        if not getattr(request.state, "signed_out", False):
            self.write_cookies(response, state.cookie_writes)
        return response

    async def resolve(self, request: Request) -> SessionState:
        try:
            session = self.codec.read(request.cookies)
        except InvalidSessionCookieError as e:
            logger.debug("Ignoring unreadable session cookie: %s", e.context)
            return ANONYMOUS

        if session is None:
            return ANONYMOUS

        try:
            return await asyncio.wait_for(
                self._exchange(request.cookies, session),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Session refresh timed out after %.1fs; continuing unauthenticated",
                self.timeout,
            )
        except AuthServiceError as e:
            logger.warning(
                "Session refresh failed (%s); continuing unauthenticated",
                e.message,
            )
        return ANONYMOUS

    async def _exchange(self, cookies: Mapping[str, str], session: AuthSession) -> SessionState:
        if not session.is_expired():
            user = await self.auth_service.get_user(session.access_token)
            if user is not None:
                return SessionState(user=user, session=session, cookie_writes=[])

        refreshed = await self.auth_service.refresh_session(session.refresh_token)
        if refreshed is None:
            logger.info("Session could not be refreshed; clearing session cookies")
            return SessionState(user=None, session=None, cookie_writes=self.codec.clear(cookies))

        return SessionState(
            user=refreshed.user,
            session=refreshed,
            cookie_writes=self.codec.replace(cookies, refreshed),
        )

    def write_cookies(self, response: Response, writes: List[CookieWrite]) -> None:
        """
        Apply pending cookie changes. Best effort: a response that refuses a
        cookie keeps the cookies the browser already has, and the next
        request will try again.
        """
        for write in writes:
            try:
                if write.value is None:
                    response.delete_cookie(write.name, path="/")
                else:
                    response.set_cookie(
                        write.name,
                        write.value,
                        max_age=COOKIE_MAX_AGE,
                        path="/",
                        samesite="lax",
                        secure=self.secure_cookies,
                        httponly=False,
                    )
            except (RuntimeError, TypeError, ValueError) as e:
                logger.debug("Could not write session cookie %s: %s", write.name, e)

    def clear_session(self, request: Request, response: Response) -> None:
        self.write_cookies(response, self.codec.clear(request.cookies))
