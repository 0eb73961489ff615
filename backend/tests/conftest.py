"""
Forum Edge — Test Configuration (conftest.py)
===============================================

What:  Shared pytest fixtures for the entire test suite.
Why:   Tests build their own Settings, auth service fake and clock so no
       test depends on the process environment, the network, or wall time.

Fixtures:
    clock:          Controllable millisecond clock for the rate limiter
    fake_auth:      In-memory AuthSessionService
    make_settings:  Settings factory with production defaults
    make_app:       create_app() wired with the fakes above
    make_client:    HTTPX AsyncClient talking to an app over ASGITransport
"""

import asyncio
import os
import time
from contextlib import asynccontextmanager
from typing import Dict, Optional

import pytest
from httpx import ASGITransport, AsyncClient

# Before any forum_edge import: the module-level app reads the environment
os.environ["APP_ENV"] = "test"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["SUPABASE_URL"] = "https://abcd.supabase.co"
os.environ["SUPABASE_ANON_KEY"] = "anon-test-key"

from forum_edge.config import Settings  # noqa: E402
from forum_edge.exceptions import AuthServiceError  # noqa: E402
from forum_edge.main import create_app  # noqa: E402
from forum_edge.middleware.rate_limit import RateWindowStore, SlidingWindowRateLimiter  # noqa: E402
from forum_edge.schemas.edge import AuthSession, AuthUser  # noqa: E402
from forum_edge.services.auth_base import AuthSessionService  # noqa: E402

START_MS = 1_700_000_000_000


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now_ms: int = START_MS):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


class FakeAuthService(AuthSessionService):
    """
    In-memory auth service.

    users:     access token → user
    sessions:  refresh token → session handed out on refresh
    error:     raise AuthServiceError from every call when set
    delay:     seconds to sleep before answering (timeout tests)
    """

    def __init__(self):
        self.users: Dict[str, AuthUser] = {}
        self.sessions: Dict[str, AuthSession] = {}
        self.error = False
        self.delay = 0.0
        self.calls = []
        self.signed_out = []

    async def _maybe_fail(self, name: str) -> None:
        self.calls.append(name)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise AuthServiceError(status_code=502)

    async def get_user(self, access_token: str) -> Optional[AuthUser]:
        await self._maybe_fail("get_user")
        return self.users.get(access_token)

    async def refresh_session(self, refresh_token: str) -> Optional[AuthSession]:
        await self._maybe_fail("refresh_session")
        return self.sessions.pop(refresh_token, None)

    async def sign_out(self, access_token: str) -> None:
        await self._maybe_fail("sign_out")
        self.signed_out.append(access_token)

    async def health_check(self) -> bool:
        return not self.error


def make_session(
    access_token: str = "access-1",
    refresh_token: str = "refresh-1",
    expires_in: int = 3600,
    user: Optional[AuthUser] = None,
) -> AuthSession:
    return AuthSession(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=int(time.time()) + expires_in,
        user=user or AuthUser(id="user-1", email="ada@example.com"),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_auth():
    return FakeAuthService()


@pytest.fixture
def make_settings(tmp_path):
    def _make(**overrides) -> Settings:
        values = {
            "app_env": "production",
            "disable_rate_limit": False,
            "platform_rate_limiting": False,
            "supabase_url": "https://abcd.supabase.co",
            "supabase_anon_key": "anon-test-key",
            "app_url": "https://forum.example.com",
            "static_root": str(tmp_path / "no-static"),
            "session_refresh_timeout": 0.5,
            "log_level": "WARNING",
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def make_app(make_settings, fake_auth, clock):
    def _make(app_settings: Optional[Settings] = None, **settings_overrides):
        app_settings = app_settings or make_settings(**settings_overrides)
        limiter = SlidingWindowRateLimiter(RateWindowStore(), clock=clock)
        return create_app(app_settings, auth_service=fake_auth, rate_limiter=limiter)

    return _make


@pytest.fixture
def make_client():
    @asynccontextmanager
    async def _client(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client

    return _client
