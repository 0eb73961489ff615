"""
Forum Edge — Session Propagation Tests
========================================

What:  Tests for the session cookie codec, the session propagator (through
       the app), and the Supabase auth client (over httpx.MockTransport).

What we test:
    ✅ Cookie round trip, chunking, stale chunk cleanup
    ✅ Valid token → user resolved, no cookie writes
    ✅ Expired token → refresh → new cookies
    ✅ Rejected refresh → cookies cleared
    ✅ Auth service failure / timeout → anonymous, request still served
    ✅ Unsendable token or refused cookie write → request still served
    ✅ Sign out clears cookies even when a refresh happened
    ✅ Supabase client status code translation
"""

import json
from unittest.mock import patch

import httpx
import pytest
from starlette.responses import Response

from forum_edge.exceptions import AuthServiceError, InvalidSessionCookieError
from forum_edge.main import create_app
from forum_edge.middleware.session import (
    BASE64_PREFIX,
    MAX_CHUNK_SIZE,
    CookieWrite,
    SessionCookieCodec,
)
from forum_edge.schemas.edge import AuthUser
from forum_edge.services.supabase_auth import SupabaseAuthService

from conftest import make_session

COOKIE = "sb-abcd-auth-token"


def cookie_header(codec: SessionCookieCodec, session) -> dict:
    return {"cookie": "; ".join(f"{name}={value}" for name, value in codec.encode(session))}


def set_cookie_names(response: httpx.Response) -> dict:
    """Set-Cookie name → raw header line."""
    lines = response.headers.get_list("set-cookie")
    return {line.split("=", 1)[0]: line for line in lines}


class TestSessionCookieCodec:
    def setup_method(self):
        self.codec = SessionCookieCodec(COOKIE)

    def test_round_trip(self):
        session = make_session()
        [(name, value)] = self.codec.encode(session)

        assert name == COOKIE
        assert value.startswith(BASE64_PREFIX)
        decoded = self.codec.read({name: value})
        assert decoded.access_token == session.access_token
        assert decoded.user.id == "user-1"

    def test_plain_json_cookie_is_accepted(self):
        raw = json.dumps({"access_token": "a", "refresh_token": "r"})
        assert self.codec.read({COOKIE: raw}).refresh_token == "r"

    def test_no_cookie_means_no_session(self):
        assert self.codec.read({"other": "x"}) is None

    def test_garbage_cookie_raises(self):
        with pytest.raises(InvalidSessionCookieError):
            self.codec.read({COOKIE: "base64-!!!not-base64"})
        with pytest.raises(InvalidSessionCookieError):
            self.codec.read({COOKIE: "{\"access_token\": 1"})

    def test_large_session_is_chunked(self):
        session = make_session(access_token="a" * 5000)
        chunks = self.codec.encode(session)

        assert [name for name, _ in chunks] == [f"{COOKIE}.0", f"{COOKIE}.1", f"{COOKIE}.2"]
        assert all(len(value) <= MAX_CHUNK_SIZE for _, value in chunks)
        assert self.codec.read(dict(chunks)).access_token == "a" * 5000

    def test_replace_deletes_stale_chunks(self):
        old = dict(self.codec.encode(make_session(access_token="a" * 5000)))
        writes = self.codec.replace(old, make_session(access_token="short"))

        assert CookieWrite(f"{COOKIE}.0", None) in writes
        assert CookieWrite(f"{COOKIE}.2", None) in writes
        assert [w.name for w in writes if w.value is not None] == [COOKIE]

    def test_clear(self):
        assert self.codec.clear({COOKIE: "x", "other": "y"}) == [CookieWrite(COOKIE, None)]


class TestSessionPropagator:
    """Session handling through the full app."""

    def setup_method(self):
        self.codec = SessionCookieCodec(COOKIE)

    @pytest.mark.asyncio
    async def test_anonymous_request(self, make_app, make_client, fake_auth):
        async with make_client(make_app()) as client:
            response = await client.get("/api/auth/session")

        assert response.status_code == 200
        assert response.json() == {"authenticated": False, "user_id": None, "email": None}
        assert fake_auth.calls == []
        assert "set-cookie" not in response.headers

    @pytest.mark.asyncio
    async def test_valid_session_resolves_user(self, make_app, make_client, fake_auth):
        session = make_session()
        fake_auth.users[session.access_token] = session.user

        async with make_client(make_app()) as client:
            response = await client.get("/api/auth/session", headers=cookie_header(self.codec, session))

        assert response.json() == {"authenticated": True, "user_id": "user-1", "email": "ada@example.com"}
        assert fake_auth.calls == ["get_user"]
        assert "set-cookie" not in response.headers

    @pytest.mark.asyncio
    async def test_expired_session_is_refreshed(self, make_app, make_client, fake_auth):
        expired = make_session(expires_in=-60)
        fresh = make_session(access_token="access-2", refresh_token="refresh-2")
        fake_auth.sessions[expired.refresh_token] = fresh

        async with make_client(make_app()) as client:
            response = await client.get("/api/auth/session", headers=cookie_header(self.codec, expired))

        assert response.json()["authenticated"] is True
        assert fake_auth.calls == ["refresh_session"]

        written = set_cookie_names(response)
        assert COOKIE in written
        value = written[COOKIE].split(";", 1)[0].split("=", 1)[1]
        assert self.codec.read({COOKIE: value}).access_token == "access-2"
        assert "SameSite=lax" in written[COOKIE] or "samesite=lax" in written[COOKIE].lower()
        assert "secure" in written[COOKIE].lower()

    @pytest.mark.asyncio
    async def test_revoked_token_falls_back_to_refresh(self, make_app, make_client, fake_auth):
        session = make_session()
        fake_auth.sessions[session.refresh_token] = make_session(access_token="access-2")

        async with make_client(make_app()) as client:
            response = await client.get("/api/auth/session", headers=cookie_header(self.codec, session))

        assert fake_auth.calls == ["get_user", "refresh_session"]
        assert response.json()["authenticated"] is True

    @pytest.mark.asyncio
    async def test_rejected_refresh_clears_cookies(self, make_app, make_client, fake_auth):
        expired = make_session(expires_in=-60)

        async with make_client(make_app()) as client:
            response = await client.get("/api/auth/session", headers=cookie_header(self.codec, expired))

        assert response.json()["authenticated"] is False
        written = set_cookie_names(response)
        assert "max-age=0" in written[COOKIE].lower()

    @pytest.mark.asyncio
    async def test_auth_service_failure_is_not_fatal(self, make_app, make_client, fake_auth):
        fake_auth.error = True
        session = make_session()

        async with make_client(make_app()) as client:
            response = await client.get("/api/auth/session", headers=cookie_header(self.codec, session))

        assert response.status_code == 200
        assert response.json()["authenticated"] is False
        assert "set-cookie" not in response.headers

    @pytest.mark.asyncio
    async def test_auth_service_timeout_is_not_fatal(self, make_app, make_client, fake_auth):
        fake_auth.delay = 2.0
        session = make_session()

        async with make_client(make_app(session_refresh_timeout=0.05)) as client:
            response = await client.get("/", headers=cookie_header(self.codec, session))

        assert response.status_code == 200
        assert "set-cookie" not in response.headers
        assert "content-security-policy" in response.headers

    @pytest.mark.asyncio
    async def test_garbage_cookie_is_anonymous(self, make_app, make_client, fake_auth):
        async with make_client(make_app()) as client:
            response = await client.get("/api/auth/session", headers={"cookie": f"{COOKIE}=garbage"})

        assert response.status_code == 200
        assert response.json()["authenticated"] is False
        assert fake_auth.calls == []

    @pytest.mark.asyncio
    async def test_development_cookies_are_not_secure(self, make_app, make_client, fake_auth):
        expired = make_session(expires_in=-60)
        fake_auth.sessions[expired.refresh_token] = make_session(access_token="access-2")

        async with make_client(make_app(app_env="development")) as client:
            response = await client.get("/api/auth/session", headers=cookie_header(self.codec, expired))

        assert "secure" not in set_cookie_names(response)[COOKIE].lower()

    @pytest.mark.asyncio
    async def test_sign_out_revokes_and_clears(self, make_app, make_client, fake_auth):
        session = make_session()
        fake_auth.users[session.access_token] = session.user

        async with make_client(make_app()) as client:
            response = await client.post("/api/auth/signout", headers=cookie_header(self.codec, session))

        assert response.status_code == 200
        assert response.json()["authenticated"] is False
        assert fake_auth.signed_out == [session.access_token]
        assert "max-age=0" in set_cookie_names(response)[COOKIE].lower()

    @pytest.mark.asyncio
    async def test_sign_out_after_refresh_keeps_cookies_cleared(self, make_app, make_client, fake_auth):
        expired = make_session(expires_in=-60)
        fake_auth.sessions[expired.refresh_token] = make_session(access_token="access-2")

        async with make_client(make_app()) as client:
            response = await client.post("/api/auth/signout", headers=cookie_header(self.codec, expired))

        assert fake_auth.signed_out == ["access-2"]
        lines = response.headers.get_list("set-cookie")
        assert len(lines) == 1
        assert "max-age=0" in lines[0].lower()

    @pytest.mark.asyncio
    async def test_sign_out_with_auth_service_down_is_503(self, make_app, make_client, fake_auth):
        session = make_session()
        fake_auth.users[session.access_token] = session.user

        async def failing_sign_out(access_token):
            raise AuthServiceError(status_code=500)

        fake_auth.sign_out = failing_sign_out

        async with make_client(make_app()) as client:
            response = await client.post("/api/auth/signout", headers=cookie_header(self.codec, session))

        assert response.status_code == 503
        assert response.json()["error"] == "auth_service_unavailable"

    @pytest.mark.asyncio
    async def test_cookie_write_failure_is_not_fatal(self, make_app, make_client, fake_auth):
        expired = make_session(expires_in=-60)
        fake_auth.sessions[expired.refresh_token] = make_session(access_token="access-2")

        with patch.object(Response, "set_cookie", side_effect=RuntimeError("response already started")) as set_cookie:
            async with make_client(make_app()) as client:
                response = await client.get("/api/auth/session", headers=cookie_header(self.codec, expired))

        set_cookie.assert_called()
        assert response.status_code == 200
        assert response.json()["authenticated"] is True
        assert "set-cookie" not in response.headers
        assert "content-security-policy" in response.headers
        assert "x-nonce" in response.headers

    @pytest.mark.asyncio
    async def test_unencodable_token_is_anonymous(self, make_settings, make_client):
        """A cookie whose token cannot be sent in a header must not break the page."""
        sent = []

        def handler(request: httpx.Request) -> httpx.Response:
            sent.append(request)
            return httpx.Response(200, json={"id": "u1"})

        app = create_app(make_settings(), auth_service=supabase_service(make_settings, handler))
        session = make_session(access_token="tokén")

        async with make_client(app) as client:
            page = await client.get("/", headers=cookie_header(self.codec, session))
            status = await client.get("/api/auth/session", headers=cookie_header(self.codec, session))

        assert sent == []
        assert page.status_code == 200
        assert "content-security-policy" in page.headers
        assert "set-cookie" not in page.headers
        assert status.status_code == 200
        assert status.json()["authenticated"] is False


def supabase_service(make_settings, handler) -> SupabaseAuthService:
    app_settings = make_settings()
    client = httpx.AsyncClient(
        base_url=app_settings.supabase_url,
        transport=httpx.MockTransport(handler),
        headers={"apikey": app_settings.supabase_anon_key},
    )
    return SupabaseAuthService(app_settings, client=client)


class TestSupabaseAuthService:
    @pytest.mark.asyncio
    async def test_get_user(self, make_settings):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers["authorization"]
            seen["apikey"] = request.headers["apikey"]
            return httpx.Response(200, json={"id": "u1", "email": "u1@example.com", "aud": "authenticated"})

        service = supabase_service(make_settings, handler)
        user = await service.get_user("tok")

        assert user == AuthUser(id="u1", email="u1@example.com")
        assert seen == {"path": "/auth/v1/user", "auth": "Bearer tok", "apikey": "anon-test-key"}

    @pytest.mark.asyncio
    async def test_get_user_rejected_token(self, make_settings):
        service = supabase_service(make_settings, lambda request: httpx.Response(401, json={}))
        assert await service.get_user("tok") is None

    @pytest.mark.asyncio
    async def test_get_user_server_error(self, make_settings):
        service = supabase_service(make_settings, lambda request: httpx.Response(500))
        with pytest.raises(AuthServiceError) as exc_info:
            await service.get_user("tok")
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_transport_error_is_wrapped(self, make_settings):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        service = supabase_service(make_settings, handler)
        with pytest.raises(AuthServiceError):
            await service.get_user("tok")

    @pytest.mark.asyncio
    async def test_unencodable_token_is_service_error(self, make_settings):
        service = supabase_service(make_settings, lambda request: httpx.Response(200, json={"id": "u1"}))

        with pytest.raises(AuthServiceError) as exc_info:
            await service.get_user("tokén")
        assert exc_info.value.context["error_type"] == "UnicodeEncodeError"

        with pytest.raises(AuthServiceError):
            await service.sign_out("tokén")

    @pytest.mark.asyncio
    async def test_refresh_session(self, make_settings):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["grant_type"] = request.url.params["grant_type"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "access_token": "a2",
                "refresh_token": "r2",
                "expires_in": 3600,
                "token_type": "bearer",
                "user": {"id": "u1"},
            })

        service = supabase_service(make_settings, handler)
        session = await service.refresh_session("r1")

        assert seen == {"grant_type": "refresh_token", "body": {"refresh_token": "r1"}}
        assert session.access_token == "a2"
        assert session.expires_at is not None
        assert session.is_expired() is False

    @pytest.mark.asyncio
    async def test_refresh_rejected(self, make_settings):
        service = supabase_service(
            make_settings,
            lambda request: httpx.Response(400, json={"error": "invalid_grant"}),
        )
        assert await service.refresh_session("used") is None

    @pytest.mark.asyncio
    async def test_malformed_session_raises(self, make_settings):
        service = supabase_service(make_settings, lambda request: httpx.Response(200, json={"nope": 1}))
        with pytest.raises(AuthServiceError):
            await service.refresh_session("r1")

    @pytest.mark.asyncio
    async def test_sign_out_tolerates_invalid_token(self, make_settings):
        service = supabase_service(make_settings, lambda request: httpx.Response(401))
        await service.sign_out("expired")

    @pytest.mark.asyncio
    async def test_health_check(self, make_settings):
        up = supabase_service(make_settings, lambda request: httpx.Response(200, json={}))
        down = supabase_service(make_settings, lambda request: httpx.Response(503))

        assert await up.health_check() is True
        assert await down.health_check() is False

    @pytest.mark.asyncio
    async def test_unconfigured_service(self, make_settings):
        service = SupabaseAuthService(make_settings(supabase_url="", supabase_anon_key=""))
        assert await service.health_check() is False
        with pytest.raises(AuthServiceError):
            await service.get_user("tok")
        await service.aclose()
