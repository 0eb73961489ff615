"""
Forum Edge — Edge Gate Middleware
===================================

What:  The single gate every page and API request passes through.
Why:   Rate limiting, session refresh and security headers must run in a
       fixed order, and a rejected request must never reach the later stages.
How:   One Starlette middleware sequencing the three stages per request.

Request States:
    START → RATE_CHECK → SESSION_REFRESH → HEADER_ATTACH → DONE
                 └──────→ REJECTED (429, nothing else runs)

    RATE_CHECK is skipped in development, when DISABLE_RATE_LIMIT is set,
    when the platform already rate limits, and for framework paths. The
    decision is taken once and reused when attaching the X-RateLimit-*
    headers, so a request is never rejected and decorated (or the reverse).

    The limiter is queried once per request; the admission result also
    feeds the telemetry headers.

    Every method counts, OPTIONS included: a cross-origin caller spends one
    unit of the route budget on the CORS preflight and one on the request,
    which halves the effective AUTH_API budget (10 / 15 min) for them.

Bypass:
    Static assets and prefetch requests never enter the gate at all.

Header Order (later wins on collision, nothing is removed):
    downstream response → security headers (CSP) → x-nonce → X-RateLimit-*
"""

import logging
import re
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from forum_edge.config import Settings
from forum_edge.exceptions import NonceGenerationError
from forum_edge.middleware.rate_limit import (
    SlidingWindowRateLimiter,
    create_rate_limit_response,
    get_client_id,
    get_rate_limit_config,
    get_rate_limit_headers,
)
from forum_edge.middleware.request_id import request_id_var
from forum_edge.middleware.security_headers import (
    NONCE_HEADER,
    generate_csp_header,
    get_security_headers,
)
from forum_edge.middleware.session import SessionPropagator

logger = logging.getLogger(__name__)

# Build output, optimized images, favicon, raster/vector images
STATIC_ASSET_PATTERN = re.compile(
    r"^/(?:static/|_next/static/|_next/image|favicon\.ico$)"
    r"|\.(?:svg|png|jpg|jpeg|gif|webp)$",
    re.IGNORECASE,
)

# Framework-owned paths that are never rate limited: build output by prefix,
# the rest only as a whole path segment (/docs, /docs/..., not /docsearch)
FRAMEWORK_PATH_PREFIXES = ("/_next",)
FRAMEWORK_PATHS = ("/docs", "/redoc", "/openapi.json", "/health")


def is_framework_path(path: str) -> bool:
    if path.startswith(FRAMEWORK_PATH_PREFIXES):
        return True
    return any(path == exempt or path.startswith(exempt + "/") for exempt in FRAMEWORK_PATHS)


def is_static_asset(path: str) -> bool:
    return bool(STATIC_ASSET_PATTERN.search(path))


def is_prefetch(request: Request) -> bool:
    headers = request.headers
    return (
        "next-router-prefetch" in headers
        or headers.get("purpose", "").lower() == "prefetch"
    )


def get_client_ip(request: Request) -> str:
    """
    First hop of X-Forwarded-For, then X-Real-IP, then the socket peer.

    Only meaningful behind a proxy that overwrites these headers.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


class EdgeGateMiddleware(BaseHTTPMiddleware):
    """
    Rate limit → session refresh → security headers.

    Args:
        app_settings: Decides development mode and rate-limit bypasses.
        rate_limiter: Owns the rate window store.
        session_propagator: Refreshes the auth session.
    """

    def __init__(
        self,
        app: ASGIApp,
        app_settings: Settings,
        rate_limiter: SlidingWindowRateLimiter,
        session_propagator: SessionPropagator,
    ):
        super().__init__(app)
        self.settings = app_settings
        self.rate_limiter = rate_limiter
        self.session_propagator = session_propagator

    def rate_limit_applies(self, path: str) -> bool:
        return self.settings.rate_limiting_enabled and not is_framework_path(path)

    def should_gate(self, request: Request) -> bool:
        return not (is_static_asset(request.url.path) or is_prefetch(request))

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if not self.should_gate(request):
            return await call_next(request)

        path = request.url.path

        # ── RATE_CHECK ────────────────────────────────────────────────────
        rate_limited_route = self.rate_limit_applies(path)
        config = get_rate_limit_config(path)
        result = None
        if rate_limited_route:
            client_id = get_client_id(get_client_ip(request), request.headers.get("user-agent"))
            result = self.rate_limiter.is_rate_limited(client_id, config)
            if result.limited:
                logger.warning("Rate limit exceeded for client %s on %s", client_id, path)
                return create_rate_limit_response(result, config)

        # Nonce is drawn before the app runs so renderers can embed it
        try:
            policy = generate_csp_header(
                self.settings.is_development,
                supabase_url=self.settings.supabase_url,
                report_uri=self.settings.csp_report_uri,
            )
        except NonceGenerationError as e:
            rid = request_id_var.get("")
            logger.error("[%s] %s on %s: %s", rid, e.message, path, e.context)
            return JSONResponse(
                status_code=500,
                content={
                    "error": "internal_server_error",
                    "message": "An unexpected error occurred. Please try again or contact support.",
                    "request_id": rid or None,
                },
            )
        request.state.csp_nonce = policy.nonce

        # ── SESSION_REFRESH ───────────────────────────────────────────────
        response = await self.session_propagator.update_session(request, call_next)

        # ── HEADER_ATTACH ─────────────────────────────────────────────────
        for name, value in get_security_headers(policy.csp_header).items():
            response.headers[name] = value
        response.headers[NONCE_HEADER] = policy.nonce

        if result is not None:
            for name, value in get_rate_limit_headers(config, result).items():
                response.headers[name] = value

        return response


def get_request_nonce(request: Request) -> Optional[str]:
    """The CSP nonce the gate drew for this request, if it ran."""
    return getattr(request.state, "csp_nonce", None)
