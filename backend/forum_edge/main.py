"""
Forum Edge — FastAPI Application Factory
==========================================

What:  Creates and configures the FastAPI application instance.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   Called by uvicorn (uvicorn forum_edge.main:app) and by tests.

Application Architecture:
    ┌─────────────────────────────────────────────────────┐
    │                   FastAPI App                       │
    │                                                     │
    │  Middleware Chain:                                  │
    │  ┌───────────┐ ┌──────────┐ ┌─────────┐ ┌────────┐  │
    │  │ Edge Gate │→│ Req ID   │→│ Logging │→│  GZip  │  │
    │  └───────────┘ └──────────┘ └─────────┘ └────────┘  │
    │                                                     │
    │  Routes:                                            │
    │  ┌──────────┐ ┌──────────────────┐ ┌─────────────┐  │
    │  │  GET /   │ │ /api/auth/*      │ │ GET /health │  │
    │  └──────────┘ └──────────────────┘ └─────────────┘  │
    │                                                     │
    │  Exception Handlers:                                │
    │  ┌──────────────────────────────────────────────┐   │
    │  │ AuthServiceError→503 │ ForumEdgeError→500     │   │
    │  └──────────────────────────────────────────────┘   │
    └─────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  configure logging, report missing auth configuration,
              log the effective edge configuration
    Shutdown: close the auth service HTTP client
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.staticfiles import StaticFiles
from starlette.types import Scope

from forum_edge import __version__
from forum_edge.config import Settings, settings
from forum_edge.exceptions import AuthServiceError, ForumEdgeError
from forum_edge.middleware.edge_gate import EdgeGateMiddleware
from forum_edge.middleware.logging import RequestLoggingMiddleware
from forum_edge.middleware.rate_limit import RateWindowStore, SlidingWindowRateLimiter
from forum_edge.middleware.request_id import RequestIDMiddleware, request_id_var
from forum_edge.middleware.security_headers import get_static_asset_headers
from forum_edge.middleware.session import SessionPropagator
from forum_edge.routes import health, pages, session
from forum_edge.services.auth_base import AuthSessionService
from forum_edge.services.supabase_auth import SupabaseAuthService

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(app_settings: Settings) -> None:
    """
    Configure logging for the entire application.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    """
    logging.basicConfig(
        level=getattr(logging, app_settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Per-request noise from the server and HTTP client
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    app_settings: Settings = app.state.settings

    setup_logging(app_settings)
    logger.info("Forum edge %s starting up (env=%s)", __version__, app_settings.app_env)

    # Missing auth config is not fatal: every visitor is simply anonymous
    try:
        app_settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))

    if app_settings.rate_limiting_enabled:
        logger.info("Rate limiting active (max %d tracked clients)", app_settings.rate_limit_max_clients)
    else:
        logger.warning(
            "Rate limiting disabled (development=%s, disable_flag=%s, platform=%s)",
            app_settings.is_development,
            app_settings.disable_rate_limit,
            app_settings.platform_rate_limiting,
        )

    yield

    logger.info("Forum edge shutting down...")
    await app.state.auth_service.aclose()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exceptions escaping route handlers to JSON error responses.

    Handler hierarchy:
        AuthServiceError  → 503 Service Unavailable
        ForumEdgeError    → 500 Internal Server Error
        Exception         → 500 Internal Server Error

    Responses never carry exception context; it is logged server-side.
    """

    @app.exception_handler(AuthServiceError)
    async def handle_auth_service_error(request: Request, exc: AuthServiceError):
        rid = request_id_var.get("")
        logger.warning("[%s] Auth service error: %s | Context: %s", rid, exc.message, exc.context)
        return JSONResponse(
            status_code=503,
            content={
                "error": "auth_service_unavailable",
                "message": exc.message,
                "request_id": rid,
            },
        )

    @app.exception_handler(ForumEdgeError)
    async def handle_edge_error(request: Request, exc: ForumEdgeError):
        rid = request_id_var.get("")
        logger.error("[%s] %s: %s | Context: %s", rid, type(exc).__name__, exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content={
                "error": "server_error",
                "message": "An internal error occurred. Please try again later.",
                "request_id": rid,
            },
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred. Please try again or contact support.",
                "request_id": rid,
            },
        )


# ══════════════════════════════════════════════════════════════════════════
# Static Assets
# ══════════════════════════════════════════════════════════════════════════

class CachedStaticFiles(StaticFiles):
    """StaticFiles with the long-lived cache headers for hashed assets."""

    async def get_response(self, path: str, scope: Scope):
        response = await super().get_response(path, scope)
        if response.status_code == 200:
            response.headers.update(get_static_asset_headers())
        return response


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    app_settings: Optional[Settings] = None,
    *,
    auth_service: Optional[AuthSessionService] = None,
    rate_limiter: Optional[SlidingWindowRateLimiter] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        app_settings: Configuration; the environment-loaded default when omitted.
        auth_service: Auth collaborator; a SupabaseAuthService when omitted.
        rate_limiter: Limiter owning the rate window store; a bounded
            in-memory one sized from settings when omitted.
    """
    app_settings = app_settings or settings
    auth_service = auth_service or SupabaseAuthService(app_settings)
    rate_limiter = rate_limiter or SlidingWindowRateLimiter(
        RateWindowStore(
            max_clients=app_settings.rate_limit_max_clients,
            sweep_interval=app_settings.rate_limit_sweep_interval,
        )
    )
    session_propagator = SessionPropagator(auth_service, app_settings)

    app = FastAPI(
        title="Forum Edge",
        description="Request-edge gate for the forum: rate limiting, sessions, security headers.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.auth_service = auth_service
    app.state.rate_limiter = rate_limiter
    app.state.session_propagator = session_propagator

    # ── Register Middleware ───────────────────────────────────────────────
    # Last added runs first: Edge Gate → Request ID → Logging → GZip
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        EdgeGateMiddleware,
        app_settings=app_settings,
        rate_limiter=rate_limiter,
        session_propagator=session_propagator,
    )

    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(pages.router)
    app.include_router(session.router)
    app.include_router(health.router)

    static_root = Path(app_settings.static_root)
    if static_root.is_dir():
        app.mount("/static", CachedStaticFiles(directory=static_root), name="static")
    else:
        logger.info("Static directory %s not found; /static not mounted", static_root)

    return app


app = create_app()
