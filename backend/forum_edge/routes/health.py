"""
Forum Edge — Health Check Route
=================================

What:  Liveness/readiness probe for load balancers and container health checks.
How:   Reports the auth service reachability and whether rate limiting is
       active in this deployment.

Status levels:
    healthy:   auth service reachable
    degraded:  auth service unreachable or unconfigured; pages still render,
               every visitor is treated as anonymous

The route is exempt from rate limiting (framework path) so that probes
cannot exhaust a shared client budget.
"""

import logging
import time

from fastapi import APIRouter, Request

from forum_edge import __version__
from forum_edge.schemas.edge import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(request: Request) -> HealthResponse:
    app_settings = request.app.state.settings
    auth_service = request.app.state.auth_service

    auth_status = "available"
    overall = "healthy"

    if not (app_settings.supabase_url and app_settings.supabase_anon_key):
        auth_status = "unconfigured"
        overall = "degraded"
    elif not await auth_service.health_check():
        auth_status = "unavailable"
        overall = "degraded"
        logger.warning("Health check: auth service unreachable")

    return HealthResponse(
        status=overall,
        version=__version__,
        auth_service=auth_status,
        rate_limiting="active" if app_settings.rate_limiting_enabled else "disabled",
        uptime_seconds=round(time.time() - _start_time, 2),
    )
