"""
Forum Edge — Request Logging Middleware
=========================================

What:  One access log line per request that passed the edge gate.
Why:   Rejected requests are logged by the gate itself (as warnings with the
       client identity); everything admitted is logged here with status,
       latency and whether a session was resolved.
How:   Measures wall time around the downstream app and logs with a level
       chosen from the status class.

What we log vs what we DON'T log (privacy):
    Log:   method, path, status, duration, client IP, request ID,
           authenticated yes/no
    Don't: cookies, tokens, user IDs, query strings, bodies
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from forum_edge.middleware.request_id import request_id_var

logger = logging.getLogger("forum_edge.access")

# Probed every few seconds by load balancers
QUIET_PATHS = {"/health"}


def level_for_status(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, path, status and duration for each request."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"
        rid = request_id_var.get("")

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        status = response.status_code
        authenticated = getattr(request.state, "user", None) is not None

        logger.log(
            level_for_status(status),
            "%s %s %d %.1fms [%s] from %s%s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            " (authenticated)" if authenticated else "",
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
                "authenticated": authenticated,
            },
        )

        return response
