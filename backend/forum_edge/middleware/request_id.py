"""
Forum Edge — Request ID Middleware
====================================

What:  Assigns a correlation ID to each request that passed the edge gate
       and returns it in the X-Request-ID response header.
Why:   Lets a user-reported error be matched to the log lines of the
       request that produced it.
How:   Accepts a client-supplied ID when it looks like one, otherwise
       generates a short UUID; stores it in a ContextVar for loggers.

Client-supplied IDs:
    The frontend may send X-Request-ID to correlate UI events with API
    calls. The value ends up in log lines, so anything that is not a short
    token of [A-Za-z0-9._-] is replaced rather than trusted.
"""

import re
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests on one event loop each see their own ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

REQUEST_ID_HEADER = "X-Request-ID"
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


def resolve_request_id(candidate: str | None) -> str:
    if candidate and _VALID_REQUEST_ID.match(candidate):
        return candidate
    return new_request_id()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Stores the request ID in the ContextVar and in request.state."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))

        token = request_id_var.set(rid)
        request.state.request_id = rid
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers[REQUEST_ID_HEADER] = rid
        return response
