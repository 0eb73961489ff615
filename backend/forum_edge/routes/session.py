"""
Forum Edge — Auth Session Routes
==================================

What:  JSON endpoints exposing the session the edge resolved for a request.
Why:   Client code needs to know whether the visitor is signed in without
       holding tokens itself, and needs a server-side sign out that clears
       the (possibly chunked) session cookies.

Route Inventory:
    GET     /api/auth/session   → who the edge thinks this visitor is
    POST    /api/auth/signout   → revoke at the auth service, clear cookies
    OPTIONS /api/{path}         → CORS preflight

Every /api response carries the API header set (no CSP, CORS scoped to
APP_URL). Being under /api/auth/, these routes get the strict auth rate
limit at the edge.
"""

import logging

from fastapi import APIRouter, Depends, Request, Response

from forum_edge.middleware.security_headers import get_api_security_headers
from forum_edge.schemas.edge import ErrorResponse, SessionResponse

logger = logging.getLogger(__name__)


async def apply_api_headers(request: Request, response: Response) -> None:
    response.headers.update(get_api_security_headers(request.app.state.settings.app_url))


router = APIRouter(prefix="/api", tags=["Auth"], dependencies=[Depends(apply_api_headers)])


def _session_response(request: Request) -> SessionResponse:
    user = getattr(request.state, "user", None)
    if user is None:
        return SessionResponse(authenticated=False)
    return SessionResponse(authenticated=True, user_id=user.id, email=user.email)


@router.get(
    "/auth/session",
    response_model=SessionResponse,
    summary="Current session as resolved by the edge",
)
async def get_session(request: Request) -> SessionResponse:
    return _session_response(request)


@router.post(
    "/auth/signout",
    response_model=SessionResponse,
    responses={503: {"description": "Auth service unavailable", "model": ErrorResponse}},
    summary="Sign out and clear session cookies",
)
async def sign_out(request: Request, response: Response) -> SessionResponse:
    """
    Revoke the current session and clear its cookies.

    Raises:
        AuthServiceError: The auth service could not revoke the session
            (mapped to 503; cookies are left in place so the user is not
            shown as signed out while the session is still valid).
    """
    session = getattr(request.state, "auth_session", None)
    if session is not None:
        await request.app.state.auth_service.sign_out(session.access_token)

    request.app.state.session_propagator.clear_session(request, response)
    # Keeps the edge from writing refreshed cookies over the cleared ones
    request.state.signed_out = True
    request.state.user = None

    logger.info("Session signed out")
    return SessionResponse(authenticated=False)


@router.options("/{path:path}", include_in_schema=False)
async def preflight(request: Request, path: str) -> Response:
    return Response(
        status_code=204,
        headers=get_api_security_headers(request.app.state.settings.app_url),
    )
