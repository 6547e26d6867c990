"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two token sources are checked in priority order:
  1. "access_token" cookie -- set by POST /auth/login for browsers.
  2. Authorization: Bearer <token> header -- API clients.

get_session() validates the token through the gateway on every request
(no caching, so a revocation applies to the very next request) and, if the
session was rotated, writes the replacement token back as the cookie and in
the X-Session-Token header.

require_action("publish_post") builds a dependency that additionally runs the
permission check and raises Denied (mapped to 403 by api/main.py) when the
user's level is too low.

Layer rule: this is the only module in auth/ that may import fastapi.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request, Response

from auth.errors import SessionNotFound
from auth.gateway import AuthGateway
from auth.models import IssuedToken, Validation
from core.config import get_settings

COOKIE_NAME = "access_token"
ROTATED_TOKEN_HEADER = "X-Session-Token"


def get_gateway(request: Request) -> AuthGateway:
    return request.app.state.gateway


def extract_token(request: Request) -> str | None:
    """Return the raw session token from cookie or Bearer header, if any."""
    token: str | None = request.cookies.get(COOKIE_NAME)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    return token or None


def get_session(request: Request, response: Response) -> Validation:
    """Require a valid session. Raises SessionError (mapped to 401 by api/main.py).

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(session: Validation = Depends(get_session)): ...
    """
    token = extract_token(request)
    if token is None:
        raise SessionNotFound()
    validation = get_gateway(request).authenticate(token)
    if validation.replacement is not None:
        set_session_cookie(response, validation.replacement)
        # The old token is already revoked. deliver_rotated_session() re-attaches
        # this one if the handler fails or returns its own Response.
        request.state.rotated_session = validation.replacement
    return validation


def require_action(action: str) -> Callable[[Request, Response], Validation]:
    """Build a dependency that requires a valid session AND permission for action.

    Use as a FastAPI dependency:
        @router.delete("/posts/{id}", dependencies=[Depends(require_action("delete_post"))])
    """

    def dependency(request: Request, response: Response) -> Validation:
        validation = get_session(request, response)
        get_gateway(request).check_user(validation.user_id, action)
        return validation

    dependency.__name__ = f"require_{action}"
    return dependency


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response: Response, issued: IssuedToken) -> None:
    """Write the session token as an httpOnly cookie and expose it in X-Session-Token.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the session lifetime so both expire together.
    """
    response.set_cookie(
        COOKIE_NAME,
        value=issued.token,
        httponly=True,
        samesite="lax",
        secure=get_settings().secure_cookies,
        max_age=issued.session.ttl_seconds,
    )
    response.headers[ROTATED_TOKEN_HEADER] = issued.token


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(COOKIE_NAME)


def deliver_rotated_session(request: Request, response: Response) -> None:
    """Attach a token rotated during this request to the outgoing response.

    Called on the final response, after exception handlers have run. A no-op
    when nothing rotated or the response already carries the new token.
    """
    issued: IssuedToken | None = getattr(request.state, "rotated_session", None)
    if issued is None or ROTATED_TOKEN_HEADER in response.headers:
        return
    set_session_cookie(response, issued)
