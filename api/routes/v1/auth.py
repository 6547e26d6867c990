"""
api/routes/v1/auth.py -- Authentication and session REST endpoints.

Routes:
  POST   /api/v1/auth/register          -- create an account (public)
  POST   /api/v1/auth/login             -- password login; sets session cookie
  POST   /api/v1/auth/logout            -- revokes the presented token; clears cookie
  POST   /api/v1/auth/logout-all        -- revokes every session of the caller
  GET    /api/v1/auth/me                -- identity, skill progress, unlocked actions
  POST   /api/v1/auth/password          -- change password; revokes all sessions
  POST   /api/v1/auth/authorize         -- "may I do <action>?" -> allowed + reason
  GET    /api/v1/auth/sessions          -- caller's active sessions
  GET    /api/v1/auth/users             -- list users (manage_users)
  DELETE /api/v1/auth/users/{id}        -- delete a user and cascade (manage_users)

Security:
  POST /login is rate-limited per IP (LOGIN_RATE_LIMIT, default 10/minute).
  Wrong username and wrong password produce the same 401 "bad_credentials".
  Cache-Control: no-store on login responses.
  Errors raised by the gateway are mapped to HTTP by the handlers in api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit
from api.models import (
    AuthorizeRequest,
    DecisionResponse,
    ErrorDetail,
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    MeResponse,
    PasswordChangeRequest,
    ProgressRow,
    RegisterRequest,
    RegisterResponse,
    RevokedResponse,
    SessionRow,
    UserRow,
)
from auth.dependencies import (
    clear_session_cookie,
    extract_token,
    get_gateway,
    get_session,
    require_action,
    set_session_cookie,
)
from auth.errors import AuthFailed, SessionNotFound, UnknownUser
from auth.gateway import AuthGateway
from auth.models import Validation
from core.catalog import MANAGE_USERS

# Auth policy:
# - POST   /auth/register, /auth/login, /auth/logout: public
# - everything else: valid session (get_session / gateway.authorize)
# - GET/DELETE /auth/users: require_action("manage_users")
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> RegisterResponse:
    """Create an account. Every new account starts at level 0 in every skill."""
    gateway: AuthGateway = get_gateway(request)
    user_id = gateway.register(body.username, body.password)
    user = gateway.get_user(user_id)
    return RegisterResponse(user_id=user_id, username=user.username)


@limiter.limit(login_limit)  # must be ABOVE @router so SlowAPIMiddleware finds it by endpoint name
@router.post(
    "/auth/login",
    response_model=LoginResponse,
    responses={401: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; set the session cookie.

    Returns the same generic error for wrong username and wrong password
    ("bad_credentials") to avoid leaking username existence information.
    """
    gateway: AuthGateway = get_gateway(request)
    try:
        issued = gateway.login(body.username, body.password)
    except AuthFailed as exc:
        resp = JSONResponse(
            status_code=401,
            content=ErrorResponse(error=ErrorDetail(code=exc.code, message=str(exc))).model_dump(),
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=issued.token,
            expires_in=issued.session.ttl_seconds,
            user_id=issued.user_id,
        ).model_dump(),
    )
    set_session_cookie(resp, issued)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout")
def logout(request: Request) -> JSONResponse:
    """Revoke the presented token (if any) and clear the cookie."""
    token = extract_token(request)
    revoked = get_gateway(request).logout(token) if token else False
    resp = JSONResponse(content={"message": "Logged out.", "revoked": revoked})
    clear_session_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout-all", response_model=RevokedResponse)
def logout_all(request: Request, response: Response) -> RevokedResponse:
    token = extract_token(request)
    if token is None:
        raise SessionNotFound()
    count = get_gateway(request).logout_everywhere(token)
    clear_session_cookie(response)
    return RevokedResponse(revoked=count)


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, session: Validation = Depends(get_session)) -> MeResponse:
    """Return identity, per-skill progress and the actions the caller can perform."""
    gateway: AuthGateway = get_gateway(request)
    profile = gateway.profile(session.user_id)
    skills = request.app.state.catalog.skills
    return MeResponse(
        user_id=profile.user.id,
        username=profile.user.username,
        created_at=profile.user.created_at or "",
        skills=[ProgressRow.from_progress(p, skills[p.skill]) for p in profile.progress],
        allowed_actions=profile.allowed_actions,
    )


@router.post("/auth/password", response_model=RevokedResponse)
def change_password(
    request: Request,
    response: Response,
    body: PasswordChangeRequest,
    session: Validation = Depends(get_session),
) -> RevokedResponse:
    """Change the caller's password. All sessions, this one included, are revoked."""
    count = get_gateway(request).change_password(session.user_id, body.old_password, body.new_password)
    clear_session_cookie(response)
    return RevokedResponse(revoked=count)


@router.post("/auth/authorize", response_model=DecisionResponse)
def authorize(request: Request, response: Response, body: AuthorizeRequest) -> DecisionResponse:
    """Authorization check for collaborators: token in, action in, allowed + reason out.

    A denial is a normal 200 with allowed=false. Only a bad session is an error (401).
    """
    token = extract_token(request)
    if token is None:
        raise SessionNotFound()
    result = get_gateway(request).authorize(token, body.action)
    if result.rotated_token is not None:
        set_session_cookie(response, result.rotated_token)
    return DecisionResponse.from_decision(result.decision)


@router.get("/auth/sessions", response_model=list[SessionRow])
def list_sessions(request: Request, session: Validation = Depends(get_session)) -> list[SessionRow]:
    return [SessionRow.from_session(s) for s in get_gateway(request).active_sessions(session.user_id)]


# ---------------------------------------------------------------------------
# User management (manage_users)
# ---------------------------------------------------------------------------


@router.get("/auth/users", response_model=list[UserRow])
def list_users(request: Request, session: Validation = Depends(require_action(MANAGE_USERS))) -> list[UserRow]:
    """List all accounts. Requires the manage_users action."""
    users = get_gateway(request).list_users()
    return [UserRow(user_id=u.id, username=u.username, created_at=u.created_at or "") for u in users]


@router.delete("/auth/users/{user_id}", status_code=204)
def delete_user(request: Request, user_id: int, session: Validation = Depends(get_session)) -> Response:
    """Delete a user with their progress and sessions. The gateway checks manage_users."""
    if not get_gateway(request).delete_user(session.user_id, user_id):
        raise UnknownUser(f"No user with id {user_id}.")
    return Response(status_code=204)
