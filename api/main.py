"""
api/main.py -- FastAPI application entry point for LevelGate.

Exposes the Authentication Gateway over HTTP. Route handlers only ever talk
to app.state.gateway; the stores and resolver behind it are not reachable
from the transport layer.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. rotated session       -- re-attaches a token rotated during a failed request

Lifespan handles startup (settings, store, catalog, gateway, purge task) and
shutdown (cancel purge task, close DB connection) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import DeniedDetail, ErrorDetail, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.skills import router as skills_router
from auth.dependencies import deliver_rotated_session, get_session
from auth.errors import (
    AuthFailed,
    Denied,
    DuplicateUsername,
    InvalidUsername,
    LevelGateError,
    LookupFailed,
    SessionError,
    StoreUnavailable,
)
from auth.gateway import AuthGateway
from auth.models import Validation
from auth.store import AuthStore
from core.catalog import get_catalog
from core.config import get_settings

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("levelgate.api")

# Seconds a client should wait before retrying after StoreUnavailable.
STORE_RETRY_AFTER = 5

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Delete dead session rows every interval seconds.

    Optional maintenance: validation expires sessions lazily and never
    depends on this loop. A store failure is logged and the loop keeps
    going; CancelledError from task.cancel() during shutdown propagates out
    of asyncio.sleep and unwinds the coroutine cleanly. The purge itself runs
    in a worker thread so a slow DELETE never stalls the event loop.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(app.state.gateway.sessions.purge_expired)
        except StoreUnavailable:
            logger.warning("Session purge skipped: store unavailable")


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Settings first -- a bad SECRET_KEY or catalog must stop the process
         before it binds a port.
      2. Store and catalog -- the catalog is immutable from here on.
      3. Gateway -- wires every component from the two above.
      4. Purge task last -- references app.state.gateway.
    """
    settings = get_settings()
    logger.info("LevelGate API starting up")
    app.state.store = AuthStore(settings.database_url)
    app.state.catalog = get_catalog()
    app.state.gateway = AuthGateway.build(app.state.store, app.state.catalog, settings)
    logger.info(
        "Gateway initialized (%d skills, %d rules, token ttl=%ds)",
        len(app.state.catalog.skills),
        len(app.state.catalog.rules),
        settings.token_ttl_seconds,
    )
    app.state.purge_task = None
    if settings.session_purge_interval_seconds:
        app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.session_purge_interval_seconds))

    yield

    # Shutdown
    if app.state.purge_task is not None:
        app.state.purge_task.cancel()
        await asyncio.gather(app.state.purge_task, return_exceptions=True)
    app.state.store.close()
    logger.info("LevelGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="LevelGate API",
    description="Authentication and skill-based authorization. Privileges are earned, not assigned.",
    version=__version__,
    lifespan=lifespan,
    # Disable built-in /docs and /redoc so we can add auth protection.
    # Auth-protected equivalents are registered below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=["localhost", "127.0.0.1", "*.localhost"],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    expose_headers=["X-Session-Token"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Rotated session delivery
#
# get_session() may rotate the caller's session, which revokes the presented
# token. The exception handlers and handlers that return their own Response
# build a fresh response without the new token, so it is re-attached here.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def attach_rotated_session(request: Request, call_next):
    response = await call_next(request)
    deliver_rotated_session(request, response)
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(skills_router, prefix="/api/v1", tags=["Skills"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(session: Validation = Depends(get_session)):
    """Swagger UI -- requires a valid session."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="LevelGate API")


@app.get("/redoc", include_in_schema=False)
async def redoc(session: Validation = Depends(get_session)):
    """ReDoc UI -- requires a valid session."""
    return get_redoc_html(openapi_url="/openapi.json", title="LevelGate API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

# Checked in order; the first isinstance match wins.
_ERROR_STATUS: tuple[tuple[type[LevelGateError], int], ...] = (
    (AuthFailed, 401),
    (SessionError, 401),
    (Denied, 403),
    (LookupFailed, 404),
    (DuplicateUsername, 409),
    (InvalidUsername, 422),
    (StoreUnavailable, 503),
)


def _error_response(status_code: int, detail: ErrorDetail) -> JSONResponse:
    # Dump the detail itself so subclass fields (DeniedDetail) survive serialization.
    return JSONResponse(status_code=status_code, content={"error": detail.model_dump()})


@app.exception_handler(LevelGateError)
async def levelgate_error_handler(request: Request, exc: LevelGateError) -> JSONResponse:
    """Map the core's error taxonomy onto HTTP status codes.

    Session errors keep their specific code (session_expired, ...) so clients
    know whether to log in again. Denied carries the missing skill level.
    """
    status_code = next((code for cls, code in _ERROR_STATUS if isinstance(exc, cls)), None)
    if status_code is None:
        return await generic_exception_handler(request, exc)

    if isinstance(exc, Denied):
        detail: ErrorDetail = DeniedDetail(
            code=exc.code,
            message=str(exc),
            action=exc.action,
            reason=exc.reason,
            skill=exc.skill,
            required_level=exc.required_level,
            current_level=exc.current_level,
        )
    else:
        detail = ErrorDetail(code=exc.code, message=str(exc))

    response = _error_response(status_code, detail)
    if status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    if isinstance(exc, StoreUnavailable):
        response.headers["Retry-After"] = str(STORE_RETRY_AFTER)
    return response


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    """Return 422 for domain-level argument errors (negative award, level above max)."""
    return _error_response(422, ErrorDetail(code="invalid_argument", message=str(exc)))


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients exactly how many seconds to wait before retrying.
    slowapi stores this on the exception as exc.retry_after (int seconds).
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(
        429,
        ErrorDetail(code="rate_limited", message="Too many requests.", detail=str(exc)),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error_response(
        422,
        ErrorDetail(code="validation_error", message="Request validation failed.", detail=str(exc.errors())),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error_response(exc.status_code, ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail)))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    The client receives only a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, ErrorDetail(code="internal_error", message="An unexpected error occurred."))


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied -- health
# checks from load balancers and monitoring systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> JSONResponse:
    """Return API liveness, version and a database round-trip check."""
    database_ok = request.app.state.store.ping()
    body = HealthResponse(
        status="healthy" if database_ok else "degraded",
        version=__version__,
        components={"app": "ok", "database": "ok" if database_ok else "error"},
    )
    return JSONResponse(status_code=200 if database_ok else 503, content=body.model_dump())
