"""
api/main.py -- FastAPI application entry point for TierGate.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. log_requests          -- method, path, status, latency
  5. bake_auth_cookies     -- writes AuthSession's queued cookies onto the response

Lifespan builds the user directory, the session store and the AuthConfig
that every request's AuthSession is constructed from, and starts the
background task that purges idle sessions.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import LoginError, SessionInitError
from auth.session import AuthConfig, ErrorHandler
from auth.session_store import SessionStore
from auth.store import UserStore
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
logger = logging.getLogger("tiergate.api")

_PURGE_INTERVAL_SECONDS = 60 * 60

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Purge idle sessions every hour.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(_PURGE_INTERVAL_SECONDS)
        removed = app.state.session_store.purge_expired()
        if removed:
            logger.info("Purged %d expired sessions", removed)


def build_auth_config(
    user_store: UserStore,
    session_store: SessionStore,
    login_exception_handler: ErrorHandler | None = None,
    session_exception_handler: ErrorHandler | None = None,
) -> AuthConfig:
    """Assemble the AuthConfig for this process from Settings and the two stores.

    Without handlers, login and session failures come back to routes as falsy
    results. A handler that returns False escalates the typed error to the
    LoginError (401) and SessionInitError (503) exception handlers below.
    """
    return AuthConfig.from_settings(
        get_settings(),
        user_directory=user_store,
        session_store=session_store,
        login_exception_handler=login_exception_handler,
        session_exception_handler=session_exception_handler,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The purge task starts last because it references the session
    store.
    """
    settings = get_settings()
    logger.info("TierGate API starting up")
    app.state.user_store = UserStore(settings.auth_db_url, secret_fields=[settings.password_field])
    app.state.session_store = SessionStore(settings.session_db_url, ttl_seconds=settings.session_ttl_seconds)
    app.state.auth_config = build_auth_config(app.state.user_store, app.state.session_store)
    logger.info(
        "Auth initialized (cookie=%s, user_field=%s, users_present=%s)",
        settings.cookie_name,
        settings.user_field,
        app.state.user_store.has_users(),
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.session_store.close()
    app.state.user_store.close()
    logger.info("TierGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="TierGate API",
    description="Tiered session, credential and ticket authentication.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps middleware in reverse registration order: the LAST
# registered is the OUTERMOST. Register innermost first.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def bake_auth_cookies(request: Request, call_next):
    """Apply cookie writes queued by the request's AuthSession.

    request.state is shared with the route's Request object, so the
    AuthSession parked there by get_auth_session() is visible here even when
    the route answered through an exception handler.
    """
    response = await call_next(request)
    auth = getattr(request.state, "auth", None)
    if auth is not None:
        auth.bake(response)
    return response


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


app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=get_settings().allowed_hosts,
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
# Web UI router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler answers with the ErrorResponse envelope, so clients parse one
# error shape whatever failed.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(LoginError)
async def login_error_handler(request: Request, exc: LoginError) -> JSONResponse:
    """A login failure escalated by the application's login handler."""
    logger.info("Escalated login failure on %s: %s", request.url.path, exc.message)
    return _error_response(401, exc.code, exc.message)


@app.exception_handler(SessionInitError)
async def session_error_handler(request: Request, exc: SessionInitError) -> JSONResponse:
    """A session store failure escalated by the application's session handler."""
    logger.warning("Escalated session failure on %s: %s", request.url.path, exc.message)
    return _error_response(503, exc.code, "Session could not be initialized.")


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    response = _error_response(429, "rate_limited", "Too many login attempts.", detail=str(exc))
    response.headers["Retry-After"] = str(int(getattr(exc, "retry_after", 60)))
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_response(422, "validation_error", "Request validation failed.", detail=str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Pass structured detail dicts through as the error field; wrap plain strings."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the traceback; the response body never carries it."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit -- health checks from load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and store connectivity."""
    components = {"app": "ok"}
    for name, store in (("users", request.app.state.user_store), ("sessions", request.app.state.session_store)):
        try:
            with store.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            components[name] = "ok"
        except Exception:
            logger.exception("Health check failed for %s store", name)
            components[name] = "error"
    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=__version__, components=components)
