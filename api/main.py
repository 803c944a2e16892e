"""
api/main.py -- FastAPI application entry point for tokengate.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. log_requests          -- one access-log line per request

Lifespan handles startup (stores, mail sender, AuthService, refresh-token
purge task) and shutdown (cancel purge task, dispose engines) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import (
    AccountDisabled,
    AuthError,
    BadCredentials,
    DuplicateUser,
    InvalidRefreshToken,
    InvalidToken,
    NotAuthenticated,
    PasswordTooLong,
    RefreshTokenExpired,
    TokenExpired,
    UserNotFound,
)
from auth.mail import MailSender
from auth.refresh import RefreshTokenStore
from auth.service import AuthService
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
logger = logging.getLogger("tokengate.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------

_PURGE_INTERVAL_SECONDS = 6 * 60 * 60


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired refresh tokens every 6 hours.

    Expired tokens are already rejected on read; this only keeps the table
    from growing without bound. CancelledError from task.cancel() during
    shutdown propagates out of asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(_PURGE_INTERVAL_SECONDS)
        app.state.refresh_store.purge_expired()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the stores and AuthService once per process; tear them down on exit.

    Settings (and with them the signing key and token lifetimes) are read
    here for the first time and stay fixed for the life of the process.
    """
    settings = get_settings()
    logger.info("tokengate API starting up")
    app.state.user_store = UserStore(settings.auth_db_url)
    app.state.refresh_store = RefreshTokenStore(
        settings.auth_db_url,
        ttl_seconds=settings.refresh_token_expire_seconds,
    )
    mailer = MailSender.from_settings(settings)
    if not mailer.enabled:
        logger.warning("SMTP_HOST not set -- activation mails will be logged, not sent")
    app.state.auth_service = AuthService(
        users=app.state.user_store,
        refresh_tokens=app.state.refresh_store,
        mailer=mailer,
        activation_base_url=settings.activation_base_url,
        bind_refresh_to_user=settings.refresh_token_bind_user,
    )
    logger.info(
        "Auth initialized (access_ttl=%ds, refresh_ttl=%ds, bind_refresh_to_user=%s)",
        settings.access_token_expire_seconds,
        settings.refresh_token_expire_seconds,
        settings.refresh_token_bind_user,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.refresh_store.close()
    app.state.user_store.close()
    logger.info("tokengate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="tokengate API",
    description="Account registration, email verification, and JWT / refresh-token authentication.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=["localhost", "127.0.0.1", "*.localhost"],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    allow_credentials=True,
    max_age=3600,
)


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


app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every failure leaves as {"error": {code, message, detail}} so clients parse
# one shape. AuthError subclasses carry their own code; the table below only
# decides the status.
# ---------------------------------------------------------------------------

_AUTH_ERROR_STATUS: dict[type[AuthError], int] = {
    DuplicateUser: 409,
    InvalidToken: 400,
    TokenExpired: 401,
    UserNotFound: 404,
    BadCredentials: 401,
    AccountDisabled: 403,
    InvalidRefreshToken: 401,
    RefreshTokenExpired: 401,
    NotAuthenticated: 401,
    PasswordTooLong: 422,
}


def status_for(exc: AuthError) -> int:
    for cls in type(exc).__mro__:
        if cls in _AUTH_ERROR_STATUS:
            return _AUTH_ERROR_STATUS[cls]
    return 400


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    status_code = status_for(exc)
    response = _error_response(status_code, exc.code, exc.message)
    if status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wrap routing errors (unknown path, wrong method) in the error envelope."""
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the traceback; the client only ever sees a generic 500."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=__version__)
