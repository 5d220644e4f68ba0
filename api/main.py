"""
api/main.py -- FastAPI application entry point for tokenkeep.

Exposes the session core (auth/) over HTTP: registration, login, logout,
access-token refresh and read-only user profiles.

Run with:      python main.py serve
               uvicorn asgi:app --reload

Middleware stack (outermost to innermost; Starlette wraps the stack with each
add_middleware call, so the last one registered runs first):
  1. log_requests          -- one access-log line per request, rejections included
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. TrustedHostMiddleware -- rejects requests with unexpected Host headers

Lifespan builds the stores, token codec and session manager once at startup
from Settings and disposes the engine on shutdown. Nothing in auth/ reads
configuration itself; this module is where Settings values are injected.

Error contract: SessionManager raises SessionError subclasses. The handler
below maps each class to exactly one HTTP status; anything unmapped is a 500.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.errors import (
    AllFieldsRequiredError,
    DuplicateEmailError,
    EmailExistsError,
    InvalidCredentialsError,
    InvalidEmailFormatError,
    InvalidSignatureError,
    LogoutFieldsRequiredError,
    PasswordTooLongError,
    PasswordTooShortError,
    RefreshTokenNotWhitelistedError,
    SessionError,
    TokenExpiredError,
    UnknownUserError,
)
from auth.session import SessionManager
from auth.store import UserStore, WhitelistStore
from auth.tokens import TokenCodec
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
logger = logging.getLogger("tokenkeep.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# SessionError -> HTTP status
#
# 400: caller-fixable input.  401: authentication failed.  403: forged token.
# 404: no such user.  409: conflict.  StorageError and anything absent from
# this table fall through to 500.
# ---------------------------------------------------------------------------

_STATUS_BY_ERROR: dict[type[SessionError], int] = {
    AllFieldsRequiredError: 400,
    InvalidEmailFormatError: 400,
    PasswordTooShortError: 400,
    PasswordTooLongError: 400,
    LogoutFieldsRequiredError: 400,
    InvalidCredentialsError: 401,
    RefreshTokenNotWhitelistedError: 401,
    TokenExpiredError: 401,
    InvalidSignatureError: 403,
    UnknownUserError: 404,
    EmailExistsError: 409,
    DuplicateEmailError: 409,
}


def status_for(exc: SessionError) -> int:
    """Return the HTTP status for a SessionError, walking the MRO for subclasses."""
    for cls in type(exc).__mro__:
        if cls in _STATUS_BY_ERROR:
            return _STATUS_BY_ERROR[cls]
    return 500


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the session core once and tear it down symmetrically.

    Startup order matters: the whitelist borrows the user store's engine, and
    the session manager needs all three leaves.
    """
    logger.info("tokenkeep API starting up")
    app.state.user_store = UserStore(_settings.database_url)
    app.state.whitelist = WhitelistStore(app.state.user_store)
    app.state.codec = TokenCodec(_settings.secret_key)
    app.state.session_manager = SessionManager(
        app.state.user_store,
        app.state.whitelist,
        app.state.codec,
        bcrypt_rounds=_settings.bcrypt_rounds,
    )
    logger.info("Session core initialized (bcrypt_rounds=%d)", _settings.bcrypt_rounds)

    yield

    app.state.user_store.close()
    logger.info("tokenkeep API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="tokenkeep API",
    description="Credential and session service with a refresh-token whitelist.",
    version=__version__,
    lifespan=lifespan,
)

# Each add_middleware wraps the current stack: CORS sees requests before TrustedHost.
app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
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


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(SessionError)
async def session_error_handler(request: Request, exc: SessionError) -> JSONResponse:
    """Map a SessionError raised by the core to its HTTP status.

    500-class errors (StorageError, unmapped subclasses) get a generic message;
    the real cause is logged with traceback, never sent to the client.
    """
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(
            "Session core failure on %s %s: %s",
            request.method,
            request.url.path,
            exc.code,
            exc_info=exc,
        )
        return _error_response(status_code, exc.code, "An unexpected error occurred.")
    return _error_response(status_code, exc.code, str(exc))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with structured error when the body or path has the wrong shape or type."""
    return _error_response(400, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Dependencies raise HTTPException with a dict detail ({"code", "message"});
    use it directly as the error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is logged only, never written to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. Plain def: the DB probe blocks.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and a database probe."""
    db_ok = request.app.state.user_store.ping()
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=__version__,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
