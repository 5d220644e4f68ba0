"""
api/routes/v1/auth.py -- Registration and session REST endpoints.

Routes:
  POST /api/v1/auth/register  -- create an account; 201 with the user (no password)
  POST /api/v1/auth/login     -- password login; 200 with access + refresh tokens
  POST /api/v1/auth/logout    -- revoke a refresh token; 200 echoing the pair
  POST /api/v1/auth/refresh   -- mint a new access token from a whitelisted refresh token

Handlers are plain ``def`` on purpose: SessionManager runs bcrypt and blocking
SQLAlchemy calls, and FastAPI executes sync handlers on its thread pool so the
event loop keeps serving other requests meanwhile.

Handlers do no validation of their own. SessionManager raises SessionError
subclasses; the exception handler in api/main.py maps them to status codes.

Security:
  Cache-Control: no-store on every response that carries a token.
  Logs carry user ids only -- never emails, passwords or token strings.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.models import (
    LoginRequest,
    LoginResponse,
    LogoutResponse,
    RefreshResponse,
    RefreshTokenRequest,
    RegisterRequest,
    UserResponse,
)
from auth.session import SessionManager

# Auth policy: every route here is public -- the caller proves identity with
# credentials or a refresh token in the body, not with a Bearer header.
router = APIRouter()


def _no_store(content: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=content)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> UserResponse:
    """Register a new account.

    400 for missing/blank fields, malformed email or bad password length;
    409 when the email is already registered (case-insensitive).
    """
    manager: SessionManager = request.app.state.session_manager
    user = manager.register(body.full_name, body.email, body.password)
    return UserResponse.from_user(user)


@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password and issue a token pair.

    Returns the same 401 invalid_credentials for an unknown email and for a
    wrong password so the response does not reveal which accounts exist.
    """
    manager: SessionManager = request.app.state.session_manager
    pair = manager.login(body.email, body.password)
    return _no_store(
        LoginResponse(access_token=pair.access_token, refresh_token=pair.refresh_token).model_dump(by_alias=True)
    )


@router.post("/auth/logout", response_model=LogoutResponse)
def logout(request: Request, body: RefreshTokenRequest) -> LogoutResponse:
    """Revoke a refresh token by deleting its whitelist entry.

    A repeated logout with the same pair returns 401
    refresh_token_not_whitelisted -- revocation happens once.
    """
    manager: SessionManager = request.app.state.session_manager
    user_id, refresh_token = manager.logout(body.user_id, body.refresh_token)
    return LogoutResponse(user_id=user_id, refresh_token=refresh_token)


@router.post("/auth/refresh", response_model=RefreshResponse)
def refresh(request: Request, body: RefreshTokenRequest) -> JSONResponse:
    """Issue a fresh access token. The refresh token is not rotated."""
    manager: SessionManager = request.app.state.session_manager
    access_token = manager.refresh_access_token(body.user_id, body.refresh_token)
    return _no_store(RefreshResponse(access_token=access_token).model_dump(by_alias=True))
