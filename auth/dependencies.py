"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Only one auth method exists: ``Authorization: Bearer <access token>``. The
token is checked by signature and expiry alone -- access tokens are never
looked up in the whitelist, so this path makes no database call.

Failure mapping:
  - header missing or not a Bearer credential  -> 401 token_missing
  - token past its exp claim                   -> 401 token_expired
  - bad signature, garbage, or a refresh token -> 403 invalid_signature

get_current_user_id() attaches the resolved user id to request.state and
returns it. get_current_user() additionally loads the User record.

Layer rule: no imports from api/ or core/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import InvalidSignatureError, TokenExpiredError
from auth.models import User
from auth.session import SessionManager
from auth.tokens import ACCESS, TokenCodec


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_user_id(request: Request) -> int:
    """Require a valid access token and return its user id.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user_id: int = Depends(get_current_user_id)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "token_missing", "message": "Access token is missing."},
        )

    codec: TokenCodec = request.app.state.codec
    try:
        claims = codec.verify(token)
    except TokenExpiredError as exc:
        raise HTTPException(
            status_code=401,
            detail={"code": exc.code, "message": "Token has expired."},
        ) from exc
    except InvalidSignatureError as exc:
        raise HTTPException(
            status_code=403,
            detail={"code": exc.code, "message": "Invalid token signature."},
        ) from exc

    # A refresh token is validly signed but must not authenticate requests.
    if claims.token_type != ACCESS:
        raise HTTPException(
            status_code=403,
            detail={"code": "invalid_signature", "message": "Invalid token signature."},
        )

    request.state.user_id = claims.user_id
    return claims.user_id


def get_current_user(request: Request) -> User:
    """Require a valid access token and return the User it belongs to.

    A token for a user that no longer exists is treated as unauthenticated.
    """
    user_id = get_current_user_id(request)
    manager: SessionManager = request.app.state.session_manager
    user = manager.users.get_by_id(user_id)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user
