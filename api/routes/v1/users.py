"""
api/routes/v1/users.py -- Read-only user endpoints for authenticated callers.

Routes:
  GET /api/v1/users             -- every user's public profile
  GET /api/v1/users/details     -- the caller's own profile
  GET /api/v1/users/{user_id}   -- any user's public profile (404 if unknown)

Both require ``Authorization: Bearer <access token>``. Profiles are never
mutated here; the session core treats users as immutable once created.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import UserResponse
from auth.dependencies import get_current_user, get_current_user_id
from auth.models import User
from auth.session import SessionManager

router = APIRouter()


@router.get("/users", response_model=list[UserResponse])
def list_users(
    request: Request,
    _caller_id: int = Depends(get_current_user_id),
) -> list[UserResponse]:
    """Return every user's public profile, oldest account first."""
    manager: SessionManager = request.app.state.session_manager
    return [UserResponse.from_user(u) for u in manager.list_users()]


@router.get("/users/details", response_model=UserResponse)
def user_details(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return the profile of the user the access token belongs to."""
    return UserResponse.from_user(current_user)


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    request: Request,
    user_id: int,
    _caller_id: int = Depends(get_current_user_id),
) -> UserResponse:
    """Return a user's public profile; UnknownUserError maps to 404."""
    manager: SessionManager = request.app.state.session_manager
    return UserResponse.from_user(manager.get_user(user_id))
