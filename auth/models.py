"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the session
manager do the work; these only own the shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A registered identity.

    hashed_password is populated only by UserStore.get_by_email(), the one
    lookup used for authentication. Every other read path leaves it None so a
    hash can never leak into a response by accident.
    """

    email: str
    full_name: str
    id: int | None = None
    hashed_password: str | None = None
    created_at: str | None = None


@dataclass
class WhitelistEntry:
    """One currently-issued refresh token, scoped to the user that owns it.

    The (user_id, refresh_token) pair is unique. Presence of an unexpired row
    is what makes a refresh token usable; deleting the row revokes it.
    Timestamps are fixed-width ISO-8601 UTC strings.
    """

    user_id: int
    refresh_token: str
    expires_at: str
    id: int | None = None
    created_at: str | None = None
    last_used_at: str | None = None


@dataclass(frozen=True)
class TokenPair:
    """Result of a successful login."""

    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims of an access or refresh token."""

    user_id: int
    token_type: str  # "access" or "refresh"
    expires_at: int  # unix seconds
