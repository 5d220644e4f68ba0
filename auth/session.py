"""
auth/session.py -- Registration, login, logout and access-token refresh.

SessionManager orchestrates the three leaves (UserStore, TokenCodec,
WhitelistStore) and owns the invariants that span them:

  - A refresh token is never handed out unless its whitelist row was written.
    A failing insert propagates out of login(); the already-signed tokens are
    simply dropped.
  - The whitelist expiry and the token's exp claim come from the same
    issued_at instant, so they agree to the second.
  - InvalidCredentialsError is identical for unknown email and wrong password,
    and bcrypt runs in both cases so response time does not reveal which.
  - Check-then-act races are settled by storage: the unique email constraint
    on register, the delete row count on logout.

Every method is synchronous and CPU-heavy on the bcrypt step. HTTP handlers
calling into it are plain ``def`` functions so FastAPI runs them on its worker
thread pool rather than on the event loop.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone

from auth.errors import (
    AllFieldsRequiredError,
    DuplicateEmailError,
    EmailExistsError,
    InvalidCredentialsError,
    InvalidEmailFormatError,
    LogoutFieldsRequiredError,
    PasswordTooLongError,
    PasswordTooShortError,
    RefreshTokenNotWhitelistedError,
    UnknownUserError,
)
from auth.models import TokenPair, User
from auth.store import UserStore, WhitelistStore
from auth.tokens import (
    BCRYPT_MAX_BYTES,
    DEFAULT_BCRYPT_ROUNDS,
    REFRESH,
    REFRESH_TOKEN_TTL,
    TokenCodec,
    hash_password,
    verify_password,
)

logger = logging.getLogger("tokenkeep.session")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 8


def normalize_email(email: str | None) -> str:
    """Strip and lower-case an email so uniqueness and login ignore letter case."""
    return (email or "").strip().lower()


def _blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False


class SessionManager:
    """Credential and refresh-token lifecycle.

    Usage:
        users = UserStore(db_url)
        manager = SessionManager(users, WhitelistStore(users), TokenCodec(secret))
        manager.register("Ann Lee", "ann@example.com", "longpass1")
        pair = manager.login("ann@example.com", "longpass1")
        manager.logout(user_id, pair.refresh_token)
    """

    def __init__(
        self,
        users: UserStore,
        whitelist: WhitelistStore,
        codec: TokenCodec,
        bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS,
    ) -> None:
        self.users = users
        self.whitelist = whitelist
        self.codec = codec
        self.bcrypt_rounds = bcrypt_rounds
        # Timing equalization: login() checks unknown emails against this hash
        # so both failure paths pay the same bcrypt cost.
        self._dummy_hash = hash_password("tokenkeep_timing_dummy", rounds=bcrypt_rounds)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, full_name: str | None, email: str | None, password: str | None) -> User:
        """Create a new account and return it without the password hash.

        Raises AllFieldsRequiredError, InvalidEmailFormatError,
        PasswordTooShortError, PasswordTooLongError or EmailExistsError.
        """
        if _blank(full_name) or _blank(email) or _blank(password):
            raise AllFieldsRequiredError("All fields (full_name, email, password) are required.")

        email = normalize_email(email)
        if not EMAIL_PATTERN.match(email):
            raise InvalidEmailFormatError()
        if len(password) < MIN_PASSWORD_LENGTH:
            raise PasswordTooShortError()
        if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
            raise PasswordTooLongError()

        # Fast-path rejection; the unique constraint below is authoritative.
        if self.users.email_exists(email):
            raise EmailExistsError()

        hashed = hash_password(password, rounds=self.bcrypt_rounds)
        try:
            user = self.users.create_user(email=email, full_name=full_name.strip(), hashed_password=hashed)
        except DuplicateEmailError as exc:
            raise EmailExistsError() from exc

        logger.info("Registered user_id=%s", user.id)
        return user

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, email: str | None, password: str | None) -> TokenPair:
        """Authenticate and issue an access/refresh token pair.

        Side effect: one new whitelist row for the refresh token.
        Raises AllFieldsRequiredError or InvalidCredentialsError; storage
        failures propagate as StorageError.
        """
        if _blank(email) or _blank(password):
            raise AllFieldsRequiredError("All fields (email, password) are required.")

        if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
            # Never registrable, and bcrypt 4.x would compare only the first
            # 72 bytes, letting any suffix of a real password through.
            verify_password(password.encode("utf-8")[:BCRYPT_MAX_BYTES].decode("utf-8", "ignore"), self._dummy_hash)
            raise InvalidCredentialsError()

        user = self.users.get_by_email(normalize_email(email))
        if user is None or user.hashed_password is None:
            # Equalize timing -- do NOT return early before running bcrypt.
            verify_password(password, self._dummy_hash)
            raise InvalidCredentialsError()
        if not verify_password(password, user.hashed_password):
            raise InvalidCredentialsError()

        # Whole seconds: the JWT exp claim cannot carry more precision.
        issued_at = datetime.now(timezone.utc).replace(microsecond=0)
        access_token = self.codec.sign_access_token(user.id, issued_at=issued_at)
        refresh_token = self.codec.sign_refresh_token(user.id, issued_at=issued_at)

        self.whitelist.insert(user.id, refresh_token, issued_at + REFRESH_TOKEN_TTL)

        logger.info("Login user_id=%s", user.id)
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, user_id: int | None, refresh_token: str | None) -> tuple[int, str]:
        """Revoke a refresh token and echo the identifying pair.

        A second logout with the same pair fails: revocation is one-shot.
        Raises LogoutFieldsRequiredError or RefreshTokenNotWhitelistedError.
        """
        if _blank(user_id) or _blank(refresh_token):
            raise LogoutFieldsRequiredError()

        if not self.whitelist.exists(user_id, refresh_token):
            raise RefreshTokenNotWhitelistedError()
        if not self.whitelist.delete(user_id, refresh_token):
            # Lost the race against a concurrent logout for the same pair.
            raise RefreshTokenNotWhitelistedError()

        logger.info("Logout user_id=%s", user_id)
        return user_id, refresh_token

    # ------------------------------------------------------------------
    # Access-token refresh (no rotation)
    # ------------------------------------------------------------------

    def refresh_access_token(self, user_id: int | None, refresh_token: str | None) -> str:
        """Mint a new access token from a whitelisted refresh token.

        The refresh token itself is not rotated and stays valid until logout
        or expiry. Raises AllFieldsRequiredError or
        RefreshTokenNotWhitelistedError; TokenExpiredError and
        InvalidSignatureError propagate from the codec.
        """
        if _blank(user_id) or _blank(refresh_token):
            raise AllFieldsRequiredError("All fields (user_id, refresh_token) are required.")

        if not self.whitelist.exists(user_id, refresh_token):
            raise RefreshTokenNotWhitelistedError()

        claims = self.codec.verify(refresh_token)
        if claims.token_type != REFRESH or claims.user_id != user_id:
            raise RefreshTokenNotWhitelistedError()

        self.whitelist.touch_last_used(refresh_token)
        logger.info("Refreshed access token user_id=%s", user_id)
        return self.codec.sign_access_token(user_id)

    # ------------------------------------------------------------------
    # Profile reads
    # ------------------------------------------------------------------

    def get_user(self, user_id: int) -> User:
        """Return the user (without hash) or raise UnknownUserError."""
        user = self.users.get_by_id(user_id)
        if user is None:
            raise UnknownUserError()
        return user

    def list_users(self) -> list[User]:
        return self.users.list_users()
