"""
auth/tokens.py -- JWT signing/verification and password hashing.

Security design decisions:
  JWT: python-jose with HS256. Both token kinds carry the user id as the
       ``sub`` claim plus a ``type`` claim ("access" / "refresh"). Refresh
       tokens also carry a random ``jti`` so two logins in the same second
       never produce the same token string -- the whitelist is unique on
       (user_id, refresh_token) and would otherwise reject the second login.

       Signature checks are enough for access tokens. Refresh tokens are only
       usable while whitelisted; see auth/store.py WhitelistStore.

  Passwords: bcrypt, salted, cost factor 12 by default (~100-250ms per hash on
       commodity hardware). Callers may lower the cost in tests.

  Secret: TokenCodec receives the signing secret at construction. Nothing in
       this module reads configuration -- the API lifespan passes
       Settings.secret_key in, tests pass their own.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import InvalidSignatureError, TokenExpiredError
from auth.models import TokenClaims

_ALGORITHM = "HS256"

ACCESS_TOKEN_TTL = timedelta(minutes=15)
REFRESH_TOKEN_TTL = timedelta(days=7)

ACCESS = "access"
REFRESH = "refresh"

DEFAULT_BCRYPT_ROUNDS = 12

# bcrypt reads at most 72 bytes of input. bcrypt >= 5 raises on longer values.
BCRYPT_MAX_BYTES = 72


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Callers must reject passwords longer than BCRYPT_MAX_BYTES first;
    SessionManager.register() does.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash or an over-long candidate is a mismatch, not an error.
    The length check matters on bcrypt 4.x, which truncates instead of raising.
    """
    candidate = plain.encode("utf-8")
    if len(candidate) > BCRYPT_MAX_BYTES:
        return False
    try:
        return bcrypt.checkpw(candidate, hashed.encode("utf-8"))
    except ValueError:
        return False


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenCodec:
    """Signs and verifies access and refresh tokens with one shared secret.

    Usage:
        codec = TokenCodec(settings.secret_key)
        token = codec.sign_access_token(user.id)
        claims = codec.verify(token)      # raises TokenExpiredError / InvalidSignatureError
    """

    def __init__(self, secret_key: str) -> None:
        if not secret_key:
            raise ValueError("TokenCodec requires a non-empty signing secret.")
        self._secret_key = secret_key

    def sign_access_token(self, user_id: int, issued_at: datetime | None = None) -> str:
        """Encode a 15-minute access token for user_id."""
        return self._sign(user_id, ACCESS, ACCESS_TOKEN_TTL, issued_at)

    def sign_refresh_token(self, user_id: int, issued_at: datetime | None = None) -> str:
        """Encode a 7-day refresh token for user_id.

        Pass issued_at when the caller needs the whitelist expiry to line up
        exactly with the token's exp claim.
        """
        return self._sign(user_id, REFRESH, REFRESH_TOKEN_TTL, issued_at, jti=secrets.token_hex(16))

    def _sign(
        self,
        user_id: int,
        token_type: str,
        ttl: timedelta,
        issued_at: datetime | None,
        jti: str | None = None,
    ) -> str:
        issued = issued_at or _utcnow()
        payload = {
            "sub": str(user_id),  # jose requires a string subject
            "type": token_type,
            "iat": issued,
            "exp": issued + ttl,
        }
        if jti is not None:
            payload["jti"] = jti
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str) -> TokenClaims:
        """Verify signature and expiry and return the token's claims.

        Raises TokenExpiredError when the token is past its exp claim and
        InvalidSignatureError for every other failure (bad signature, garbage
        input, missing or non-numeric subject, unknown type).
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise TokenExpiredError() from exc
        except JWTError as exc:
            raise InvalidSignatureError() from exc

        token_type = payload.get("type")
        if token_type not in (ACCESS, REFRESH):
            raise InvalidSignatureError()
        try:
            user_id = int(payload["sub"])
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidSignatureError() from exc
        return TokenClaims(user_id=user_id, token_type=token_type, expires_at=int(payload["exp"]))
