"""
auth/store.py -- SQLAlchemy Core persistence for users and the refresh-token whitelist.

Pattern: Repository + Data Mapper.
UserStore (Credential Store) and WhitelistStore (Revocation Whitelist) are the
repositories; _row_to_user / _row_to_entry are the mappers. The session manager
never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Constraints:
  user.email is UNIQUE. A concurrent register that slips past the
  email_exists() pre-check is rejected here and surfaces as DuplicateEmailError.

  jwt_whitelist is UNIQUE(user_id, refresh_token) and user_id references
  user.id. SQLite only enforces foreign keys when the pragma is set, so it is
  set on every new connection together with WAL mode.

Timestamps:
  Stored as fixed-width ISO-8601 UTC strings (microsecond precision, +00:00
  suffix). Fixed width makes lexical comparison in SQL equal chronological
  comparison, which the expiry filter relies on.

Errors:
  Every SQLAlchemyError leaving this module is wrapped in StorageError, except
  the email IntegrityError, which becomes DuplicateEmailError.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import AllFieldsRequiredError, DuplicateEmailError, StorageError, UnknownUserError
from auth.models import User, WhitelistEntry

logger = logging.getLogger("tokenkeep.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "user",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("full_name", String(255), nullable=False),
    Column("hashed_password", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_whitelist = Table(
    "jwt_whitelist",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("user.id", ondelete="CASCADE"), nullable=False),
    Column("refresh_token", Text, nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("last_used_at", String(32)),
    UniqueConstraint("user_id", "refresh_token", name="uq_jwt_whitelist_user_token"),
)

# touch_last_used() looks rows up by token alone.
Index("ix_jwt_whitelist_refresh_token", _whitelist.c.refresh_token)


# ---------------------------------------------------------------------------
# Connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign-key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(moment: datetime) -> str:
    """Render a datetime as the fixed-width UTC string stored in every timestamp column."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    """Re-raise any SQLAlchemy failure inside the block as StorageError."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Storage failure during %s: %s", operation, exc)
        raise StorageError() from exc


# ---------------------------------------------------------------------------
# Credential Store
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Owns the engine; WhitelistStore borrows it so both tables live in the same
    database and the foreign key holds.

    Usage:
        users = UserStore("sqlite:///tokenkeep.db")
        user = users.create_user("ann@example.com", "Ann Lee", hash_password("longpass1"))
        users.get_by_email("ann@example.com")
        users.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        with _storage_errors("schema creation"):
            _metadata.create_all(self.engine)

    def email_exists(self, email: str) -> bool:
        """Return True if a user with exactly this email exists."""
        with _storage_errors("email_exists"), self.engine.connect() as conn:
            row = conn.execute(select(_users.c.id).where(_users.c.email == email).limit(1)).first()
        return row is not None

    def user_exists(self, user_id: int) -> bool:
        """Return True if user_id references an existing user."""
        with _storage_errors("user_exists"), self.engine.connect() as conn:
            row = conn.execute(select(_users.c.id).where(_users.c.id == user_id).limit(1)).first()
        return row is not None

    def create_user(self, email: str, full_name: str, hashed_password: str) -> User:
        """Insert a new user and return it without the password hash.

        Raises DuplicateEmailError if the email is already taken -- including
        when a concurrent request inserted it after the caller's pre-check.
        """
        created_at = _now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _users.insert().values(
                        email=email,
                        full_name=full_name,
                        hashed_password=hashed_password,
                        created_at=created_at,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise DuplicateEmailError() from exc
        except SQLAlchemyError as exc:
            logger.error("Storage failure during create_user: %s", exc)
            raise StorageError() from exc
        return User(
            id=result.inserted_primary_key[0],
            email=email,
            full_name=full_name,
            created_at=created_at,
        )

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email, including the password hash.

        For authentication only. Returns None if not found.
        """
        with _storage_errors("get_by_email"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row, with_hash=True) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. The password hash is never loaded."""
        with _storage_errors("get_by_id"), self.engine.connect() as conn:
            row = conn.execute(
                select(_users.c.id, _users.c.email, _users.c.full_name, _users.c.created_at).where(
                    _users.c.id == user_id
                )
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return every user ordered by id, without password hashes."""
        with _storage_errors("list_users"), self.engine.connect() as conn:
            rows = conn.execute(
                select(_users.c.id, _users.c.email, _users.c.full_name, _users.c.created_at).order_by(_users.c.id)
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
        except SQLAlchemyError:
            logger.exception("Database ping failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Revocation Whitelist
# ---------------------------------------------------------------------------


class WhitelistStore:
    """Repository for the refresh-token whitelist.

    The single source of truth for "is this refresh token currently usable":
    a token is usable while an unexpired row for (user_id, refresh_token)
    exists. Deleting the row revokes the token.

    Expired rows are never removed automatically. exists() ignores them;
    purge_expired() removes them on demand (``python main.py purge-expired``).

    Usage:
        whitelist = WhitelistStore(users)
        whitelist.insert(user.id, refresh_token, expires_at)
        whitelist.exists(user.id, refresh_token)   # True
        whitelist.delete(user.id, refresh_token)   # True, then False on repeat
    """

    def __init__(self, users: UserStore) -> None:
        self.users = users
        self.engine: Engine = users.engine

    def insert(self, user_id: int | None, refresh_token: str | None, expires_at: datetime | None) -> WhitelistEntry:
        """Whitelist a freshly issued refresh token.

        Raises AllFieldsRequiredError if any argument is missing or empty and
        UnknownUserError if user_id does not reference an existing user.
        Additive only: earlier tokens for the same user stay valid.
        """
        if user_id is None or user_id == "" or not refresh_token or expires_at is None:
            raise AllFieldsRequiredError()
        if not self.users.user_exists(user_id):
            raise UnknownUserError()

        entry = WhitelistEntry(
            user_id=user_id,
            refresh_token=refresh_token,
            expires_at=to_iso(expires_at),
            created_at=_now_iso(),
        )
        with _storage_errors("whitelist insert"), self.engine.connect() as conn:
            result = conn.execute(
                _whitelist.insert().values(
                    user_id=entry.user_id,
                    refresh_token=entry.refresh_token,
                    expires_at=entry.expires_at,
                    created_at=entry.created_at,
                )
            )
            conn.commit()
        entry.id = result.inserted_primary_key[0]
        return entry

    def exists(self, user_id: int, refresh_token: str) -> bool:
        """Return True if (user_id, refresh_token) is whitelisted and not yet expired."""
        with _storage_errors("whitelist exists"), self.engine.connect() as conn:
            row = conn.execute(
                select(_whitelist.c.id)
                .where(
                    (_whitelist.c.user_id == user_id)
                    & (_whitelist.c.refresh_token == refresh_token)
                    & (_whitelist.c.expires_at > _now_iso())
                )
                .limit(1)
            ).first()
        return row is not None

    def get(self, user_id: int, refresh_token: str) -> WhitelistEntry | None:
        """Return the row for (user_id, refresh_token) regardless of expiry."""
        with _storage_errors("whitelist get"), self.engine.connect() as conn:
            row = conn.execute(
                _whitelist.select().where(
                    (_whitelist.c.user_id == user_id) & (_whitelist.c.refresh_token == refresh_token)
                )
            ).fetchone()
        return _row_to_entry(row) if row is not None else None

    def delete(self, user_id: int, refresh_token: str) -> bool:
        """Revoke a refresh token. Returns True if a row was removed.

        The row count is authoritative: of two concurrent deletes for the same
        pair, exactly one sees True.
        """
        with _storage_errors("whitelist delete"), self.engine.connect() as conn:
            result = conn.execute(
                _whitelist.delete().where(
                    (_whitelist.c.user_id == user_id) & (_whitelist.c.refresh_token == refresh_token)
                )
            )
            conn.commit()
        return result.rowcount > 0

    def touch_last_used(self, refresh_token: str) -> bool:
        """Stamp last_used_at on the row(s) holding refresh_token. Bookkeeping only."""
        with _storage_errors("whitelist touch"), self.engine.connect() as conn:
            result = conn.execute(
                _whitelist.update().where(_whitelist.c.refresh_token == refresh_token).values(last_used_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def purge_expired(self) -> int:
        """Delete every row whose expires_at has passed. Returns the number removed."""
        with _storage_errors("whitelist purge"), self.engine.connect() as conn:
            result = conn.execute(_whitelist.delete().where(_whitelist.c.expires_at <= _now_iso()))
            conn.commit()
        logger.info("Purged %d expired whitelist entries", result.rowcount)
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, with_hash: bool = False) -> User:
    return User(
        id=row.id,
        email=row.email,
        full_name=row.full_name,
        hashed_password=row.hashed_password if with_hash else None,
        created_at=row.created_at,
    )


def _row_to_entry(row) -> WhitelistEntry:
    return WhitelistEntry(
        id=row.id,
        user_id=row.user_id,
        refresh_token=row.refresh_token,
        expires_at=row.expires_at,
        created_at=row.created_at,
        last_used_at=row.last_used_at,
    )
