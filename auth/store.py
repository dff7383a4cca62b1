"""
auth/store.py -- SQLAlchemy Core persistence layer for credential records.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route, dependency and flow code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  hashed_password is a "secret field": lookups leave it as None unless the
  caller passes include_secret=True. Only login, password update and the
  store's own writes ever need it.

  Hashing happens inside the store (create_user, set_password). Callers hand
  over plaintext and never see or compute a hash themselves.

  Soft delete: every lookup filters on active = 1, so deactivated accounts
  cannot log in, be resolved from a token, or receive reset emails.

Timestamps are stored as naive UTC in DateTime columns (SQLite has no tz type)
and converted back to aware UTC datetimes by the mapper.

DB path: auth/tourbook_auth.db unless DATABASE_URL says otherwise.

Layer rule: no imports from api/, mail/ or core/.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import DuplicateEmailError
from auth.models import Role, User
from auth.passwords import PasswordHasher
from auth.validation import normalize_email, validate_user

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("email", String(254), nullable=False, unique=True),
    Column("photo", String(255), nullable=False, server_default="default.jpg"),
    Column("role", String(20), nullable=False, server_default="user"),
    Column("hashed_password", Text, nullable=False),
    Column("password_changed_at", DateTime),
    Column("password_reset_token", String(64), index=True),  # SHA-256 hex
    Column("password_reset_expires", DateTime),
    Column("active", Integer, nullable=False, server_default="1"),
    Column("created_at", DateTime, nullable=False),
)

# Password changes are stamped one second in the past so a session token
# issued right after the change (same second) is not treated as stale.
_CHANGE_BACKDATE = timedelta(seconds=1)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_db(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User credential records.

    Usage:
        store = UserStore("sqlite:///:memory:", PasswordHasher())
        user = store.create_user(User(name="Jonas", email="jonas@example.com"), "pass1234")
        same = store.find_by_email("jonas@example.com", include_secret=True)
        store.close()
    """

    def __init__(
        self,
        db_url: str,
        hasher: PasswordHasher,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)
        self.hasher = hasher
        self._clock = clock

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User, password: str) -> User:
        """Validate, hash the password, insert, and return the stored record.

        The returned User carries the new id but not the hash.
        password_changed_at is left unset on creation.
        Raises ValidationError for bad fields and DuplicateEmailError when the
        email is already registered.
        """
        validate_user(user)
        user_id = uuid.uuid4().hex
        created_at = self._clock()
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _users.insert().values(
                        id=user_id,
                        name=user.name.strip(),
                        email=user.email,
                        photo=user.photo,
                        role=Role(user.role).value,
                        hashed_password=self.hasher.hash(password),
                        active=1,
                        created_at=_to_db(created_at),
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise DuplicateEmailError() from exc
        return User(
            id=user_id,
            name=user.name.strip(),
            email=user.email,
            photo=user.photo,
            role=Role(user.role),
            created_at=created_at,
        )

    def save(self, user: User, *, validate: bool = True) -> bool:
        """Persist the mutable non-secret fields of an existing record.

        validate=False skips validate_user(); forgot-password uses it for
        token-only updates on records that may predate newer field rules.
        The password hash is never written here -- use set_password().

        Returns True if a row was updated.
        """
        if validate:
            validate_user(user)
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user.id)
                .values(
                    name=user.name,
                    email=normalize_email(user.email),
                    photo=user.photo,
                    role=Role(user.role).value,
                    password_reset_token=user.password_reset_token,
                    password_reset_expires=_to_db(user.password_reset_expires),
                    active=1 if user.active else 0,
                )
            )
            conn.commit()
        return result.rowcount > 0

    def set_password(self, user_id: str, password: str) -> datetime:
        """Hash and store a new password; return the recorded change time.

        Also clears any pending reset token: a password that changed by any
        route makes an outstanding reset link pointless.
        """
        changed_at = self._clock() - _CHANGE_BACKDATE
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(
                    hashed_password=self.hasher.hash(password),
                    password_changed_at=_to_db(changed_at),
                    password_reset_token=None,
                    password_reset_expires=None,
                )
            )
            conn.commit()
        return changed_at

    def clear_reset_token(self, user_id: str, token_hash: str | None = None) -> bool:
        """Clear both reset fields.

        With token_hash, the update only matches while that exact hash is still
        stored -- a compare-and-clear that makes redemption single-use even
        under concurrent requests. Returns True if a row was updated.
        """
        condition = _users.c.id == user_id
        if token_hash is not None:
            condition = condition & (_users.c.password_reset_token == token_hash)
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(condition).values(password_reset_token=None, password_reset_expires=None)
            )
            conn.commit()
        return result.rowcount > 0

    def deactivate(self, user_id: str) -> bool:
        """Soft-delete a record. Returns True if an active row was flipped."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where((_users.c.id == user_id) & (_users.c.active == 1)).values(active=0)
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Reads (active records only)
    # ------------------------------------------------------------------

    def find_by_id(self, user_id: str, *, include_secret: bool = False) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.id == user_id) & (_users.c.active == 1))
            ).fetchone()
        return _row_to_user(row, include_secret) if row is not None else None

    def find_by_email(self, email: str, *, include_secret: bool = False) -> User | None:
        """Look up by email. The input is normalized the same way as on write."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.email == normalize_email(email)) & (_users.c.active == 1))
            ).fetchone()
        return _row_to_user(row, include_secret) if row is not None else None

    def find_by_reset_token(self, token_hash: str, now: datetime) -> User | None:
        """Find the record holding token_hash whose reset window is still open."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(
                    (_users.c.password_reset_token == token_hash)
                    & (_users.c.password_reset_expires > _to_db(now))
                    & (_users.c.active == 1)
                )
            ).fetchone()
        return _row_to_user(row, False) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all active users ordered by email. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select().where(_users.c.active == 1).order_by(_users.c.email)
            ).fetchall()
        return [_row_to_user(r, False) for r in rows]

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, include_secret: bool) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        photo=row.photo,
        role=Role(row.role),
        hashed_password=row.hashed_password if include_secret else None,
        password_changed_at=_from_db(row.password_changed_at),
        password_reset_token=row.password_reset_token,
        password_reset_expires=_from_db(row.password_reset_expires),
        active=bool(row.active),
        created_at=_from_db(row.created_at),
    )
