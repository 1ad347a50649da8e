"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper (same as movies/store.py).
UserStore, TokenStore, and PermissionStore are the repositories; the
_row_to_* functions are the mappers. Route, dependency, and token-service
code never touches SQL directly.

All three repositories share one Engine (built by core.db.create_db_engine)
and one MetaData, so tokens and permission grants can join against users.

Error contract:
  get_* methods return None when nothing matches -- "not found" is a value,
      not an exception, at this layer.
  UserStore.insert/update raise DuplicateEmailError when the case-insensitive
      email index rejects the write.
  UserStore.update raises EditConflictError when the version guard matches
      zero rows (another writer got there first).
  Anything else (connection loss, timeout) propagates as SQLAlchemyError for
      the caller to surface as a 500.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Only token hashes are stored; the tokens table has no plaintext column.

Layer rule: no imports from api/ or movies/. Import from core/ is allowed.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import PERMISSION_CODES, Token, User
from core.errors import DuplicateEmailError, EditConflictError

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("created_at", String(32), nullable=False),
    Column("name", String(500), nullable=False),
    Column("email", String(255), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("activated", Integer, nullable=False, server_default="0"),
    Column("version", Integer, nullable=False, server_default="1"),
)

# Emails are unique regardless of case. An expression index works on both
# SQLite (3.9+) and PostgreSQL.
_EMAIL_INDEX = "uq_users_email_lower"
Index(_EMAIL_INDEX, func.lower(_users.c.email), unique=True)

_tokens = Table(
    "tokens",
    metadata,
    Column("hash", String(64), primary_key=True),  # HMAC-SHA256 hex
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("expiry", Float, nullable=False),  # UTC epoch seconds
    Column("scope", String(30), nullable=False),
)

_permissions = Table(
    "permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("code", String(100), nullable=False, unique=True),
)

_users_permissions = Table(
    "users_permissions",
    metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", Integer, ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _is_duplicate_email(exc: IntegrityError) -> bool:
    return _EMAIL_INDEX in str(exc.orig) or "users.email" in str(exc.orig)


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore(engine)
        store.insert(user)            # fills user.id, created_at, version
        user = store.get_by_email("alice@example.com")
        user.activated = True
        store.update(user)            # bumps user.version
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        metadata.create_all(self.engine)

    def insert(self, user: User) -> None:
        """Insert a new user, filling in id, created_at and version in place.

        Raises DuplicateEmailError if the email is already registered (in any
        letter case).
        """
        created_at = _now_iso()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        created_at=created_at,
                        name=user.name,
                        email=user.email,
                        password_hash=user.password_hash,
                        activated=1 if user.activated else 0,
                        version=1,
                    )
                )
        except IntegrityError as exc:
            if _is_duplicate_email(exc):
                raise DuplicateEmailError() from exc
            raise
        user.id = result.inserted_primary_key[0]
        user.created_at = created_at
        user.version = 1

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email, ignoring case. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(func.lower(_users.c.email) == email.lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update(self, user: User) -> None:
        """Write all mutable fields back, guarded by the version the caller read.

        On success user.version is incremented in place to match the row.
        Raises EditConflictError if the row changed (or vanished) since it
        was read, DuplicateEmailError if the new email is taken.
        """
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.update()
                    .where((_users.c.id == user.id) & (_users.c.version == user.version))
                    .values(
                        name=user.name,
                        email=user.email,
                        password_hash=user.password_hash,
                        activated=1 if user.activated else 0,
                        version=_users.c.version + 1,
                    )
                )
        except IntegrityError as exc:
            if _is_duplicate_email(exc):
                raise DuplicateEmailError() from exc
            raise
        if result.rowcount == 0:
            raise EditConflictError()
        user.version += 1

    def get_for_token(self, token_hash: str, scope: str, now: datetime) -> User | None:
        """Return the owner of an unexpired token with this hash and scope.

        The hash, scope and expiry conditions live in one WHERE clause so a
        wrong scope, an expired token and an unknown token are
        indistinguishable to the caller.
        """
        query = (
            select(_users)
            .select_from(_users.join(_tokens, _tokens.c.user_id == _users.c.id))
            .where(
                (_tokens.c.hash == token_hash)
                & (_tokens.c.scope == scope)
                & (_tokens.c.expiry > now.timestamp())
            )
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_user(row) if row is not None else None


class TokenStore:
    """Repository for Token records. Tokens are only ever inserted or bulk-deleted."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        metadata.create_all(self.engine)

    def insert(self, token: Token) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                _tokens.insert().values(
                    hash=token.hash,
                    user_id=token.user_id,
                    expiry=token.expiry.timestamp(),
                    scope=token.scope,
                )
            )

    def delete_all_for_user(self, user_id: int, scope: str) -> int:
        """Delete every token for (user_id, scope). Returns rows removed; 0 is fine."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _tokens.delete().where((_tokens.c.user_id == user_id) & (_tokens.c.scope == scope))
            )
        return result.rowcount

    def delete_expired(self, now: datetime) -> int:
        """Remove tokens whose expiry has passed. Returns rows removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_tokens.delete().where(_tokens.c.expiry <= now.timestamp()))
        return result.rowcount


class PermissionStore:
    """Repository for user -> permission code grants.

    The permissions table is seeded with PERMISSION_CODES on construction;
    grants reference those rows by id.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        metadata.create_all(self.engine)
        self._ensure_permission_codes()

    def _ensure_permission_codes(self) -> None:
        """Insert any known permission code that is not in the table yet. Idempotent."""
        with self.engine.begin() as conn:
            existing = set(conn.execute(select(_permissions.c.code)).scalars())
            missing = [code for code in PERMISSION_CODES if code not in existing]
            if missing:
                conn.execute(_permissions.insert(), [{"code": code} for code in missing])

    def get_all_for_user(self, user_id: int) -> set[str]:
        """Return the set of permission codes granted to the user (possibly empty)."""
        query = (
            select(_permissions.c.code)
            .select_from(_permissions.join(_users_permissions, _users_permissions.c.permission_id == _permissions.c.id))
            .where(_users_permissions.c.user_id == user_id)
        )
        with self.engine.connect() as conn:
            return set(conn.execute(query).scalars())

    def add_for_user(self, user_id: int, *codes: str) -> None:
        """Grant the given codes to the user. Codes already granted are skipped."""
        if not codes:
            return
        with self.engine.begin() as conn:
            granted = set(
                conn.execute(
                    select(_users_permissions.c.permission_id).where(_users_permissions.c.user_id == user_id)
                ).scalars()
            )
            ids = conn.execute(select(_permissions.c.id).where(_permissions.c.code.in_(codes))).scalars()
            rows = [{"user_id": user_id, "permission_id": pid} for pid in ids if pid not in granted]
            if rows:
                conn.execute(_users_permissions.insert(), rows)


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        created_at=row.created_at,
        name=row.name,
        email=row.email,
        password_hash=row.password_hash,
        activated=bool(row.activated),
        version=row.version,
    )
