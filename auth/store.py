"""
auth/store.py -- SQLAlchemy Core persistence for users and refresh tokens.

Pattern: Repository + Data Mapper. SqlUserStore and SqlRefreshTokenStore are
the repositories; _row_to_user / _row_to_refresh_token are the mappers. The
session service never touches SQL directly -- it only sees the Protocols in
auth/contracts.py.

Security:
  All queries use bound parameters. No f-strings in SQL.

  revoke_by_id() is one conditional UPDATE ... WHERE revoked_at IS NULL and
  reports rowcount > 0. Two concurrent refresh requests presenting the same
  token therefore cannot both observe a successful revoke: the database
  serializes the two updates and the loser matches zero rows.

  password_hash is read into the User dataclass only; it is never part of any
  projection leaving this module's callers (see auth/models.UserProfile).

Timestamps are stored as fixed-width UTC ISO 8601 strings
("2026-10-19T08:15:02.123456+00:00"). Fixed width keeps lexicographic order
identical to chronological order, so expiry comparisons can run in SQL on
both SQLite and Postgres.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import DuplicateEmailError, StoreError
from auth.models import Permission, RefreshToken, User, UserRole

logger = logging.getLogger("procureauth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("organization_id", String(64), nullable=False, index=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("name", String(255), nullable=False),
    Column("title", String(255)),
    Column("phone", String(64)),
    Column("timezone", String(64)),
    Column("role", String(30), nullable=False),
    Column("permissions", Text, nullable=False, server_default="[]"),  # JSON array, sorted
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("token", String(64), nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("revoked_at", String(32)),
)

# Columns update_user() will write. Anything else is a programming error.
_USER_MUTABLE_FIELDS = frozenset(
    {"name", "title", "phone", "timezone", "role", "permissions", "is_active", "password_hash"}
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_store_engine(db_url: str) -> Engine:
    """Build an Engine for db_url and make sure both tables exist.

    One engine is shared by SqlUserStore and SqlRefreshTokenStore so they see
    the same connection pool (and, for named in-memory SQLite, the same DB).
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    try:
        _metadata.create_all(engine)
    except SQLAlchemyError as exc:
        raise StoreError(f"Could not initialize schema: {exc}") from exc
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _SqlRepository:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        """Yield a connection; translate driver/ORM failures into StoreError."""
        try:
            with self.engine.connect() as conn:
                yield conn
        except SQLAlchemyError as exc:
            logger.error("Store operation failed: %s", exc.__class__.__name__)
            raise StoreError(str(exc)) from exc

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class SqlUserStore(_SqlRepository):
    """Relational credential store.

    Usage:
        engine = create_store_engine("sqlite:///procureauth.db")
        users = SqlUserStore(engine)
        created = users.create_user(User(...))
        users.get_by_email("alice@example.com")
    """

    def get_by_id(self, user_id: str) -> User | None:
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Exact (case-sensitive) email match."""
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_by_organization(self, organization_id: str) -> list[User]:
        with self._connect() as conn:
            rows = conn.execute(
                _users.select().where(_users.c.organization_id == organization_id).order_by(_users.c.email)
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    def create_user(self, user: User) -> User:
        """Insert user and return the stored record (with id and timestamps).

        The UNIQUE(email) constraint is the final arbiter: when two concurrent
        registrations race past the service's pre-check, the loser gets
        DuplicateEmailError here.
        """
        now = _to_iso(_now())
        user_id = str(uuid.uuid4())
        with self._connect() as conn:
            try:
                conn.execute(
                    _users.insert().values(
                        id=user_id,
                        organization_id=user.organization_id,
                        email=user.email,
                        password_hash=user.password_hash,
                        name=user.name,
                        title=user.title,
                        phone=user.phone,
                        timezone=user.timezone,
                        role=UserRole(user.role).value,
                        permissions=_dump_permissions(user.permissions),
                        is_active=1 if user.is_active else 0,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
            except IntegrityError as exc:
                conn.rollback()
                raise DuplicateEmailError() from exc
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row)

    def update_user(self, user_id: str, **fields) -> User | None:
        """Update mutable fields and return the fresh record, or None if user_id is unknown.

        Accepted fields: name, title, phone, timezone, role, permissions,
        is_active, password_hash. updated_at is always stamped.
        """
        unknown = set(fields) - _USER_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        values = dict(fields)
        if "role" in values:
            values["role"] = UserRole(values["role"]).value
        if "permissions" in values:
            values["permissions"] = _dump_permissions(values["permissions"])
        if "is_active" in values:
            values["is_active"] = 1 if values["is_active"] else 0
        values["updated_at"] = _to_iso(_now())
        with self._connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()
            if result.rowcount == 0:
                return None
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_last_login(self, user_id: str, when: datetime) -> None:
        with self._connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_to_iso(when)))
            conn.commit()


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


class SqlRefreshTokenStore(_SqlRepository):
    """Relational refresh-token store. Rows are revoked, never deleted."""

    def get_by_token(self, token: str) -> RefreshToken | None:
        with self._connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def get_by_id(self, token_id: str) -> RefreshToken | None:
        with self._connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.id == token_id)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def list_live_for_user(self, user_id: str, now: datetime) -> list[RefreshToken]:
        """Unrevoked, unexpired tokens for user_id, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                _refresh_tokens.select()
                .where(
                    (_refresh_tokens.c.user_id == user_id)
                    & (_refresh_tokens.c.revoked_at.is_(None))
                    & (_refresh_tokens.c.expires_at > _to_iso(now))
                )
                .order_by(_refresh_tokens.c.created_at.desc())
            ).fetchall()
        return [_row_to_refresh_token(r) for r in rows]

    def create(self, token: RefreshToken) -> RefreshToken:
        token_id = str(uuid.uuid4())
        created_at = _now()
        with self._connect() as conn:
            conn.execute(
                _refresh_tokens.insert().values(
                    id=token_id,
                    user_id=token.user_id,
                    token=token.token,
                    expires_at=_to_iso(token.expires_at),
                    created_at=_to_iso(created_at),
                    revoked_at=_to_iso(token.revoked_at) if token.revoked_at else None,
                )
            )
            conn.commit()
        return RefreshToken(
            id=token_id,
            user_id=token.user_id,
            token=token.token,
            expires_at=_from_iso(_to_iso(token.expires_at)),
            created_at=_from_iso(_to_iso(created_at)),
            revoked_at=token.revoked_at,
        )

    def revoke_by_id(self, token_id: str, when: datetime) -> bool:
        """Revoke one token only if it is still unrevoked. True if this call revoked it."""
        with self._connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.id == token_id) & (_refresh_tokens.c.revoked_at.is_(None)))
                .values(revoked_at=_to_iso(when))
            )
            conn.commit()
        return result.rowcount > 0

    def revoke_by_user(self, user_id: str, when: datetime) -> int:
        """Revoke every unrevoked token for user_id. Returns the number revoked."""
        with self._connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.revoked_at.is_(None)))
                .values(revoked_at=_to_iso(when))
            )
            conn.commit()
        return result.rowcount

    def revoke_expired(self, now: datetime) -> int:
        """Mark expired-but-unrevoked tokens as revoked. Advisory housekeeping."""
        stamp = _to_iso(now)
        with self._connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.expires_at <= stamp) & (_refresh_tokens.c.revoked_at.is_(None)))
                .values(revoked_at=stamp)
            )
            conn.commit()
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _dump_permissions(permissions) -> str:
    return json.dumps(sorted(Permission(p).value for p in permissions))


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        organization_id=row.organization_id,
        email=row.email,
        password_hash=row.password_hash,
        name=row.name,
        title=row.title,
        phone=row.phone,
        timezone=row.timezone,
        role=UserRole(row.role),
        permissions=frozenset(json.loads(row.permissions or "[]")),
        is_active=bool(row.is_active),
        last_login=_from_iso(row.last_login),
        created_at=_from_iso(row.created_at),
        updated_at=_from_iso(row.updated_at),
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=_from_iso(row.expires_at),
        created_at=_from_iso(row.created_at),
        revoked_at=_from_iso(row.revoked_at),
    )
