"""
auth/memory_store.py -- In-process implementations of the store contracts.

Same behaviour as auth/store.py, backed by dicts. Every method takes one
lock, so compare-and-set operations such as revoke_by_id() are atomic across
threads exactly like the conditional UPDATE in the relational store.

Records are copied on the way in and on the way out; callers mutating a
returned User or RefreshToken never change stored state.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone

from auth.errors import DuplicateEmailError
from auth.models import Permission, RefreshToken, User, UserRole

_USER_MUTABLE_FIELDS = frozenset(
    {"name", "title", "phone", "timezone", "role", "permissions", "is_active", "password_hash"}
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MemoryUserStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._users: dict[str, User] = {}

    def get_by_id(self, user_id: str) -> User | None:
        with self._lock:
            user = self._users.get(user_id)
            return replace(user) if user is not None else None

    def get_by_email(self, email: str) -> User | None:
        with self._lock:
            for user in self._users.values():
                if user.email == email:
                    return replace(user)
        return None

    def list_by_organization(self, organization_id: str) -> list[User]:
        with self._lock:
            users = [replace(u) for u in self._users.values() if u.organization_id == organization_id]
        return sorted(users, key=lambda u: u.email)

    def create_user(self, user: User) -> User:
        now = _now()
        with self._lock:
            if any(u.email == user.email for u in self._users.values()):
                raise DuplicateEmailError()
            stored = replace(
                user,
                id=str(uuid.uuid4()),
                role=UserRole(user.role),
                permissions=frozenset(Permission(p).value for p in user.permissions),
                created_at=now,
                updated_at=now,
            )
            self._users[stored.id] = stored
            return replace(stored)

    def update_user(self, user_id: str, **fields) -> User | None:
        unknown = set(fields) - _USER_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        values = dict(fields)
        if "role" in values:
            values["role"] = UserRole(values["role"])
        if "permissions" in values:
            values["permissions"] = frozenset(Permission(p).value for p in values["permissions"])
        if "is_active" in values:
            values["is_active"] = bool(values["is_active"])
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            updated = replace(user, updated_at=_now(), **values)
            self._users[user_id] = updated
            return replace(updated)

    def update_last_login(self, user_id: str, when: datetime) -> None:
        with self._lock:
            user = self._users.get(user_id)
            if user is not None:
                self._users[user_id] = replace(user, last_login=when)

    def close(self) -> None:
        pass


class MemoryRefreshTokenStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tokens: dict[str, RefreshToken] = {}

    def get_by_token(self, token: str) -> RefreshToken | None:
        with self._lock:
            for record in self._tokens.values():
                if record.token == token:
                    return replace(record)
        return None

    def get_by_id(self, token_id: str) -> RefreshToken | None:
        with self._lock:
            record = self._tokens.get(token_id)
            return replace(record) if record is not None else None

    def list_live_for_user(self, user_id: str, now: datetime) -> list[RefreshToken]:
        with self._lock:
            live = [replace(t) for t in self._tokens.values() if t.user_id == user_id and t.is_live(now)]
        return sorted(live, key=lambda t: t.created_at, reverse=True)

    def create(self, token: RefreshToken) -> RefreshToken:
        with self._lock:
            if any(t.token == token.token for t in self._tokens.values()):
                raise ValueError("refresh token value already exists")
            stored = replace(token, id=str(uuid.uuid4()), created_at=_now())
            self._tokens[stored.id] = stored
            return replace(stored)

    def revoke_by_id(self, token_id: str, when: datetime) -> bool:
        with self._lock:
            record = self._tokens.get(token_id)
            if record is None or record.revoked_at is not None:
                return False
            self._tokens[token_id] = replace(record, revoked_at=when)
            return True

    def revoke_by_user(self, user_id: str, when: datetime) -> int:
        count = 0
        with self._lock:
            for token_id, record in self._tokens.items():
                if record.user_id == user_id and record.revoked_at is None:
                    self._tokens[token_id] = replace(record, revoked_at=when)
                    count += 1
        return count

    def revoke_expired(self, now: datetime) -> int:
        count = 0
        with self._lock:
            for token_id, record in self._tokens.items():
                if record.revoked_at is None and record.expires_at <= now:
                    self._tokens[token_id] = replace(record, revoked_at=now)
                    count += 1
        return count

    def close(self) -> None:
        pass
