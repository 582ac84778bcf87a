"""
auth/contracts.py -- Repository contracts consumed by the session service.

The service depends on these Protocols, never on a concrete store. Two
implementations satisfy them:
  auth/store.py         SQLAlchemy Core, relational (SQLite / Postgres)
  auth/memory_store.py  lock-guarded dicts, used by the test suite

Contract notes shared by both implementations:
  - get_* methods return None when nothing matches; they never raise for "not found".
  - create_user raises DuplicateEmailError when the email is taken.
  - revoke_by_id is a single conditional update: it revokes only a row whose
    revoked_at is still NULL and returns whether a row changed. This is what
    makes refresh-token rotation atomic at the row level.
  - Infrastructure failures surface as StoreError.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from auth.models import RefreshToken, User


class UserStore(Protocol):
    def get_by_id(self, user_id: str) -> User | None: ...

    def get_by_email(self, email: str) -> User | None: ...

    def list_by_organization(self, organization_id: str) -> list[User]: ...

    def create_user(self, user: User) -> User: ...

    def update_user(self, user_id: str, **fields) -> User | None: ...

    def update_last_login(self, user_id: str, when: datetime) -> None: ...


class RefreshTokenStore(Protocol):
    def get_by_token(self, token: str) -> RefreshToken | None: ...

    def get_by_id(self, token_id: str) -> RefreshToken | None: ...

    def list_live_for_user(self, user_id: str, now: datetime) -> list[RefreshToken]: ...

    def create(self, token: RefreshToken) -> RefreshToken: ...

    def revoke_by_id(self, token_id: str, when: datetime) -> bool: ...

    def revoke_by_user(self, user_id: str, when: datetime) -> int: ...

    def revoke_expired(self, now: datetime) -> int: ...
