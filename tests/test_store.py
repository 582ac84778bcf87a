"""
tests/test_store.py -- Store contract tests for auth/store.py and auth/memory_store.py.

Every test runs against both implementations (relational on a named
shared-memory SQLite database, and in-process dicts), so the two cannot
drift apart.

Covers:
  - user create/get/list/update, exact-match email lookup, unique email
  - update_user() field whitelist and unknown-id behaviour
  - refresh token create/get, live listing, conditional revoke_by_id()
  - revoke_by_user() and revoke_expired() counts
  - records handed out are copies (memory store)
  - infrastructure failures surface as StoreError (relational store)
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import create_engine

from auth.errors import DuplicateEmailError, StoreError
from auth.memory_store import MemoryRefreshTokenStore, MemoryUserStore
from auth.models import Permission, RefreshToken, User, UserRole
from auth.store import SqlRefreshTokenStore, SqlUserStore
from conftest import FakeClock


@pytest.fixture(params=["sql", "memory"])
def stores(request):
    """Yield (user_store, refresh_token_store) for each implementation."""
    if request.param == "sql":
        engine = request.getfixturevalue("sql_engine")
        return SqlUserStore(engine), SqlRefreshTokenStore(engine)
    return MemoryUserStore(), MemoryRefreshTokenStore()


@pytest.fixture
def now():
    return FakeClock().now


def _user(email: str = "bob@example.com", org: str = "org-1", **overrides) -> User:
    values = {
        "organization_id": org,
        "email": email,
        "password_hash": "$2b$04$notarealhashbutstoredverbatim",
        "name": "Bob Supplier",
        "role": UserRole.SUPPLIER_USER,
        "permissions": frozenset({Permission.VIEW_OPPORTUNITIES.value, Permission.SUBMIT_BID.value}),
    }
    values.update(overrides)
    return User(**values)


class TestUserStore:
    def test_create_assigns_id_and_timestamps(self, stores):
        users, _ = stores
        created = users.create_user(_user())
        assert created.id
        assert created.created_at is not None
        assert created.updated_at is not None
        assert created.is_active is True
        assert created.role == UserRole.SUPPLIER_USER
        assert created.permissions == frozenset({"VIEW_OPPORTUNITIES", "SUBMIT_BID"})

    def test_get_by_id_and_email(self, stores):
        users, _ = stores
        created = users.create_user(_user())
        assert users.get_by_id(created.id).email == "bob@example.com"
        assert users.get_by_email("bob@example.com").id == created.id
        assert users.get_by_id("missing") is None
        assert users.get_by_email("nobody@example.com") is None

    def test_email_lookup_is_exact(self, stores):
        users, _ = stores
        users.create_user(_user())
        assert users.get_by_email("Bob@Example.com") is None

    def test_duplicate_email_rejected(self, stores):
        users, _ = stores
        users.create_user(_user())
        with pytest.raises(DuplicateEmailError):
            users.create_user(_user(name="Someone Else"))

    def test_list_by_organization(self, stores):
        users, _ = stores
        users.create_user(_user("zed@example.com"))
        users.create_user(_user("amy@example.com"))
        users.create_user(_user("other@example.com", org="org-2"))
        listed = users.list_by_organization("org-1")
        assert [u.email for u in listed] == ["amy@example.com", "zed@example.com"]
        assert users.list_by_organization("org-3") == []

    def test_update_user(self, stores):
        users, _ = stores
        created = users.create_user(_user())
        updated = users.update_user(
            created.id,
            name="Robert",
            role=UserRole.SUPPLIER_ADMIN,
            permissions={"MANAGE_USERS"},
            is_active=False,
        )
        assert updated.name == "Robert"
        assert updated.role == UserRole.SUPPLIER_ADMIN
        assert updated.permissions == frozenset({"MANAGE_USERS"})
        assert updated.is_active is False
        assert users.get_by_id(created.id).name == "Robert"

    def test_update_password_hash(self, stores):
        users, _ = stores
        created = users.create_user(_user())
        users.update_user(created.id, password_hash="new-hash")
        assert users.get_by_id(created.id).password_hash == "new-hash"

    def test_update_unknown_user_returns_none(self, stores):
        users, _ = stores
        assert users.update_user("missing", name="X") is None

    def test_update_rejects_unknown_fields(self, stores):
        users, _ = stores
        created = users.create_user(_user())
        with pytest.raises(ValueError):
            users.update_user(created.id, email="hijack@example.com")

    def test_unknown_permission_rejected(self, stores):
        users, _ = stores
        created = users.create_user(_user())
        with pytest.raises(ValueError):
            users.update_user(created.id, permissions={"FLY"})

    def test_update_last_login(self, stores, now):
        users, _ = stores
        created = users.create_user(_user())
        users.update_last_login(created.id, now)
        assert users.get_by_id(created.id).last_login == now


class TestRefreshTokenStore:
    def _create(self, tokens, now, user_id="u-1", value="tok-1", ttl=timedelta(days=7)):
        return tokens.create(RefreshToken(user_id=user_id, token=value, expires_at=now + ttl))

    def test_create_and_lookup(self, stores, now):
        _, tokens = stores
        stored = self._create(tokens, now)
        assert stored.id
        assert stored.revoked_at is None
        assert stored.expires_at == now + timedelta(days=7)
        assert tokens.get_by_token("tok-1").id == stored.id
        assert tokens.get_by_id(stored.id).token == "tok-1"
        assert tokens.get_by_token("nope") is None
        assert tokens.get_by_id("nope") is None

    def test_revoke_by_id_is_conditional(self, stores, now):
        _, tokens = stores
        stored = self._create(tokens, now)
        assert tokens.revoke_by_id(stored.id, now) is True
        assert tokens.revoke_by_id(stored.id, now + timedelta(seconds=1)) is False
        assert tokens.get_by_id(stored.id).revoked_at == now
        assert tokens.revoke_by_id("missing", now) is False

    def test_list_live_for_user(self, stores, now):
        _, tokens = stores
        live = self._create(tokens, now, value="live")
        revoked = self._create(tokens, now, value="revoked")
        self._create(tokens, now - timedelta(days=8), value="expired")
        self._create(tokens, now, user_id="u-2", value="other-user")
        tokens.revoke_by_id(revoked.id, now)
        assert [t.id for t in tokens.list_live_for_user("u-1", now)] == [live.id]

    def test_revoke_by_user(self, stores, now):
        _, tokens = stores
        first = self._create(tokens, now, value="a")
        self._create(tokens, now, value="b")
        self._create(tokens, now, user_id="u-2", value="c")
        tokens.revoke_by_id(first.id, now)
        assert tokens.revoke_by_user("u-1", now) == 1
        assert tokens.revoke_by_user("u-1", now) == 0
        assert tokens.get_by_token("c").revoked_at is None

    def test_revoke_expired(self, stores, now):
        _, tokens = stores
        self._create(tokens, now - timedelta(days=8), value="old")
        at_boundary = self._create(tokens, now - timedelta(days=7), value="boundary")
        fresh = self._create(tokens, now, value="fresh")
        assert tokens.revoke_expired(now) == 2
        assert tokens.get_by_id(at_boundary.id).revoked_at == now
        assert tokens.get_by_id(fresh.id).revoked_at is None
        assert tokens.revoke_expired(now) == 0


def test_memory_store_returns_copies(now):
    users = MemoryUserStore()
    created = users.create_user(_user())
    created.name = "mutated"
    assert users.get_by_id(created.id).name == "Bob Supplier"

    tokens = MemoryRefreshTokenStore()
    stored = tokens.create(RefreshToken(user_id="u-1", token="t", expires_at=now))
    stored.revoked_at = now
    assert tokens.get_by_id(stored.id).revoked_at is None


def test_sql_failure_is_store_error(sql_engine):
    users = SqlUserStore(sql_engine)
    broken = SqlUserStore(create_engine("sqlite:///file:never_initialized?mode=memory&cache=shared&uri=true"))
    assert users.get_by_email("x@example.com") is None
    with pytest.raises(StoreError):
        broken.get_by_email("x@example.com")
