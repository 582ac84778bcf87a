"""
tests/test_users.py -- Unit tests for auth/users.py (UserService).

Covers:
  - profile reads by id and email, organization listing
  - partial profile updates (None leaves a field unchanged)
  - permission replacement and tag validation
  - activate/deactivate, including refresh-token revocation on deactivate
  - UserNotFoundError for unknown ids on every operation
"""

from __future__ import annotations

import pytest

from auth.errors import UserNotFoundError
from auth.models import Permission, UpdateUser, UserRole
from conftest import PASSWORD, alice


@pytest.fixture
def registered(session):
    return session.register(alice())


def test_get_user_and_by_email(user_admin, registered):
    assert user_admin.get_user(registered.id).email == "alice@example.com"
    assert user_admin.get_user_by_email("alice@example.com").id == registered.id


def test_list_organization_users(session, user_admin, registered):
    session.register(alice(email="aaron@example.com", name="Aaron"))
    session.register(alice(email="sam@supplier.com", organization_id="org-2", role=UserRole.SUPPLIER_ADMIN))
    listed = user_admin.list_organization_users("org-1")
    assert [p.email for p in listed] == ["aaron@example.com", "alice@example.com"]


def test_update_user_partial(user_admin, registered):
    updated = user_admin.update_user(registered.id, UpdateUser(title="Head of Purchasing", role=UserRole.CLIENT_USER))
    assert updated.title == "Head of Purchasing"
    assert updated.role == UserRole.CLIENT_USER
    assert updated.name == "Alice Buyer"


def test_empty_update_returns_current_profile(user_admin, registered):
    assert user_admin.update_user(registered.id, UpdateUser()).name == "Alice Buyer"


def test_update_permissions_replaces_set(user_admin, registered):
    updated = user_admin.update_permissions(
        registered.id, [Permission.VIEW_REQUESTS, "AWARD_BID", Permission.VIEW_REQUESTS]
    )
    assert updated.permissions == frozenset({"VIEW_REQUESTS", "AWARD_BID"})


def test_update_permissions_rejects_unknown_tag(user_admin, registered):
    with pytest.raises(ValueError):
        user_admin.update_permissions(registered.id, ["TELEPORT"])


def test_deactivate_revokes_refresh_tokens(session, user_admin, clock, registered):
    session.login("alice@example.com", PASSWORD)
    session.login("alice@example.com", PASSWORD)

    profile = user_admin.deactivate_user(registered.id)

    assert profile.is_active is False
    assert session.refresh_tokens.list_live_for_user(registered.id, clock.now) == []


def test_activate_restores_login(session, user_admin, registered):
    user_admin.deactivate_user(registered.id)
    assert user_admin.activate_user(registered.id).is_active is True
    assert session.login("alice@example.com", PASSWORD).user.id == registered.id


@pytest.mark.parametrize(
    "call",
    [
        lambda svc: svc.get_user("missing"),
        lambda svc: svc.get_user_by_email("missing@example.com"),
        lambda svc: svc.update_user("missing", UpdateUser(name="X")),
        lambda svc: svc.update_permissions("missing", []),
        lambda svc: svc.activate_user("missing"),
        lambda svc: svc.deactivate_user("missing"),
    ],
)
def test_unknown_user(user_admin, call):
    with pytest.raises(UserNotFoundError):
        call(user_admin)
