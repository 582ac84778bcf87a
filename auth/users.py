"""
auth/users.py -- User administration on top of the credential store.

Profile reads, profile/role edits, permission edits and activation toggles.
Every result is a UserProfile; the password hash never leaves the store.

Deactivation also revokes the user's refresh tokens. verify_token() already
re-checks is_active on every request, so outstanding access tokens stop
working immediately; revoking refresh tokens removes the now-useless rows.

Permission edits do NOT touch issued access tokens: the old claims stay valid
until those tokens expire (minutes). That staleness is accepted in exchange
for stateless access-token verification.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone

from auth.contracts import RefreshTokenStore, UserStore
from auth.errors import UserNotFoundError
from auth.models import UpdateUser, UserProfile, normalize_permissions

logger = logging.getLogger("procureauth.users")


class UserService:
    def __init__(self, *, users: UserStore, refresh_tokens: RefreshTokenStore) -> None:
        self.users = users
        self.refresh_tokens = refresh_tokens

    def get_user(self, user_id: str) -> UserProfile:
        user = self.users.get_by_id(user_id)
        if user is None:
            raise UserNotFoundError()
        return user.to_profile()

    def get_user_by_email(self, email: str) -> UserProfile:
        user = self.users.get_by_email(email)
        if user is None:
            raise UserNotFoundError()
        return user.to_profile()

    def list_organization_users(self, organization_id: str) -> list[UserProfile]:
        return [u.to_profile() for u in self.users.list_by_organization(organization_id)]

    def update_user(self, user_id: str, changes: UpdateUser) -> UserProfile:
        fields = changes.changes()
        if not fields:
            return self.get_user(user_id)
        return self._update(user_id, **fields)

    def update_permissions(self, user_id: str, permissions: Iterable[str]) -> UserProfile:
        profile = self._update(user_id, permissions=normalize_permissions(permissions))
        logger.info("Permissions for user %s set to %s", user_id, sorted(profile.permissions))
        return profile

    def activate_user(self, user_id: str) -> UserProfile:
        profile = self._update(user_id, is_active=True)
        logger.info("User %s activated", user_id)
        return profile

    def deactivate_user(self, user_id: str) -> UserProfile:
        profile = self._update(user_id, is_active=False)
        revoked = self.refresh_tokens.revoke_by_user(user_id, datetime.now(timezone.utc))
        logger.info("User %s deactivated; revoked %d refresh token(s)", user_id, revoked)
        return profile

    def _update(self, user_id: str, **fields) -> UserProfile:
        user = self.users.update_user(user_id, **fields)
        if user is None:
            raise UserNotFoundError()
        return user.to_profile()
