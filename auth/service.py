"""
auth/service.py -- Session lifecycle orchestration.

SessionService composes the credential store, the refresh-token store, the
password hasher, the token issuer and the notification dispatcher into the
operations callers use: register, login, refresh_token, logout, logout_all,
change_password, reset_password, confirm_reset_password, verify_token and
sweep_expired_tokens.

There is no server-side session object. A session is an access token
(stateless, verified by signature) plus one refresh-token row (stateful,
revocable). Every call is a bounded sequence of store operations; nothing here
holds shared mutable state between requests.

Security invariants enforced here:
  [C1] Unknown email on login costs one bcrypt verification, same as a wrong
       password, and raises the same InvalidCredentialsError.
  [R1] A refresh token is persisted before it is returned. If persistence
       fails, the whole login/refresh fails.
  [R2] Rotation revokes the presented token with a conditional update BEFORE
       minting a new pair. Of two concurrent refreshes with one token, only
       the caller whose update changed a row proceeds.
  [R3] Password change and reset confirmation revoke every refresh token the
       user holds.
  [E1] reset_password never reveals whether the email exists: the same work
       (token minting) happens either way and the result is always None.

Notifications are best-effort and never fail the primary operation.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from auth.contracts import RefreshTokenStore, UserStore
from auth.errors import (
    AccountInactiveError,
    DuplicateEmailError,
    IncorrectCurrentPasswordError,
    InvalidCredentialsError,
    InvalidOrExpiredTokenError,
    InvalidRefreshTokenError,
    RefreshTokenExpiredOrRevokedError,
    UserNotFoundError,
    WrongTokenTypeError,
)
from auth.models import LoginResult, RefreshToken, RegisterUser, TokenPair, User, UserProfile, normalize_permissions
from auth.notifications import PASSWORD_CHANGED, PASSWORD_RESET, USER_CREATED, Notifier
from auth.passwords import PasswordHasher
from auth.tokens import RESET_TOKEN_TYPE, InvalidTokenError, TokenIssuer, new_refresh_token_value
from core.logging import redact_email

logger = logging.getLogger("procureauth.session")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionService:
    """Credential verification, token issuance/rotation and revocation.

    All collaborators are passed in explicitly:

        service = SessionService(
            users=SqlUserStore(engine),
            refresh_tokens=SqlRefreshTokenStore(engine),
            hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
            issuer=TokenIssuer(settings.secret_key, settings.access_token_expire, settings.reset_token_expire),
            notifier=NotificationDispatcher(settings.notification_webhook_url),
            refresh_token_ttl=timedelta(seconds=settings.refresh_token_expire),
        )
    """

    def __init__(
        self,
        *,
        users: UserStore,
        refresh_tokens: RefreshTokenStore,
        hasher: PasswordHasher,
        issuer: TokenIssuer,
        notifier: Notifier,
        refresh_token_ttl: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.users = users
        self.refresh_tokens = refresh_tokens
        self.hasher = hasher
        self.issuer = issuer
        self.notifier = notifier
        self.refresh_token_ttl = refresh_token_ttl
        self._clock = clock

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    def register(self, data: RegisterUser) -> UserProfile:
        """Create an active user and return its public profile.

        Raises DuplicateEmailError if the email is already registered. The
        pre-check gives a fast answer; the store's unique constraint settles
        concurrent registrations.
        """
        if self.users.get_by_email(data.email) is not None:
            logger.warning("Registration rejected for %s: duplicate_email", redact_email(data.email))
            raise DuplicateEmailError()

        user = self.users.create_user(
            User(
                organization_id=data.organization_id,
                email=data.email,
                password_hash=self.hasher.hash(data.password),
                name=data.name,
                title=data.title,
                phone=data.phone,
                timezone=data.timezone,
                role=data.role,
                permissions=normalize_permissions(data.permissions),
                is_active=True,
            )
        )
        logger.info("Registered user %s in organization %s", user.id, user.organization_id)
        self._notify(USER_CREATED, user.id, {"userId": user.id, "email": user.email, "name": user.name})
        return user.to_profile()

    def login(self, email: str, password: str) -> LoginResult:
        """Verify credentials and issue a fresh access/refresh pair.

        Unknown email and wrong password are indistinguishable to the caller
        (same exception, same bcrypt cost) [C1]. An inactive account is
        reported as AccountInactiveError.
        """
        user = self.users.get_by_email(email)
        if user is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            self.hasher.verify_dummy(password)
            logger.warning("Login failed for %s: invalid_credentials", redact_email(email))
            raise InvalidCredentialsError()

        if not user.is_active:
            logger.warning("Login rejected for user %s: account_inactive", user.id)
            raise AccountInactiveError()

        if not self.hasher.verify(password, user.password_hash):
            logger.warning("Login failed for user %s: invalid_credentials", user.id)
            raise InvalidCredentialsError()

        tokens = self._issue_tokens(user)
        now = self._clock()
        self.users.update_last_login(user.id, now)
        user.last_login = now
        logger.info("User %s logged in", user.id)
        return LoginResult(user=user.to_profile(), tokens=tokens)

    # ------------------------------------------------------------------
    # Refresh-token lifecycle
    # ------------------------------------------------------------------

    def refresh_token(self, refresh_token_value: str) -> TokenPair:
        """Rotate a refresh token: revoke the presented one, return a new pair.

        The revoke is conditional [R2]. If it changes no row, another request
        has already used (or revoked) this token between our read and our
        write, and this request fails exactly as if it had seen the token
        revoked. A second use of a rotated token is the signature of refresh
        token theft; it is logged at WARNING for detection.
        """
        record = self.refresh_tokens.get_by_token(refresh_token_value)
        if record is None:
            logger.warning("Refresh rejected: invalid_refresh_token")
            raise InvalidRefreshTokenError()

        now = self._clock()
        if not record.is_live(now):
            if record.revoked_at is not None:
                logger.warning("Refresh rejected for user %s: revoked token %s presented", record.user_id, record.id)
            raise RefreshTokenExpiredOrRevokedError()

        user = self.users.get_by_id(record.user_id)
        if user is None:
            raise UserNotFoundError()
        if not user.is_active:
            logger.warning("Refresh rejected for user %s: account_inactive", user.id)
            raise AccountInactiveError()

        if not self.refresh_tokens.revoke_by_id(record.id, now):
            logger.warning(
                "Refresh rejected for user %s: token %s was rotated concurrently (possible reuse)",
                user.id,
                record.id,
            )
            raise RefreshTokenExpiredOrRevokedError()

        tokens = self._issue_tokens(user)
        logger.info("Rotated refresh token %s for user %s", record.id, user.id)
        return tokens

    def logout(self, refresh_token_value: str) -> None:
        """Revoke one refresh token. Unknown or already-revoked tokens are a no-op."""
        record = self.refresh_tokens.get_by_token(refresh_token_value)
        if record is None:
            return
        if self.refresh_tokens.revoke_by_id(record.id, self._clock()):
            logger.info("User %s logged out (token %s)", record.user_id, record.id)

    def logout_all(self, user_id: str) -> int:
        """Revoke every outstanding refresh token for user_id. Returns the count."""
        revoked = self.refresh_tokens.revoke_by_user(user_id, self._clock())
        logger.info("Revoked %d refresh token(s) for user %s", revoked, user_id)
        return revoked

    def sweep_expired_tokens(self) -> int:
        """Mark expired-but-unrevoked refresh tokens as revoked.

        Advisory housekeeping only: validity is always re-checked live, so
        skipping this never lets an expired token through.
        """
        swept = self.refresh_tokens.revoke_expired(self._clock())
        if swept:
            logger.info("Swept %d expired refresh token(s)", swept)
        return swept

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        """Replace the password after verifying the current one; sign out everywhere [R3]."""
        user = self.users.get_by_id(user_id)
        if user is None:
            raise UserNotFoundError()
        if not self.hasher.verify(current_password, user.password_hash):
            logger.warning("Password change rejected for user %s: incorrect_current_password", user.id)
            raise IncorrectCurrentPasswordError()

        self._replace_password(user, new_password)
        logger.info("Password changed for user %s", user.id)

    def reset_password(self, email: str) -> None:
        """Start a password reset. Always returns None, whether or not email exists [E1].

        The reset token goes only to the notification channel; it is never
        handed back to the caller.
        """
        user = self.users.get_by_email(email)
        # Mint unconditionally so both branches do the same signing work.
        reset_token = self.issuer.issue_reset_token(user.id if user is not None else "")
        if user is None:
            logger.info("Password reset requested for unknown address %s", redact_email(email))
            return
        self._notify(PASSWORD_RESET, user.id, {"userId": user.id, "email": user.email, "resetToken": reset_token})
        logger.info("Password reset requested for user %s", user.id)

    def confirm_reset_password(self, token: str, new_password: str) -> None:
        """Complete a reset with a token from reset_password(); sign out everywhere [R3]."""
        try:
            claims = self.issuer.decode_reset_token(token)
        except InvalidTokenError as exc:
            logger.warning("Reset confirmation rejected: %s", exc.__class__.__name__)
            raise InvalidOrExpiredTokenError() from exc

        if claims.get("type") != RESET_TOKEN_TYPE:
            logger.warning("Reset confirmation rejected: wrong_token_type")
            raise WrongTokenTypeError()

        user = self.users.get_by_id(str(claims.get("sub") or ""))
        if user is None:
            raise UserNotFoundError()

        self._replace_password(user, new_password)
        logger.info("Password reset completed for user %s", user.id)

    # ------------------------------------------------------------------
    # Access-token verification
    # ------------------------------------------------------------------

    def verify_token(self, access_token: str) -> UserProfile:
        """Authorize a request: check the token, then re-check the account.

        The re-fetch catches deactivation that happened after issuance. A
        subject that no longer exists is reported as an invalid token.
        """
        try:
            payload = self.issuer.verify_access_token(access_token)
        except InvalidTokenError as exc:
            logger.debug("Access token rejected: %s", exc.__class__.__name__)
            raise InvalidOrExpiredTokenError() from exc

        user = self.users.get_by_id(payload.sub)
        if user is None:
            logger.warning("Access token for unknown user %s rejected", payload.sub)
            raise InvalidOrExpiredTokenError()
        if not user.is_active:
            raise AccountInactiveError()
        return user.to_profile()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _issue_tokens(self, user: User) -> TokenPair:
        access_token, expires_in = self.issuer.issue_access_token(
            user.id, user.organization_id, user.role.value, user.permissions
        )
        # Persist before returning [R1]; a store failure propagates.
        stored = self.refresh_tokens.create(
            RefreshToken(
                user_id=user.id,
                token=new_refresh_token_value(),
                expires_at=self._clock() + self.refresh_token_ttl,
            )
        )
        return TokenPair(access_token=access_token, refresh_token=stored.token, expires_in=expires_in)

    def _replace_password(self, user: User, new_password: str) -> None:
        self.users.update_user(user.id, password_hash=self.hasher.hash(new_password))
        revoked = self.refresh_tokens.revoke_by_user(user.id, self._clock())
        logger.info("Revoked %d refresh token(s) for user %s after password update", revoked, user.id)
        self._notify(PASSWORD_CHANGED, user.id, {"userId": user.id, "email": user.email})

    def _notify(self, event: tuple[str, str], user_id: str, data: dict) -> None:
        """Hand a message to the notifier. Any failure is logged and swallowed."""
        try:
            self.notifier.send(event, data)
        except Exception:
            logger.exception("Error sending %s notification for user %s", event[0], user_id)
