"""
auth/errors.py -- Exception taxonomy for the credential and session subsystem.

Every domain failure is an AuthError subclass carrying a stable machine code.
The HTTP layer maps codes to status codes (api/main.py); the service layer
never knows about HTTP.

Categories:
  input conflict          DuplicateEmailError
  authentication failure  InvalidCredentialsError, IncorrectCurrentPasswordError
  authorization / state   AccountInactiveError, InvalidRefreshTokenError,
                          RefreshTokenExpiredOrRevokedError,
                          InvalidOrExpiredTokenError, WrongTokenTypeError
  not found               UserNotFoundError

StoreError is deliberately NOT an AuthError: it signals infrastructure
trouble (database unreachable, constraint machinery failing) and callers
should treat it as retryable rather than as a verdict on the credentials.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for recoverable credential/session failures."""

    code: str = "auth_error"
    message: str = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class DuplicateEmailError(AuthError):
    code = "duplicate_email"
    message = "A user with this email already exists."


class InvalidCredentialsError(AuthError):
    code = "invalid_credentials"
    message = "Invalid email or password."


class IncorrectCurrentPasswordError(AuthError):
    code = "incorrect_current_password"
    message = "Current password is incorrect."


class AccountInactiveError(AuthError):
    code = "account_inactive"
    message = "User account is inactive."


class InvalidRefreshTokenError(AuthError):
    code = "invalid_refresh_token"
    message = "Invalid refresh token."


class RefreshTokenExpiredOrRevokedError(AuthError):
    code = "refresh_token_expired_or_revoked"
    message = "Refresh token expired or revoked."


class InvalidOrExpiredTokenError(AuthError):
    code = "invalid_or_expired_token"
    message = "Invalid or expired token."


class WrongTokenTypeError(AuthError):
    code = "wrong_token_type"
    message = "Invalid token type."


class UserNotFoundError(AuthError):
    code = "user_not_found"
    message = "User not found."


class StoreError(Exception):
    """A persistence operation failed for infrastructure reasons. Retryable."""
