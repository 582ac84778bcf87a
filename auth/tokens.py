"""
auth/tokens.py -- JWT access/reset tokens and opaque refresh-token values.

Security design decisions:
  Access tokens: python-jose with HS256. Signed with the process SECRET_KEY and
       carrying sub, org, role, permissions, iat, exp and type="access". Any
       holder of the key can make authorization decisions without a database
       round-trip. Lifetime is short (minutes): permission edits only take
       effect once outstanding tokens expire, and there is no blocklist.

  Verification failures are split into three exception types so logs can tell
       them apart -- TokenExpiredError, TokenSignatureError and
       MalformedTokenError -- but they share the InvalidTokenError base, and
       every caller treats them identically for the authorization decision.

  Reset tokens: same key, type="password_reset", separate short lifetime.
       They are not persisted (see DESIGN.md, reset-token single use).

  Refresh tokens: uuid4() strings -- 122 random bits from os.urandom. They are
       capability tokens looked up by exact match in the refresh-token store,
       not signed structures. Leaking SECRET_KEY therefore does not let an
       attacker mint refresh tokens, and leaking the store does not let an
       attacker mint access tokens.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from jose import JWTError, jwt

from auth.models import AccessTokenPayload

logger = logging.getLogger("procureauth.tokens")

ALGORITHM = "HS256"
ACCESS_TOKEN_TYPE = "access"
RESET_TOKEN_TYPE = "password_reset"


class InvalidTokenError(Exception):
    """Base for every token verification failure. All mean "reject"."""


class TokenExpiredError(InvalidTokenError):
    pass


class TokenSignatureError(InvalidTokenError):
    pass


class MalformedTokenError(InvalidTokenError):
    pass


def new_refresh_token_value() -> str:
    """Return a fresh opaque refresh-token value (UUID4, 122 bits of entropy)."""
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenIssuer:
    """Mints and verifies signed envelopes with one process-wide secret.

    Usage:
        issuer = TokenIssuer(settings.secret_key, access_ttl=900, reset_ttl=3600)
        token, expires_in = issuer.issue_access_token(uid, org, "CLIENT_USER", {"VIEW_BIDS"})
        claims = issuer.verify_access_token(token)
    """

    def __init__(
        self,
        secret_key: str,
        access_ttl: int = 15 * 60,
        reset_ttl: int = 60 * 60,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._secret_key = secret_key
        self.access_ttl = access_ttl
        self.reset_ttl = reset_ttl
        self._clock = clock

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    def issue_access_token(
        self,
        user_id: str,
        organization_id: str,
        role: str,
        permissions: Iterable[str],
    ) -> tuple[str, int]:
        """Return (signed token, lifetime in seconds)."""
        now = self._clock()
        payload = {
            "sub": user_id,
            "org": organization_id,
            "role": role,
            "permissions": sorted(permissions),
            "type": ACCESS_TOKEN_TYPE,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=self.access_ttl)).timestamp()),
        }
        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM), self.access_ttl

    def verify_access_token(self, token: str) -> AccessTokenPayload:
        """Verify signature and expiry and return the claims.

        Raises TokenExpiredError, TokenSignatureError or MalformedTokenError.
        A correctly signed token of another type (e.g. a reset token) is
        MalformedTokenError: it is not an access token.
        """
        claims = self._decode(token)
        if claims.get("type") != ACCESS_TOKEN_TYPE:
            raise MalformedTokenError("not an access token")
        try:
            return AccessTokenPayload(
                sub=str(claims["sub"]),
                org=str(claims["org"]),
                role=str(claims["role"]),
                permissions=frozenset(claims.get("permissions") or ()),
                iat=int(claims["iat"]),
                exp=int(claims["exp"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedTokenError(f"missing or invalid claim: {exc}") from exc

    # ------------------------------------------------------------------
    # Password reset tokens
    # ------------------------------------------------------------------

    def issue_reset_token(self, user_id: str) -> str:
        now = self._clock()
        payload = {
            "sub": user_id,
            "type": RESET_TOKEN_TYPE,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=self.reset_ttl)).timestamp()),
        }
        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)

    def decode_reset_token(self, token: str) -> dict:
        """Verify signature and expiry only. The type check is the caller's job
        because a wrong type is reported differently from a bad signature."""
        return self._decode(token)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _decode(self, token: str) -> dict:
        # Parse without verification first so structural garbage is told
        # apart from a bad signature.
        try:
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise MalformedTokenError(str(exc)) from exc

        now = int(self._clock().timestamp())
        try:
            # jose checks exp against the wall clock; we check it against our
            # clock below so tests can move time.
            claims = jwt.decode(
                token,
                self._secret_key,
                algorithms=[ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise TokenSignatureError(str(exc)) from exc

        exp = claims.get("exp")
        if not isinstance(exp, (int, float)):
            raise MalformedTokenError("missing exp claim")
        if exp <= now:
            raise TokenExpiredError("token has expired")
        return claims
