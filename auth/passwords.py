"""
auth/passwords.py -- bcrypt password hashing with a configurable cost factor.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error. Direct bcrypt usage is simpler and has no
compatibility shim.

bcrypt only reads the first 72 bytes of its input. Passwords whose UTF-8
encoding is longer are refused by hash() rather than truncated, so two
passwords sharing a 72-byte prefix can never share a hash. The API layer
enforces the same byte limit (api/models.py).

Nothing in this module logs a plaintext password or a hash.
"""

from __future__ import annotations

import bcrypt

DEFAULT_ROUNDS = 12
BCRYPT_MAX_BYTES = 72


def password_too_long(plain: str) -> bool:
    """True if plain's UTF-8 encoding exceeds what bcrypt can read."""
    return len(plain.encode("utf-8")) > BCRYPT_MAX_BYTES


class PasswordHasher:
    """One-way adaptive hashing. The cost factor is fixed per instance.

    Usage:
        hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
        stored = hasher.hash("s3cret-pass")
        hasher.verify("s3cret-pass", stored)  # True
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        self.rounds = rounds
        # Timing equalization dummy hash [C1]. Computed once per hasher so the
        # first unknown-email login is not measurably faster than later ones,
        # and at the same cost as real hashes.
        self._dummy_hash = self.hash("procureauth_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a salted bcrypt hash of plain.

        Raises ValueError if plain is longer than 72 bytes as UTF-8.
        """
        if password_too_long(plain):
            raise ValueError(f"Password must be at most {BCRYPT_MAX_BYTES} bytes as UTF-8.")
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if plain matches hashed. Malformed hashes verify as False.

        A password longer than 72 bytes never matches: no stored hash can have
        been made from it. bcrypt still runs on the first 72 bytes so the cost
        is the same as any other wrong password.
        """
        encoded = plain.encode("utf-8")
        try:
            matched = bcrypt.checkpw(encoded[:BCRYPT_MAX_BYTES], hashed.encode("utf-8"))
        except (ValueError, TypeError, AttributeError):
            return False
        return matched and len(encoded) <= BCRYPT_MAX_BYTES

    def verify_dummy(self, plain: str) -> None:
        """Spend one verification's worth of work when there is no real hash.

        Always call this on the "user does not exist" path so response time
        does not reveal which emails are registered [C1].
        """
        self.verify(plain, self._dummy_hash)
