"""
tests/test_passwords.py -- Unit tests for auth/passwords.py.

Covers:
  - hash() is salted and verify() round-trips
  - verify() returns False for wrong passwords and malformed hashes
  - the configured cost factor is embedded in the hash
  - inputs past bcrypt's 72-byte window are refused, never truncated
"""

from __future__ import annotations

import pytest

from auth.passwords import PasswordHasher


@pytest.fixture(scope="module")
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


def test_hash_and_verify(hasher):
    stored = hasher.hash("s3cret-pass")
    assert stored != "s3cret-pass"
    assert hasher.verify("s3cret-pass", stored) is True
    assert hasher.verify("s3cret-pasS", stored) is False


def test_hash_is_salted(hasher):
    assert hasher.hash("same-password") != hasher.hash("same-password")


def test_cost_factor_in_hash(hasher):
    assert hasher.hash("whatever-pw").startswith("$2b$04$")


@pytest.mark.parametrize("bad_hash", ["", "not-a-bcrypt-hash", "$2b$04$short"])
def test_malformed_hash_verifies_false(hasher, bad_hash):
    assert hasher.verify("anything", bad_hash) is False


def test_hash_refuses_multibyte_password_past_72_bytes(hasher):
    password = "密" * 40  # 40 chars, 120 UTF-8 bytes
    with pytest.raises(ValueError):
        hasher.hash(password)


def test_multibyte_password_at_72_bytes(hasher):
    password = "é" * 36  # 36 chars, 72 UTF-8 bytes
    stored = hasher.hash(password)
    assert hasher.verify(password, stored) is True
    assert hasher.verify("é" * 35 + "e", stored) is False


def test_shared_72_byte_prefix_does_not_verify(hasher):
    stored = hasher.hash("é" * 36)
    # Same first 72 bytes as the stored password, then extra characters.
    assert hasher.verify("é" * 36 + "ZZZ", stored) is False
    assert hasher.verify("é" * 36 + "a" * 36, stored) is False


@pytest.mark.parametrize("missing_hash", [None, 12345])
def test_non_string_hash_verifies_false(hasher, missing_hash):
    assert hasher.verify("anything", missing_hash) is False


def test_verify_dummy_returns_none(hasher):
    assert hasher.verify_dummy("guess") is None
