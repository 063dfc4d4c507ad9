"""Password hashing tests."""

from warden.auth.password import (
    burn_verify,
    hash_password,
    needs_upgrade,
    verify_password,
)
from warden.config import settings


def test_hash_and_verify():
    h = hash_password("s3cret-password")
    assert h.startswith("$2b$")
    assert verify_password("s3cret-password", h)
    assert not verify_password("wrong-password", h)


def test_hashes_are_salted():
    assert hash_password("same-password") != hash_password("same-password")


def test_malformed_hash_never_verifies():
    assert not verify_password("anything", "not-a-bcrypt-hash")
    assert not verify_password("anything", "")


def test_needs_upgrade(monkeypatch):
    weak = hash_password("password-123", rounds=4)
    monkeypatch.setattr(settings, "bcrypt_rounds", 5)
    assert needs_upgrade(weak)
    assert not needs_upgrade(hash_password("password-123"))
    assert needs_upgrade("garbage")


def test_burn_verify_returns_nothing():
    assert burn_verify("whatever") is None
