import hashlib

import pytest

from app.config import settings
from app.services.hashing import (
    ITERATIONS,
    KEY_BYTES,
    SALT_BYTES,
    CredentialHasher,
    credential_hasher,
)


@pytest.fixture(scope="module")
def hasher() -> CredentialHasher:
    return CredentialHasher()


def test_hash_round_trip(hasher):
    encoded = hasher.hash("password123")
    assert hasher.verify("password123", encoded) is True


def test_verify_rejects_other_secret(hasher):
    encoded = hasher.hash("password123")
    assert hasher.verify("password124", encoded) is False
    assert hasher.verify("482913", hasher.hash("482914")) is False


def test_encoding_is_salt_colon_key_hex(hasher):
    salt_hex, key_hex = hasher.hash("482913").split(":")
    assert len(bytes.fromhex(salt_hex)) == SALT_BYTES
    assert len(bytes.fromhex(key_hex)) == KEY_BYTES


def test_each_hash_uses_fresh_salt(hasher):
    first = hasher.hash("same-secret")
    second = hasher.hash("same-secret")
    assert first != second
    assert hasher.verify("same-secret", first)
    assert hasher.verify("same-secret", second)


@pytest.mark.parametrize(
    "encoded",
    ["", None, "no-separator", "zz:zz", "00:00", "ab" * 16 + ":" + "cd" * 8],
)
def test_malformed_encodings_do_not_verify(hasher, encoded):
    assert hasher.verify("password123", encoded) is False


def test_empty_secret(hasher):
    assert hasher.verify("", hasher.hash("x")) is False
    with pytest.raises(ValueError):
        hasher.hash("")


def test_work_factor_is_fixed():
    assert ITERATIONS == 100_000
    assert CredentialHasher.iterations == ITERATIONS
    assert not hasattr(settings, "pbkdf2_iterations")


def test_encoding_derives_with_fixed_iterations(hasher):
    salt_hex, key_hex = hasher.hash("password123").split(":")
    expected = hashlib.pbkdf2_hmac(
        "sha256", b"password123", bytes.fromhex(salt_hex), 100_000, dklen=KEY_BYTES
    )
    assert expected.hex() == key_hex


def test_hash_from_one_hasher_verifies_with_any_other(hasher):
    encoded = hasher.hash("password123")
    assert CredentialHasher().verify("password123", encoded)
    assert credential_hasher.verify("password123", encoded)
