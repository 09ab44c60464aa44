from __future__ import annotations

import hashlib
import hmac
import secrets

SALT_BYTES = 16
KEY_BYTES = 32
ITERATIONS = 100_000


class CredentialHasher:
    """PBKDF2-HMAC-SHA256 hasher for passwords and OTP codes.

    Encoded form is ``<salt hex>:<derived key hex>``. The encoding does not
    carry the iteration count, so it is a module constant.
    """

    iterations = ITERATIONS

    def hash(self, secret: str) -> str:
        if not secret:
            raise ValueError("Secret must not be empty")
        salt = secrets.token_bytes(SALT_BYTES)
        derived = self._derive(secret, salt)
        return f"{salt.hex()}:{derived.hex()}"

    def verify(self, secret: str, encoded: str | None) -> bool:
        if not secret or not encoded:
            return False
        salt_hex, sep, key_hex = encoded.partition(":")
        if not sep:
            return False
        try:
            salt = bytes.fromhex(salt_hex)
            expected = bytes.fromhex(key_hex)
        except ValueError:
            return False
        if len(salt) < SALT_BYTES or len(expected) != KEY_BYTES:
            return False
        candidate = self._derive(secret, salt)
        return hmac.compare_digest(candidate, expected)

    def _derive(self, secret: str, salt: bytes) -> bytes:
        return hashlib.pbkdf2_hmac(
            "sha256", secret.encode("utf-8"), salt, ITERATIONS, dklen=KEY_BYTES
        )


credential_hasher = CredentialHasher()
