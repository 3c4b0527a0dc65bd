"""
Hasher — one-way digests for logins and passwords.

Security Note:
    Digests are SHA-256, hex-encoded. The salt is random, stored hex-encoded
    in the ``salts`` table, and prefixed to the value before hashing.
"""
import hmac
import secrets

from cryptography.hazmat.primitives import hashes


def _sha256_hex(data: bytes) -> str:
    digest = hashes.Hash(hashes.SHA256())
    digest.update(data)
    return digest.finalize().hex()


class Hasher:
    """Stateless; safe for concurrent use."""

    def generate_salt(self, length: int) -> str:
        """Return ``length`` random bytes, hex-encoded."""
        return secrets.token_bytes(length).hex()

    def hash(self, value: str) -> str:
        return _sha256_hex(value.encode("utf-8"))

    def hash_with_salt(self, value: str, salt: str) -> str:
        """Digest of ``salt || value``.

        Raises:
            ValueError: If ``salt`` is not valid hex.
        """
        return _sha256_hex(bytes.fromhex(salt) + value.encode("utf-8"))

    def verify(self, value: str, salt: str, digest: str) -> bool:
        """Constant-time check of ``value`` against a stored digest."""
        return hmac.compare_digest(self.hash_with_salt(value, salt), digest)
