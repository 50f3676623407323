"""Password hashing and verification for user accounts."""
from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Optional, Union

from passlib.context import CryptContext

PASSWORD_SCHEME = "pbkdf2_sha256"

# ``hex_sha256`` covers rows written by the first version of the service, which
# stored bare SHA-256 hex digests. They verify but are flagged for rehashing.
_pwd_context = CryptContext(
    schemes=[PASSWORD_SCHEME, "hex_sha256"],
    default=PASSWORD_SCHEME,
    deprecated=["hex_sha256"],
)


@dataclass(frozen=True)
class Hashed:
    """A stored credential produced by a recognised hash scheme."""

    digest: str

    @property
    def scheme(self) -> Optional[str]:
        return _pwd_context.identify(self.digest, required=False)


@dataclass(frozen=True)
class LegacyPlaintext:
    """A password that was stored without hashing."""

    value: str


StoredCredential = Union[Hashed, LegacyPlaintext]


def classify_credential(stored: str) -> StoredCredential:
    if _pwd_context.identify(stored, required=False) is not None:
        return Hashed(stored)
    return LegacyPlaintext(stored)


def hash_password(password: str) -> str:
    if not password:
        raise ValueError("Password must not be empty")
    return _pwd_context.hash(password)


def verify_password(password: str, stored: Optional[str]) -> bool:
    """Return ``True`` when ``password`` matches the stored credential."""

    if not password or not stored:
        return False

    credential = classify_credential(stored)
    if isinstance(credential, LegacyPlaintext):
        return secrets.compare_digest(password.encode("utf-8"), credential.value.encode("utf-8"))

    try:
        if _pwd_context.verify(password, credential.digest):
            return True
    except ValueError:
        return False
    # A plaintext password can itself look like a hex SHA-256 digest.
    if credential.scheme == "hex_sha256":
        return secrets.compare_digest(password.encode("utf-8"), credential.digest.encode("utf-8"))
    return False


def needs_migration(stored: Optional[str]) -> bool:
    """Return ``True`` when the stored value should be rewritten with :func:`hash_password`."""

    if not stored:
        return False
    credential = classify_credential(stored)
    if isinstance(credential, LegacyPlaintext):
        return True
    return _pwd_context.needs_update(credential.digest)


__all__ = [
    "Hashed",
    "LegacyPlaintext",
    "PASSWORD_SCHEME",
    "StoredCredential",
    "classify_credential",
    "hash_password",
    "needs_migration",
    "verify_password",
]
