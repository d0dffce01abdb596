"""Password digests and one-time code generation."""

from __future__ import annotations

from datetime import datetime, timezone
import hashlib
import hmac
import logging
import secrets
from typing import Protocol

import bcrypt

logger = logging.getLogger(__name__)


def hash_password(plaintext: str) -> str:
    """Return the unsalted SHA-256 hex digest of ``plaintext``.

    Equal inputs always produce equal digests, which keeps stored hashes comparable
    with accounts created before salted hashing was available. Prefer
    :class:`BcryptPasswordHasher` for new deployments.
    """
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


def generate_opaque_code(seed: str | None = None) -> str:
    """Return a 32 character hex code derived from ``seed`` and fresh randomness.

    The seed defaults to the current UTC timestamp. The random salt keeps the code
    unpredictable even when the seed is known, and the digest is not reversible.
    """
    if seed is None:
        seed = datetime.now(timezone.utc).isoformat()
    material = f"{seed}:{secrets.token_hex(16)}".encode("utf-8")
    return hashlib.md5(material, usedforsecurity=False).hexdigest()


class PasswordHasher(Protocol):
    def hash(self, password: str) -> str: ...

    def verify(self, password: str, password_hash: str) -> bool: ...


class Sha256PasswordHasher:
    """Deterministic hasher backed by :func:`hash_password`."""

    def hash(self, password: str) -> str:
        return hash_password(password)

    def verify(self, password: str, password_hash: str) -> bool:
        return hmac.compare_digest(hash_password(password), password_hash)


class BcryptPasswordHasher:
    """Salted bcrypt hashing utility."""

    def __init__(self, rounds: int = 12) -> None:
        """Initialize with bcrypt rounds (cost factor)."""
        self.rounds = rounds

    def hash(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    def verify(self, password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError as exc:
            # stored hash is not a bcrypt digest (e.g. a legacy SHA-256 value)
            logger.warning("password verification failed: %s", exc)
            return False


def build_password_hasher(scheme: str) -> PasswordHasher:
    """Return the hasher for a configured scheme name."""
    if scheme == "sha256":
        return Sha256PasswordHasher()
    if scheme == "bcrypt":
        return BcryptPasswordHasher()
    raise ValueError(f"unknown password hash scheme: {scheme}")
