"""Utilities for issuing and validating application JWTs and refresh tokens."""

from __future__ import annotations

import hashlib
import secrets
import time
from typing import Any

import jwt

from ..config import Settings, get_settings


def issue_access_token(*, subject: str, settings: Settings | None = None) -> tuple[str, int]:
    """Create a signed JWT representing an authenticated account.

    Parameters
    ----------
    subject:
        Account identifier to embed in the token `sub` claim.
    settings:
        Optional settings override; defaults to the process-wide settings.

    Returns
    -------
    tuple[str, int]
        A tuple containing the encoded JWT string and its TTL (in seconds).
    """

    settings = settings or get_settings()
    now = int(time.time())
    expires_in = settings.jwt_ttl_seconds
    payload: dict[str, Any] = {
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "sub": subject,
        "iat": now,
        "exp": now + expires_in,
    }

    token = jwt.encode(payload, settings.jwt_secret, algorithm="HS256")
    # PyJWT returns str for HS256 even in PyJWT>=2
    return token, expires_in


def decode_access_token(token: str, settings: Settings | None = None) -> dict[str, Any]:
    """Decode and verify a JWT returning its payload.

    Parameters
    ----------
    token:
        Encoded JWT issued by this service.

    Returns
    -------
    dict[str, Any]
        The decoded payload if signature, audience and issuer checks succeed.

    Raises
    ------
    jwt.PyJWTError
        Propagated when the token is invalid, expired, or signed by another issuer.
    """

    settings = settings or get_settings()
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=["HS256"],
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
    )


def generate_refresh_token() -> str:
    """Generate an opaque URL-safe refresh token string."""
    return secrets.token_urlsafe(48)


def hash_refresh_token(token: str) -> str:
    """Return the SHA-256 hex digest used to index a refresh token in storage."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
