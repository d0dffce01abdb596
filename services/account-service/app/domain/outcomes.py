"""Closed outcome set returned by account and token workflows."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .account import RefreshToken


class AuthOutcome(str, Enum):
    INVALID_FORMAT = "invalid_format"
    SUCCESS = "success"
    NAME_TAKEN = "name_taken"
    USER_NOT_FOUND = "user_not_found"
    INVALID_PASSWORD = "invalid_password"
    TOKEN_EXPIRED = "token_expired"
    ACCOUNT_NOT_VERIFIED = "account_not_verified"
    EXTERNAL_IDENTITY_FAILED = "external_identity_failed"
    EMAIL_TAKEN = "email_taken"
    CODE_NOT_FOUND = "code_not_found"
    CODE_EXPIRED = "code_expired"


@dataclass(slots=True)
class TokenBundle:
    """Encapsulates the access/refresh token pair returned to API consumers."""

    access_token: str
    access_expires_in: int
    refresh_token: RefreshToken


@dataclass(slots=True)
class TokenResult:
    """Outcome of a token operation; ``tokens`` is only set on success."""

    outcome: AuthOutcome
    tokens: TokenBundle | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is AuthOutcome.SUCCESS


class AccountStateError(RuntimeError):
    """Raised when an account disappears underneath an in-flight mutation.

    This is an invariant violation, not an expected condition; callers should not recover.
    """


class IdentityLookupError(RuntimeError):
    """Raised when the external identity directory cannot answer a lookup."""
