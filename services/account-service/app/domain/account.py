from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class CodePurpose(str, Enum):
    """What a verification code unlocks once it is consumed."""

    ACTIVATION = "activation"
    RESTORE = "restore"


@dataclass(slots=True)
class RefreshToken:
    """Opaque long-lived credential owned by exactly one account."""

    token: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass(slots=True)
class VerificationCode:
    """Single-use code sent by email for activation or password restore."""

    code: str
    expires_at: datetime
    purpose: CodePurpose = CodePurpose.ACTIVATION

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass(slots=True)
class Account:
    """Aggregate root holding identity, credentials and token/code state."""

    account_id: str
    name: str
    email: str
    password_hash: str
    created_at: datetime
    external_id: str | None = None
    verified: bool = False
    refresh_tokens: list[RefreshToken] = field(default_factory=list)
    verification_codes: list[VerificationCode] = field(default_factory=list)
    pending_password_hash: str | None = None

    @property
    def normalized_name(self) -> str:
        return self.name.lower()

    @property
    def normalized_email(self) -> str:
        return self.email.lower()

    def rename(self, name: str) -> None:
        self.name = name

    def find_refresh_token(self, token: str) -> RefreshToken | None:
        for candidate in self.refresh_tokens:
            if candidate.token == token:
                return candidate
        return None
