"""Domain-level request contracts and collaborator interfaces shared by multiple layers."""

from __future__ import annotations

from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Protocol, Sequence

from .account import Account


@dataclass(slots=True)
class RegisterAccountInput:
    """Raw registration fields; shape validation happens in the service."""

    name: str
    password: str
    email: str


class AccountStore(Protocol):
    """Document-style persistence for account aggregates.

    Every call is atomic for a single account; no multi-call transactions are assumed.
    """

    def get_account(self, account_id: str) -> Account | None: ...

    def find_by_name(self, normalized_name: str, verified: bool | None = None) -> Account | None: ...

    def find_by_email(self, email: str, verified: bool | None = None) -> Account | None: ...

    def list_by_email(self, email: str) -> Sequence[Account]: ...

    def find_by_refresh_token(self, token: str) -> Account | None: ...

    def list_accounts(self) -> Sequence[Account]: ...

    def insert_account(self, account: Account) -> None: ...

    def update_account(self, account: Account) -> None: ...

    def delete_account(self, account_id: str) -> None: ...


class MailSender(Protocol):
    """Outbound mail delivery; callers never consume a delivery confirmation."""

    def send_activation(self, email: str, code: str) -> None: ...

    def send_restore(self, email: str, code: str) -> None: ...


class IdentityProvider(Protocol):
    """Maps display names to stable external identifiers and back."""

    def resolve_id(self, name: str) -> str | None: ...

    def resolve_name(self, external_id: str) -> str | None: ...


class AccountLocks(Protocol):
    """Per-account mutual exclusion around read-modify-write sequences."""

    def hold(self, account_id: str) -> AbstractContextManager[None]: ...
