from __future__ import annotations

import copy
import smtplib

import pytest

from app.config import Settings
from app.domain.account import Account
from app.domain.outcomes import IdentityLookupError
from app.domain.service import AccountService
from app.domain.token_service import TokenService
from app.security.hashing import Sha256PasswordHasher
from app.security.locks import InMemoryAccountLocks

TEST_SECRET = "test-secret-with-at-least-32-bytes!!"


class FakeAccountStore:
    """In-memory store mimicking the Postgres-backed behaviors.

    Accounts are copied on every read and write so unsaved mutations never leak into
    the stored state.
    """

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._token_index: dict[str, str] = {}

    def get_account(self, account_id: str):
        account = self._accounts.get(account_id)
        return copy.deepcopy(account) if account else None

    def find_by_name(self, normalized_name: str, verified: bool | None = None):
        return self._find(lambda a: a.normalized_name == normalized_name.lower(), verified)

    def find_by_email(self, email: str, verified: bool | None = None):
        return self._find(lambda a: a.normalized_email == email.lower(), verified)

    def list_by_email(self, email: str):
        matches = [a for a in self._accounts.values() if a.normalized_email == email.lower()]
        matches.sort(key=lambda a: (a.verified, a.created_at), reverse=True)
        return [copy.deepcopy(a) for a in matches]

    def find_by_refresh_token(self, token: str):
        account_id = self._token_index.get(token)
        return self.get_account(account_id) if account_id else None

    def list_accounts(self):
        return [copy.deepcopy(a) for a in sorted(self._accounts.values(), key=lambda a: a.created_at)]

    def insert_account(self, account: Account) -> None:
        assert account.account_id not in self._accounts
        self._store(account)

    def update_account(self, account: Account) -> None:
        assert account.account_id in self._accounts
        self._store(account)

    def delete_account(self, account_id: str) -> None:
        self._accounts.pop(account_id, None)
        self._drop_index(account_id)

    def stored(self, account_id: str) -> Account:
        """Direct access to the persisted aggregate for assertions and test setup."""
        return self._accounts[account_id]

    def _store(self, account: Account) -> None:
        self._accounts[account.account_id] = copy.deepcopy(account)
        self._drop_index(account.account_id)
        for item in account.refresh_tokens:
            self._token_index[item.token] = account.account_id

    def _drop_index(self, account_id: str) -> None:
        for token, owner in list(self._token_index.items()):
            if owner == account_id:
                del self._token_index[token]

    def _find(self, predicate, verified):
        matches = [
            a
            for a in self._accounts.values()
            if predicate(a) and (verified is None or a.verified == verified)
        ]
        matches.sort(key=lambda a: (a.verified, a.created_at), reverse=True)
        return copy.deepcopy(matches[0]) if matches else None


class FakeMailSender:
    """Captures outbound codes; optionally fails like an unreachable SMTP server."""

    def __init__(self) -> None:
        self.activations: list[tuple[str, str]] = []
        self.restores: list[tuple[str, str]] = []
        self.fail = False

    def send_activation(self, email: str, code: str) -> None:
        if self.fail:
            raise smtplib.SMTPServerDisconnected("connection refused")
        self.activations.append((email, code))

    def send_restore(self, email: str, code: str) -> None:
        if self.fail:
            raise smtplib.SMTPServerDisconnected("connection refused")
        self.restores.append((email, code))

    def last_activation_code(self, email: str) -> str:
        return [code for to, code in self.activations if to == email][-1]

    def last_restore_code(self, email: str) -> str:
        return [code for to, code in self.restores if to == email][-1]


class FakeIdentityProvider:
    """Profile directory keyed by lowercase name."""

    def __init__(self) -> None:
        self.profiles: dict[str, str] = {}
        self.fail = False

    def add(self, external_id: str, name: str) -> None:
        self.profiles[external_id] = name

    def resolve_id(self, name: str):
        if self.fail:
            raise IdentityLookupError("directory down")
        for external_id, current in self.profiles.items():
            if current.lower() == name.lower():
                return external_id
        return None

    def resolve_name(self, external_id: str):
        if self.fail:
            raise IdentityLookupError("directory down")
        return self.profiles.get(external_id)


def make_settings(**overrides) -> Settings:
    values = {
        "jwt_secret": TEST_SECRET,
        "use_mail": True,
        "use_external_identity": False,
        "password_hash_scheme": "sha256",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store() -> FakeAccountStore:
    return FakeAccountStore()


@pytest.fixture
def mailer() -> FakeMailSender:
    return FakeMailSender()


@pytest.fixture
def locks() -> InMemoryAccountLocks:
    return InMemoryAccountLocks()


@pytest.fixture
def token_service(store, locks, settings) -> TokenService:
    return TokenService(store, locks, None, settings)


@pytest.fixture
def account_service(store, locks, mailer, settings) -> AccountService:
    return AccountService(store, locks, mailer, None, Sha256PasswordHasher(), settings)
