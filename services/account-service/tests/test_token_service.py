from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging

import jwt
import pytest

from app.domain.account import Account, RefreshToken
from app.domain.outcomes import AccountStateError, AuthOutcome
from app.domain.token_service import TokenService
from app.security.tokens import decode_access_token

from conftest import FakeAccountStore, FakeIdentityProvider


def _account(store: FakeAccountStore, name: str = "Alice1", **overrides) -> Account:
    account = Account(
        account_id=overrides.pop("account_id", f"id-{name.lower()}"),
        name=name,
        email=overrides.pop("email", f"{name.lower()}@example.com"),
        password_hash="hash",
        created_at=datetime.now(timezone.utc),
        verified=overrides.pop("verified", True),
        **overrides,
    )
    store.insert_account(account)
    return account


def _expire(store: FakeAccountStore, account_id: str, token: str) -> None:
    stored = store.stored(account_id)
    stored.find_refresh_token(token).expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)


def test_issue_then_check_is_valid(store, token_service, settings):
    account = _account(store)

    bundle = token_service.issue(account)

    assert token_service.check_validity(bundle.refresh_token.token) is AuthOutcome.SUCCESS
    claims = decode_access_token(bundle.access_token, settings=settings)
    assert claims["sub"] == account.account_id
    assert claims["iss"] == settings.jwt_issuer
    assert claims["aud"] == settings.jwt_audience
    assert bundle.access_expires_in == settings.jwt_ttl_seconds


def test_issue_appends_and_persists_token(store, token_service):
    account = _account(store)

    first = token_service.issue(account)
    second = token_service.issue(account)

    tokens = [item.token for item in store.stored(account.account_id).refresh_tokens]
    assert tokens == [first.refresh_token.token, second.refresh_token.token]


def test_refresh_token_lives_thirty_days(store, token_service):
    account = _account(store)
    before = datetime.now(timezone.utc)

    bundle = token_service.issue(account)

    expected = before + timedelta(days=30)
    assert abs((bundle.refresh_token.expires_at - expected).total_seconds()) < 5


def test_expired_token_is_evicted(store, token_service):
    account = _account(store)
    bundle = token_service.issue(account)
    _expire(store, account.account_id, bundle.refresh_token.token)

    assert token_service.check_validity(bundle.refresh_token.token) is AuthOutcome.TOKEN_EXPIRED
    assert store.stored(account.account_id).refresh_tokens == []
    assert token_service.check_validity(bundle.refresh_token.token) is AuthOutcome.USER_NOT_FOUND


def test_unknown_token(token_service):
    assert token_service.check_validity("nope") is AuthOutcome.USER_NOT_FOUND
    assert token_service.rotate("nope").outcome is AuthOutcome.USER_NOT_FOUND
    assert token_service.revoke_all("nope").tokens is None
    assert token_service.revoke("nope") is AuthOutcome.USER_NOT_FOUND


def test_rotate_invalidates_presented_token(store, token_service):
    account = _account(store)
    old = token_service.issue(account).refresh_token.token

    result = token_service.rotate(old)

    assert result.ok
    new = result.tokens.refresh_token
    assert new.token != old
    assert new.expires_at > datetime.now(timezone.utc) + timedelta(days=29)
    assert token_service.check_validity(old) is AuthOutcome.USER_NOT_FOUND
    assert token_service.check_validity(new.token) is AuthOutcome.SUCCESS
    assert token_service.rotate(old).outcome is AuthOutcome.USER_NOT_FOUND


def test_rotate_keeps_other_sessions(store, token_service):
    account = _account(store)
    kept = token_service.issue(account).refresh_token.token
    rotated = token_service.issue(account).refresh_token.token

    token_service.rotate(rotated)

    assert token_service.check_validity(kept) is AuthOutcome.SUCCESS
    assert len(store.stored(account.account_id).refresh_tokens) == 2


def test_revoke_all_leaves_single_new_token(store, token_service):
    account = _account(store)
    first = token_service.issue(account).refresh_token.token
    second = token_service.issue(account).refresh_token.token

    result = token_service.revoke_all(second)

    assert result.ok
    remaining = store.stored(account.account_id).refresh_tokens
    assert [item.token for item in remaining] == [result.tokens.refresh_token.token]
    assert token_service.check_validity(first) is AuthOutcome.USER_NOT_FOUND


def test_revoke_removes_without_replacement(store, token_service):
    account = _account(store)
    token = token_service.issue(account).refresh_token.token

    assert token_service.revoke(token) is AuthOutcome.SUCCESS
    assert store.stored(account.account_id).refresh_tokens == []
    assert token_service.revoke(token) is AuthOutcome.USER_NOT_FOUND


def test_issue_for_login_accepts_name_or_email(store, token_service):
    account = _account(store, "Bob_1", email="Bob@Example.com")

    by_name = token_service.issue_for_login("bob_1")
    by_email = token_service.issue_for_login("bob@example.com")

    assert len(store.stored(account.account_id).refresh_tokens) == 2
    assert by_name.refresh_token.token != by_email.refresh_token.token
    with pytest.raises(AccountStateError):
        token_service.issue_for_login("ghost")


def test_issue_reconciles_name_with_identity_directory(store, locks, settings):
    identity = FakeIdentityProvider()
    identity.add("ext-1", "Alicia")
    account = _account(store, external_id="ext-1")
    service = TokenService(store, locks, identity, settings)

    service.issue(account)

    stored = store.stored(account.account_id)
    assert stored.name == "Alicia"
    assert stored.normalized_name == "alicia"
    assert len(stored.refresh_tokens) == 1


def test_case_only_rename_is_ignored(store, locks, settings):
    identity = FakeIdentityProvider()
    identity.add("ext-1", "ALICE1")
    account = _account(store, external_id="ext-1")

    TokenService(store, locks, identity, settings).issue(account)

    assert store.stored(account.account_id).name == "Alice1"


def test_identity_failure_keeps_stored_name(store, locks, settings):
    identity = FakeIdentityProvider()
    identity.fail = True
    account = _account(store, external_id="ext-1")

    bundle = TokenService(store, locks, identity, settings).issue(account)

    assert bundle.refresh_token.token
    assert store.stored(account.account_id).name == "Alice1"


class VanishingStore(FakeAccountStore):
    """Deletes the owner between the token lookup and the locked re-read."""

    def find_by_refresh_token(self, token: str):
        owner = super().find_by_refresh_token(token)
        if owner is not None:
            self.delete_account(owner.account_id)
        return owner


def test_vanished_owner_is_an_invariant_violation(locks, settings):
    store = VanishingStore()
    account = _account(store)
    store.stored(account.account_id).refresh_tokens.append(
        RefreshToken(token="tok", expires_at=datetime.now(timezone.utc) + timedelta(days=1))
    )
    store.update_account(store.get_account(account.account_id))
    service = TokenService(store, locks, None, settings)

    with pytest.raises(AccountStateError):
        service.rotate("tok")


def test_authenticate_returns_subject(store, token_service):
    account = _account(store)
    bundle = token_service.issue(account)

    assert token_service.authenticate(bundle.access_token) == account.account_id
    with pytest.raises(jwt.PyJWTError):
        token_service.authenticate(bundle.access_token + "x")


def test_rename_onto_verified_name_is_refused(store, locks, settings, caplog):
    identity = FakeIdentityProvider()
    identity.add("ext-1", "Bob_1")
    alice = _account(store, external_id="ext-1")
    _account(store, "Bob_1")

    with caplog.at_level(logging.WARNING, logger="app.domain.token_service"):
        bundle = TokenService(store, locks, identity, settings).issue(alice)

    assert bundle.refresh_token.token
    assert store.stored(alice.account_id).name == "Alice1"
    names = sorted(a.normalized_name for a in store.list_accounts() if a.verified)
    assert names == ["alice1", "bob_1"]
    assert "keeping stored name" in caplog.text


def test_rename_onto_provisional_name_is_allowed(store, locks, settings):
    identity = FakeIdentityProvider()
    identity.add("ext-1", "Bob_1")
    alice = _account(store, external_id="ext-1")
    _account(store, "Bob_1", verified=False)

    TokenService(store, locks, identity, settings).issue(alice)

    assert store.stored(alice.account_id).name == "Bob_1"
