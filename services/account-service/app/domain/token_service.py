"""Refresh token issuance, rotation, revocation and expiry checks."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
import logging
from typing import Iterator

from .account import Account, RefreshToken
from .contracts import AccountLocks, AccountStore, IdentityProvider
from .outcomes import AccountStateError, AuthOutcome, IdentityLookupError, TokenBundle, TokenResult
from ..config import Settings, get_settings
from ..security.tokens import decode_access_token, generate_refresh_token, issue_access_token

logger = logging.getLogger(__name__)


class TokenService:
    """Refresh token lifecycle for account aggregates.

    Every mutation re-reads the owning account under its lock, mutates it and writes
    the full aggregate back, so the store's token index stays in step with the account.
    """

    def __init__(
        self,
        store: AccountStore,
        locks: AccountLocks,
        identity: IdentityProvider | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Store collaborators used for persistence, locking and name reconciliation."""
        self._store = store
        self._locks = locks
        self._identity = identity
        self._settings = settings or get_settings()

    def issue(self, account: Account) -> TokenBundle:
        """Append a fresh refresh token to ``account`` and return it with an access token."""
        canonical = self._canonical_name(account)
        with self._mutating(account.account_id) as current:
            bundle = self._mint(current, canonical)
            self._store.update_account(current)
        return bundle

    def issue_for_login(self, name_or_email: str) -> TokenBundle:
        """Issue tokens for an account whose credentials the caller has already verified."""
        account = self._store.find_by_name(name_or_email.lower()) or self._store.find_by_email(
            name_or_email
        )
        if account is None:
            raise AccountStateError(f"no account for verified login {name_or_email!r}")
        return self.issue(account)

    def check_validity(self, token: str) -> AuthOutcome:
        """Report whether ``token`` is active, evicting it when it has expired."""
        owner = self._store.find_by_refresh_token(token)
        if owner is None:
            return AuthOutcome.USER_NOT_FOUND
        presented = owner.find_refresh_token(token)
        if presented is not None and not presented.is_expired(datetime.now(timezone.utc)):
            return AuthOutcome.SUCCESS

        with self._mutating(owner.account_id) as account:
            presented = account.find_refresh_token(token)
            if presented is None:
                return AuthOutcome.USER_NOT_FOUND
            if not presented.is_expired(datetime.now(timezone.utc)):
                return AuthOutcome.SUCCESS
            account.refresh_tokens.remove(presented)
            self._store.update_account(account)
        logger.info("evicted expired refresh token for account %s", owner.account_id)
        return AuthOutcome.TOKEN_EXPIRED

    def rotate(self, token: str) -> TokenResult:
        """Replace ``token`` with a new refresh token; the old one is invalidated immediately."""
        return self._replace(token, revoke_everything=False)

    def revoke_all(self, token: str) -> TokenResult:
        """Drop every refresh token on the owning account and issue a single new one."""
        return self._replace(token, revoke_everything=True)

    def revoke(self, token: str) -> AuthOutcome:
        """Remove ``token`` without issuing a replacement."""
        owner = self._store.find_by_refresh_token(token)
        if owner is None:
            return AuthOutcome.USER_NOT_FOUND
        with self._mutating(owner.account_id) as account:
            presented = account.find_refresh_token(token)
            if presented is None:
                return AuthOutcome.USER_NOT_FOUND
            account.refresh_tokens.remove(presented)
            self._store.update_account(account)
        return AuthOutcome.SUCCESS

    def authenticate(self, access_token: str) -> str:
        """Return the account id carried by a valid access token.

        Raises ``jwt.PyJWTError`` when the signature, audience, issuer or expiry check fails.
        """
        claims = decode_access_token(access_token, settings=self._settings)
        return claims["sub"]

    def _replace(self, token: str, *, revoke_everything: bool) -> TokenResult:
        owner = self._store.find_by_refresh_token(token)
        if owner is None:
            return TokenResult(AuthOutcome.USER_NOT_FOUND)
        canonical = self._canonical_name(owner)
        with self._mutating(owner.account_id) as account:
            presented = account.find_refresh_token(token)
            if presented is None:
                # rotated by a concurrent request after the index lookup
                return TokenResult(AuthOutcome.USER_NOT_FOUND)
            if revoke_everything:
                account.refresh_tokens.clear()
            else:
                account.refresh_tokens.remove(presented)
            bundle = self._mint(account, canonical)
            self._store.update_account(account)
        return TokenResult(AuthOutcome.SUCCESS, bundle)

    @contextmanager
    def _mutating(self, account_id: str) -> Iterator[Account]:
        with self._locks.hold(account_id):
            account = self._store.get_account(account_id)
            if account is None:
                raise AccountStateError(f"account {account_id} vanished during token mutation")
            yield account

    def _mint(self, account: Account, canonical_name: str | None) -> TokenBundle:
        if canonical_name and canonical_name.lower() != account.normalized_name:
            holder = self._store.find_by_name(canonical_name.lower(), verified=True)
            if holder is not None and holder.account_id != account.account_id:
                logger.warning(
                    "keeping stored name for account %s: %s is held by account %s",
                    account.account_id,
                    canonical_name,
                    holder.account_id,
                )
            else:
                logger.info(
                    "renaming account %s from %s to %s", account.account_id, account.name, canonical_name
                )
                account.rename(canonical_name)

        value = generate_refresh_token()
        refresh = RefreshToken(
            token=value,
            expires_at=datetime.now(timezone.utc)
            + timedelta(seconds=self._settings.refresh_ttl_seconds),
        )
        account.refresh_tokens.append(refresh)
        access_token, expires_in = issue_access_token(
            subject=account.account_id, settings=self._settings
        )
        return TokenBundle(
            access_token=access_token,
            access_expires_in=expires_in,
            refresh_token=refresh,
        )

    def _canonical_name(self, account: Account) -> str | None:
        """Ask the identity directory for the current display name, if enabled."""
        if self._identity is None or not account.external_id:
            return None
        try:
            return self._identity.resolve_name(account.external_id)
        except IdentityLookupError as exc:
            logger.warning("keeping stored name for account %s: %s", account.account_id, exc)
            return None
