"""Account service orchestrating registration, credential checks and password resets."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
import hashlib
import logging
from typing import Callable, Iterator, Sequence
import uuid

from .account import Account, CodePurpose
from .codes import consume_code, issue_code
from .contracts import AccountLocks, AccountStore, IdentityProvider, MailSender, RegisterAccountInput
from .outcomes import AuthOutcome, IdentityLookupError
from .validation import is_valid_email, is_valid_name, is_valid_password
from ..config import Settings, get_settings
from ..security.hashing import PasswordHasher, build_password_hasher

logger = logging.getLogger(__name__)


def offline_external_id(name: str) -> str:
    """Derive a stable name-based identifier for accounts without a directory entry."""
    digest = hashlib.md5(f"OfflinePlayer:{name}".encode("utf-8"), usedforsecurity=False).digest()
    return uuid.UUID(bytes=digest, version=3).hex


class AccountService:
    """Account workflows composed from the store, mail and identity collaborators."""

    def __init__(
        self,
        store: AccountStore,
        locks: AccountLocks,
        mailer: MailSender,
        identity: IdentityProvider | None = None,
        hasher: PasswordHasher | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Store dependencies used to orchestrate persistence and notifications."""
        self._store = store
        self._locks = locks
        self._mailer = mailer
        self._identity = identity
        self._settings = settings or get_settings()
        self._hasher = hasher or build_password_hasher(self._settings.password_hash_scheme)

    @property
    def code_ttl(self) -> timedelta:
        return timedelta(seconds=self._settings.verification_code_ttl_seconds)

    def register(self, payload: RegisterAccountInput) -> AuthOutcome:
        """Create a provisional account and send its activation code.

        An unverified account holding the same name (or, failing that, the same email)
        is deleted first: a new registration attempt always supersedes an abandoned one.
        Conflicts are only raised against verified accounts.
        """
        if not (
            is_valid_name(payload.name)
            and is_valid_password(payload.password)
            and is_valid_email(payload.email)
        ):
            return AuthOutcome.INVALID_FORMAT

        external_id: str | None = None
        if self._settings.use_external_identity and self._identity is not None:
            try:
                external_id = self._identity.resolve_id(payload.name)
            except IdentityLookupError as exc:
                logger.warning("identity lookup failed for %s: %s", payload.name, exc)
            if external_id is None:
                return AuthOutcome.EXTERNAL_IDENTITY_FAILED

        normalized_name = payload.name.lower()
        provisional = self._store.find_by_name(normalized_name, verified=False) or (
            self._store.find_by_email(payload.email, verified=False)
        )
        if provisional is not None:
            logger.info(
                "superseding provisional account %s (%s)", provisional.account_id, provisional.name
            )
            self._store.delete_account(provisional.account_id)

        if self._store.find_by_email(payload.email, verified=True) is not None:
            return AuthOutcome.EMAIL_TAKEN
        if self._store.find_by_name(normalized_name, verified=True) is not None:
            return AuthOutcome.NAME_TAKEN

        account = Account(
            account_id=str(uuid.uuid4()),
            name=payload.name,
            email=payload.email,
            password_hash=self._hasher.hash(payload.password),
            created_at=datetime.now(timezone.utc),
            external_id=external_id or offline_external_id(payload.name),
            verified=not self._settings.use_mail,
        )
        code = issue_code(account, CodePurpose.ACTIVATION, self.code_ttl)
        self._store.insert_account(account)

        if self._settings.use_mail:
            self._notify(self._mailer.send_activation, account.email, code.code)
        else:
            logger.info("activation code for %s is %s", account.name, code.code)
        return AuthOutcome.SUCCESS

    def verify_credentials(self, name_or_email: str, password: str) -> AuthOutcome:
        """Check a login attempt by name, falling back to email."""
        account = self._find_by_name_or_email(name_or_email)
        if account is None:
            return AuthOutcome.USER_NOT_FOUND
        if not self._hasher.verify(password, account.password_hash):
            return AuthOutcome.INVALID_PASSWORD
        if not account.verified:
            return AuthOutcome.ACCOUNT_NOT_VERIFIED
        return AuthOutcome.SUCCESS

    def activate_account(self, email: str, code: str) -> AuthOutcome:
        """Consume an activation code and mark the account verified."""
        target = self._code_holder(email, code, CodePurpose.ACTIVATION)
        if target is None:
            return AuthOutcome.USER_NOT_FOUND

        with self._mutating(target.account_id) as account:
            if account is None:
                return AuthOutcome.USER_NOT_FOUND
            outcome = consume_code(account, code, CodePurpose.ACTIVATION)
            if outcome is AuthOutcome.SUCCESS and not account.verified:
                outcome = self._verified_conflict(account)
                if outcome is AuthOutcome.SUCCESS:
                    account.verified = True
            if outcome is not AuthOutcome.CODE_NOT_FOUND:
                self._store.update_account(account)
        return outcome

    def request_password_reset(self, email: str, new_password: str) -> AuthOutcome:
        """Stage a new password and email a restore code that confirms it."""
        if not (is_valid_email(email) and is_valid_password(new_password)):
            return AuthOutcome.INVALID_FORMAT
        target = self._store.find_by_email(email)
        if target is None:
            return AuthOutcome.USER_NOT_FOUND

        with self._mutating(target.account_id) as account:
            if account is None:
                return AuthOutcome.USER_NOT_FOUND
            account.pending_password_hash = self._hasher.hash(new_password)
            code = issue_code(account, CodePurpose.RESTORE, self.code_ttl)
            self._store.update_account(account)

        self._notify(self._mailer.send_restore, account.email, code.code)
        return AuthOutcome.SUCCESS

    def request_password_reset_for(self, account_id: str, new_password: str) -> AuthOutcome:
        """Authenticated variant of :meth:`request_password_reset` keyed by account id."""
        email = self.get_email(account_id)
        if email is None:
            return AuthOutcome.USER_NOT_FOUND
        return self.request_password_reset(email, new_password)

    def confirm_password_reset(self, email: str, code: str) -> AuthOutcome:
        """Consume a restore code and promote the pending password hash."""
        target = self._code_holder(email, code, CodePurpose.RESTORE)
        if target is None:
            return AuthOutcome.USER_NOT_FOUND

        with self._mutating(target.account_id) as account:
            if account is None:
                return AuthOutcome.USER_NOT_FOUND
            outcome = consume_code(account, code, CodePurpose.RESTORE)
            if outcome is AuthOutcome.CODE_NOT_FOUND:
                return outcome
            if outcome is AuthOutcome.SUCCESS and account.pending_password_hash is not None:
                account.password_hash = account.pending_password_hash
                account.pending_password_hash = None
            self._store.update_account(account)
        return outcome

    def get_account(self, account_id: str) -> Account | None:
        """Retrieve an account by identifier."""
        return self._store.get_account(account_id)

    def get_email(self, account_id: str) -> str | None:
        account = self._store.get_account(account_id)
        return account.email if account else None

    def list_accounts(self) -> Sequence[Account]:
        return self._store.list_accounts()

    def _find_by_name_or_email(self, name_or_email: str) -> Account | None:
        return self._store.find_by_name(name_or_email.lower()) or self._store.find_by_email(
            name_or_email
        )

    def _code_holder(self, email: str, code: str, purpose: CodePurpose) -> Account | None:
        """Pick the account on ``email`` that holds ``code``; several provisional ones may share it."""
        candidates = self._store.list_by_email(email)
        for candidate in candidates:
            if any(item.code == code and item.purpose == purpose for item in candidate.verification_codes):
                return candidate
        return candidates[0] if candidates else None

    def _verified_conflict(self, account: Account) -> AuthOutcome:
        holder = self._store.find_by_email(account.email, verified=True)
        if holder is not None and holder.account_id != account.account_id:
            return AuthOutcome.EMAIL_TAKEN
        holder = self._store.find_by_name(account.normalized_name, verified=True)
        if holder is not None and holder.account_id != account.account_id:
            return AuthOutcome.NAME_TAKEN
        return AuthOutcome.SUCCESS

    @contextmanager
    def _mutating(self, account_id: str) -> Iterator[Account | None]:
        with self._locks.hold(account_id):
            yield self._store.get_account(account_id)

    def _notify(self, send: Callable[[str, str], None], email: str, code: str) -> None:
        """Deliver a code by mail; delivery problems never fail the calling workflow."""
        try:
            send(email, code)
        except Exception as exc:  # noqa: BLE001
            logger.warning("mail delivery to %s failed: %s", email, exc)
