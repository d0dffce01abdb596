"""Issue and consume short-lived verification codes on an account aggregate.

These helpers only mutate the in-memory aggregate; persisting the result is the
caller's job.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from .account import Account, CodePurpose, VerificationCode
from .outcomes import AuthOutcome
from ..security.hashing import generate_opaque_code


def issue_code(
    account: Account,
    purpose: CodePurpose,
    ttl: timedelta,
    *,
    now: datetime | None = None,
) -> VerificationCode:
    """Append a new code expiring at ``now + ttl``; earlier codes stay valid."""
    now = now or datetime.now(timezone.utc)
    code = VerificationCode(
        code=generate_opaque_code(now.isoformat()),
        expires_at=now + ttl,
        purpose=purpose,
    )
    account.verification_codes.append(code)
    return code


def consume_code(
    account: Account,
    code: str,
    purpose: CodePurpose | None = None,
    *,
    now: datetime | None = None,
) -> AuthOutcome:
    """Remove ``code`` from the account and report whether it was still valid.

    An expired code is removed as well so it cannot be replayed. When ``purpose`` is
    given, codes issued for another purpose are treated as absent.
    """
    now = now or datetime.now(timezone.utc)
    match = next(
        (
            candidate
            for candidate in account.verification_codes
            if candidate.code == code and (purpose is None or candidate.purpose == purpose)
        ),
        None,
    )
    if match is None:
        return AuthOutcome.CODE_NOT_FOUND
    account.verification_codes.remove(match)
    if match.is_expired(now):
        return AuthOutcome.CODE_EXPIRED
    return AuthOutcome.SUCCESS
