"""Redis-backed per-account locks shared by every service replica."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from redis import Redis
from redis.exceptions import LockError

from ..domain.outcomes import AccountStateError


class RedisAccountLocks:
    """Distributed account locks implemented with redis-py's token-based ``Lock``."""

    def __init__(
        self,
        client: Redis,
        *,
        timeout_seconds: int,
        blocking_timeout_seconds: float | None = None,
        key_prefix: str = "account-lock"
    ) -> None:
        """Store the Redis client and lock expiry configuration."""
        self._client = client
        self._timeout = timeout_seconds
        self._blocking_timeout = (
            blocking_timeout_seconds if blocking_timeout_seconds is not None else float(timeout_seconds)
        )
        self._key_prefix = key_prefix

    @contextmanager
    def hold(self, account_id: str) -> Iterator[None]:
        """Acquire the account lock, failing when it cannot be taken within the blocking timeout."""
        lock = self._client.lock(
            f"{self._key_prefix}:{account_id}",
            timeout=self._timeout,
            blocking_timeout=self._blocking_timeout,
        )
        if not lock.acquire():
            raise AccountStateError(f"could not lock account {account_id}")
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError as exc:
                # the lock expired while held; another writer may have interleaved
                raise AccountStateError(f"lock for account {account_id} expired while held") from exc
