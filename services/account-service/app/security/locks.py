"""In-process per-account mutual exclusion."""

from __future__ import annotations

from contextlib import contextmanager
from threading import Lock
from typing import Dict, Iterator


class InMemoryAccountLocks:
    """Thread-safe keyed locks; entries are dropped once no holder or waiter remains."""

    def __init__(self) -> None:
        """Initialise per-key lock storage and the guard protecting it."""
        self._locks: Dict[str, Lock] = {}
        self._users: Dict[str, int] = {}
        self._guard = Lock()

    @contextmanager
    def hold(self, account_id: str) -> Iterator[None]:
        """Block until the account lock is acquired and release it on exit."""
        with self._guard:
            lock = self._locks.setdefault(account_id, Lock())
            self._users[account_id] = self._users.get(account_id, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[account_id] -= 1
                if self._users[account_id] == 0:
                    del self._users[account_id]
                    del self._locks[account_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
