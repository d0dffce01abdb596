"""Tests for the in-memory and Redis-backed account locks."""

from __future__ import annotations

import threading
import time

import fakeredis
import pytest

from app.domain.outcomes import AccountStateError
from app.security.locks import InMemoryAccountLocks
from app.security.redis_locks import RedisAccountLocks


@pytest.fixture()
def redis_client() -> fakeredis.FakeStrictRedis:
    client = fakeredis.FakeStrictRedis()
    client.flushall()
    return client


def test_in_memory_locks_serialise_same_account():
    locks = InMemoryAccountLocks()
    events: list[str] = []
    entered = threading.Event()

    def worker() -> None:
        entered.set()
        with locks.hold("acc-1"):
            events.append("worker")

    with locks.hold("acc-1"):
        thread = threading.Thread(target=worker)
        thread.start()
        entered.wait()
        time.sleep(0.05)
        events.append("main")
    thread.join(timeout=1)

    assert events == ["main", "worker"]


def test_in_memory_locks_do_not_block_other_accounts():
    locks = InMemoryAccountLocks()
    with locks.hold("acc-1"):
        with locks.hold("acc-2"):
            assert len(locks) == 2


def test_in_memory_locks_release_entries():
    locks = InMemoryAccountLocks()
    with locks.hold("acc-1"):
        pass
    assert len(locks) == 0


def test_in_memory_locks_release_on_error():
    locks = InMemoryAccountLocks()
    with pytest.raises(RuntimeError):
        with locks.hold("acc-1"):
            raise RuntimeError("boom")
    with locks.hold("acc-1"):
        pass
    assert len(locks) == 0


def test_redis_locks_hold_key_while_inside(redis_client):
    locks = RedisAccountLocks(redis_client, timeout_seconds=5, key_prefix="test")

    with locks.hold("acc-1"):
        assert redis_client.exists("test:acc-1")
    assert not redis_client.exists("test:acc-1")


def test_redis_locks_fail_when_contended(redis_client):
    holder = RedisAccountLocks(redis_client, timeout_seconds=5, key_prefix="test")
    waiter = RedisAccountLocks(
        redis_client, timeout_seconds=5, blocking_timeout_seconds=0.1, key_prefix="test"
    )

    with holder.hold("acc-1"):
        with pytest.raises(AccountStateError):
            with waiter.hold("acc-1"):
                pass
        with waiter.hold("acc-2"):
            pass


def test_redis_lock_expiry_while_held_is_reported(redis_client):
    locks = RedisAccountLocks(redis_client, timeout_seconds=1, key_prefix="test")

    with pytest.raises(AccountStateError):
        with locks.hold("acc-1"):
            redis_client.delete("test:acc-1")
