"""
Tests for named locks used by batch anchoring.
"""

import threading
from unittest.mock import MagicMock

from scaling import create_lock_manager
from scaling.locking import RELEASE_SCRIPT, LocalLockManager, RedisLockManager


def acquire_in_thread(locks, name, timeout=0.05):
    results = []
    thread = threading.Thread(target=lambda: results.append(locks.acquire(name, timeout=timeout)))
    thread.start()
    thread.join()
    return results[0]


class TestLocalLockManager:
    def test_other_thread_times_out(self):
        locks = LocalLockManager()
        assert locks.acquire("batch:B1", timeout=1)

        assert not acquire_in_thread(locks, "batch:B1")

    def test_release_frees_for_other_threads(self):
        locks = LocalLockManager()
        locks.acquire("batch:B1")
        assert locks.release("batch:B1")

        assert acquire_in_thread(locks, "batch:B1")

    def test_reentrant_for_holder(self):
        locks = LocalLockManager()
        assert locks.acquire("batch:B1")
        assert locks.acquire("batch:B1", timeout=0)

    def test_independent_names(self):
        locks = LocalLockManager()
        locks.acquire("batch:B1")

        assert acquire_in_thread(locks, "batch:B2")

    def test_release_unheld(self):
        assert not LocalLockManager().release("batch:never")


class TestRedisLockManager:
    def test_acquire_uses_set_nx_px(self):
        client = MagicMock()
        client.set.return_value = True
        locks = RedisLockManager(key_prefix="t:lock:", client=client)

        assert locks.acquire("batch:B1", timeout=0, ttl=5)

        args, kwargs = client.set.call_args
        assert args[0] == "t:lock:batch:B1"
        assert kwargs == {"nx": True, "px": 5000}

    def test_acquire_times_out(self):
        client = MagicMock()
        client.set.return_value = None
        locks = RedisLockManager(client=client)

        assert not locks.acquire("batch:B1", timeout=0)

    def test_acquire_retries_until_free(self):
        client = MagicMock()
        client.set.side_effect = [None, None, True]
        locks = RedisLockManager(client=client)

        assert locks.acquire("batch:B1", timeout=5)
        assert client.set.call_count == 3

    def test_release_compares_token(self):
        client = MagicMock()
        client.set.return_value = True
        client.eval.return_value = 1
        locks = RedisLockManager(key_prefix="t:lock:", client=client)
        locks.acquire("batch:B1", timeout=0)
        token = client.set.call_args[0][1]

        assert locks.release("batch:B1")
        client.eval.assert_called_once_with(RELEASE_SCRIPT, 1, "t:lock:batch:B1", token)

    def test_release_without_acquire(self):
        client = MagicMock()
        assert not RedisLockManager(client=client).release("batch:B1")
        client.eval.assert_not_called()

    def test_release_of_expired_lock(self):
        client = MagicMock()
        client.set.return_value = True
        client.eval.return_value = 0
        locks = RedisLockManager(client=client)
        locks.acquire("batch:B1", timeout=0)

        assert not locks.release("batch:B1")


class TestCreateLockManager:
    def test_local(self, config):
        config.redis_url = None
        assert isinstance(create_lock_manager(config), LocalLockManager)

    def test_redis(self, config):
        config.redis_url = "redis://localhost:6379/0"
        assert isinstance(create_lock_manager(config), RedisLockManager)
