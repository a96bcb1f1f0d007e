"""
Named locks for DocVerify.

Batch anchoring is single-writer per batch id; these managers provide that
guarantee within one process (LocalLockManager) or across API instances
sharing a Redis (RedisLockManager).

Usage:
    from scaling import create_lock_manager

    locks = create_lock_manager(config)

    if locks.acquire(f"batch:{batch_id}", timeout=10):
        try:
            anchor()
        finally:
            locks.release(f"batch:{batch_id}")
"""

import threading
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any

import redis

# Delete the key only if it still holds our token
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockManager(ABC):
    """Abstract base class for lock managers."""

    @abstractmethod
    def acquire(self, name: str, timeout: float = 30.0, ttl: float = 60.0) -> bool:
        """
        Acquire a named lock.

        Args:
            name: Lock identifier
            timeout: Maximum time to wait for lock (seconds)
            ttl: Lock time-to-live (auto-release after this time)

        Returns:
            True if lock acquired, False if timeout
        """
        pass

    @abstractmethod
    def release(self, name: str) -> bool:
        """
        Release a named lock.

        Returns:
            True if lock was held and released, False otherwise
        """
        pass


class LocalLockManager(LockManager):
    """
    Thread-based lock manager for single-instance deployments.

    Locks are reentrant for the holding thread and have no expiry; ttl is
    accepted for interface compatibility.
    """

    def __init__(self):
        self._locks: dict[str, threading.RLock] = {}
        self._meta_lock = threading.Lock()

    def _get_lock(self, name: str) -> threading.RLock:
        with self._meta_lock:
            return self._locks.setdefault(name, threading.RLock())

    def acquire(self, name: str, timeout: float = 30.0, ttl: float = 60.0) -> bool:
        return self._get_lock(name).acquire(timeout=timeout)

    def release(self, name: str) -> bool:
        try:
            self._get_lock(name).release()
        except RuntimeError:
            # Not held by this thread
            return False
        return True


class RedisLockManager(LockManager):
    """
    Distributed lock manager using Redis.

    SET NX PX acquires atomically with a TTL so a crashed holder cannot
    wedge a batch id forever; release is a compare-and-delete Lua script.
    """

    def __init__(
        self,
        redis_url: str | None = None,
        key_prefix: str = "docverify:lock:",
        socket_timeout: float = 2.0,
        client: Any = None,
    ):
        """
        Args:
            redis_url: Redis connection URL
            key_prefix: Prefix for lock keys in Redis
            socket_timeout: Connect and command timeout in seconds
            client: Pre-built Redis client (tests inject a mock)
        """
        self._redis = client or redis.from_url(
            redis_url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._key_prefix = key_prefix
        self._instance_id = uuid.uuid4().hex
        self._tokens: dict[str, str] = {}
        self._tokens_lock = threading.Lock()

    def _key(self, name: str) -> str:
        return f"{self._key_prefix}{name}"

    def acquire(self, name: str, timeout: float = 30.0, ttl: float = 60.0) -> bool:
        key = self._key(name)
        token = f"{self._instance_id}:{threading.get_ident()}"
        deadline = time.monotonic() + timeout
        delay = 0.05

        while not self._redis.set(key, token, nx=True, px=int(ttl * 1000)):
            if time.monotonic() >= deadline:
                return False
            time.sleep(delay)
            delay = min(delay * 1.5, 0.5)

        with self._tokens_lock:
            self._tokens[name] = token
        return True

    def release(self, name: str) -> bool:
        with self._tokens_lock:
            token = self._tokens.pop(name, None)

        if not token:
            return False

        return bool(self._redis.eval(RELEASE_SCRIPT, 1, self._key(name), token))

    def close(self):
        self._redis.close()
