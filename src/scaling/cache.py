"""
Cache backends for DocVerify.

- LocalCache: In-memory cache for single-instance deployments
- RedisCache: Shared cache using Redis for multi-instance deployments
- TieredCache: Redis with an in-process fallback while Redis is unreachable

Usage:
    from scaling import create_cache

    cache = create_cache(config)

    cache.set("verify:DOC-1A2B3C4D", payload, ttl=300)
    payload = cache.get("verify:DOC-1A2B3C4D")
    cache.delete("verify:DOC-1A2B3C4D")
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

import redis

logger = logging.getLogger(__name__)

# Errors that mean "the durable tier is not reachable right now"
DURABLE_ERRORS = (redis.RedisError, OSError)


@dataclass
class CacheEntry:
    """A cache entry with value and expiration."""
    value: Any
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        if self.expires_at is None:
            return False
        return now >= self.expires_at


class Cache(ABC):
    """
    Key-value cache with per-entry TTLs.

    Backends implement get, set, delete and exists; ping and get_stats default to
    "always reachable" and "nothing to report".
    """

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a value from the cache.

        Args:
            key: Cache key
            default: Value to return if key not found

        Returns:
            Cached value or default
        """
        pass

    @abstractmethod
    def set(self, key: str, value: Any, ttl: float | None = None) -> bool:
        """
        Set a value in the cache.

        Args:
            key: Cache key
            value: Value to cache (must be JSON-serializable)
            ttl: Time-to-live in seconds (None = backend default)

        Returns:
            True if successful
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """
        Delete a value from the cache.

        Returns:
            True if key existed and was deleted
        """
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        pass

    def ping(self) -> bool:
        """Check the backend is reachable."""
        return True

    def get_stats(self) -> dict[str, Any]:
        return {}


class LocalCache(Cache):
    """
    In-memory cache for single-instance deployments.

    Thread-safe. Expired entries are dropped when touched and swept lazily
    every ``cleanup_interval`` seconds; the oldest entries are evicted first
    when the cache is full.
    """

    def __init__(
        self,
        max_size: int = 10000,
        cleanup_interval: float = 60.0,
        default_ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize local cache.

        Args:
            max_size: Maximum number of entries
            cleanup_interval: Seconds between sweeps of expired entries
            default_ttl: TTL used when set() is called without one
            clock: Monotonic time source (injectable for tests)
        """
        self._cache: dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._clock = clock
        self._hits = 0
        self._misses = 0
        self._cleanup_interval = cleanup_interval
        self._last_cleanup = clock()

    def _maybe_cleanup(self, force: bool = False) -> None:
        now = self._clock()
        if not force and now - self._last_cleanup < self._cleanup_interval:
            return

        self._last_cleanup = now
        expired = [k for k, v in self._cache.items() if v.is_expired(now)]
        for key in expired:
            self._cache.pop(key, None)

    def _evict_if_needed(self) -> None:
        if len(self._cache) < self._max_size:
            return

        self._maybe_cleanup(force=True)

        # Still full: FIFO
        while len(self._cache) >= self._max_size:
            oldest = next(iter(self._cache))
            del self._cache[oldest]

    def _live_entry(self, key: str) -> CacheEntry | None:
        entry = self._cache.get(key)
        if entry is not None and entry.is_expired(self._clock()):
            del self._cache[key]
            return None
        return entry

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            self._maybe_cleanup()
            entry = self._live_entry(key)

            if entry is None:
                self._misses += 1
                return default

            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> bool:
        with self._lock:
            if key not in self._cache:
                self._evict_if_needed()

            ttl = self._default_ttl if ttl is None else ttl
            expires_at = self._clock() + ttl if ttl else None

            self._cache[key] = CacheEntry(value=value, expires_at=expires_at)
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._cache.pop(key, None) is not None

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._live_entry(key) is not None

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "type": "LocalCache",
                "size": len(self._cache),
                "max_size": self._max_size,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total > 0 else 0,
            }


class RedisCache(Cache):
    """
    Shared cache using Redis.

    Values are stored as JSON with a millisecond TTL (SET PX). Redis errors
    propagate; TieredCache is what turns them into a fallback.
    """

    def __init__(
        self,
        redis_url: str | None = None,
        key_prefix: str = "docverify:cache:",
        default_ttl: float = 3600.0,
        socket_timeout: float = 2.0,
        client: Any = None,
    ):
        """
        Initialize Redis cache.

        Args:
            redis_url: Redis connection URL
            key_prefix: Prefix for cache keys
            default_ttl: Default TTL for entries without explicit TTL
            socket_timeout: Connect and command timeout in seconds
            client: Pre-built Redis client (tests inject a mock)
        """
        self._redis = client or redis.from_url(
            redis_url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._key_prefix = key_prefix
        self._default_ttl = default_ttl

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    def get(self, key: str, default: Any = None) -> Any:
        data = self._redis.get(self._key(key))
        if data is None:
            return default
        try:
            return json.loads(data)
        except (json.JSONDecodeError, TypeError, UnicodeDecodeError):
            return default

    def set(self, key: str, value: Any, ttl: float | None = None) -> bool:
        try:
            data = json.dumps(value)
        except (TypeError, ValueError):
            logger.warning("Value for %s is not JSON-serializable; not cached", key)
            return False

        if ttl is None:
            ttl = self._default_ttl

        if ttl:
            self._redis.set(self._key(key), data, px=max(1, int(ttl * 1000)))
        else:
            self._redis.set(self._key(key), data)
        return True

    def delete(self, key: str) -> bool:
        return self._redis.delete(self._key(key)) > 0

    def exists(self, key: str) -> bool:
        return self._redis.exists(self._key(key)) > 0

    def ping(self) -> bool:
        return bool(self._redis.ping())

    def get_stats(self) -> dict[str, Any]:
        info = self._redis.info("stats")
        return {
            "type": "RedisCache",
            "hits": info.get("keyspace_hits", 0),
            "misses": info.get("keyspace_misses", 0),
        }

    def close(self):
        self._redis.close()


class TieredCache(Cache):
    """
    Durable cache with an in-process fallback.

    A reachability flag picks the tier for each call. When the durable
    tier raises, the flag flips and the call (and every call after it) is
    served by the local tier until a PING succeeds, which is attempted at
    most once per ``retry_interval`` seconds. Entries written to one tier
    are never copied to the other.
    """

    def __init__(
        self,
        durable: Cache,
        local: LocalCache | None = None,
        retry_interval: float = 30.0,
        on_fallback: Callable[[], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.durable = durable
        self.local = local or LocalCache()
        self.retry_interval = retry_interval
        self._on_fallback = on_fallback
        self._clock = clock
        self._lock = threading.Lock()
        self._durable_ok = True
        self._down_since = 0.0

    @property
    def durable_available(self) -> bool:
        return self._durable_ok

    def _mark_down(self, error: Exception) -> None:
        with self._lock:
            was_ok = self._durable_ok
            self._durable_ok = False
            self._down_since = self._clock()
        if was_ok:
            logger.warning(
                "Durable cache unreachable (%s); using in-process cache",
                error.__class__.__name__,
            )
            if self._on_fallback:
                self._on_fallback()

    def _durable_usable(self) -> bool:
        if self._durable_ok:
            return True
        if self._clock() - self._down_since < self.retry_interval:
            return False
        try:
            self.durable.ping()
        except DURABLE_ERRORS as e:
            self._mark_down(e)
            return False
        with self._lock:
            self._durable_ok = True
        logger.info("Durable cache reachable again")
        return True

    def _call(self, op: str, *args) -> Any:
        if self._durable_usable():
            try:
                return getattr(self.durable, op)(*args)
            except DURABLE_ERRORS as e:
                self._mark_down(e)
        return getattr(self.local, op)(*args)

    def get(self, key: str, default: Any = None) -> Any:
        return self._call("get", key, default)

    def set(self, key: str, value: Any, ttl: float | None = None) -> bool:
        return self._call("set", key, value, ttl)

    def delete(self, key: str) -> bool:
        return self._call("delete", key)

    def exists(self, key: str) -> bool:
        return self._call("exists", key)

    def ping(self) -> bool:
        return self._durable_usable()

    def get_stats(self) -> dict[str, Any]:
        stats = {
            "type": "TieredCache",
            "durable_available": self._durable_ok,
            "local": self.local.get_stats(),
        }
        if self._durable_ok:
            try:
                stats["durable"] = self.durable.get_stats()
            except DURABLE_ERRORS as e:
                self._mark_down(e)
        return stats
