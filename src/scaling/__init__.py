"""
Shared-state infrastructure for DocVerify.

This package provides the pieces that let several API instances share work:
- Cache abstraction with a Redis tier and an in-process fallback
- Named locks for single-writer batch anchoring

Usage:
    from scaling import create_cache, create_lock_manager

    cache = create_cache(config)
    cache.set("verify:DOC-1A2B3C4D", payload, ttl=300)

    locks = create_lock_manager(config)
    if locks.acquire("batch:BATCH-1", timeout=10):
        ...
"""

from typing import Callable

from scaling.cache import Cache, LocalCache, RedisCache, TieredCache
from scaling.locking import LocalLockManager, LockManager, RedisLockManager

__all__ = [
    "Cache",
    "LocalCache",
    "LocalLockManager",
    "LockManager",
    "RedisCache",
    "RedisLockManager",
    "TieredCache",
    "create_cache",
    "create_lock_manager",
]


def create_cache(config, on_fallback: Callable[[], None] | None = None) -> Cache:
    """
    Build the configured cache.

    Uses Redis with an in-process fallback if REDIS_URL is set, otherwise a
    local in-memory cache.
    """
    local = LocalCache(default_ttl=config.cache_default_ttl)
    if not config.redis_url:
        return local

    durable = RedisCache(
        config.redis_url,
        key_prefix=f"{config.cache_prefix}cache:",
        default_ttl=config.cache_default_ttl,
        socket_timeout=config.redis_timeout,
    )
    return TieredCache(
        durable,
        local,
        retry_interval=config.cache_retry_interval,
        on_fallback=on_fallback,
    )


def create_lock_manager(config) -> LockManager:
    """
    Build the configured lock manager.

    Uses Redis for distributed locking if REDIS_URL is set, otherwise
    threading locks.
    """
    if config.redis_url:
        return RedisLockManager(
            config.redis_url,
            key_prefix=f"{config.cache_prefix}lock:",
            socket_timeout=config.redis_timeout,
        )
    return LocalLockManager()
