"""
DocVerify - Sliding Window Rate Limiting

Per-action, per-identity quotas with:
- Redis sorted-set sliding window (trim, count and insert in one Lua script)
- In-memory deque fallback when Redis is unavailable
- Fail-open on unexpected errors, so a limiter fault never blocks verification
- Rate limit headers (X-RateLimit-*)

Usage:
    from rate_limiter import RateLimiter, RateLimitConfig

    limiter = RateLimiter(RateLimitConfig.from_env())

    result = limiter.check_and_consume("203.0.113.7", "verify")
    if not result.allowed:
        return 429, {"retry_after": result.retry_after}

Environment Variables:
    RATE_LIMIT_BACKEND=memory|redis
    RATE_LIMIT_REQUESTS=100
    RATE_LIMIT_WINDOW=60
    RATE_LIMIT_REDIS_URL=redis://localhost:6379/0   (defaults to REDIS_URL)
    RATE_LIMIT_REDIS_PREFIX=docverify:ratelimit:
    RATE_LIMIT_<ACTION>=max/window   e.g. RATE_LIMIT_VERIFY=30/60
"""

import logging
import math
import os
import threading
import time
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable

import redis

from errors import ValidationError

logger = logging.getLogger(__name__)

# action -> (max_requests, window_seconds)
DEFAULT_ACTION_LIMITS: dict[str, tuple[int, int]] = {
    "verify": (30, 60),
    "quick_verify": (60, 60),
    "download": (10, 60),
    "issue": (20, 60),
    "update": (10, 60),
    "revoke": (10, 60),
    "list": (60, 60),
    "anchor": (5, 60),
    "proof": (60, 60),
    "ledger": (60, 60),
}

# Trim, count and conditionally insert in one round trip. Scores are
# integer milliseconds.
SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
local member = ARGV[4]

redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
local count = redis.call('ZCARD', key)
local allowed = 0
if count < limit then
    redis.call('ZADD', key, now, member)
    redis.call('PEXPIRE', key, window + 1000)
    count = count + 1
    allowed = 1
end

local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
local oldest_score = now
if oldest[2] then
    oldest_score = tonumber(oldest[2])
end
return {allowed, count, oldest_score}
"""


def parse_limit(value: str) -> tuple[int, int]:
    """Parse ``max/window`` (e.g. ``30/60``)."""
    try:
        max_requests, window = value.split("/", 1)
        parsed = int(max_requests), int(window)
    except ValueError:
        raise ValidationError(f"Rate limit must look like max/window, got {value!r}")
    if parsed[0] < 0 or parsed[1] <= 0:
        raise ValidationError(f"Rate limit out of range: {value!r}")
    return parsed


@dataclass
class RateLimitConfig:
    """Configuration for rate limiting."""

    backend: str = "memory"

    # Defaults for actions without their own limit
    requests_per_window: int = 100
    window_seconds: int = 60

    action_limits: dict[str, tuple[int, int]] = field(
        default_factory=lambda: dict(DEFAULT_ACTION_LIMITS)
    )

    redis_url: str = "redis://localhost:6379/0"
    redis_prefix: str = "docverify:ratelimit:"
    redis_timeout: float = 1.0
    redis_retry_interval: float = 30.0

    fallback_to_memory: bool = True

    @classmethod
    def from_env(cls) -> "RateLimitConfig":
        """Create configuration from environment variables."""
        action_limits = dict(DEFAULT_ACTION_LIMITS)
        for action in DEFAULT_ACTION_LIMITS:
            raw = os.getenv(f"RATE_LIMIT_{action.upper()}")
            if raw:
                action_limits[action] = parse_limit(raw)

        redis_url = os.getenv("RATE_LIMIT_REDIS_URL") or os.getenv(
            "REDIS_URL", "redis://localhost:6379/0"
        )
        default_backend = "redis" if os.getenv("REDIS_URL") else "memory"

        return cls(
            backend=os.getenv("RATE_LIMIT_BACKEND", default_backend),
            requests_per_window=int(os.getenv("RATE_LIMIT_REQUESTS", "100")),
            window_seconds=int(os.getenv("RATE_LIMIT_WINDOW", "60")),
            action_limits=action_limits,
            redis_url=redis_url,
            redis_prefix=os.getenv("RATE_LIMIT_REDIS_PREFIX", "docverify:ratelimit:"),
            redis_timeout=float(os.getenv("RATE_LIMIT_REDIS_TIMEOUT", "1.0")),
            fallback_to_memory=os.getenv("RATE_LIMIT_FALLBACK", "true").lower() == "true",
        )

    def limit_for(self, action: str) -> tuple[int, int]:
        return self.action_limits.get(action, (self.requests_per_window, self.window_seconds))


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""

    allowed: bool
    remaining: int
    limit: int
    reset_in_seconds: int  # Seconds until the oldest request leaves the window
    window_seconds: int = 60

    @property
    def exceeded(self) -> bool:
        return not self.allowed

    @property
    def retry_after(self) -> int:
        """Seconds until retry allowed (0 if allowed)."""
        return 0 if self.allowed else self.reset_in_seconds

    def to_headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(max(0, self.remaining)),
            "X-RateLimit-Reset": str(self.reset_in_seconds),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "remaining": self.remaining,
            "limit": self.limit,
            "reset_in_seconds": self.reset_in_seconds,
        }


class RateLimitStore(ABC):
    """Abstract base class for sliding-window stores."""

    @abstractmethod
    def hit(self, key: str, now: float, window_seconds: int, limit: int) -> tuple[bool, int, float]:
        """
        Trim the window, then record ``now`` if under ``limit``.

        Returns:
            (allowed, count in window after the call, oldest timestamp in window)
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        pass


class MemoryRateLimitStore(RateLimitStore):
    """
    In-memory sliding window (single instance only).

    Windows that fall idle are dropped: on the hit that empties them, and by
    a sweep at most every ``cleanup_interval`` seconds of caller time.
    """

    def __init__(self, cleanup_interval: float = 60.0):
        # key -> (timestamps, window length in seconds)
        self._windows: dict[str, tuple[deque, int]] = {}
        self._lock = threading.Lock()
        self._cleanup_interval = cleanup_interval
        self._last_cleanup: float | None = None

    def hit(self, key: str, now: float, window_seconds: int, limit: int) -> tuple[bool, int, float]:
        cutoff = now - window_seconds
        with self._lock:
            self._maybe_cleanup(now)

            window = self._windows[key][0] if key in self._windows else deque()
            while window and window[0] <= cutoff:
                window.popleft()

            allowed = len(window) < limit
            if allowed:
                window.append(now)

            if window:
                self._windows[key] = (window, window_seconds)
            else:
                self._windows.pop(key, None)

            oldest = window[0] if window else now
            return allowed, len(window), oldest

    def is_available(self) -> bool:
        return True

    def _maybe_cleanup(self, now: float) -> None:
        if self._last_cleanup is None:
            self._last_cleanup = now
        elif now - self._last_cleanup >= self._cleanup_interval:
            self._last_cleanup = now
            self._drop_idle(now)

    def _drop_idle(self, now: float) -> int:
        idle = [
            key
            for key, (window, seconds) in self._windows.items()
            if window[-1] <= now - seconds
        ]
        for key in idle:
            del self._windows[key]
        return len(idle)

    def cleanup_expired(self, now: float) -> int:
        """Drop every window whose newest hit has left it; returns how many."""
        with self._lock:
            return self._drop_idle(now)


class RedisRateLimitStore(RateLimitStore):
    """Redis sorted-set sliding window for distributed deployments."""

    def __init__(self, url: str | None = None, prefix: str = "", timeout: float = 1.0,
                 client: Any = None):
        self.prefix = prefix
        self._client = client or redis.from_url(
            url,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        self._script = self._client.register_script(SLIDING_WINDOW_SCRIPT)

    def hit(self, key: str, now: float, window_seconds: int, limit: int) -> tuple[bool, int, float]:
        now_ms = int(now * 1000)
        member = f"{now_ms}:{uuid.uuid4().hex[:8]}"
        allowed, count, oldest_ms = self._script(
            keys=[f"{self.prefix}{key}"],
            args=[now_ms, window_seconds * 1000, limit, member],
        )
        return bool(allowed), int(count), int(oldest_ms) / 1000

    def is_available(self) -> bool:
        try:
            return bool(self._client.ping())
        except (redis.RedisError, OSError):
            return False


class RateLimiter:
    """
    Sliding-window rate limiter with Redis support and memory fallback.

    Keys are ``ratelimit:{action}:{identity}``. A request is rejected
    without being recorded when the window already holds ``max_requests``
    timestamps.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        primary: RateLimitStore | None = None,
        clock: Callable[[], float] = time.time,
        on_reject: Callable[[str], None] | None = None,
    ):
        """
        Args:
            config: Limits and backend selection
            primary: Pre-built primary store (tests inject one)
            clock: Wall-clock time source in seconds
            on_reject: Called with the action name on every rejection
        """
        self.config = config or RateLimitConfig.from_env()
        self._clock = clock
        self._on_reject = on_reject
        self._fallback_store = MemoryRateLimitStore()
        self._primary_down_until = 0.0
        self._primary_store = primary or self._init_primary()

    def _init_primary(self) -> RateLimitStore:
        if self.config.backend.lower() == "redis":
            logger.info("Rate limiter: Redis primary with memory fallback")
            return RedisRateLimitStore(
                url=self.config.redis_url,
                prefix=self.config.redis_prefix,
                timeout=self.config.redis_timeout,
            )
        logger.info("Rate limiter: Memory only")
        return self._fallback_store

    def _hit(self, key: str, now: float, window: int, limit: int) -> tuple[bool, int, float]:
        primary = self._primary_store
        if primary is self._fallback_store or now < self._primary_down_until:
            return self._fallback_store.hit(key, now, window, limit)

        try:
            return primary.hit(key, now, window, limit)
        except (redis.RedisError, OSError) as e:
            if not self.config.fallback_to_memory:
                raise
            logger.warning("Redis rate limit store unavailable (%s); using memory", e)
            self._primary_down_until = now + self.config.redis_retry_interval
            return self._fallback_store.hit(key, now, window, limit)

    def check_and_consume(
        self,
        identity: str,
        action: str,
        max_requests: int | None = None,
        window_seconds: int | None = None,
    ) -> RateLimitResult:
        """
        Check the caller's quota for an action and consume one slot if allowed.

        Args:
            identity: Caller identity (API key or client IP)
            action: Action name (selects the configured limit)
            max_requests: Override for the action's limit
            window_seconds: Override for the action's window

        Returns:
            RateLimitResult
        """
        default_max, default_window = self.config.limit_for(action)
        limit = default_max if max_requests is None else max_requests
        window = default_window if window_seconds is None else window_seconds
        key = f"ratelimit:{action}:{identity}"

        try:
            now = self._clock()
            allowed, count, oldest = self._hit(key, now, window, limit)
        except Exception:
            # Fail open
            logger.exception("Rate limit check failed for action %s", action)
            return RateLimitResult(
                allowed=True, remaining=limit, limit=limit,
                reset_in_seconds=window, window_seconds=window,
            )

        reset_in = max(1, math.ceil(oldest + window - now))
        result = RateLimitResult(
            allowed=allowed,
            remaining=max(0, limit - count) if allowed else 0,
            limit=limit,
            reset_in_seconds=reset_in,
            window_seconds=window,
        )

        if not allowed:
            logger.info("Rate limit exceeded: action=%s retry_after=%ds", action, reset_in)
            if self._on_reject:
                self._on_reject(action)

        return result

    def is_healthy(self) -> dict[str, Any]:
        primary_available = self._primary_store.is_available()
        return {
            "backend": self.config.backend,
            "primary_available": primary_available,
            "effective_backend": "primary" if primary_available else "fallback",
        }


def create_rate_limit_response(result: RateLimitResult) -> tuple[dict, int, dict]:
    """
    Create a Flask-compatible rate limit exceeded response.

    Returns:
        Tuple of (body, status_code, headers)
    """
    body = {
        "error": "Too many requests",
        "kind": "rate_limited",
        "remaining": result.remaining,
        "reset_in_seconds": result.reset_in_seconds,
    }

    headers = result.to_headers()
    headers["Retry-After"] = str(result.retry_after)

    return body, 429, headers
