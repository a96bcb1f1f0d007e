"""
Backoff and circuit breaking for DocVerify's external collaborators.

Two callers use this module:
- The HTTP ledger client retries idempotent writes (anchor, revoke) through
  a per-gateway CircuitBreaker, so an outage fails fast instead of stacking
  retries onto every request.
- The PostgreSQL store retries pool creation at startup.

Usage:
    from retry import CircuitBreaker, RetryConfig, retry_call, retry_with_backoff

    breaker = CircuitBreaker.from_config("ledger", config.retry)
    response = retry_call(post_anchor, args=(digest,), config=config.retry,
                          circuit_breaker=breaker)

    @retry_with_backoff(max_retries=2, retryable_exceptions=(psycopg2.OperationalError,))
    def connect():
        ...

Environment Variables:
    RETRY_MAX_ATTEMPTS=3
    RETRY_BASE_DELAY=0.5
    RETRY_MAX_DELAY=10.0
    RETRY_EXPONENTIAL_BASE=2.0
    RETRY_JITTER=0.1
    CIRCUIT_BREAKER_THRESHOLD=5
    CIRCUIT_BREAKER_TIMEOUT=30.0
"""

import logging
import os
import random
import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from functools import wraps
from typing import Any, Callable

logger = logging.getLogger(__name__)


class CircuitOpenError(ConnectionError):
    """The breaker is open; the collaborator was not called."""


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class RetryConfig:
    """Attempts, backoff curve and breaker thresholds."""

    max_retries: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    exponential_base: float = 2.0
    jitter: float = 0.1
    retryable_exceptions: tuple = (ConnectionError, TimeoutError, OSError)

    circuit_breaker_threshold: int = 5
    circuit_breaker_timeout: float = 30.0

    @classmethod
    def from_env(cls) -> "RetryConfig":
        return cls(
            max_retries=int(os.getenv("RETRY_MAX_ATTEMPTS", "3")),
            base_delay=float(os.getenv("RETRY_BASE_DELAY", "0.5")),
            max_delay=float(os.getenv("RETRY_MAX_DELAY", "10.0")),
            exponential_base=float(os.getenv("RETRY_EXPONENTIAL_BASE", "2.0")),
            jitter=float(os.getenv("RETRY_JITTER", "0.1")),
            circuit_breaker_threshold=int(os.getenv("CIRCUIT_BREAKER_THRESHOLD", "5")),
            circuit_breaker_timeout=float(os.getenv("CIRCUIT_BREAKER_TIMEOUT", "30.0")),
        )

    def delay_for(self, attempt: int) -> float:
        """
        Sleep before retry number ``attempt + 1``.

        Grows by ``exponential_base`` per attempt up to ``max_delay``, then
        moves by up to ``jitter`` of itself in either direction.
        """
        delay = min(self.base_delay * self.exponential_base ** attempt, self.max_delay)
        if self.jitter > 0:
            delay *= 1 + self.jitter * random.uniform(-1, 1)
        return max(0.0, delay)


class CircuitBreaker:
    """
    Failure counter guarding one collaborator.

    ``failure_threshold`` consecutive failures open the circuit. After
    ``recovery_timeout`` seconds one trial call is let through (HALF_OPEN);
    its outcome closes or re-opens the circuit.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0

    @classmethod
    def from_config(cls, name: str, config: RetryConfig) -> "CircuitBreaker":
        return cls(
            name,
            failure_threshold=config.circuit_breaker_threshold,
            recovery_timeout=config.circuit_breaker_timeout,
        )

    def _transition(self, state: CircuitState) -> None:
        logger.info("Circuit %s: %s -> %s", self.name, self._state.value, state.value)
        self._state = state

    @property
    def state(self) -> CircuitState:
        with self._lock:
            if (
                self._state is CircuitState.OPEN
                and self._clock() - self._opened_at >= self.recovery_timeout
            ):
                self._transition(CircuitState.HALF_OPEN)
            return self._state

    def is_allowed(self) -> bool:
        return self.state is not CircuitState.OPEN

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            if self._state is CircuitState.HALF_OPEN:
                self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            tripped = (
                self._state is CircuitState.HALF_OPEN
                or (self._state is CircuitState.CLOSED and self._failures >= self.failure_threshold)
            )
            if tripped:
                self._opened_at = self._clock()
                logger.warning("Circuit %s open after %d failures", self.name, self._failures)
                self._transition(CircuitState.OPEN)


def retry_call(
    func: Callable,
    args: tuple = (),
    kwargs: dict | None = None,
    config: RetryConfig | None = None,
    circuit_breaker: CircuitBreaker | None = None,
    sleep: Callable[[float], None] | None = None,
) -> Any:
    """
    Call ``func`` until it succeeds, fails with a non-retryable error, or
    runs out of attempts.

    Args:
        func: Callable to invoke
        args: Positional arguments for func
        kwargs: Keyword arguments for func
        config: Attempts and backoff (RetryConfig() when omitted)
        circuit_breaker: Breaker consulted before, and fed after, each attempt
        sleep: Delay function (time.sleep when omitted)

    Raises:
        CircuitOpenError: the breaker refused an attempt
        The last error from func once attempts are exhausted
    """
    config = config or RetryConfig()
    kwargs = kwargs or {}
    sleep = sleep or time.sleep
    name = getattr(func, "__name__", repr(func))

    attempt = 0
    while True:
        if circuit_breaker is not None and not circuit_breaker.is_allowed():
            raise CircuitOpenError(f"Circuit breaker {circuit_breaker.name} is open")

        try:
            result = func(*args, **kwargs)
        except config.retryable_exceptions as e:
            if isinstance(e, CircuitOpenError):
                raise
            if circuit_breaker is not None:
                circuit_breaker.record_failure()
            if attempt >= config.max_retries:
                logger.warning("%s failed after %d attempts: %s", name, attempt + 1, e)
                raise

            delay = config.delay_for(attempt)
            attempt += 1
            logger.warning(
                "Retry %d/%d for %s in %.2fs: %s", attempt, config.max_retries, name, delay, e
            )
            sleep(delay)
            continue

        if circuit_breaker is not None:
            circuit_breaker.record_success()
        return result


def retry_with_backoff(config: RetryConfig | None = None, **overrides):
    """
    Decorator form of retry_call without a breaker.

    ``overrides`` replace fields of ``config`` (e.g. ``max_retries=2``,
    ``retryable_exceptions=(psycopg2.OperationalError,)``).
    """
    config = replace(config or RetryConfig(), **overrides)

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            return retry_call(func, args=args, kwargs=kwargs, config=config)

        return wrapper

    return decorator
