"""
Pytest configuration and shared fixtures for DocVerify tests.

This module provides shared fixtures including:
- In-memory record store, ledger, cache and locks
- A fully wired DocVerifyService with generous rate limits
- Flask app and test clients bound to that service, with and without an
  issuer API key
- A controllable clock for TTL and window tests
"""

import os
import sys

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from api import create_app
from config import DocVerifyConfig
from ledger.memory import InMemoryLedger
from monitoring.metrics import MetricsCollector
from rate_limiter import DEFAULT_ACTION_LIMITS, RateLimitConfig, RateLimiter
from records.memory import MemoryRecordStore
from scaling.cache import LocalCache
from scaling.locking import LocalLockManager
from service import DocVerifyService


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryRecordStore()


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def cache():
    return LocalCache()


@pytest.fixture
def locks():
    return LocalLockManager()


@pytest.fixture
def issuer_key():
    return "issuer-key-test"


@pytest.fixture
def config(issuer_key):
    """Memory backends everywhere, limits high enough never to trigger."""
    return DocVerifyConfig(
        ledger_timeout=1.0,
        api_keys=(issuer_key,),
        rate_limit=RateLimitConfig(
            requests_per_window=10000,
            action_limits={action: (10000, 60) for action in DEFAULT_ACTION_LIMITS},
        ),
    )


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def service(store, ledger, cache, locks, config, metrics):
    svc = DocVerifyService(
        store=store,
        ledger=ledger,
        cache=cache,
        locks=locks,
        limiter=RateLimiter(config.rate_limit),
        config=config,
        metrics=metrics,
    )
    yield svc
    svc.close()


@pytest.fixture
def flask_app(service):
    app = create_app(service=service)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(flask_app, issuer_key):
    """Test client sending the issuer API key on every request."""
    test_client = flask_app.test_client()
    test_client.environ_base["HTTP_X_API_KEY"] = issuer_key
    return test_client


@pytest.fixture
def anonymous_client(flask_app):
    return flask_app.test_client()
