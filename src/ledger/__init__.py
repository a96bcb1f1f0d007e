"""
Ledger adapters for DocVerify.

- InMemoryLedger: development and tests (outage/latency simulation)
- HttpLedgerAdapter: production, via a ledger gateway

Usage:
    from ledger import create_ledger

    ledger = create_ledger(config)
    receipt = ledger.anchor(content_hash, {"issuer": "registrar"})
"""

from errors import ValidationError
from ledger.base import AnchorReceipt, LedgerAdapter, LedgerStatus, RevocationReceipt
from ledger.memory import InMemoryLedger

__all__ = [
    "AnchorReceipt",
    "InMemoryLedger",
    "LedgerAdapter",
    "LedgerStatus",
    "RevocationReceipt",
    "create_ledger",
]


def create_ledger(config) -> LedgerAdapter:
    """
    Build the configured ledger adapter.

    Args:
        config: DocVerifyConfig (uses ledger_backend, ledger_url,
            ledger_api_key, ledger_timeout, retry)
    """
    backend = config.ledger_backend.lower()

    if backend == "memory":
        return InMemoryLedger()

    if backend == "http":
        if not config.ledger_url:
            raise ValidationError("LEDGER_URL is required for the http ledger")
        from ledger.http import HttpLedgerAdapter

        return HttpLedgerAdapter(
            config.ledger_url,
            api_key=config.ledger_api_key,
            timeout=config.ledger_timeout,
            retry_config=config.retry,
        )

    raise ValidationError(f"Unknown ledger backend: {backend}")
