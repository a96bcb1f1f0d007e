"""
In-memory ledger.

Used for development, tests and single-process demos. Supports simulated
outages and artificial latency so callers' degradation paths can be
exercised.
"""

import hashlib
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from errors import LedgerError, LedgerUnavailableError
from fingerprint import normalize_digest
from ledger.base import AnchorReceipt, LedgerAdapter, LedgerStatus, RevocationReceipt
from models import utcnow


@dataclass
class _Entry:
    transaction_ref: str
    anchored_at: datetime
    issuer: str | None
    metadata: dict[str, Any]
    revoked: bool = False


class InMemoryLedger(LedgerAdapter):
    """Thread-safe dict-backed ledger."""

    def __init__(self, latency: float = 0.0):
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._available = True
        self._sequence = 0
        self.latency = latency
        self.write_count = 0

    def set_available(self, available: bool) -> None:
        """Simulate an outage (False) or recovery (True)."""
        self._available = available

    def _check(self) -> None:
        if self.latency:
            time.sleep(self.latency)
        if not self._available:
            raise LedgerUnavailableError("Ledger unavailable")

    def _next_ref(self, digest: str) -> str:
        self._sequence += 1
        return "0x" + hashlib.sha256(f"{digest}:{self._sequence}".encode()).hexdigest()

    def anchor(self, digest: str, metadata: dict[str, Any] | None = None) -> AnchorReceipt:
        digest = normalize_digest(digest)
        self._check()
        with self._lock:
            existing = self._entries.get(digest)
            if existing is not None:
                return AnchorReceipt(
                    digest=digest,
                    transaction_ref=existing.transaction_ref,
                    already_anchored=True,
                    anchored_at=existing.anchored_at,
                )
            metadata = dict(metadata or {})
            entry = _Entry(
                transaction_ref=self._next_ref(digest),
                anchored_at=utcnow(),
                issuer=metadata.get("issuer"),
                metadata=metadata,
            )
            self._entries[digest] = entry
            self.write_count += 1
            return AnchorReceipt(
                digest=digest,
                transaction_ref=entry.transaction_ref,
                anchored_at=entry.anchored_at,
            )

    def status(self, digest: str) -> LedgerStatus:
        digest = normalize_digest(digest)
        self._check()
        with self._lock:
            entry = self._entries.get(digest)
            if entry is None:
                return LedgerStatus(anchored=False)
            return LedgerStatus(
                anchored=True,
                revoked=entry.revoked,
                anchored_at=entry.anchored_at,
                issuer=entry.issuer,
                transaction_ref=entry.transaction_ref,
            )

    def revoke(self, digest: str) -> RevocationReceipt:
        digest = normalize_digest(digest)
        self._check()
        with self._lock:
            entry = self._entries.get(digest)
            if entry is None:
                raise LedgerError("Digest is not anchored")
            if not entry.revoked:
                entry.revoked = True
                self.write_count += 1
            return RevocationReceipt(digest=digest, transaction_ref=self._next_ref(digest))

    def is_available(self) -> bool:
        return self._available

    def get_info(self) -> dict[str, Any]:
        info = super().get_info()
        with self._lock:
            info["anchored_count"] = len(self._entries)
        return info
