"""
Abstract base class for ledger adapters.

A ledger is the append-only external record that makes a content hash (or a
Merkle root) independently checkable. Anchoring is idempotent: anchoring a
digest twice reports ``already_anchored`` and never writes a second record.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from errors import LedgerError, LedgerUnavailableError

__all__ = [
    "AnchorReceipt",
    "LedgerAdapter",
    "LedgerError",
    "LedgerStatus",
    "LedgerUnavailableError",
    "RevocationReceipt",
]

# Approximate gas figures for a single 32-byte anchor write
BASE_GAS = 21000
DATA_GAS_PER_DIGEST = 68 * 32
BATCH_OVERHEAD_GAS = 45000


@dataclass
class AnchorReceipt:
    """Result of an anchor write."""

    digest: str
    transaction_ref: str
    already_anchored: bool = False
    anchored_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "digest": self.digest,
            "transaction_ref": self.transaction_ref,
            "already_anchored": self.already_anchored,
            "anchored_at": self.anchored_at.isoformat() if self.anchored_at else None,
        }


@dataclass
class LedgerStatus:
    """On-ledger state of a digest."""

    anchored: bool
    revoked: bool = False
    anchored_at: datetime | None = None
    issuer: str | None = None
    transaction_ref: str | None = None

    @property
    def state(self) -> str:
        if not self.anchored:
            return "not_anchored"
        return "revoked" if self.revoked else "anchored"

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "anchored": self.anchored,
            "revoked": self.revoked,
            "anchored_at": self.anchored_at.isoformat() if self.anchored_at else None,
            "issuer": self.issuer,
            "transaction_ref": self.transaction_ref,
        }


@dataclass
class RevocationReceipt:
    digest: str
    transaction_ref: str

    def to_dict(self) -> dict[str, Any]:
        return {"digest": self.digest, "transaction_ref": self.transaction_ref}


class LedgerAdapter(ABC):
    """
    Abstract base class for ledger adapters.

    Any call may raise LedgerUnavailableError when the ledger cannot be
    reached; callers on the read path degrade to an "unknown" status.
    """

    @abstractmethod
    def anchor(self, digest: str, metadata: dict[str, Any] | None = None) -> AnchorReceipt:
        """
        Record a digest on the ledger.

        Args:
            digest: 64-char hex digest (content hash or Merkle root)
            metadata: Issuer, document or batch id, leaf count

        Returns:
            AnchorReceipt (already_anchored=True on a repeat)
        """
        ...

    @abstractmethod
    def status(self, digest: str) -> LedgerStatus:
        """Look up the on-ledger state of a digest."""
        ...

    @abstractmethod
    def revoke(self, digest: str) -> RevocationReceipt:
        """
        Mark an anchored digest as revoked.

        Raises:
            LedgerError: if the digest was never anchored
        """
        ...

    @abstractmethod
    def is_available(self) -> bool:
        ...

    def estimate_cost(self, batch_size: int = 1, gas_price_gwei: float = 30.0) -> dict[str, Any]:
        """
        Estimate the write cost of anchoring ``batch_size`` documents.

        A batch costs one root write plus a fixed overhead regardless of
        size, so the per-document cost falls as the batch grows.
        """
        batch_size = max(1, batch_size)
        if batch_size == 1:
            total_gas = BASE_GAS + DATA_GAS_PER_DIGEST
        else:
            total_gas = BASE_GAS + DATA_GAS_PER_DIGEST + BATCH_OVERHEAD_GAS
        total_cost = total_gas * gas_price_gwei / 1e9
        individual_cost = batch_size * (BASE_GAS + DATA_GAS_PER_DIGEST) * gas_price_gwei / 1e9

        return {
            "batch_size": batch_size,
            "estimated_gas": total_gas,
            "gas_price_gwei": gas_price_gwei,
            "estimated_cost": round(total_cost, 9),
            "cost_per_document": round(total_cost / batch_size, 9),
            "savings_vs_individual": round(individual_cost - total_cost, 9),
        }

    def get_info(self) -> dict[str, Any]:
        return {
            "backend_type": self.__class__.__name__,
            "available": self.is_available(),
        }
