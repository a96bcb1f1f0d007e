"""
Abstract base class for record stores.

This module defines the interface every document/batch store must
implement. Counter updates go through the store's own atomic primitive so
concurrent verifications of one document never lose an increment.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from errors import (
    BatchExistsError,
    DuplicateRecordError,
    RecordNotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from models import ACCESS_TOUCHES, COUNTER_FIELDS, TIMESTAMP_FIELDS, BatchAnchor, DocumentRecord

__all__ = [
    "BatchExistsError",
    "DuplicateRecordError",
    "RecordNotFoundError",
    "RecordStore",
    "StoreUnavailableError",
    "check_counter",
    "check_timestamp_field",
]


def check_counter(counter: str) -> str:
    """Whitelist counter names (they are interpolated into SQL)."""
    if counter not in COUNTER_FIELDS:
        raise ValidationError(f"Unknown counter: {counter}")
    return counter


def check_timestamp_field(name: str) -> str:
    if name not in TIMESTAMP_FIELDS:
        raise ValidationError(f"Unknown timestamp field: {name}")
    return name


class RecordStore(ABC):
    """
    Abstract base class for document record stores.

    All stores raise RecordNotFoundError for unknown ids and
    StoreUnavailableError when the backend cannot be reached.
    """

    @abstractmethod
    def create(self, record: DocumentRecord) -> None:
        """
        Persist a new document record.

        Raises:
            DuplicateRecordError: if the id already exists
        """
        pass

    @abstractmethod
    def find_by_id(self, document_id: str) -> DocumentRecord:
        """
        Load a document record.

        Raises:
            RecordNotFoundError: if the id is unknown
        """
        pass

    @abstractmethod
    def atomic_increment(
        self,
        document_id: str,
        counter: str,
        amount: int = 1,
        touch: str | None = None,
        at: datetime | None = None,
    ) -> int:
        """
        Atomically increment a counter, optionally touching a timestamp in
        the same update.

        Args:
            document_id: Document to update
            counter: One of COUNTER_FIELDS
            amount: Increment (non-negative)
            touch: Optional timestamp field set to ``at`` in the same update
            at: Timestamp value (defaults to now)

        Returns:
            New counter value

        Raises:
            RecordNotFoundError: if the id is unknown (nothing is mutated)
        """
        pass

    @abstractmethod
    def record_access(
        self, document_id: str, counter: str, at: datetime | None = None
    ) -> DocumentRecord:
        """
        Increment ``counter`` by one and touch its paired last-access
        timestamp atomically, returning the post-update record.
        """
        pass

    @abstractmethod
    def update_timestamp(self, document_id: str, field: str, at: datetime) -> None:
        pass

    @abstractmethod
    def update_content(
        self,
        document_id: str,
        content_hash: str,
        primary_summary: dict[str, Any] | None = None,
        full_detail: dict[str, Any] | None = None,
        anchor_ref: str | None = None,
    ) -> DocumentRecord:
        """
        Replace the content hash (and optionally summary/detail).

        The anchor and batch links of the previous hash are dropped in the
        same update; ``anchor_ref`` is the ledger reference of the new hash
        when it has been anchored.
        """
        pass

    @abstractmethod
    def mark_revoked(
        self, document_id: str, reason: str | None = None, at: datetime | None = None
    ) -> DocumentRecord:
        """Tombstone a document. Revoked records are never erased."""
        pass

    @abstractmethod
    def set_anchor_ref(self, document_id: str, anchor_ref: str | None) -> None:
        pass

    @abstractmethod
    def assign_batch(self, document_ids: list[str], batch_id: str) -> None:
        pass

    @abstractmethod
    def list_records(self, limit: int = 100, offset: int = 0) -> list[DocumentRecord]:
        """Newest first."""
        pass

    @abstractmethod
    def create_batch(self, batch: BatchAnchor) -> None:
        """
        Persist an anchored batch.

        Raises:
            BatchExistsError: if the batch id already exists
        """
        pass

    @abstractmethod
    def find_batch(self, batch_id: str) -> BatchAnchor:
        """
        Raises:
            RecordNotFoundError: if the batch id is unknown
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        pass

    @staticmethod
    def touch_for(counter: str) -> str:
        return ACCESS_TOUCHES[check_counter(counter)]

    def get_info(self) -> dict[str, Any]:
        return {
            "backend_type": self.__class__.__name__,
            "available": self.is_available(),
        }

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
