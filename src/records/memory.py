"""
In-memory record store.

Useful for:
- Unit testing
- Development
- Single-process demos
"""

import threading
from datetime import datetime
from typing import Any

from errors import BatchExistsError, DuplicateRecordError, RecordNotFoundError
from models import BatchAnchor, DocumentRecord, PrimarySummary, utcnow
from records.base import RecordStore, check_counter, check_timestamp_field


class MemoryRecordStore(RecordStore):
    """
    In-memory record store.

    All data is lost when the process exits. One RLock guards both maps, so
    every counter update is a single critical section. Records handed out
    are copies.
    """

    def __init__(self):
        self._records: dict[str, DocumentRecord] = {}
        self._batches: dict[str, BatchAnchor] = {}
        self._lock = threading.RLock()

    def _get(self, document_id: str) -> DocumentRecord:
        record = self._records.get(document_id)
        if record is None:
            raise RecordNotFoundError(f"Document not found: {document_id}")
        return record

    def create(self, record: DocumentRecord) -> None:
        with self._lock:
            if record.id in self._records:
                raise DuplicateRecordError(f"Document already exists: {record.id}")
            self._records[record.id] = record.copy()

    def find_by_id(self, document_id: str) -> DocumentRecord:
        with self._lock:
            return self._get(document_id).copy()

    def atomic_increment(
        self,
        document_id: str,
        counter: str,
        amount: int = 1,
        touch: str | None = None,
        at: datetime | None = None,
    ) -> int:
        check_counter(counter)
        if touch is not None:
            check_timestamp_field(touch)
        with self._lock:
            record = self._get(document_id)
            value = getattr(record, counter) + amount
            setattr(record, counter, value)
            if touch is not None:
                setattr(record, touch, at or utcnow())
            return value

    def record_access(
        self, document_id: str, counter: str, at: datetime | None = None
    ) -> DocumentRecord:
        touch = self.touch_for(counter)
        with self._lock:
            self.atomic_increment(document_id, counter, 1, touch=touch, at=at)
            return self._get(document_id).copy()

    def update_timestamp(self, document_id: str, field: str, at: datetime) -> None:
        check_timestamp_field(field)
        with self._lock:
            setattr(self._get(document_id), field, at)

    def update_content(
        self,
        document_id: str,
        content_hash: str,
        primary_summary: dict[str, Any] | None = None,
        full_detail: dict[str, Any] | None = None,
        anchor_ref: str | None = None,
    ) -> DocumentRecord:
        with self._lock:
            record = self._get(document_id)
            record.content_hash = content_hash
            record.anchor_ref = anchor_ref
            record.batch_id = None
            if primary_summary is not None:
                record.primary_summary = PrimarySummary.from_dict(primary_summary)
            if full_detail is not None:
                record.full_detail = dict(full_detail)
            return record.copy()

    def mark_revoked(
        self, document_id: str, reason: str | None = None, at: datetime | None = None
    ) -> DocumentRecord:
        with self._lock:
            record = self._get(document_id)
            if record.revoked_at is None:
                record.revoked_at = at or utcnow()
                record.revocation_reason = reason
            return record.copy()

    def set_anchor_ref(self, document_id: str, anchor_ref: str | None) -> None:
        with self._lock:
            self._get(document_id).anchor_ref = anchor_ref

    def assign_batch(self, document_ids: list[str], batch_id: str) -> None:
        with self._lock:
            records = [self._get(document_id) for document_id in document_ids]
            for record in records:
                record.batch_id = batch_id

    def list_records(self, limit: int = 100, offset: int = 0) -> list[DocumentRecord]:
        with self._lock:
            ordered = sorted(self._records.values(), key=lambda r: r.created_at, reverse=True)
            return [r.copy() for r in ordered[offset : offset + limit]]

    def create_batch(self, batch: BatchAnchor) -> None:
        with self._lock:
            if batch.batch_id in self._batches:
                raise BatchExistsError(f"Batch already exists: {batch.batch_id}")
            self._batches[batch.batch_id] = batch

    def find_batch(self, batch_id: str) -> BatchAnchor:
        with self._lock:
            batch = self._batches.get(batch_id)
            if batch is None:
                raise RecordNotFoundError(f"Batch not found: {batch_id}")
            return batch

    def is_available(self) -> bool:
        """Memory store is always available."""
        return True

    def get_info(self) -> dict[str, Any]:
        info = super().get_info()
        with self._lock:
            info.update(
                {
                    "record_count": len(self._records),
                    "batch_count": len(self._batches),
                }
            )
        return info

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._batches.clear()
