"""
Record store layer for DocVerify.

Pluggable persistence for issued documents and anchored batches:

- Memory (development and tests)
- PostgreSQL (production)

Usage:
    from records import create_record_store

    store = create_record_store(config)
    store.create(record)
    store.record_access(record.id, "verification_count")
"""

from typing import TYPE_CHECKING

from errors import StoreUnavailableError, ValidationError
from records.base import RecordStore
from records.memory import MemoryRecordStore

# Lazy import for PostgreSQL to avoid requiring psycopg2
if TYPE_CHECKING:
    from records.postgresql import PostgreSQLRecordStore

__all__ = [
    "MemoryRecordStore",
    "PostgreSQLRecordStore",
    "RecordStore",
    "create_record_store",
]


def create_record_store(config) -> RecordStore:
    """
    Build the configured record store.

    Args:
        config: DocVerifyConfig (uses store_backend, database_url, store_timeout)
    """
    backend = config.store_backend.lower()

    if backend == "memory":
        return MemoryRecordStore()

    if backend in ("postgresql", "postgres"):
        if not config.database_url:
            raise StoreUnavailableError("DATABASE_URL is required for the PostgreSQL store")
        from records.postgresql import PostgreSQLRecordStore

        return PostgreSQLRecordStore(config.database_url, timeout=config.store_timeout)

    raise ValidationError(f"Unknown store backend: {backend}")


def __getattr__(name):
    if name == "PostgreSQLRecordStore":
        from records.postgresql import PostgreSQLRecordStore

        return PostgreSQLRecordStore
    raise AttributeError(name)
