"""
DocVerify - Batch Anchoring and Ledger Status

Two services sit between the Merkle functions and the ledger:

BatchAnchorService
    Folds a list of document digests into one Merkle root and writes only
    the root to the ledger. Anchoring is single-writer per batch id: a
    second caller with the same leaves joins the existing batch, a caller
    with different leaves is rejected.

LedgerStatusResolver
    Read-path lookups of a digest's on-ledger state, cached and bounded by a
    timeout. An unreachable or slow ledger yields {"state": "unknown"} rather
    than an error, so verification keeps working during ledger outages.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable

from errors import BatchExistsError, LedgerError, RecordNotFoundError, ValidationError
from fingerprint import normalize_digest
from ledger.base import LedgerAdapter
from merkle import MerkleProof, build_proof_for_leaf, build_root, verify_proof
from models import BatchAnchor, generate_batch_id, utcnow
from records.base import RecordStore
from scaling.cache import DURABLE_ERRORS, Cache
from scaling.locking import LockManager

logger = logging.getLogger(__name__)

UNKNOWN_STATUS = {"state": "unknown"}


class LedgerStatusResolver:
    """Cached, time-bounded ledger status lookups."""

    def __init__(
        self,
        ledger: LedgerAdapter,
        cache: Cache,
        ttl: float = 600.0,
        timeout: float = 5.0,
        on_unknown: Callable[[], None] | None = None,
        max_workers: int = 4,
    ):
        self.ledger = ledger
        self.cache = cache
        self.ttl = ttl
        self.timeout = timeout
        self._on_unknown = on_unknown
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ledger")

    @staticmethod
    def cache_key(digest: str) -> str:
        return f"ledger:{digest}"

    def status(self, digest: str) -> dict[str, Any]:
        """
        On-ledger state of a digest.

        Returns:
            LedgerStatus dict, or {"state": "unknown"} if the ledger could not
            answer within the timeout
        """
        digest = normalize_digest(digest)
        key = self.cache_key(digest)

        try:
            cached = self.cache.get(key)
        except DURABLE_ERRORS as e:
            logger.warning("Ledger status cache read failed: %s", e)
            cached = None
        if cached is not None:
            return cached

        future = self._executor.submit(self.ledger.status, digest)
        try:
            status = future.result(timeout=self.timeout).to_dict()
        except FutureTimeoutError:
            future.cancel()
            logger.warning("Ledger status lookup timed out after %.1fs", self.timeout)
            return self._unknown()
        except LedgerError as e:
            logger.warning("Ledger status unavailable: %s", e.kind)
            return self._unknown()

        try:
            self.cache.set(key, status, ttl=self.ttl)
        except DURABLE_ERRORS as e:
            logger.warning("Ledger status cache write failed: %s", e)
        return status

    def _unknown(self) -> dict[str, Any]:
        if self._on_unknown:
            self._on_unknown()
        return dict(UNKNOWN_STATUS)

    def invalidate(self, digest: str) -> None:
        try:
            self.cache.delete(self.cache_key(normalize_digest(digest)))
        except DURABLE_ERRORS as e:
            logger.warning("Ledger status cache invalidation failed: %s", e)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


class BatchAnchorService:
    """Anchors digest batches as a single Merkle root."""

    def __init__(
        self,
        store: RecordStore,
        ledger: LedgerAdapter,
        locks: LockManager,
        lock_timeout: float = 10.0,
        lock_ttl: float = 60.0,
    ):
        self.store = store
        self.ledger = ledger
        self.locks = locks
        self.lock_timeout = lock_timeout
        self.lock_ttl = lock_ttl

    def anchor_batch(
        self,
        leaves: list[str],
        batch_id: str | None = None,
        issuer: str | None = None,
        document_ids: list[str] | None = None,
    ) -> tuple[BatchAnchor, bool]:
        """
        Anchor a batch of digests.

        Args:
            leaves: Ordered leaf digests
            batch_id: Caller-chosen id (generated from the root if omitted)
            issuer: Issuer recorded with the batch
            document_ids: Documents to link to the batch once anchored

        Returns:
            (batch, created) where created is False when an identical batch
            already existed

        Raises:
            ValidationError: empty batch
            RecordNotFoundError: a document to link does not exist
            BatchExistsError: same id with different leaves, or another
                writer holds the batch lock
            LedgerUnavailableError / LedgerError: the root could not be written
        """
        if isinstance(leaves, str) or not leaves:
            raise ValidationError("Batch must contain at least one leaf")
        leaves = tuple(normalize_digest(leaf) for leaf in leaves)
        root = build_root(leaves)
        batch_id = batch_id or generate_batch_id(root)
        lock_name = f"batch:{batch_id}"

        if not self.locks.acquire(lock_name, timeout=self.lock_timeout, ttl=self.lock_ttl):
            raise BatchExistsError("Batch anchoring already in progress", batch_id=batch_id)
        try:
            try:
                existing = self.store.find_batch(batch_id)
            except RecordNotFoundError:
                existing = None

            if existing is not None:
                if existing.leaves != leaves:
                    raise BatchExistsError("Batch id already used", batch_id=batch_id)
                logger.info("Joined existing batch %s", batch_id)
                return existing, False

            # Unknown documents fail before anything reaches the ledger
            for document_id in document_ids or ():
                self.store.find_by_id(document_id)

            receipt = self.ledger.anchor(
                root,
                {"batch_id": batch_id, "issuer": issuer, "leaf_count": len(leaves)},
            )
            batch = BatchAnchor(
                batch_id=batch_id,
                merkle_root=root,
                leaf_count=len(leaves),
                issuer=issuer,
                anchored_at=receipt.anchored_at or utcnow(),
                leaves=leaves,
                transaction_ref=receipt.transaction_ref,
            )
            self.store.create_batch(batch)
            if document_ids:
                self.store.assign_batch(list(document_ids), batch_id)

            logger.info(
                "Anchored batch %s: %d leaves, root %s",
                batch_id,
                len(leaves),
                root[:16],
            )
            return batch, True
        finally:
            self.locks.release(lock_name)

    def get_batch(self, batch_id: str) -> BatchAnchor:
        return self.store.find_batch(batch_id)

    def get_proof(self, batch_id: str, leaf: str) -> MerkleProof:
        """
        Raises:
            RecordNotFoundError: unknown batch
            ProofNotFoundError: leaf not in the batch
        """
        batch = self.store.find_batch(batch_id)
        return build_proof_for_leaf(batch.leaves, leaf)

    def verify_inclusion(
        self, batch_id: str, leaf: str, proof: MerkleProof | list[str] | None = None
    ) -> dict[str, Any]:
        """
        Check that ``leaf`` belongs to an anchored batch.

        With no proof supplied, membership is checked against the stored
        leaves; a supplied proof is checked against the anchored root.
        """
        batch = self.store.find_batch(batch_id)
        leaf = normalize_digest(leaf)
        if proof is None:
            included = leaf in batch.leaves
        else:
            included = verify_proof(leaf, proof, batch.merkle_root)

        return {
            "batch_id": batch.batch_id,
            "leaf": leaf,
            "merkle_root": batch.merkle_root,
            "included": included,
        }
