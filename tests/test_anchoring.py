"""
Tests for batch anchoring and the ledger status resolver.
"""

import threading
from unittest.mock import MagicMock

import pytest

from anchoring import BatchAnchorService, LedgerStatusResolver
from errors import (
    BatchExistsError,
    LedgerUnavailableError,
    ProofNotFoundError,
    RecordNotFoundError,
    ValidationError,
)
from fingerprint import hash_bytes
from merkle import build_root
from models import DocumentRecord

LEAVES = [hash_bytes(f"doc-{i}") for i in range(5)]


@pytest.fixture
def batches(store, ledger, locks):
    return BatchAnchorService(store, ledger, locks, lock_timeout=0.1)


class TestAnchorBatch:
    def test_anchors_root_only(self, batches, ledger, store):
        batch, created = batches.anchor_batch(LEAVES, batch_id="BATCH-1", issuer="registrar")

        assert created
        assert batch.merkle_root == build_root(LEAVES)
        assert batch.leaf_count == 5
        assert batch.transaction_ref.startswith("0x")
        assert ledger.write_count == 1
        assert ledger.status(batch.merkle_root).anchored
        assert store.find_batch("BATCH-1") == batch

    def test_generated_batch_id(self, batches):
        batch, _ = batches.anchor_batch(LEAVES)
        assert batch.batch_id.startswith("BATCH-" + build_root(LEAVES)[:12].upper())

    def test_same_leaves_join_existing(self, batches, ledger):
        first, _ = batches.anchor_batch(LEAVES, batch_id="BATCH-1")
        second, created = batches.anchor_batch(list(LEAVES), batch_id="BATCH-1")

        assert not created
        assert second == first
        assert ledger.write_count == 1

    def test_different_leaves_conflict(self, batches):
        batches.anchor_batch(LEAVES, batch_id="BATCH-1")
        with pytest.raises(BatchExistsError):
            batches.anchor_batch(LEAVES[:3], batch_id="BATCH-1")

    def test_empty_batch_rejected(self, batches):
        with pytest.raises(ValidationError):
            batches.anchor_batch([])

    def test_malformed_leaf_rejected(self, batches, ledger):
        with pytest.raises(ValidationError):
            batches.anchor_batch([LEAVES[0], "not-a-digest"])
        assert ledger.write_count == 0

    def test_lock_held_elsewhere(self, batches, locks):
        acquired = threading.Event()
        release = threading.Event()

        def holder():
            locks.acquire("batch:BATCH-1")
            acquired.set()
            release.wait(2)
            locks.release("batch:BATCH-1")

        thread = threading.Thread(target=holder)
        thread.start()
        acquired.wait(2)
        try:
            with pytest.raises(BatchExistsError):
                batches.anchor_batch(LEAVES, batch_id="BATCH-1")
        finally:
            release.set()
            thread.join()

    def test_concurrent_writers_anchor_once(self, store, ledger, locks):
        batches = BatchAnchorService(store, ledger, locks, lock_timeout=5)
        results = []

        def anchor():
            results.append(batches.anchor_batch(LEAVES, batch_id="BATCH-1"))

        threads = [threading.Thread(target=anchor) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(created for _, created in results) == [False] * 4 + [True]
        assert ledger.write_count == 1

    def test_ledger_failure_persists_nothing(self, batches, ledger, store, locks):
        ledger.set_available(False)

        with pytest.raises(LedgerUnavailableError):
            batches.anchor_batch(LEAVES, batch_id="BATCH-1")
        with pytest.raises(RecordNotFoundError):
            store.find_batch("BATCH-1")
        freed = []
        thread = threading.Thread(
            target=lambda: freed.append(locks.acquire("batch:BATCH-1", timeout=0))
        )
        thread.start()
        thread.join()
        assert freed == [True]

    def test_links_documents(self, batches, store):
        for i, leaf in enumerate(LEAVES[:2]):
            store.create(DocumentRecord(id=f"DOC-0000000{i}", content_hash=leaf,
                                        access_secret="0" * 16))

        batches.anchor_batch(
            LEAVES[:2], batch_id="BATCH-1", document_ids=["DOC-00000000", "DOC-00000001"]
        )

        assert store.find_by_id("DOC-00000001").batch_id == "BATCH-1"

    def test_unknown_document_fails_before_ledger(self, batches, ledger, store):
        with pytest.raises(RecordNotFoundError):
            batches.anchor_batch(LEAVES[:2], batch_id="BATCH-1", document_ids=["DOC-FFFFFFFF"])

        assert ledger.write_count == 0
        with pytest.raises(RecordNotFoundError):
            store.find_batch("BATCH-1")


class TestProofs:
    def test_get_proof_verifies(self, batches):
        batches.anchor_batch(LEAVES, batch_id="BATCH-1")

        proof = batches.get_proof("BATCH-1", LEAVES[3])

        assert proof.leaf_index == 3
        assert proof.verify()
        assert batches.verify_inclusion("BATCH-1", LEAVES[3], proof)["included"]

    def test_proof_for_unknown_leaf(self, batches):
        batches.anchor_batch(LEAVES, batch_id="BATCH-1")
        with pytest.raises(ProofNotFoundError):
            batches.get_proof("BATCH-1", hash_bytes(b"stranger"))

    def test_unknown_batch(self, batches):
        with pytest.raises(RecordNotFoundError):
            batches.get_proof("BATCH-404", LEAVES[0])

    def test_inclusion_without_proof(self, batches):
        batches.anchor_batch(LEAVES, batch_id="BATCH-1")

        assert batches.verify_inclusion("BATCH-1", LEAVES[0])["included"]
        assert not batches.verify_inclusion("BATCH-1", hash_bytes(b"stranger"))["included"]

    def test_inclusion_with_bad_proof(self, batches):
        batches.anchor_batch(LEAVES, batch_id="BATCH-1")
        siblings = batches.get_proof("BATCH-1", LEAVES[1]).siblings

        result = batches.verify_inclusion("BATCH-1", LEAVES[2], siblings)

        assert not result["included"]
        assert result["merkle_root"] == build_root(LEAVES)


class TestLedgerStatusResolver:
    def test_caches_status(self, ledger, cache):
        ledger.anchor(LEAVES[0])
        spy = MagicMock(wraps=ledger)
        resolver = LedgerStatusResolver(spy, cache, timeout=1.0)
        try:
            assert resolver.status(LEAVES[0])["state"] == "anchored"
            assert resolver.status("0x" + LEAVES[0].upper())["state"] == "anchored"
        finally:
            resolver.close()

        assert spy.status.call_count == 1

    def test_invalidate(self, ledger, cache):
        resolver = LedgerStatusResolver(ledger, cache, timeout=1.0)
        try:
            assert resolver.status(LEAVES[0])["state"] == "not_anchored"
            ledger.anchor(LEAVES[0])
            resolver.invalidate(LEAVES[0])
            assert resolver.status(LEAVES[0])["state"] == "anchored"
        finally:
            resolver.close()

    def test_unknown_on_outage(self, ledger, cache):
        calls = []
        resolver = LedgerStatusResolver(
            ledger, cache, timeout=1.0, on_unknown=lambda: calls.append(1)
        )
        ledger.set_available(False)
        try:
            assert resolver.status(LEAVES[0]) == {"state": "unknown"}
        finally:
            resolver.close()
        assert calls == [1]
