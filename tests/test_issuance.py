"""
Tests for document issuance, content updates and revocation.
"""

import re

import pytest

from errors import LedgerUnavailableError, RecordNotFoundError, ValidationError
from fingerprint import hash_bytes, hash_structured
from issuance import fingerprint_content
from models import DEFAULT_TITLE
from verification import DisclosureLevel, VerificationEngine


@pytest.fixture
def issuer(service):
    return service.issuer


class TestFingerprintContent:
    def test_bytes(self):
        assert fingerprint_content(b"hello", None) == hash_bytes(b"hello")

    def test_fields(self):
        assert fingerprint_content(None, {"b": 1, "a": 2}) == hash_structured({"a": 2, "b": 1})

    def test_neither(self):
        with pytest.raises(ValidationError):
            fingerprint_content(None, None)

    def test_both(self):
        with pytest.raises(ValidationError):
            fingerprint_content(b"x", {"a": 1})


class TestIssue:
    def test_issue_bytes(self, issuer, store):
        issued = issuer.issue(content=b"hello", summary={"holder": "Ada Lovelace"})

        assert re.fullmatch(r"DOC-[0-9A-F]{8}", issued.record.id)
        assert re.fullmatch(r"[0-9A-F]{16}", issued.access_secret)
        assert issued.record.content_hash == hash_bytes(b"hello")
        assert issued.record.title == DEFAULT_TITLE
        assert issued.record.file_size == 5

        stored = store.find_by_id(issued.record.id)
        assert stored.access_secret == issued.access_secret
        assert stored.verification_count == 0

    def test_to_dict_carries_secret_once(self, issuer):
        issued = issuer.issue(content=b"hello")
        data = issued.to_dict()

        assert data["access_key"] == issued.access_secret
        assert "access_secret" not in data

    def test_fields_become_detail(self, issuer):
        issued = issuer.issue(fields={"grade": "A", "holder": "Ada"})

        assert issued.record.full_detail == {"grade": "A", "holder": "Ada"}
        assert issued.record.content_hash == hash_structured({"holder": "Ada", "grade": "A"})

    def test_unknown_summary_field(self, issuer, store):
        with pytest.raises(ValidationError):
            issuer.issue(content=b"x", summary={"shoe_size": 42})
        assert store.list_records() == []

    def test_anchor(self, issuer, ledger):
        issued = issuer.issue(content=b"hello", anchor=True, issuer="registrar")

        assert issued.anchor_ref is not None
        assert issued.record.anchor_ref == issued.anchor_ref
        assert ledger.status(hash_bytes(b"hello")).issuer == "registrar"

    def test_anchor_failure_creates_nothing(self, issuer, ledger, store):
        ledger.set_available(False)
        with pytest.raises(LedgerUnavailableError):
            issuer.issue(content=b"hello", anchor=True)
        assert store.list_records() == []

    def test_same_content_twice_anchors_once(self, issuer, ledger):
        first = issuer.issue(content=b"hello", anchor=True)
        second = issuer.issue(content=b"hello", anchor=True)

        assert first.record.id != second.record.id
        assert first.anchor_ref == second.anchor_ref
        assert ledger.write_count == 1


class TestIssueBulk:
    def test_batch_anchored(self, issuer, store, ledger):
        issued, batch = issuer.issue_bulk(
            [{"content": b"one"}, {"content": b"two"}, {"fields": {"n": 3}}],
            issuer="registrar",
        )

        assert batch.leaf_count == 3
        assert list(batch.leaves) == [doc.record.content_hash for doc in issued]
        assert ledger.write_count == 1
        for doc in issued:
            assert doc.record.batch_id == batch.batch_id
            assert doc.record.issuer == "registrar"
            assert store.find_by_id(doc.record.id).batch_id == batch.batch_id

    def test_per_item_anchor_ignored(self, issuer, ledger):
        issuer.issue_bulk([{"content": b"one", "anchor": True}])
        assert ledger.write_count == 1

    def test_ledger_failure_persists_nothing(self, issuer, ledger, store):
        ledger.set_available(False)

        with pytest.raises(LedgerUnavailableError):
            issuer.issue_bulk([{"content": b"one"}, {"content": b"two"}])
        assert store.list_records() == []

    def test_empty(self, issuer):
        with pytest.raises(ValidationError):
            issuer.issue_bulk([])


class TestUpdateContent:
    def test_rehashes_and_invalidates_cache(self, issuer, service, cache):
        issued = issuer.issue(content=b"v1", fields=None, detail={"grade": "B"})
        service.verifier.verify(issued.record.id)
        key = VerificationEngine.cache_key(issued.record.id)
        assert cache.get(key) is not None

        record = issuer.update_content(issued.record.id, content=b"v2", detail={"grade": "A"})

        assert record.content_hash == hash_bytes(b"v2")
        assert record.full_detail == {"grade": "A"}
        assert cache.get(key) is None

    def test_update_with_anchor(self, issuer, ledger, store):
        issued = issuer.issue(content=b"v1")
        record = issuer.update_content(issued.record.id, content=b"v2", anchor=True)

        assert record.anchor_ref is not None
        assert store.find_by_id(issued.record.id).anchor_ref == record.anchor_ref
        assert ledger.status(hash_bytes(b"v2")).anchored

    def test_unanchored_update_drops_old_anchor(self, issuer, ledger, store):
        issued = issuer.issue(content=b"v1", anchor=True)

        record = issuer.update_content(issued.record.id, content=b"v2")

        assert record.anchor_ref is None
        assert store.find_by_id(issued.record.id).anchor_ref is None

        revoked = issuer.revoke(issued.record.id)
        assert revoked.is_revoked
        assert ledger.write_count == 1
        assert not ledger.status(hash_bytes(b"v1")).revoked

    def test_update_drops_batch_link(self, issuer, store):
        issued, _ = issuer.issue_bulk([{"content": b"one"}, {"content": b"two"}])
        document_id = issued[0].record.id

        record = issuer.update_content(document_id, content=b"one, corrected")

        assert record.batch_id is None
        assert store.find_by_id(document_id).batch_id is None
        assert issuer.revoke(document_id).is_revoked

    def test_revoked_cannot_update(self, issuer):
        issued = issuer.issue(content=b"v1")
        issuer.revoke(issued.record.id)
        with pytest.raises(ValidationError):
            issuer.update_content(issued.record.id, content=b"v2")

    def test_unknown(self, issuer):
        with pytest.raises(RecordNotFoundError):
            issuer.update_content("DOC-FFFFFFFF", content=b"v2")


class TestRevoke:
    def test_unanchored(self, issuer, service):
        issued = issuer.issue(content=b"hello")

        record = issuer.revoke(issued.record.id, "superseded")

        assert record.status == "revoked"
        assert record.revocation_reason == "superseded"
        result = service.verifier.verify(issued.record.id)
        assert result.level == DisclosureLevel.PARTIAL
        assert result.body["status"] == "revoked"

    def test_anchored_revoked_on_ledger(self, issuer, service, ledger):
        issued = issuer.issue(content=b"hello", anchor=True)
        service.verifier.verify(issued.record.id)

        issuer.revoke(issued.record.id)

        assert ledger.status(hash_bytes(b"hello")).revoked
        body = service.verifier.verify(issued.record.id).body
        assert body["ledger"]["state"] == "revoked"

    def test_ledger_failure_leaves_record(self, issuer, ledger, store):
        issued = issuer.issue(content=b"hello", anchor=True)
        ledger.set_available(False)

        with pytest.raises(LedgerUnavailableError):
            issuer.revoke(issued.record.id)
        assert not store.find_by_id(issued.record.id).is_revoked

    def test_idempotent(self, issuer, ledger):
        issued = issuer.issue(content=b"hello", anchor=True)
        first = issuer.revoke(issued.record.id, "fraud")
        second = issuer.revoke(issued.record.id, "typo")

        assert second.revoked_at == first.revoked_at
        assert second.revocation_reason == "fraud"
        assert ledger.write_count == 2
