"""
DocVerify - Document Issuance

Creates document records from raw bytes or structured fields, optionally
anchoring each content hash on the ledger, and handles the two explicit
mutations an issuer may make afterwards: content update and revocation.

The access secret is returned exactly once, in the IssuedDocument handed
back by issue(); it is never logged or returned anywhere else.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from anchoring import BatchAnchorService, LedgerStatusResolver
from errors import LedgerError, ValidationError
from fingerprint import hash_bytes, hash_structured
from ledger.base import LedgerAdapter
from models import (
    DEFAULT_TITLE,
    BatchAnchor,
    DocumentRecord,
    PrimarySummary,
    generate_access_secret,
    generate_document_id,
)
from records.base import RecordStore
from verification import VerificationEngine

logger = logging.getLogger(__name__)


@dataclass
class IssuedDocument:
    """A freshly issued document, including its one-time secret."""

    record: DocumentRecord
    access_secret: str
    anchor_ref: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = self.record.public_view()
        data["access_key"] = self.access_secret
        data["anchor_ref"] = self.anchor_ref
        data["primary_summary"] = self.record.primary_summary.to_dict()
        return data


def fingerprint_content(content: bytes | str | None, fields: Mapping | None) -> str:
    """Hash raw content, or canonical structured fields when no bytes are given."""
    if content is not None and fields is not None:
        raise ValidationError("Provide either content or fields, not both")
    if content is not None:
        return hash_bytes(content)
    if fields is not None:
        return hash_structured(fields)
    raise ValidationError("Document content or fields required")


class DocumentIssuer:
    """Issues, updates and revokes documents."""

    def __init__(
        self,
        store: RecordStore,
        ledger: LedgerAdapter,
        verifier: VerificationEngine,
        batches: BatchAnchorService,
        ledger_status: LedgerStatusResolver,
    ):
        self.store = store
        self.ledger = ledger
        self.verifier = verifier
        self.batches = batches
        self.ledger_status = ledger_status

    def _build_record(
        self,
        content: bytes | str | None = None,
        fields: Mapping[str, Any] | None = None,
        title: str | None = None,
        summary: Mapping[str, Any] | None = None,
        detail: Mapping[str, Any] | None = None,
        issuer: str | None = None,
        file_name: str | None = None,
        file_type: str | None = None,
        file_size: int | None = None,
    ) -> DocumentRecord:
        content_hash = fingerprint_content(content, fields)
        if detail is None:
            detail = fields or {}
        if file_size is None and isinstance(content, bytes):
            file_size = len(content)

        return DocumentRecord(
            id=generate_document_id(),
            content_hash=content_hash,
            access_secret=generate_access_secret(),
            primary_summary=PrimarySummary.from_dict(dict(summary or {})),
            full_detail=dict(detail),
            title=title or DEFAULT_TITLE,
            issuer=issuer,
            file_name=file_name,
            file_type=file_type,
            file_size=file_size,
        )

    def issue(self, anchor: bool = False, **kwargs: Any) -> IssuedDocument:
        """
        Issue a document.

        Args:
            content: Raw bytes (uploaded file) to fingerprint
            fields: Structured fields to fingerprint canonically; also used
                as the full detail when ``detail`` is not given
            title: Display title
            summary: Primary summary (holder, document_type, ...)
            detail: Full detail, disclosed only with the secret
            issuer: Issuing account or authority
            anchor: Anchor the content hash on the ledger individually
            file_name, file_type, file_size: Upload metadata

        Raises:
            ValidationError: missing or conflicting content
            LedgerUnavailableError / LedgerError: anchoring failed (no record
                is created)
        """
        record = self._build_record(**kwargs)

        if anchor:
            receipt = self.ledger.anchor(
                record.content_hash, {"document_id": record.id, "issuer": record.issuer}
            )
            record.anchor_ref = receipt.transaction_ref
            self.ledger_status.invalidate(record.content_hash)

        self.store.create(record)
        logger.info(
            "Issued %s (hash %s, anchored=%s)", record.id, record.content_hash[:16], anchor
        )
        return IssuedDocument(
            record=record, access_secret=record.access_secret, anchor_ref=record.anchor_ref
        )

    def issue_bulk(
        self,
        items: list[Mapping[str, Any]],
        batch_id: str | None = None,
        issuer: str | None = None,
    ) -> tuple[list[IssuedDocument], BatchAnchor]:
        """
        Issue several documents and anchor them as one Merkle batch.

        Each item takes the keyword arguments of issue() (``anchor`` is
        ignored; the batch root is what gets anchored). Records are persisted
        only after the root is on the ledger, so a failed anchor leaves no
        documents behind.
        """
        if not items:
            raise ValidationError("Bulk issuance requires at least one document")

        records = []
        for item in items:
            kwargs = dict(item)
            kwargs.pop("anchor", None)
            kwargs.setdefault("issuer", issuer)
            records.append(self._build_record(**kwargs))

        batch, _ = self.batches.anchor_batch(
            [record.content_hash for record in records],
            batch_id=batch_id,
            issuer=issuer,
        )
        for record in records:
            record.batch_id = batch.batch_id
            self.store.create(record)

        logger.info("Issued %d documents in batch %s", len(records), batch.batch_id)
        return [IssuedDocument(record=r, access_secret=r.access_secret) for r in records], batch

    def update_content(
        self,
        document_id: str,
        content: bytes | str | None = None,
        fields: Mapping[str, Any] | None = None,
        summary: Mapping[str, Any] | None = None,
        detail: Mapping[str, Any] | None = None,
        anchor: bool = False,
    ) -> DocumentRecord:
        """
        Replace a document's content and recompute its hash.

        Raises:
            RecordNotFoundError: unknown document
            ValidationError: document is revoked, or content missing
        """
        current = self.store.find_by_id(document_id)
        if current.is_revoked:
            raise ValidationError("Revoked documents cannot be updated")

        content_hash = fingerprint_content(content, fields)
        if detail is None and fields is not None:
            detail = fields

        anchor_ref = None
        if anchor:
            receipt = self.ledger.anchor(
                content_hash, {"document_id": document_id, "issuer": current.issuer}
            )
            anchor_ref = receipt.transaction_ref
            self.ledger_status.invalidate(content_hash)

        # The old hash's anchor and batch no longer describe this content
        record = self.store.update_content(
            document_id,
            content_hash,
            primary_summary=dict(summary) if summary is not None else None,
            full_detail=dict(detail) if detail is not None else None,
            anchor_ref=anchor_ref,
        )

        self.verifier.invalidate(document_id)
        logger.info("Updated content of %s (hash %s)", document_id, content_hash[:16])
        return record

    def revoke(self, document_id: str, reason: str | None = None) -> DocumentRecord:
        """
        Revoke a document. Anchored documents are revoked on the ledger first;
        a ledger failure is raised and leaves the record untouched.
        """
        record = self.store.find_by_id(document_id)
        if record.is_revoked:
            return record

        if record.anchor_ref is not None:
            try:
                self.ledger.revoke(record.content_hash)
            except LedgerError:
                logger.error("Ledger revocation failed for %s", document_id)
                raise
            self.ledger_status.invalidate(record.content_hash)

        record = self.store.mark_revoked(document_id, reason)
        self.verifier.invalidate(document_id)
        logger.info("Revoked %s", document_id)
        return record
