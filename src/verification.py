"""
DocVerify - Verification Engine

Tiered disclosure for issued documents:

    INVALID  unknown document id; nothing is mutated
    QUICK    summary only (scan-and-check path)
    PARTIAL  summary, a limited field subset and ledger status
    FULL     everything, including full detail and access statistics;
             requires the document's access secret

A wrong secret silently degrades to PARTIAL. Each successful lookup bumps
exactly one counter and its last-access timestamp in one atomic store
update. Keys gated by the secret are left out of lower-level responses
entirely rather than sent as null.
"""

import hmac
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from anchoring import LedgerStatusResolver
from errors import RecordNotFoundError, UnauthorizedError
from models import DocumentRecord, utcnow
from records.base import RecordStore
from scaling.cache import DURABLE_ERRORS, Cache

logger = logging.getLogger(__name__)


class DisclosureLevel(Enum):
    INVALID = "invalid"
    QUICK = "quick"
    PARTIAL = "partial"
    FULL = "full"


def resolve_disclosure(
    record_found: bool,
    secret_provided: bool,
    secret_matches: bool,
    quick: bool = False,
) -> DisclosureLevel:
    """Pick the disclosure level for a lookup. Pure."""
    if not record_found:
        return DisclosureLevel.INVALID
    if quick:
        return DisclosureLevel.QUICK
    if secret_provided and secret_matches:
        return DisclosureLevel.FULL
    return DisclosureLevel.PARTIAL


def secrets_match(provided: str | None, expected: str) -> bool:
    """Exact, constant-time comparison of an access secret."""
    if not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


@dataclass
class VerificationResult:
    """Outcome of one verification."""

    document_id: str
    level: DisclosureLevel
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def found(self) -> bool:
        return self.level != DisclosureLevel.INVALID

    def to_dict(self) -> dict[str, Any]:
        data = {"document_id": self.document_id, "level": self.level.value}
        if not self.found:
            data["status"] = "invalid"
            return data
        data.update(self.body)
        return data


def _summary_view(record: DocumentRecord) -> dict[str, Any]:
    return {
        "status": record.status,
        "title": record.title,
        "primary_summary": record.primary_summary.to_dict(),
    }


class VerificationEngine:
    """Runs lookups against the record store and applies the disclosure policy."""

    def __init__(
        self,
        store: RecordStore,
        cache: Cache,
        ledger_status: LedgerStatusResolver,
        partial_fields: tuple[str, ...] = (),
        cache_ttl: float = 300.0,
        on_verified: Callable[[str], None] | None = None,
    ):
        """
        Args:
            store: Record store
            cache: Cache for partial payloads
            ledger_status: Resolver for on-ledger state of content hashes
            partial_fields: full_detail keys disclosed at partial level
            cache_ttl: TTL for cached partial payloads (seconds)
            on_verified: Called with the level name after every verification
        """
        self.store = store
        self.cache = cache
        self.ledger_status = ledger_status
        self.partial_fields = tuple(partial_fields)
        self.cache_ttl = cache_ttl
        self._on_verified = on_verified

    @staticmethod
    def cache_key(document_id: str) -> str:
        return f"verify:{document_id}"

    def _finish(self, result: VerificationResult) -> VerificationResult:
        logger.info("Verified %s at level %s", result.document_id, result.level.value)
        if self._on_verified:
            self._on_verified(result.level.value)
        return result

    def _invalid(self, document_id: str) -> VerificationResult:
        return self._finish(VerificationResult(document_id, DisclosureLevel.INVALID))

    # -- payloads -------------------------------------------------------------

    def _partial_payload(self, record: DocumentRecord) -> dict[str, Any]:
        """Cacheable partial view: no counters, no secret."""
        payload = _summary_view(record)
        payload.update(
            {
                "content_hash": record.content_hash,
                "issuer": record.issuer,
                "created_at": record.created_at.isoformat(),
                "fields": {
                    name: record.full_detail[name]
                    for name in self.partial_fields
                    if name in record.full_detail
                },
                "anchored": record.anchor_ref is not None or record.batch_id is not None,
                "batch_id": record.batch_id,
                "revoked_at": record.revoked_at.isoformat() if record.revoked_at else None,
            }
        )
        return payload

    def _full_payload(self, record: DocumentRecord) -> dict[str, Any]:
        payload = self._partial_payload(record)
        payload.update(
            {
                "detail": record.full_detail,
                "anchor_ref": record.anchor_ref,
                "revocation_reason": record.revocation_reason,
                "file_name": record.file_name,
                "file_type": record.file_type,
                "file_size": record.file_size,
                "download_eligible": not record.is_revoked,
                "statistics": record.statistics(),
            }
        )
        return payload

    def _cached_partial(self, document_id: str) -> dict[str, Any] | None:
        try:
            return self.cache.get(self.cache_key(document_id))
        except DURABLE_ERRORS as e:
            logger.warning("Verification cache read failed: %s", e)
            return None

    def _store_partial(self, document_id: str, payload: dict[str, Any]) -> None:
        try:
            self.cache.set(self.cache_key(document_id), payload, ttl=self.cache_ttl)
        except DURABLE_ERRORS as e:
            logger.warning("Verification cache write failed: %s", e)

    def invalidate(self, document_id: str) -> None:
        """Drop the cached partial payload (after revoke or content update)."""
        try:
            self.cache.delete(self.cache_key(document_id))
        except DURABLE_ERRORS as e:
            logger.warning("Verification cache invalidation failed: %s", e)

    # -- operations -----------------------------------------------------------

    def verify(self, document_id: str, secret: str | None = None) -> VerificationResult:
        """
        Verify a document, disclosing as much as the secret allows.

        Args:
            document_id: Document to verify
            secret: Access secret (optional)

        Returns:
            VerificationResult at INVALID, PARTIAL or FULL level
        """
        if secret:
            try:
                record = self.store.find_by_id(document_id)
            except RecordNotFoundError:
                return self._invalid(document_id)

            matches = secrets_match(secret, record.access_secret)
            level = resolve_disclosure(True, True, matches)
            if level == DisclosureLevel.FULL:
                return self._full(document_id)
            logger.info("Access secret mismatch for %s; partial disclosure", document_id)
            return self._partial(document_id, record)

        return self._partial(document_id)

    def _partial(
        self, document_id: str, record: DocumentRecord | None = None
    ) -> VerificationResult:
        try:
            count = self.store.atomic_increment(
                document_id,
                "verification_count",
                touch="last_verified_at",
                at=utcnow(),
            )
        except RecordNotFoundError:
            return self._invalid(document_id)

        payload = self._cached_partial(document_id)
        if payload is None:
            if record is None:
                try:
                    record = self.store.find_by_id(document_id)
                except RecordNotFoundError:
                    return self._invalid(document_id)
            payload = self._partial_payload(record)
            self._store_partial(document_id, payload)

        body = dict(payload)
        body["verification_count"] = count
        body["ledger"] = self.ledger_status.status(payload["content_hash"])
        return self._finish(VerificationResult(document_id, DisclosureLevel.PARTIAL, body))

    def _full(self, document_id: str) -> VerificationResult:
        try:
            record = self.store.record_access(document_id, "full_access_count", at=utcnow())
        except RecordNotFoundError:
            return self._invalid(document_id)

        body = self._full_payload(record)
        body["ledger"] = self.ledger_status.status(record.content_hash)
        return self._finish(VerificationResult(document_id, DisclosureLevel.FULL, body))

    def quick_verify(self, document_id: str) -> VerificationResult:
        """Summary-only check; one atomic counter update, no ledger lookup."""
        try:
            record = self.store.record_access(document_id, "verification_count", at=utcnow())
        except RecordNotFoundError:
            return self._invalid(document_id)

        body = _summary_view(record)
        body["verification_count"] = record.verification_count
        return self._finish(VerificationResult(document_id, DisclosureLevel.QUICK, body))

    def authorize_download(self, document_id: str, secret: str | None) -> dict[str, Any]:
        """
        Authorize a download of the original file.

        Raises:
            RecordNotFoundError: unknown document
            UnauthorizedError: missing or wrong secret, or revoked document
        """
        record = self.store.find_by_id(document_id)
        if not secrets_match(secret, record.access_secret):
            raise UnauthorizedError("Access key required")
        if record.is_revoked:
            raise UnauthorizedError("Document has been revoked")

        record = self.store.record_access(document_id, "download_count", at=utcnow())
        logger.info("Download authorized for %s", document_id)
        return {
            "document_id": record.id,
            "content_hash": record.content_hash,
            "file_name": record.file_name,
            "file_type": record.file_type,
            "file_size": record.file_size,
            "download_count": record.download_count,
        }
