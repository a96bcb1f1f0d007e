"""
Domain types for DocVerify.

DocumentRecord is one issued document; BatchAnchor is one immutable Merkle
batch written to the ledger. Both round-trip through plain dicts so record
stores can persist them as rows or JSON.
"""

import secrets
import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import UTC, datetime
from typing import Any

from errors import ValidationError

DEFAULT_TITLE = "Untitled Certificate"

# Counter -> timestamp it touches when incremented by a verification
COUNTER_FIELDS = ("verification_count", "full_access_count", "download_count")
TIMESTAMP_FIELDS = ("last_verified_at", "last_full_access_at", "last_downloaded_at")

ACCESS_TOUCHES = {
    "verification_count": "last_verified_at",
    "full_access_count": "last_full_access_at",
    "download_count": "last_downloaded_at",
}


def utcnow() -> datetime:
    return datetime.now(UTC)


def generate_document_id() -> str:
    """DOC- followed by 8 upper-case hex characters."""
    return f"DOC-{uuid.uuid4().hex[:8].upper()}"


def generate_access_secret() -> str:
    """8 random bytes as 16 upper-case hex characters."""
    return secrets.token_bytes(8).hex().upper()


def generate_batch_id(merkle_root: str) -> str:
    return f"BATCH-{merkle_root[:12].upper()}-{uuid.uuid4().hex[:6].upper()}"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_time(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class PrimarySummary:
    """Small summary that is safe to disclose without the access secret."""

    holder: str | None = None
    document_type: str | None = None
    issuing_authority: str | None = None
    confidence: float | None = None
    integrity_hash: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "holder": self.holder,
            "document_type": self.document_type,
            "issuing_authority": self.issuing_authority,
            "confidence": self.confidence,
            "integrity_hash": self.integrity_hash,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "PrimarySummary":
        data = data or {}
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValidationError(f"Unknown summary fields: {sorted(unknown)}")
        confidence = data.get("confidence")
        if confidence is not None:
            try:
                confidence = float(confidence)
            except (TypeError, ValueError):
                raise ValidationError("Summary confidence must be a number")
        return cls(
            holder=data.get("holder"),
            document_type=data.get("document_type"),
            issuing_authority=data.get("issuing_authority"),
            confidence=confidence,
            integrity_hash=data.get("integrity_hash"),
        )


@dataclass
class DocumentRecord:
    """One issued document and its access counters."""

    id: str
    content_hash: str
    access_secret: str
    primary_summary: PrimarySummary = field(default_factory=PrimarySummary)
    full_detail: dict[str, Any] = field(default_factory=dict)
    title: str = DEFAULT_TITLE
    issuer: str | None = None

    verification_count: int = 0
    full_access_count: int = 0
    download_count: int = 0
    last_verified_at: datetime | None = None
    last_full_access_at: datetime | None = None
    last_downloaded_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)

    anchor_ref: str | None = None
    batch_id: str | None = None
    revoked_at: datetime | None = None
    revocation_reason: str | None = None

    file_name: str | None = None
    file_type: str | None = None
    file_size: int | None = None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    @property
    def status(self) -> str:
        return "revoked" if self.is_revoked else "valid"

    def counters(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in COUNTER_FIELDS}

    def statistics(self) -> dict[str, Any]:
        """Access statistics, disclosed only at full level."""
        stats: dict[str, Any] = self.counters()
        for name in TIMESTAMP_FIELDS:
            stats[name] = _iso(getattr(self, name))
        return stats

    def public_view(self) -> dict[str, Any]:
        """Listing view; never carries the secret or full detail."""
        return {
            "id": self.id,
            "title": self.title,
            "content_hash": self.content_hash,
            "issuer": self.issuer,
            "status": self.status,
            "created_at": _iso(self.created_at),
            "anchored": self.anchor_ref is not None or self.batch_id is not None,
            "batch_id": self.batch_id,
        }

    def to_dict(self) -> dict[str, Any]:
        """Full persistence form (includes the secret; never send to clients)."""
        return {
            "id": self.id,
            "content_hash": self.content_hash,
            "access_secret": self.access_secret,
            "primary_summary": self.primary_summary.to_dict(),
            "full_detail": self.full_detail,
            "title": self.title,
            "issuer": self.issuer,
            "verification_count": self.verification_count,
            "full_access_count": self.full_access_count,
            "download_count": self.download_count,
            "last_verified_at": _iso(self.last_verified_at),
            "last_full_access_at": _iso(self.last_full_access_at),
            "last_downloaded_at": _iso(self.last_downloaded_at),
            "created_at": _iso(self.created_at),
            "anchor_ref": self.anchor_ref,
            "batch_id": self.batch_id,
            "revoked_at": _iso(self.revoked_at),
            "revocation_reason": self.revocation_reason,
            "file_name": self.file_name,
            "file_type": self.file_type,
            "file_size": self.file_size,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DocumentRecord":
        values = dict(data)
        values["primary_summary"] = PrimarySummary.from_dict(values.get("primary_summary"))
        values["full_detail"] = dict(values.get("full_detail") or {})
        for name in (*TIMESTAMP_FIELDS, "created_at", "revoked_at"):
            values[name] = _parse_time(values.get(name))
        if values["created_at"] is None:
            values["created_at"] = utcnow()
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in values.items() if k in known})

    def copy(self) -> "DocumentRecord":
        return replace(
            self,
            primary_summary=replace(self.primary_summary),
            full_detail=dict(self.full_detail),
        )


@dataclass(frozen=True)
class BatchAnchor:
    """An anchored Merkle batch. Immutable once written."""

    batch_id: str
    merkle_root: str
    leaf_count: int
    issuer: str | None
    anchored_at: datetime
    leaves: tuple[str, ...] = ()
    transaction_ref: str | None = None

    def __post_init__(self):
        if self.leaf_count != len(self.leaves):
            raise ValidationError(
                f"leaf_count {self.leaf_count} does not match {len(self.leaves)} leaves"
            )

    def to_dict(self, include_leaves: bool = True) -> dict[str, Any]:
        data = {
            "batch_id": self.batch_id,
            "merkle_root": self.merkle_root,
            "leaf_count": self.leaf_count,
            "issuer": self.issuer,
            "anchored_at": _iso(self.anchored_at),
            "transaction_ref": self.transaction_ref,
        }
        if include_leaves:
            data["leaves"] = list(self.leaves)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BatchAnchor":
        return cls(
            batch_id=data["batch_id"],
            merkle_root=data["merkle_root"],
            leaf_count=int(data["leaf_count"]),
            issuer=data.get("issuer"),
            anchored_at=_parse_time(data.get("anchored_at")) or utcnow(),
            leaves=tuple(data.get("leaves") or ()),
            transaction_ref=data.get("transaction_ref"),
        )
