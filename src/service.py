"""
DocVerify service facade.

Wires the record store, ledger, cache, locks and rate limiter together and
exposes every operation the API and CLI use. Each operation is rate limited
on the caller's identity before any work is done.

Usage:
    from config import DocVerifyConfig
    from service import DocVerifyService

    service = DocVerifyService.from_config(DocVerifyConfig.from_env())
    issued = service.issue("ip:127.0.0.1", content=b"hello")
    result = service.verify("ip:127.0.0.1", issued.record.id)
"""

import logging
from collections.abc import Mapping
from typing import Any

from anchoring import BatchAnchorService, LedgerStatusResolver
from config import DocVerifyConfig
from errors import RateLimitedError, ValidationError
from issuance import DocumentIssuer, IssuedDocument
from ledger import create_ledger
from ledger.base import LedgerAdapter
from merkle import MerkleProof
from models import BatchAnchor, DocumentRecord
from monitoring.metrics import MetricsCollector
from rate_limiter import RateLimiter, RateLimitResult
from records import create_record_store
from records.base import RecordStore
from scaling import create_cache, create_lock_manager
from scaling.cache import Cache
from scaling.locking import LockManager
from verification import VerificationEngine, VerificationResult

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 100
MAX_BULK_ITEMS = 500


def _require_id(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    return value.strip()


class DocVerifyService:
    """Rate-limited entry point for all DocVerify operations."""

    def __init__(
        self,
        store: RecordStore,
        ledger: LedgerAdapter,
        cache: Cache,
        locks: LockManager,
        limiter: RateLimiter,
        config: DocVerifyConfig | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self.config = config or DocVerifyConfig()
        self.metrics = metrics or MetricsCollector()
        self.store = store
        self.ledger = ledger
        self.cache = cache
        self.locks = locks
        self.limiter = limiter

        self.ledger_status_resolver = LedgerStatusResolver(
            ledger,
            cache,
            ttl=self.config.ledger_cache_ttl,
            timeout=self.config.ledger_timeout,
            on_unknown=lambda: self.metrics.increment("ledger_unknown_total"),
        )
        self.verifier = VerificationEngine(
            store,
            cache,
            self.ledger_status_resolver,
            partial_fields=self.config.partial_fields,
            cache_ttl=self.config.verify_cache_ttl,
            on_verified=lambda level: self.metrics.increment(
                "verifications_total", labels={"level": level}
            ),
        )
        self.batches = BatchAnchorService(
            store, ledger, locks, lock_timeout=self.config.batch_lock_timeout
        )
        self.issuer = DocumentIssuer(
            store, ledger, self.verifier, self.batches, self.ledger_status_resolver
        )

    @classmethod
    def from_config(cls, config: DocVerifyConfig) -> "DocVerifyService":
        """Build every collaborator from configuration."""
        metrics = MetricsCollector()

        service = cls(
            store=create_record_store(config),
            ledger=create_ledger(config),
            cache=create_cache(
                config, on_fallback=lambda: metrics.increment("cache_fallback_total")
            ),
            locks=create_lock_manager(config),
            limiter=RateLimiter(
                config.rate_limit,
                on_reject=lambda action: metrics.increment(
                    "rate_limited_total", labels={"action": action}
                ),
            ),
            config=config,
            metrics=metrics,
        )
        logger.info("DocVerify service ready: %s", config.summary())
        return service

    # -- rate limiting --------------------------------------------------------

    def consume(self, identity: str, action: str) -> RateLimitResult:
        """
        Consume one slot of ``action`` for ``identity``.

        Raises:
            RateLimitedError: quota exhausted
        """
        result = self.limiter.check_and_consume(identity, action)
        if not result.allowed:
            raise RateLimitedError(result, action)
        return result

    # -- verification ---------------------------------------------------------

    def verify(
        self, identity: str, document_id: str, secret: str | None = None
    ) -> VerificationResult:
        self.consume(identity, "verify")
        return self.verifier.verify(_require_id(document_id, "document_id"), secret)

    def quick_verify(self, identity: str, document_id: str) -> VerificationResult:
        self.consume(identity, "quick_verify")
        return self.verifier.quick_verify(_require_id(document_id, "document_id"))

    def download(self, identity: str, document_id: str, secret: str | None) -> dict[str, Any]:
        self.consume(identity, "download")
        return self.verifier.authorize_download(_require_id(document_id, "document_id"), secret)

    # -- issuance -------------------------------------------------------------

    def issue(self, identity: str, **kwargs: Any) -> IssuedDocument:
        """Issue one document; keyword arguments as for DocumentIssuer.issue."""
        self.consume(identity, "issue")
        return self.issuer.issue(**kwargs)

    def issue_bulk(
        self,
        identity: str,
        items: list[Mapping[str, Any]],
        batch_id: str | None = None,
        issuer: str | None = None,
    ) -> tuple[list[IssuedDocument], BatchAnchor]:
        self.consume(identity, "issue")
        if not isinstance(items, list):
            raise ValidationError("documents must be a list")
        if len(items) > MAX_BULK_ITEMS:
            raise ValidationError(f"At most {MAX_BULK_ITEMS} documents per batch")
        return self.issuer.issue_bulk(items, batch_id=batch_id, issuer=issuer)

    def update_content(self, identity: str, document_id: str, **kwargs: Any) -> DocumentRecord:
        self.consume(identity, "update")
        return self.issuer.update_content(_require_id(document_id, "document_id"), **kwargs)

    def revoke(
        self, identity: str, document_id: str, reason: str | None = None
    ) -> DocumentRecord:
        self.consume(identity, "revoke")
        return self.issuer.revoke(_require_id(document_id, "document_id"), reason)

    def list_documents(
        self, identity: str, limit: int = 50, offset: int = 0
    ) -> list[dict[str, Any]]:
        """Public views of issued documents, newest first. Never includes secrets."""
        self.consume(identity, "list")
        limit = max(1, min(int(limit), MAX_LIST_LIMIT))
        offset = max(0, int(offset))
        return [record.public_view() for record in self.store.list_records(limit, offset)]

    # -- batches and ledger ---------------------------------------------------

    def anchor_batch(
        self,
        identity: str,
        leaves: list[str],
        batch_id: str | None = None,
        issuer: str | None = None,
        document_ids: list[str] | None = None,
    ) -> tuple[BatchAnchor, bool]:
        self.consume(identity, "anchor")
        if not isinstance(leaves, list):
            raise ValidationError("leaves must be a list of digests")
        if document_ids is not None and not all(isinstance(d, str) for d in document_ids):
            raise ValidationError("document_ids must be a list of document ids")
        return self.batches.anchor_batch(
            leaves, batch_id=batch_id, issuer=issuer, document_ids=document_ids
        )

    def get_batch(self, identity: str, batch_id: str) -> BatchAnchor:
        self.consume(identity, "proof")
        return self.batches.get_batch(_require_id(batch_id, "batch_id"))

    def get_proof(self, identity: str, batch_id: str, leaf: str) -> MerkleProof:
        self.consume(identity, "proof")
        return self.batches.get_proof(_require_id(batch_id, "batch_id"), leaf)

    def verify_inclusion(
        self,
        identity: str,
        batch_id: str,
        leaf: str,
        proof: MerkleProof | list[str] | None = None,
    ) -> dict[str, Any]:
        self.consume(identity, "proof")
        return self.batches.verify_inclusion(_require_id(batch_id, "batch_id"), leaf, proof)

    def ledger_status(self, identity: str, digest: str) -> dict[str, Any]:
        self.consume(identity, "ledger")
        return self.ledger_status_resolver.status(digest)

    def estimate_cost(self, identity: str, batch_size: int = 1) -> dict[str, Any]:
        self.consume(identity, "ledger")
        if batch_size < 1:
            raise ValidationError("batch_size must be at least 1")
        return self.ledger.estimate_cost(batch_size)

    # -- operations -----------------------------------------------------------

    def health(self, identity: str) -> dict[str, Any]:
        """Collaborator availability. Degraded rather than failing when one is down."""
        self.consume(identity, "health")
        store = self.store.get_info()
        ledger = self.ledger.get_info()
        return {
            "status": "healthy" if store["available"] and ledger["available"] else "degraded",
            "service": "DocVerify",
            "config": self.config.summary(),
            "checks": {
                "store": store,
                "ledger": ledger,
                "cache": self.cache.get_stats(),
                "rate_limiter": self.limiter.is_healthy(),
            },
        }

    def close(self) -> None:
        self.ledger_status_resolver.close()
        self.store.close()
