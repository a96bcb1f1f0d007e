"""
DocVerify error taxonomy.

Every error carries a machine-readable ``kind`` and the HTTP status the API
layer maps it to. Messages are terse and never include credential material.
"""

from typing import Any


class DocVerifyError(Exception):
    """Base exception for all DocVerify errors."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str = "", **details: Any):
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Response body for this error (no internals, no secrets)."""
        body = {"error": self.message, "kind": self.kind}
        body.update(self.details)
        return body


class ValidationError(DocVerifyError):
    """Raised when caller input is malformed."""

    kind = "validation_error"
    status_code = 400


class NotFoundError(DocVerifyError):
    """Raised when a requested entity does not exist."""

    kind = "not_found"
    status_code = 404


class RecordNotFoundError(NotFoundError):
    """Raised by record stores for unknown document or batch ids."""


class ProofNotFoundError(NotFoundError):
    """Raised when a requested leaf is not part of a batch."""

    kind = "proof_not_found"


class AuthenticationError(DocVerifyError):
    """Raised when an issuer operation is called without an API key."""

    kind = "unauthenticated"
    status_code = 401


class UnauthorizedError(DocVerifyError):
    """Raised when a secret or API key does not match."""

    kind = "unauthorized"
    status_code = 403


class RateLimitedError(DocVerifyError):
    """Raised when a caller exceeds its quota for an action."""

    kind = "rate_limited"
    status_code = 429

    def __init__(self, result: Any, action: str = ""):
        super().__init__(
            "Too many requests",
            remaining=result.remaining,
            reset_in_seconds=result.reset_in_seconds,
        )
        self.result = result
        self.action = action


class ConflictError(DocVerifyError):
    """Raised when a write conflicts with existing immutable state."""

    kind = "conflict"
    status_code = 409


class DuplicateRecordError(ConflictError):
    """Raised when creating a record whose id already exists."""

    kind = "duplicate_record"


class BatchExistsError(ConflictError):
    """Raised when a batch id is already anchored with different leaves."""

    kind = "batch_exists"


class AuthNotConfiguredError(DocVerifyError):
    """Raised when API keys are required but none are configured."""

    kind = "auth_not_configured"
    status_code = 503


class StoreUnavailableError(DocVerifyError):
    """Raised when the record store cannot be reached."""

    kind = "store_unavailable"
    status_code = 503


class LedgerError(DocVerifyError):
    """Raised when the ledger rejects a request."""

    kind = "ledger_error"
    status_code = 502


class LedgerUnavailableError(LedgerError):
    """Raised when the ledger cannot be reached or times out."""

    kind = "ledger_unavailable"
    status_code = 503
