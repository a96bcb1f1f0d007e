"""
HTTP ledger adapter.

Talks to a ledger gateway service over HTTP. The gateway owns chain access
(keys, gas, confirmations); this adapter only speaks its small JSON API:

    POST /anchors                  {"digest", "metadata"} -> 201, or 409 if anchored
    GET  /anchors/<digest>         -> 200 status, or 404 if not anchored
    POST /anchors/<digest>/revoke  -> 200
    GET  /health                   -> 200

Writes are retried with exponential backoff behind a circuit breaker.
Repeating an anchor is safe because the gateway answers 409 for a digest it
already holds.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any
from urllib.parse import urljoin

import requests

from errors import LedgerError, LedgerUnavailableError
from fingerprint import normalize_digest
from ledger.base import AnchorReceipt, LedgerAdapter, LedgerStatus, RevocationReceipt
from retry import CircuitBreaker, CircuitOpenError, RetryConfig, retry_call

logger = logging.getLogger(__name__)


def _parse_time(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


class HttpLedgerAdapter(LedgerAdapter):
    """Ledger gateway client built on a pooled requests.Session."""

    DEFAULT_TIMEOUT = 5.0  # seconds

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        retry_config: RetryConfig | None = None,
        session: requests.Session | None = None,
    ):
        """
        Args:
            base_url: Gateway root URL
            api_key: Bearer token for the gateway
            timeout: Per-request timeout in seconds
            retry_config: Backoff settings for writes
            session: Pre-built session (tests inject a mock)
        """
        self.base_url = base_url.rstrip("/") + "/"
        self.timeout = timeout
        # Only outages are worth retrying; a 4xx will not change on repeat
        self.retry_config = replace(
            retry_config or RetryConfig(), retryable_exceptions=(LedgerUnavailableError,)
        )
        self.circuit_breaker = CircuitBreaker.from_config("ledger", self.retry_config)

        self._session = session or requests.Session()
        if api_key:
            self._session.headers["Authorization"] = f"Bearer {api_key}"
        self._session.headers["Content-Type"] = "application/json"
        self._session.headers["User-Agent"] = "DocVerify-Ledger/1.0"

    def _request(self, method: str, path: str, payload: dict | None = None) -> requests.Response:
        url = urljoin(self.base_url, path)
        try:
            response = self._session.request(method, url, json=payload, timeout=self.timeout)
        except requests.Timeout:
            raise LedgerUnavailableError("Ledger request timed out")
        except requests.RequestException as e:
            raise LedgerUnavailableError(f"Ledger unreachable: {e.__class__.__name__}")

        if response.status_code >= 500:
            raise LedgerUnavailableError(f"Ledger returned {response.status_code}")
        return response

    def _write(self, method: str, path: str, payload: dict | None = None) -> requests.Response:
        try:
            return retry_call(
                self._request,
                args=(method, path, payload),
                config=self.retry_config,
                circuit_breaker=self.circuit_breaker,
            )
        except CircuitOpenError as e:
            raise LedgerUnavailableError(str(e))

    def anchor(self, digest: str, metadata: dict[str, Any] | None = None) -> AnchorReceipt:
        digest = normalize_digest(digest)
        response = self._write("POST", "anchors", {"digest": digest, "metadata": metadata or {}})

        if response.status_code not in (200, 201, 409):
            raise LedgerError(f"Ledger rejected anchor ({response.status_code})")

        body = response.json()
        already = response.status_code == 409
        if already:
            logger.info("Digest %s already anchored", digest[:16])
        return AnchorReceipt(
            digest=digest,
            transaction_ref=body.get("transaction_ref", ""),
            already_anchored=already,
            anchored_at=_parse_time(body.get("anchored_at")),
        )

    def status(self, digest: str) -> LedgerStatus:
        digest = normalize_digest(digest)
        response = self._request("GET", f"anchors/{digest}")

        if response.status_code == 404:
            return LedgerStatus(anchored=False)
        if response.status_code != 200:
            raise LedgerError(f"Ledger status failed ({response.status_code})")

        body = response.json()
        return LedgerStatus(
            anchored=True,
            revoked=bool(body.get("revoked", False)),
            anchored_at=_parse_time(body.get("anchored_at")),
            issuer=body.get("issuer"),
            transaction_ref=body.get("transaction_ref"),
        )

    def revoke(self, digest: str) -> RevocationReceipt:
        digest = normalize_digest(digest)
        response = self._write("POST", f"anchors/{digest}/revoke")

        if response.status_code == 404:
            raise LedgerError("Digest is not anchored")
        if response.status_code != 200:
            raise LedgerError(f"Ledger rejected revocation ({response.status_code})")

        return RevocationReceipt(
            digest=digest, transaction_ref=response.json().get("transaction_ref", "")
        )

    def is_available(self) -> bool:
        try:
            return self._request("GET", "health").status_code == 200
        except LedgerUnavailableError:
            return False

    def get_info(self) -> dict[str, Any]:
        info = super().get_info()
        info.update(
            {
                "base_url": self.base_url,
                "circuit_state": self.circuit_breaker.state.value,
            }
        )
        return info
