"""
Flask middleware for request logging and metrics.

Provides:
- Request ID tracking (X-Request-ID in and out)
- Request timing and per-route counters
- Structured request logs carrying the request context
"""

import logging
import re
import time
import uuid

from flask import Flask, Response, g, request

from monitoring.logging import clear_request_context, set_request_context
from monitoring.metrics import MetricsCollector

logger = logging.getLogger("docverify.request")

_DYNAMIC_SEGMENTS = (
    (re.compile(r"^DOC-[0-9A-F]{8}$", re.IGNORECASE), ":document_id"),
    (re.compile(r"^BATCH-[0-9A-Z-]+$", re.IGNORECASE), ":batch_id"),
    (re.compile(r"^(0x)?[0-9a-f]{64}$", re.IGNORECASE), ":hash"),
    (re.compile(r"^\d+$"), ":id"),
)


def normalize_path(path: str) -> str:
    """
    Normalize path for metrics labels.

    Replaces document ids, batch ids and digests with placeholders to keep
    label cardinality bounded.
    """
    normalized = []
    for part in path.strip("/").split("/"):
        for pattern, placeholder in _DYNAMIC_SEGMENTS:
            if pattern.match(part):
                normalized.append(placeholder)
                break
        else:
            normalized.append(part)
    return "/" + "/".join(normalized)


def setup_request_logging(app: Flask, metrics: MetricsCollector) -> None:
    """
    Set up request logging middleware for a Flask app.

    Args:
        app: Flask application instance
        metrics: Collector receiving request counts and latency
    """

    @app.before_request
    def before_request():
        g.request_id = request.headers.get("X-Request-ID", uuid.uuid4().hex[:8])
        g.start_time = time.perf_counter()
        set_request_context(request_id=g.request_id, method=request.method, path=request.path)
        metrics.increment_gauge("http_requests_active")

    @app.after_request
    def after_request(response: Response) -> Response:
        duration_ms = (time.perf_counter() - getattr(g, "start_time", time.perf_counter())) * 1000
        path = normalize_path(request.path)
        status = response.status_code

        metrics.increment(
            "http_requests_total",
            labels={"method": request.method, "path": path, "status": str(status)},
        )
        metrics.timing(
            "http_request_duration_ms",
            duration_ms,
            labels={"method": request.method, "path": path},
        )

        if status >= 500:
            log = logger.error
        elif status >= 400:
            log = logger.warning
        else:
            log = logger.info
        log(
            "%s %s -> %d",
            request.method,
            request.path,
            status,
            extra={"status_code": status, "duration_ms": round(duration_ms, 2)},
        )

        if hasattr(g, "request_id"):
            response.headers["X-Request-ID"] = g.request_id
        return response

    @app.teardown_request
    def teardown_request(exception=None):
        metrics.decrement_gauge("http_requests_active")
        if exception:
            logger.error(
                "Request failed with exception",
                exc_info=exception,
                extra={"path": request.path, "method": request.method},
            )
        clear_request_context()
