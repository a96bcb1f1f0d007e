"""
Monitoring infrastructure for DocVerify.

This package provides:
- Application metrics collection (counters, gauges, histograms)
- Structured logging with JSON output and credential redaction
- Request timing middleware

Usage:
    from monitoring import MetricsCollector, configure_logging

    configure_logging(level="INFO", json_output=True)
    metrics = MetricsCollector()
    metrics.increment("verifications_total", labels={"level": "partial"})
"""

from monitoring.logging import configure_logging
from monitoring.metrics import MetricsCollector
from monitoring.middleware import setup_request_logging

__all__ = [
    "MetricsCollector",
    "configure_logging",
    "setup_request_logging",
]
