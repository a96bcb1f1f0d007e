"""
Core operations blueprint.

This blueprint handles:
- /health: collaborator availability
- /metrics: Prometheus-compatible metrics
- /metrics/json: the same metrics as JSON
"""

from flask import Blueprint, Response, jsonify

from .utils import caller_identity, get_service

core_bp = Blueprint("core", __name__)


@core_bp.route("/health", methods=["GET"])
def health():
    """
    Health check.

    Returns 200 when the record store and ledger are reachable, 503 with the
    same body when either is degraded.
    """
    report = get_service().health(caller_identity())
    status = 200 if report["status"] == "healthy" else 503
    return jsonify(report), status


@core_bp.route("/metrics", methods=["GET"])
def prometheus_metrics():
    """Metrics in Prometheus text exposition format."""
    service = get_service()
    service.consume(caller_identity(), "metrics")
    return Response(service.metrics.to_prometheus(), mimetype="text/plain; charset=utf-8")


@core_bp.route("/metrics/json", methods=["GET"])
def json_metrics():
    service = get_service()
    service.consume(caller_identity(), "metrics")
    return jsonify(service.metrics.get_all())
