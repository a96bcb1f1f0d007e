"""
DocVerify API Package.

This package contains the Flask application factory and its blueprints.

Blueprints:
- core: Health and metrics
- verify: Tiered verification
- documents: Issuance, listing, revocation, content updates, downloads
- anchoring: Merkle batches, inclusion proofs, ledger status
"""

import logging

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from api.anchoring import anchoring_bp
from api.core import core_bp
from api.documents import documents_bp
from api.verify import verify_bp
from errors import DocVerifyError, RateLimitedError
from monitoring import setup_request_logging
from rate_limiter import create_rate_limit_response

logger = logging.getLogger(__name__)

# Uploaded files are hashed in memory
MAX_CONTENT_LENGTH = 16 * 1024 * 1024

# List of all blueprints for registration
# Tuple format: (blueprint, url_prefix)
ALL_BLUEPRINTS = [
    (core_bp, ""),
    (verify_bp, ""),
    (documents_bp, ""),
    (anchoring_bp, ""),
]


def register_blueprints(app):
    """Register all blueprints with the Flask app."""
    for blueprint, url_prefix in ALL_BLUEPRINTS:
        app.register_blueprint(blueprint, url_prefix=url_prefix)


def register_error_handlers(app):
    """Map DocVerify errors to JSON responses; never leak internals."""

    @app.errorhandler(RateLimitedError)
    def rate_limited(error):
        body, status, headers = create_rate_limit_response(error.result)
        return jsonify(body), status, headers

    @app.errorhandler(DocVerifyError)
    def docverify_error(error):
        if error.status_code >= 500:
            logger.warning("Request failed: %s (%s)", error.kind, error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def http_error(error):
        kind = "not_found" if error.code == 404 else "http_error"
        return jsonify({"error": error.name, "kind": kind}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        logger.exception("Unhandled error")
        return jsonify({"error": "Internal server error", "kind": "error"}), 500


def create_app(service=None, config=None):
    """
    Create the DocVerify Flask application.

    Args:
        service: Pre-built DocVerifyService (tests inject one)
        config: DocVerifyConfig used to build the service when none is given

    Returns:
        Flask app
    """
    if service is None:
        from config import DocVerifyConfig
        from service import DocVerifyService

        service = DocVerifyService.from_config(config or DocVerifyConfig.from_env())

    app = Flask(__name__)
    app.json.sort_keys = False
    app.config["MAX_CONTENT_LENGTH"] = MAX_CONTENT_LENGTH
    app.extensions["docverify"] = service

    setup_request_logging(app, service.metrics)
    register_error_handlers(app)
    register_blueprints(app)
    return app
