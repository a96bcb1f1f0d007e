"""
Verification blueprint.

- POST /verify: tiered verification, full detail with the access key
- GET /verify/<document_id>/quick: summary-only scan check
"""

from flask import Blueprint, jsonify

from .utils import caller_identity, get_json_body, get_service, validate_json_schema

verify_bp = Blueprint("verify", __name__)


def _respond(result):
    return jsonify(result.to_dict()), 200 if result.found else 404


@verify_bp.route("/verify", methods=["POST"])
def verify_document():
    """
    Verify a document.

    Request body:
    {
        "document_id": "DOC-1A2B3C4D",
        "access_key": "..." (optional; unlocks full detail)
    }

    Returns:
        Partial view without the key (or with a wrong one), full view with
        the right key, 404 with level "invalid" for unknown ids
    """
    data = validate_json_schema(
        get_json_body(),
        required_fields={"document_id": str},
        optional_fields={"access_key": str},
        max_lengths={"document_id": 64, "access_key": 256},
    )
    result = get_service().verify(
        caller_identity(), data["document_id"], data.get("access_key")
    )
    return _respond(result)


@verify_bp.route("/verify/<document_id>/quick", methods=["GET"])
def quick_verify(document_id):
    result = get_service().quick_verify(caller_identity(), document_id)
    return _respond(result)
