"""
DocVerify - Anchoring API Blueprint

REST API endpoints for Merkle batch anchoring and ledger lookups:
- Anchor a batch of digests as one root
- Retrieve batches and inclusion proofs
- Verify inclusion of a digest
- On-ledger status and cost estimation
"""

from flask import Blueprint, jsonify, request

from errors import ValidationError
from fingerprint import normalize_digest

from .utils import (
    caller_identity,
    get_json_body,
    get_service,
    require_api_key,
    validate_json_schema,
)

anchoring_bp = Blueprint("anchoring", __name__)


# =============================================================================
# Batch Endpoints
# =============================================================================


@anchoring_bp.route("/batches", methods=["POST"])
@require_api_key
def anchor_batch():
    """
    Anchor a batch of digests.

    Request body:
        {
            "leaves": ["<hex digest>", ...],
            "batch_id": "...",      // Optional
            "issuer": "...",        // Optional
            "document_ids": [...]   // Optional, issued documents to link
        }

    Returns:
        201 with the batch when anchored, 200 when an identical batch
        already existed
    """
    data = validate_json_schema(
        get_json_body(),
        required_fields={"leaves": list},
        optional_fields={"batch_id": str, "issuer": str, "document_ids": list},
        max_lengths={"batch_id": 128, "issuer": 500},
    )
    batch, created = get_service().anchor_batch(
        caller_identity(),
        data["leaves"],
        batch_id=data.get("batch_id"),
        issuer=data.get("issuer"),
        document_ids=data.get("document_ids"),
    )
    return jsonify({**batch.to_dict(), "created": created}), 201 if created else 200


@anchoring_bp.route("/batches/<batch_id>", methods=["GET"])
def get_batch(batch_id):
    include_leaves = request.args.get("leaves", "true").lower() != "false"
    batch = get_service().get_batch(caller_identity(), batch_id)
    return jsonify(batch.to_dict(include_leaves=include_leaves))


@anchoring_bp.route("/batches/<batch_id>/proof/<leaf>", methods=["GET"])
def get_proof(batch_id, leaf):
    """
    Inclusion proof for a digest in a batch.

    Returns:
        The proof, or 404 (kind proof_not_found) when the digest is not a
        leaf of the batch
    """
    proof = get_service().get_proof(caller_identity(), batch_id, leaf)
    return jsonify({"batch_id": batch_id, **proof.to_dict()})


@anchoring_bp.route("/batches/<batch_id>/verify", methods=["POST"])
def verify_inclusion(batch_id):
    """
    Verify that a digest is part of a batch.

    Request body:
        {
            "leaf": "<hex digest>",
            "proof": ["<sibling>", ...]   // Optional; steps or plain hashes
        }
    """
    data = validate_json_schema(
        get_json_body(), required_fields={"leaf": str}, optional_fields={"proof": list}
    )

    proof = data.get("proof")
    if proof is not None:
        siblings = []
        for step in proof:
            if isinstance(step, dict):
                step = step.get("hash")
            if not isinstance(step, str):
                raise ValidationError("Proof steps must be digests")
            siblings.append(step)
        proof = siblings

    result = get_service().verify_inclusion(caller_identity(), batch_id, data["leaf"], proof)
    return jsonify(result)


# =============================================================================
# Ledger Endpoints
# =============================================================================


@anchoring_bp.route("/ledger/estimate", methods=["GET"])
def estimate_cost():
    """Cost estimate for anchoring ``batch_size`` documents as one root."""
    try:
        batch_size = int(request.args.get("batch_size", 1))
    except ValueError:
        raise ValidationError("batch_size must be an integer")
    return jsonify(get_service().estimate_cost(caller_identity(), batch_size))


@anchoring_bp.route("/ledger/<digest>", methods=["GET"])
def ledger_status(digest):
    """
    On-ledger status of a digest.

    Returns {"state": "unknown"} (still 200) when the ledger cannot answer.
    """
    status = get_service().ledger_status(caller_identity(), digest)
    return jsonify({"digest": normalize_digest(digest), **status})
