"""
Document issuance and management blueprint.

This blueprint handles:
- Issuing documents from JSON fields or an uploaded file
- Bulk issuance anchored as one Merkle batch
- Listing, revoking and updating documents
- Authorizing downloads of the original file
"""

import json

from flask import Blueprint, jsonify, request

from errors import ValidationError

from .utils import (
    caller_identity,
    get_json_body,
    get_service,
    require_api_key,
    validate_json_schema,
    validate_pagination_params,
)

documents_bp = Blueprint("documents", __name__)

ISSUE_FIELDS = {
    "fields": dict,
    "content": str,
    "title": str,
    "summary": dict,
    "detail": dict,
    "issuer": str,
    "anchor": bool,
}

ISSUE_MAX_LENGTHS = {
    "content": 1_000_000,
    "title": 500,
    "issuer": 500,
}


def _issue_kwargs(data) -> dict:
    """Keyword arguments for issuance taken from a validated payload."""
    validate_json_schema(
        data, required_fields={}, optional_fields=ISSUE_FIELDS, max_lengths=ISSUE_MAX_LENGTHS
    )
    return {name: data[name] for name in ISSUE_FIELDS if data.get(name) is not None}


@documents_bp.route("/documents", methods=["POST"])
@require_api_key
def issue_document():
    """
    Issue a document from structured fields (or a text body).

    Request body:
    {
        "fields": {...}            (hashed canonically) or "content": "...",
        "title": "...",
        "summary": {"holder": "...", "document_type": "..."},
        "detail": {...}            (optional; defaults to fields),
        "issuer": "...",
        "anchor": false
    }

    Returns:
        201 with the document, including its access key (shown only once)
    """
    issued = get_service().issue(caller_identity(), **_issue_kwargs(get_json_body()))
    return jsonify(issued.to_dict()), 201


@documents_bp.route("/documents/upload", methods=["POST"])
@require_api_key
def upload_document():
    """
    Issue a document from an uploaded file (multipart field "file").

    Optional form fields: title, issuer, anchor ("true"/"false"), and
    summary / detail as JSON objects.
    """
    upload = request.files.get("file")
    if upload is None:
        raise ValidationError("Missing file")

    content = upload.read()
    if not content:
        raise ValidationError("Uploaded file is empty")

    kwargs = {
        "content": content,
        "title": request.form.get("title") or upload.filename,
        "issuer": request.form.get("issuer"),
        "anchor": request.form.get("anchor", "false").lower() == "true",
        "file_name": upload.filename,
        "file_type": upload.mimetype,
        "file_size": len(content),
    }
    for name in ("summary", "detail"):
        raw = request.form.get(name)
        if raw:
            try:
                value = json.loads(raw)
            except json.JSONDecodeError:
                raise ValidationError(f"Field '{name}' must be a JSON object")
            if not isinstance(value, dict):
                raise ValidationError(f"Field '{name}' must be a JSON object")
            kwargs[name] = value

    issued = get_service().issue(caller_identity(), **kwargs)
    return jsonify(issued.to_dict()), 201


@documents_bp.route("/documents/bulk", methods=["POST"])
@require_api_key
def issue_bulk():
    """
    Issue several documents and anchor them as one batch.

    Request body:
    {
        "documents": [{"fields": {...}, "title": "..."}, ...],
        "batch_id": "..." (optional),
        "issuer": "..."
    }
    """
    data = validate_json_schema(
        get_json_body(),
        required_fields={"documents": list},
        optional_fields={"batch_id": str, "issuer": str},
        max_lengths={"batch_id": 128, "issuer": 500},
    )
    items = []
    for item in data["documents"]:
        kwargs = _issue_kwargs(item)
        kwargs.pop("anchor", None)
        items.append(kwargs)

    issued, batch = get_service().issue_bulk(
        caller_identity(), items, batch_id=data.get("batch_id"), issuer=data.get("issuer")
    )
    return jsonify(
        {
            "batch": batch.to_dict(include_leaves=False),
            "documents": [doc.to_dict() for doc in issued],
        }
    ), 201


@documents_bp.route("/documents", methods=["GET"])
@require_api_key
def list_documents():
    """
    List issued documents, newest first.

    Query params:
        limit: max results (default 50, max 100)
        offset: pagination offset
    """
    limit, offset = validate_pagination_params(
        request.args.get("limit"), request.args.get("offset")
    )
    documents = get_service().list_documents(caller_identity(), limit=limit, offset=offset)
    return jsonify({"count": len(documents), "limit": limit, "offset": offset, "documents": documents})


@documents_bp.route("/documents/<document_id>/revoke", methods=["POST"])
@require_api_key
def revoke_document(document_id):
    data = request.get_json(silent=True) or {}
    validate_json_schema(
        data, required_fields={}, optional_fields={"reason": str}, max_lengths={"reason": 2000}
    )
    record = get_service().revoke(caller_identity(), document_id, data.get("reason"))
    return jsonify(
        {
            **record.public_view(),
            "revoked_at": record.revoked_at.isoformat() if record.revoked_at else None,
            "revocation_reason": record.revocation_reason,
        }
    )


@documents_bp.route("/documents/<document_id>/content", methods=["PUT"])
@require_api_key
def update_content(document_id):
    """
    Replace a document's content.

    Request body: "fields" or "content", plus optional "summary", "detail"
    and "anchor".
    """
    kwargs = _issue_kwargs(get_json_body())
    for name in ("title", "issuer"):
        kwargs.pop(name, None)
    record = get_service().update_content(caller_identity(), document_id, **kwargs)
    return jsonify(record.public_view())


@documents_bp.route("/documents/<document_id>/download", methods=["POST"])
def download_document(document_id):
    """
    Authorize a download of the original file.

    Request body: {"access_key": "..."}; 403 without the right key or for a
    revoked document.
    """
    data = validate_json_schema(
        request.get_json(silent=True) or {},
        required_fields={},
        optional_fields={"access_key": str},
        max_lengths={"access_key": 256},
    )
    grant = get_service().download(caller_identity(), document_id, data.get("access_key"))
    return jsonify(grant)
