"""
DocVerify - Fingerprint Engine

Deterministic content hashing for issued documents:
- Raw bytes (uploaded files) hash directly with SHA-256
- Structured field sets hash over a canonical JSON serialization, so the
  same logical content always yields the same digest regardless of key
  order, whitespace or number formatting

Digests are 64-char lower-case hex strings at every boundary.

Usage:
    from fingerprint import hash_bytes, hash_structured

    hash_bytes(b"hello")
    hash_structured({"holder": "Ada", "grade": 1.0})
"""

import hashlib
import json
import math
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any

from errors import ValidationError

DIGEST_SIZE = 32
DIGEST_HEX_LENGTH = DIGEST_SIZE * 2
ZERO_DIGEST = "0" * DIGEST_HEX_LENGTH

_HEX_CHARS = frozenset("0123456789abcdef")


def hash_bytes(content: bytes | str) -> str:
    """
    SHA-256 digest of raw content.

    Args:
        content: Bytes to hash (str is UTF-8 encoded first)

    Returns:
        64-char lower-case hex digest
    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def hash_file(path: str, chunk_size: int = 65536) -> str:
    """Stream a file through SHA-256 without loading it whole."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _canonicalize(value: Any) -> Any:
    """Reduce a value to JSON types with a single canonical spelling."""
    if isinstance(value, Mapping):
        out = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValidationError(f"Field names must be strings, got {type(key).__name__}")
            out[key] = _canonicalize(item)
        return out
    if isinstance(value, (list, tuple)):
        return [_canonicalize(item) for item in value]
    if isinstance(value, bool) or value is None or isinstance(value, str):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise ValidationError("NaN and Infinity cannot be fingerprinted")
        # 1.0 and 1 are the same logical number
        if value.is_integer():
            return int(value)
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.hex()
    raise ValidationError(f"Unsupported field type: {type(value).__name__}")


def canonical_json(value: Any) -> bytes:
    """
    Canonical serialization used for structured fingerprints.

    Keys are sorted at every depth, separators carry no whitespace and
    non-ASCII text is kept as UTF-8.
    """
    return json.dumps(
        _canonicalize(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


def hash_structured(fields: Mapping[str, Any]) -> str:
    """
    SHA-256 digest of a structured field set.

    Args:
        fields: Ordered or unordered mapping of field name to value

    Returns:
        64-char lower-case hex digest
    """
    if not isinstance(fields, Mapping):
        raise ValidationError("Structured content must be a mapping")
    return hashlib.sha256(canonical_json(fields)).hexdigest()


def normalize_digest(value: str) -> str:
    """
    Normalize a hex digest: strip an optional 0x prefix and lower-case it.

    Raises:
        ValidationError: if the value is not a 32-byte hex digest
    """
    if not isinstance(value, str):
        raise ValidationError("Digest must be a hex string")
    digest = value.strip().lower()
    if digest.startswith("0x"):
        digest = digest[2:]
    if len(digest) != DIGEST_HEX_LENGTH or not set(digest) <= _HEX_CHARS:
        raise ValidationError(f"Invalid digest: expected {DIGEST_HEX_LENGTH} hex characters")
    return digest


def digest_to_bytes(digest: str) -> bytes:
    return bytes.fromhex(normalize_digest(digest))


def bytes_to_digest(raw: bytes) -> str:
    return raw.hex()
