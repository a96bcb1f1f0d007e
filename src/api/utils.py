"""
Shared utilities for the DocVerify API.

This module contains the helpers used across all API blueprints: access to
the service, caller identity for rate limiting, API key checks on issuer
routes, and request validation.
"""

import hashlib
import ipaddress
import secrets
from functools import wraps
from typing import Any

from flask import current_app, request

from errors import AuthenticationError, AuthNotConfiguredError, UnauthorizedError, ValidationError

# Bounded parameters
MAX_RESULTS = 100
MAX_OFFSET = 100000
DEFAULT_PAGE_LIMIT = 50

API_KEY_HEADER = "X-API-Key"


def get_service():
    """The DocVerifyService bound to the current app."""
    return current_app.extensions["docverify"]


# ============================================================
# Validation Utilities
# ============================================================


def validate_pagination_params(
    limit: Any,
    offset: Any = 0,
    max_limit: int = MAX_RESULTS,
    max_offset: int = MAX_OFFSET,
) -> tuple[int, int]:
    """
    Validate and bound pagination parameters.

    Returns:
        Tuple of (bounded_limit, bounded_offset)

    Raises:
        ValidationError: non-integer values
    """
    try:
        limit = int(limit) if limit not in (None, "") else DEFAULT_PAGE_LIMIT
        offset = int(offset) if offset not in (None, "") else 0
    except (TypeError, ValueError):
        raise ValidationError("limit and offset must be integers")

    bounded_limit = max(1, min(limit, max_limit))
    bounded_offset = max(0, min(offset, max_offset))
    return bounded_limit, bounded_offset


def validate_json_schema(
    data: Any,
    required_fields: dict[str, type | tuple],
    optional_fields: dict[str, type | tuple] | None = None,
    max_lengths: dict[str, int] | None = None,
) -> dict[str, Any]:
    """
    Validate a JSON payload against a simple schema.

    Args:
        data: The JSON data to validate
        required_fields: Field names mapped to expected types
        optional_fields: Optional field names mapped to expected types
        max_lengths: Field names mapped to maximum string lengths

    Returns:
        The validated payload

    Raises:
        ValidationError: first schema violation found
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    for field_name, expected_type in required_fields.items():
        if field_name not in data or data[field_name] is None:
            raise ValidationError(f"Missing required field: {field_name}")
        if not isinstance(data[field_name], expected_type):
            raise ValidationError(f"Field '{field_name}' has the wrong type")

    for field_name, expected_type in (optional_fields or {}).items():
        value = data.get(field_name)
        if value is not None and not isinstance(value, expected_type):
            raise ValidationError(f"Field '{field_name}' has the wrong type")

    for field_name, max_len in (max_lengths or {}).items():
        value = data.get(field_name)
        if isinstance(value, str) and len(value) > max_len:
            raise ValidationError(f"Field '{field_name}' exceeds maximum length of {max_len}")

    return data


def get_json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError("No data provided")
    return data


# ============================================================
# Caller Identity
# ============================================================


def is_valid_ip(ip_str: str) -> bool:
    try:
        ipaddress.ip_address(ip_str.strip())
        return True
    except (ValueError, AttributeError):
        return False


def get_client_ip(trusted_proxies: tuple[str, ...] | set[str] = ()) -> str:
    """
    Get client IP address, considering proxies.

    X-Forwarded-For is only trusted when the direct peer is a configured
    proxy; the rightmost untrusted address in the chain is used.
    """
    remote_addr = request.remote_addr or "unknown"
    trusted = set(trusted_proxies)

    if trusted and remote_addr in trusted:
        xff = request.headers.get("X-Forwarded-For")
        if xff:
            parts = [p.strip() for p in xff.split(",")]

            for ip in reversed(parts):
                if ip and is_valid_ip(ip) and ip not in trusted:
                    return ip

            # Every hop is a trusted proxy
            for ip in parts:
                if ip and is_valid_ip(ip):
                    return ip

    return remote_addr


def match_api_key(provided: str | None, api_keys: tuple[str, ...]) -> str | None:
    """The configured key equal to ``provided``, compared in constant time."""
    if not provided:
        return None
    for key in api_keys:
        if secrets.compare_digest(provided.encode("utf-8"), key.encode("utf-8")):
            return key
    return None


def caller_identity() -> str:
    """
    Rate-limit identity of the caller.

    A configured API key (hashed, so raw keys never reach the limiter store)
    when one matches, otherwise the client IP. Unknown keys are treated like
    anonymous callers.
    """
    config = get_service().config
    api_key = match_api_key(request.headers.get(API_KEY_HEADER), config.api_keys)
    if api_key:
        return "key:" + hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:16]
    return "ip:" + get_client_ip(config.trusted_proxies)


# ============================================================
# Authentication
# ============================================================


def require_api_key(f):
    """Decorator to require a configured API key on issuer routes."""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        config = get_service().config
        if not config.require_api_key:
            return f(*args, **kwargs)

        provided = request.headers.get(API_KEY_HEADER)
        if not provided:
            raise AuthenticationError(f"API key required. Provide via {API_KEY_HEADER} header.")

        if not config.api_keys:
            raise AuthNotConfiguredError("Server API keys not configured")

        if match_api_key(provided, config.api_keys) is None:
            raise UnauthorizedError("Invalid API key")

        return f(*args, **kwargs)

    return decorated_function
