"""Helpers for signing and verifying PayOS payloads.

PayOS signs with HMAC-SHA256 over ``key=value`` pairs joined by ``&`` with
keys in alphabetical order, keyed by the merchant checksum key and
hex-encoded.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any, Mapping

# Fields covered by the signature of a payment-link request.
REQUEST_FIELDS = ("amount", "cancelUrl", "description", "orderCode", "returnUrl")


def _value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return str(value)


def canonical(data: Mapping[str, Any], fields: tuple[str, ...] | None = None) -> str:
    """Return the alphabetically ordered ``key=value&...`` string for ``data``.

    Parameters
    ----------
    data:
        Mapping of payload fields.
    fields:
        Restrict the string to these keys. Defaults to every key in ``data``.
    """
    keys = sorted(fields if fields is not None else data.keys())
    return "&".join(f"{key}={_value(data.get(key))}" for key in keys)


def sign(secret: str, data: Mapping[str, Any], fields: tuple[str, ...] | None = None) -> str:
    """Return the hex HMAC-SHA256 signature of ``data``."""
    msg = canonical(data, fields)
    return hmac.new(secret.encode(), msg.encode(), hashlib.sha256).hexdigest()


def sign_payment_request(secret: str, data: Mapping[str, Any]) -> str:
    """Sign a create-payment-link request body."""
    return sign(secret, data, REQUEST_FIELDS)


def verify(secret: str, data: Mapping[str, Any], signature: str | None) -> bool:
    """Validate a signature the gateway attached to ``data``."""
    if not signature:
        return False
    expected = sign(secret, data)
    return hmac.compare_digest(expected, signature)
