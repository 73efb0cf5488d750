"""HMAC-SHA256 signing and constant-time verification for webhook deliveries.

Both inbound callback sources sign the raw request body:

- the ingestion service sends ``x-signature: sha256=<hex>`` (prefix optional)
  keyed with the swarm API key;
- GitHub sends ``x-hub-signature-256: sha256=<hex>`` keyed with the
  per-repository webhook secret.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Union

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def hmac_sha256_hex(secret: Union[str, bytes], payload: Union[str, bytes]) -> str:
    """Compute the hex HMAC-SHA256 digest of a payload.

    Args:
        secret: Shared secret (str is UTF-8 encoded)
        payload: Raw body bytes exactly as received

    Returns:
        Lowercase hex digest
    """
    key = secret.encode("utf-8") if isinstance(secret, str) else secret
    msg = payload.encode("utf-8") if isinstance(payload, str) else payload
    return hmac.new(key=key, msg=msg, digestmod=hashlib.sha256).hexdigest()


def constant_time_equal(a: Union[str, bytes], b: Union[str, bytes]) -> bool:
    """Compare two values without short-circuiting on the first differing byte.

    Values of different length are rejected before any comparison.
    """
    a_bytes = a.encode("utf-8") if isinstance(a, str) else a
    b_bytes = b.encode("utf-8") if isinstance(b, str) else b
    if len(a_bytes) != len(b_bytes):
        return False
    return hmac.compare_digest(a_bytes, b_bytes)


def strip_signature_prefix(signature: str) -> str:
    """Drop an optional ``sha256=`` prefix from a signature header."""
    if signature.startswith(SIGNATURE_PREFIX):
        return signature[len(SIGNATURE_PREFIX):]
    return signature


def sign_payload(secret: Union[str, bytes], payload: Union[str, bytes]) -> str:
    """Build a ``sha256=<hex>`` header value for a payload."""
    return SIGNATURE_PREFIX + hmac_sha256_hex(secret, payload)


def verify_signature(
    payload_body: bytes,
    signature_header: str,
    secret: Union[str, bytes],
    *,
    prefix_required: bool = False,
) -> bool:
    """Verify a webhook signature over the raw body.

    Args:
        payload_body: Raw request body (bytes), never a re-serialized payload
        signature_header: Received header value
        secret: Shared secret
        prefix_required: Reject headers without the ``sha256=`` prefix (GitHub)

    Returns:
        True if the signature matches, False otherwise
    """
    if not signature_header:
        return False

    if prefix_required:
        if not signature_header.startswith(SIGNATURE_PREFIX):
            logger.warning("Invalid signature header format")
            return False
        expected = sign_payload(secret, payload_body)
        received = signature_header
    else:
        expected = hmac_sha256_hex(secret, payload_body)
        received = strip_signature_prefix(signature_header)

    is_valid = constant_time_equal(expected, received)
    if not is_valid:
        logger.warning(
            "Webhook signature verification failed",
            extra={"expected_length": len(expected)},
        )
    return is_valid


__all__ = [
    "SIGNATURE_PREFIX",
    "hmac_sha256_hex",
    "constant_time_equal",
    "strip_signature_prefix",
    "sign_payload",
    "verify_signature",
]
