"""Credential protection: field encryption and webhook signing."""

from .encryption import (
    CredentialVault,
    DecryptionError,
    EncryptionError,
    Envelope,
    is_envelope,
)
from .signing import (
    constant_time_equal,
    hmac_sha256_hex,
    sign_payload,
    strip_signature_prefix,
    verify_signature,
)

__all__ = [
    "CredentialVault",
    "DecryptionError",
    "EncryptionError",
    "Envelope",
    "is_envelope",
    "constant_time_equal",
    "hmac_sha256_hex",
    "sign_payload",
    "strip_signature_prefix",
    "verify_signature",
]
