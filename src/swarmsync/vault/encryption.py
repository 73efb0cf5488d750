"""Field-level encryption for secrets stored on swarm and repository records.

Secrets (swarm API keys, GitHub webhook secrets) are never persisted in the
clear. Each value is sealed with AES-256-GCM and stored as a serialized
``Envelope`` string.

Features:
- AES-256-GCM authenticated encryption (confidentiality + integrity)
- Fresh random 128-bit IV per call, 128-bit tag stored alongside
- Multiple key ids so envelopes sealed before a rotation stay readable
- Bounded recovery for values that were sealed twice by an older writer

Security Properties:
- 256-bit keys, resolved once at process start and never mutated
- Errors name the field, never the secret or ciphertext
- Fail-secure: a bad tag aborts the read, it never returns partial data

Usage:
    >>> from swarmsync.vault import CredentialVault
    >>> vault = CredentialVault.from_hex("00" * 32)
    >>> stored = vault.encrypt_to_string("swarmApiKey", "sk-live-123")
    >>> vault.decrypt("swarmApiKey", stored)
    'sk-live-123'
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from swarmsync.errors import ConfigurationError, DecryptionError, EncryptionError

logger = logging.getLogger(__name__)

# Constants
KEY_SIZE_BYTES = 32  # 256 bits for AES-256
IV_SIZE_BYTES = 16
TAG_SIZE_BYTES = 16
ENVELOPE_VERSION = 1
DEFAULT_KEY_ID = "k1"

# Sealed values that were sealed again are unwrapped at most this many extra times.
MAX_NESTED_ROUNDS = 1


@dataclass(frozen=True)
class Envelope:
    """Container for a sealed value with metadata.

    Attributes:
        data: Ciphertext without the tag (base64)
        iv: Random IV used for this value (base64)
        tag: GCM authentication tag (base64)
        version: Envelope format version
        encrypted_at: When the value was sealed
        key_id: Identifier of the key that sealed the value
    """

    data: str
    iv: str
    tag: str
    version: int = ENVELOPE_VERSION
    encrypted_at: Optional[datetime] = None
    key_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the persisted dictionary shape."""
        payload: Dict[str, Any] = {
            "data": self.data,
            "iv": self.iv,
            "tag": self.tag,
            "version": self.version,
            "encryptedAt": self.encrypted_at.isoformat() if self.encrypted_at else None,
        }
        if self.key_id is not None:
            payload["keyId"] = self.key_id
        return payload

    def to_json(self) -> str:
        """Serialize to the single string stored in secret fields."""
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Envelope":
        """Deserialize from dictionary.

        Older writers stored ``version`` as a string; both forms are accepted.
        """
        encrypted_at = data.get("encryptedAt")
        return cls(
            data=data["data"],
            iv=data["iv"],
            tag=data["tag"],
            version=int(data.get("version", ENVELOPE_VERSION)),
            encrypted_at=_parse_timestamp(encrypted_at),
            key_id=data.get("keyId"),
        )

    @classmethod
    def from_json(cls, raw: str) -> "Envelope":
        """Deserialize from a stored string."""
        return cls.from_dict(json.loads(raw))


def is_envelope(value: Any) -> bool:
    """Check whether a value has the shape of a sealed envelope.

    Accepts either a mapping or its JSON string form.
    """
    if isinstance(value, str):
        candidate = value.strip()
        if not candidate.startswith("{"):
            return False
        try:
            value = json.loads(candidate)
        except ValueError:
            return False

    if not isinstance(value, Mapping):
        return False

    for key in ("data", "iv", "tag"):
        if not isinstance(value.get(key), str):
            return False
    if not isinstance(value.get("version"), (int, str)) or isinstance(value.get("version"), bool):
        return False
    if not isinstance(value.get("encryptedAt"), str):
        return False
    key_id = value.get("keyId")
    return key_id is None or isinstance(key_id, str)


class CredentialVault:
    """Seals and opens secret fields with immutable key material.

    Build one vault per process (``CredentialVault.from_settings``) and pass
    it to every component that touches secrets. The key map is frozen at
    construction, so a single instance is safe for any number of concurrent
    callers.

    Example:
        >>> vault = CredentialVault.from_hex("11" * 32, key_id="k2",
        ...                                  previous={"k1": "22" * 32})
        >>> vault.active_key_id
        'k2'
    """

    def __init__(self, keys: Mapping[str, bytes], active_key_id: str) -> None:
        if active_key_id not in keys:
            raise ConfigurationError(f"Active key id {active_key_id!r} has no key material")
        for key_id, key in keys.items():
            if len(key) != KEY_SIZE_BYTES:
                raise ConfigurationError(
                    f"Key {key_id!r} must be {KEY_SIZE_BYTES} bytes, got {len(key)}"
                )
        self._keys: Mapping[str, bytes] = MappingProxyType(dict(keys))
        self._active_key_id = active_key_id

    @classmethod
    def from_hex(
        cls,
        hex_key: str,
        *,
        key_id: str = DEFAULT_KEY_ID,
        previous: Optional[Mapping[str, str]] = None,
    ) -> "CredentialVault":
        """Build a vault from hex-encoded key material.

        Args:
            hex_key: Active key, 64 hex characters
            key_id: Identifier recorded in new envelopes
            previous: Retired keys (key id -> hex) still needed for reads
        """
        keys: Dict[str, bytes] = {}
        for name, value in dict(previous or {}).items():
            keys[name] = _decode_hex_key(name, value)
        keys[key_id] = _decode_hex_key(key_id, hex_key)
        return cls(keys, key_id)

    @classmethod
    def from_settings(cls, vault_settings: Any) -> "CredentialVault":
        """Build a vault from resolved ``VaultSettings``."""
        if vault_settings.encryption_key is None:
            raise ConfigurationError("No encryption key configured")
        previous = {
            name: secret.get_secret_value()
            for name, secret in vault_settings.previous_keys.items()
        }
        return cls.from_hex(
            vault_settings.encryption_key.get_secret_value(),
            key_id=vault_settings.key_id,
            previous=previous,
        )

    @staticmethod
    def generate_key_hex() -> str:
        """Generate fresh key material as hex."""
        return secrets.token_bytes(KEY_SIZE_BYTES).hex()

    @property
    def active_key_id(self) -> str:
        """Key id used for new envelopes."""
        return self._active_key_id

    @property
    def key_ids(self) -> tuple:
        """All key ids this vault can open."""
        return tuple(self._keys)

    def encrypt(self, field_name: str, plaintext: str) -> Envelope:
        """Seal a value using AES-256-GCM.

        Args:
            field_name: Name of the secret field (context for errors only)
            plaintext: Value to seal; empty strings are allowed

        Returns:
            Envelope holding ciphertext, IV and tag

        Raises:
            EncryptionError: If sealing fails
        """
        if not isinstance(plaintext, str):
            raise EncryptionError(field_name, f"Field {field_name} must be a string")

        try:
            iv = secrets.token_bytes(IV_SIZE_BYTES)
            aesgcm = AESGCM(self._keys[self._active_key_id])
            sealed = aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        except Exception as e:
            raise EncryptionError(field_name) from e

        ciphertext, tag = sealed[:-TAG_SIZE_BYTES], sealed[-TAG_SIZE_BYTES:]
        return Envelope(
            data=_b64(ciphertext),
            iv=_b64(iv),
            tag=_b64(tag),
            version=ENVELOPE_VERSION,
            encrypted_at=datetime.now(timezone.utc),
            key_id=self._active_key_id,
        )

    def encrypt_to_string(self, field_name: str, plaintext: str) -> str:
        """Seal a value and return its stored string form."""
        return self.encrypt(field_name, plaintext).to_json()

    def decrypt(self, field_name: str, value: Union[str, Envelope, Mapping[str, Any]]) -> str:
        """Open a sealed value.

        A value that was sealed twice (the plaintext of the first round is
        itself an envelope) is opened one more time. Deeper nesting is not
        unwrapped.

        Args:
            field_name: Name of the secret field (context for errors only)
            value: Stored string, envelope, or envelope mapping

        Returns:
            Plaintext string

        Raises:
            DecryptionError: If the tag check fails or the envelope is malformed
        """
        if isinstance(value, Envelope):
            envelope = value
        elif isinstance(value, Mapping):
            if not is_envelope(value):
                raise DecryptionError(field_name, "Invalid encrypted data format")
            envelope = Envelope.from_dict(value)
        elif isinstance(value, str):
            if not is_envelope(value):
                logger.warning(
                    "Field is not sealed, returning stored value as-is",
                    extra={"field": field_name},
                )
                return value
            envelope = Envelope.from_json(value)
        else:
            raise DecryptionError(field_name, "Invalid encrypted data format")

        plaintext = self._open(field_name, envelope)

        rounds = 0
        while rounds < MAX_NESTED_ROUNDS and is_envelope(plaintext):
            logger.info(
                "Field was sealed twice, unwrapping nested envelope",
                extra={"field": field_name},
            )
            plaintext = self._open(field_name, Envelope.from_json(plaintext))
            rounds += 1

        return plaintext

    def reseal(self, field_name: str, stored: str) -> str:
        """Open a stored value and seal it again under the active key."""
        return self.encrypt_to_string(field_name, self.decrypt(field_name, stored))

    def needs_reseal(self, stored: Optional[str]) -> bool:
        """Whether a stored value should be resealed under the active key."""
        if not stored:
            return False
        if not is_envelope(stored):
            return True
        return Envelope.from_json(stored).key_id != self._active_key_id

    def _open(self, field_name: str, envelope: Envelope) -> str:
        key_id = envelope.key_id or self._active_key_id
        key = self._keys.get(key_id)
        if key is None:
            raise DecryptionError(field_name, f"Unknown key id for field: {field_name}")

        try:
            iv = base64.b64decode(envelope.iv, validate=True)
            ciphertext = base64.b64decode(envelope.data, validate=True)
            tag = base64.b64decode(envelope.tag, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError(field_name) from e

        if len(tag) != TAG_SIZE_BYTES or not iv:
            raise DecryptionError(field_name)

        try:
            plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
        except (InvalidTag, ValueError) as e:
            raise DecryptionError(field_name) from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError(field_name) from e


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _decode_hex_key(key_id: str, value: str) -> bytes:
    try:
        key = bytes.fromhex(value.strip())
    except ValueError as e:
        raise ConfigurationError(f"Key {key_id!r} is not valid hex") from e
    if len(key) != KEY_SIZE_BYTES:
        raise ConfigurationError(
            f"Key {key_id!r} must be {KEY_SIZE_BYTES * 2} hex characters"
        )
    return key


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


__all__ = [
    "CredentialVault",
    "Envelope",
    "EncryptionError",
    "DecryptionError",
    "is_envelope",
    "ENVELOPE_VERSION",
    "DEFAULT_KEY_ID",
]
