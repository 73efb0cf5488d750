"""Typed settings for the swarm sync service.

This module wraps configuration in Pydantic models so the CLI, the webhook
server and the sync components rely on validated settings. It also provides a
keyring-backed secret store used for the token encryption key and for git
credentials.

Key material is resolved once at startup in this order: environment
(``TOKEN_ENCRYPTION_KEY`` / ``TOKEN_ENCRYPTION_KEY_ID``), settings file, OS
keychain.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import keyring
import yaml
from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator

from swarmsync.errors import ConfigurationError
from swarmsync.vault import CredentialVault

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".swarmsync"
DEFAULT_CONFIG_PATH = DEFAULT_HOME / "config.yaml"
DEFAULT_SECRETS_SERVICE = "swarmsync"

ENCRYPTION_KEY_ENV = "TOKEN_ENCRYPTION_KEY"
ENCRYPTION_KEY_ID_ENV = "TOKEN_ENCRYPTION_KEY_ID"


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class VaultSettings(BaseModel):
    """Key material for field-level encryption."""

    encryption_key: Optional[SecretStr] = Field(
        default=None, description="Active AES-256 key, 64 hex characters"
    )
    key_id: str = Field(default="k1", min_length=1, description="Id of the active key")
    previous_keys: Dict[str, SecretStr] = Field(
        default_factory=dict, description="Retired keys still needed for reads"
    )

    @field_validator("encryption_key")
    @classmethod
    def _validate_key(cls, value: Optional[SecretStr]) -> Optional[SecretStr]:
        if value is None:
            return value
        _check_hex_key(value.get_secret_value())
        return value

    @field_validator("previous_keys")
    @classmethod
    def _validate_previous(cls, value: Dict[str, SecretStr]) -> Dict[str, SecretStr]:
        for secret in value.values():
            _check_hex_key(secret.get_secret_value())
        return value


class SwarmHostSettings(BaseModel):
    """How the swarm host's services are reached."""

    scheme: str = Field(default="https", description="URL scheme for swarm hosts")
    ingest_port: int = Field(default=7799, ge=1, le=65535, description="Ingestion service port")
    stats_port: int = Field(default=3355, ge=1, le=65535, description="Health/stats port")
    timeout_seconds: float = Field(default=30.0, gt=0, description="Per-request timeout")
    use_lsp: Optional[bool] = Field(default=None, description="Ask the host to run LSP analysis")

    @field_validator("scheme")
    @classmethod
    def _validate_scheme(cls, value: str) -> str:
        if value not in ("http", "https"):
            raise ValueError("scheme must be http or https")
        return value


class WebhookSettings(BaseModel):
    """Inbound webhook server."""

    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8080, ge=1, le=65535, description="Bind port")
    public_url: Optional[str] = Field(
        default=None, description="Externally reachable base URL used for callback URLs"
    )
    rate_limit_per_minute: int = Field(
        default=60, ge=1, description="GitHub deliveries allowed per repository per minute"
    )
    audit_enabled: bool = Field(default=True, description="Append deliveries to the audit trail")

    @field_validator("public_url")
    @classmethod
    def _strip_trailing_slash(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return value.rstrip("/") or None


class PollingSettings(BaseModel):
    """Bounds for progress polling and activation backoff."""

    max_attempts: int = Field(default=100, ge=1, description="Progress polls per job")
    delay_ms: int = Field(default=2000, ge=0, description="Delay between progress polls")
    backoff_attempts: int = Field(default=5, ge=1, description="Activation probe attempts")
    backoff_base_delay_ms: int = Field(default=500, ge=0, description="First backoff delay")
    backoff_max_delay_ms: int = Field(default=8000, ge=0, description="Backoff delay cap")
    deadline_seconds: Optional[float] = Field(
        default=None, gt=0, description="Overall deadline for a polling run"
    )


class StorageSettings(BaseModel):
    """Local storage locations."""

    state_dir: Path = Field(default=DEFAULT_HOME / "state", description="Record store")
    audit_dir: Path = Field(default=DEFAULT_HOME / "audit", description="Delivery audit trail")


class Settings(BaseModel):
    """Root configuration state."""

    vault: VaultSettings = Field(default_factory=VaultSettings)
    swarm: SwarmHostSettings = Field(default_factory=SwarmHostSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    polling: PollingSettings = Field(default_factory=PollingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)


# ---------------------------------------------------------------------------
# Secret store
# ---------------------------------------------------------------------------


@dataclass
class SecretStore:
    """Keyring abstraction for storing credentials."""

    service_name: str = DEFAULT_SECRETS_SERVICE
    keyring_module: Any = field(default=keyring)

    def set_secret(self, key: str, value: str) -> None:
        if self.keyring_module is None:
            raise RuntimeError("Keyring module not configured")
        self.keyring_module.set_password(self.service_name, key, value)

    def get_secret(self, key: str) -> Optional[str]:
        if self.keyring_module is None:
            return None
        try:
            return self.keyring_module.get_password(self.service_name, key)
        except keyring.errors.KeyringError as exc:
            # No usable backend behaves like an empty keychain
            logger.warning(f"Keychain unavailable: {type(exc).__name__}")
            return None

    def delete_secret(self, key: str) -> None:
        if self.keyring_module is None:
            return
        try:
            self.keyring_module.delete_password(self.service_name, key)
        except keyring.errors.PasswordDeleteError:
            return


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_settings(path: Path = DEFAULT_CONFIG_PATH) -> Settings:
    """Load settings from a JSON or YAML file or raise if invalid."""

    if not path.exists():
        raise FileNotFoundError(f"Settings file not found at {path}")
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in (".yaml", ".yml"):
        payload = yaml.safe_load(text) or {}
    else:
        payload = json.loads(text)
    try:
        return Settings.model_validate(payload)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def save_settings(settings: Settings, path: Path = DEFAULT_CONFIG_PATH) -> None:
    """Persist settings to disk without key material."""

    payload = settings.model_dump(mode="json", exclude={"vault": {"encryption_key", "previous_keys"}})
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() in (".yaml", ".yml"):
        path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
    else:
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def bootstrap_settings(
    *,
    path: Path = DEFAULT_CONFIG_PATH,
    secret_store: SecretStore | None = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> Settings:
    """Create or load settings respecting overrides, environment and keychain."""

    secret_store = secret_store or SecretStore()
    overrides = overrides or {}

    if path.exists():
        settings = load_settings(path)
    else:
        settings = Settings()
        save_settings(settings, path)

    merged = settings.model_dump(mode="python")
    merged = _apply_overrides(merged, overrides)
    merged = _apply_env_overrides(merged)

    try:
        resolved = Settings.model_validate(merged)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc

    _hydrate_encryption_key(resolved, secret_store)
    _ensure_directories(resolved)
    return resolved


def build_vault(settings: Settings) -> CredentialVault:
    """Construct the process-wide vault from resolved settings."""
    return CredentialVault.from_settings(settings.vault)


def store_encryption_key(
    secret_store: SecretStore, key_hex: str, *, key_id: str = "k1"
) -> None:
    """Save key material to the OS keychain."""
    _check_hex_key(key_hex)
    secret_store.set_secret(_secret_key("vault", key_id), key_hex)


def _apply_overrides(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = base.copy()
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            section = dict(merged[key])
            section.update(value)
            merged[key] = section
        else:
            merged[key] = value
    return merged


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    vault = data.setdefault("vault", {})
    _set_env_override(vault, "encryption_key", ENCRYPTION_KEY_ENV)
    _set_env_override(vault, "key_id", ENCRYPTION_KEY_ID_ENV)

    swarm = data.setdefault("swarm", {})
    _set_env_override(swarm, "scheme", "SWARMSYNC_SWARM_SCHEME")
    _set_env_override(swarm, "timeout_seconds", "SWARMSYNC_SWARM_TIMEOUT", cast_float=True)
    _set_env_override(swarm, "use_lsp", "SWARMSYNC_USE_LSP", cast_bool=True)

    webhook = data.setdefault("webhook", {})
    _set_env_override(webhook, "host", "SWARMSYNC_WEBHOOK_HOST")
    _set_env_override(webhook, "port", "SWARMSYNC_WEBHOOK_PORT", cast_int=True)
    _set_env_override(webhook, "public_url", "SWARMSYNC_PUBLIC_URL")

    polling = data.setdefault("polling", {})
    _set_env_override(polling, "max_attempts", "SWARMSYNC_POLL_MAX_ATTEMPTS", cast_int=True)
    _set_env_override(polling, "delay_ms", "SWARMSYNC_POLL_DELAY_MS", cast_int=True)

    storage = data.setdefault("storage", {})
    _set_env_override(storage, "state_dir", "SWARMSYNC_STATE_DIR")
    _set_env_override(storage, "audit_dir", "SWARMSYNC_AUDIT_DIR")
    return data


def _set_env_override(
    mapping: Dict[str, Any],
    key: str,
    env_name: str,
    *,
    cast_bool: bool = False,
    cast_int: bool = False,
    cast_float: bool = False,
) -> None:
    raw = os.getenv(env_name)
    if raw is None or raw == "":
        return
    try:
        if cast_bool:
            mapping[key] = raw.lower() in {"1", "true", "yes"}
        elif cast_int:
            mapping[key] = int(raw)
        elif cast_float:
            mapping[key] = float(raw)
        else:
            mapping[key] = raw
    except ValueError as exc:
        raise ConfigurationError(f"Invalid value for {env_name}") from exc


def _hydrate_encryption_key(settings: Settings, secret_store: SecretStore) -> None:
    vault = settings.vault
    if vault.encryption_key is not None:
        return
    stored = secret_store.get_secret(_secret_key("vault", vault.key_id))
    if not stored:
        return
    try:
        _check_hex_key(stored)
    except ValueError as exc:
        raise ConfigurationError("Keychain encryption key is malformed") from exc
    vault.encryption_key = SecretStr(stored)
    logger.debug("Loaded encryption key from keychain", extra={"key_id": vault.key_id})


def _ensure_directories(settings: Settings) -> None:
    settings.storage.state_dir.mkdir(parents=True, exist_ok=True)
    if settings.webhook.audit_enabled:
        settings.storage.audit_dir.mkdir(parents=True, exist_ok=True)


def _check_hex_key(value: str) -> None:
    try:
        raw = bytes.fromhex(value.strip())
    except ValueError as exc:
        raise ValueError("encryption key must be hex encoded") from exc
    if len(raw) != 32:
        raise ValueError("encryption key must be 64 hex characters (32 bytes)")


def _secret_key(backend: str, identifier: str) -> str:
    return f"{backend}:{identifier}"


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "VaultSettings",
    "SwarmHostSettings",
    "WebhookSettings",
    "PollingSettings",
    "StorageSettings",
    "Settings",
    "SecretStore",
    "load_settings",
    "save_settings",
    "bootstrap_settings",
    "build_vault",
    "store_encryption_key",
]
