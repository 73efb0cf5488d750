"""Configuration management for swarmsync."""

from .settings import (
    DEFAULT_CONFIG_PATH,
    PollingSettings,
    SecretStore,
    Settings,
    StorageSettings,
    SwarmHostSettings,
    VaultSettings,
    WebhookSettings,
    bootstrap_settings,
    build_vault,
    load_settings,
    save_settings,
    store_encryption_key,
)

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "PollingSettings",
    "SecretStore",
    "Settings",
    "StorageSettings",
    "SwarmHostSettings",
    "VaultSettings",
    "WebhookSettings",
    "bootstrap_settings",
    "build_vault",
    "load_settings",
    "save_settings",
    "store_encryption_key",
]
