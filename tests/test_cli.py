"""Tests for the swarmsync CLI."""

import json

import pytest
import yaml
from typer.testing import CliRunner

from swarmsync.cli import app, rotate_stored_secrets
from swarmsync.models import Repository, Swarm
from swarmsync.store import SwarmStateStore
from swarmsync.sync import SyncOutcome, SyncTrigger
from swarmsync.vault import CredentialVault, hmac_sha256_hex, is_envelope

KEY_HEX = "11" * 32
NEW_KEY_HEX = "22" * 32


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def cli_env(monkeypatch, tmp_path):
    for name in ("TOKEN_ENCRYPTION_KEY_ID", "SWARMSYNC_PUBLIC_URL", "SWARMSYNC_USE_LSP"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PYTHON_KEYRING_BACKEND", "keyring.backends.null.Keyring")
    monkeypatch.setenv("TOKEN_ENCRYPTION_KEY", KEY_HEX)
    monkeypatch.setenv("SWARMSYNC_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("SWARMSYNC_AUDIT_DIR", str(tmp_path / "audit"))


@pytest.fixture
def config_args(tmp_path):
    return ["--config", str(tmp_path / "config.yaml")]


def test_sign(runner, tmp_path):
    body_file = tmp_path / "body.json"
    body_file.write_bytes(b'{"request_id":"req-1"}')

    result = runner.invoke(app, ["sign", str(body_file), "--secret", "s3cret"])

    assert result.exit_code == 0
    assert result.output.strip() == "sha256=" + hmac_sha256_hex("s3cret", b'{"request_id":"req-1"}')


def test_encrypt_output_is_decryptable(runner, config_args):
    result = runner.invoke(app, [*config_args, "encrypt", "swarmApiKey", "sk-live"])

    assert result.exit_code == 0
    sealed = result.output.strip()
    assert is_envelope(sealed)
    assert CredentialVault.from_hex(KEY_HEX).decrypt("swarmApiKey", sealed) == "sk-live"


def test_encrypt_without_key_fails(runner, config_args, monkeypatch):
    monkeypatch.delenv("TOKEN_ENCRYPTION_KEY")

    result = runner.invoke(app, [*config_args, "encrypt", "swarmApiKey", "sk-live"])

    assert result.exit_code == 1
    assert "No encryption key configured" in result.output


def test_sync_reports_started_job(runner, config_args, monkeypatch):
    calls = []

    async def fake_sync(self, workspace_id, **kwargs):
        calls.append((workspace_id, kwargs))
        return SyncOutcome(ok=True, status=200, request_id="req-1", superseded_request_id="req-0")

    monkeypatch.setattr(SyncTrigger, "sync_workspace", fake_sync)

    result = runner.invoke(app, [*config_args, "sync", "ws-1", "--ingest"])

    assert result.exit_code == 0
    assert "req-1" in result.output
    assert "req-0" in result.output
    assert calls == [("ws-1", {"repository_url": None, "full_ingest": True})]


def test_sync_refused(runner, config_args, monkeypatch):
    async def fake_sync(self, workspace_id, **kwargs):
        return SyncOutcome(ok=False, status=503, message="Failed to start sync")

    monkeypatch.setattr(SyncTrigger, "sync_workspace", fake_sync)

    result = runner.invoke(app, [*config_args, "sync", "ws-1"])

    assert result.exit_code == 1
    assert "503" in result.output


def test_sync_unknown_workspace(runner, config_args):
    result = runner.invoke(app, [*config_args, "sync", "ws-missing"])

    assert result.exit_code == 1
    assert "Swarm not found" in result.output


def test_progress_without_job(runner, config_args, tmp_path):
    vault = CredentialVault.from_hex(KEY_HEX)
    SwarmStateStore(tmp_path / "state").create_swarm(
        Swarm(
            workspace_id="ws-1",
            name="acme-host",
            api_key_envelope=vault.encrypt_to_string("swarmApiKey", "sk"),
        )
    )

    result = runner.invoke(app, [*config_args, "progress", "ws-1"])

    assert result.exit_code == 1
    assert "No ingestion job to track" in result.output


def test_rotate_key_reseals_values(runner, tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        yaml.safe_dump({"vault": {"key_id": "k2", "previous_keys": {"k1": KEY_HEX}}})
    )
    old_vault = CredentialVault.from_hex(KEY_HEX, key_id="k1")
    store = SwarmStateStore(tmp_path / "state")
    store.create_swarm(
        Swarm(workspace_id="ws-1", api_key_envelope=old_vault.encrypt_to_string("swarmApiKey", "sk"))
    )
    store.create_repository(
        Repository.for_url(
            "https://github.com/acme/widgets",
            "ws-1",
            webhook_secret_envelope=old_vault.encrypt_to_string("githubWebhookSecret", "gh"),
        )
    )

    monkeypatch.setenv("TOKEN_ENCRYPTION_KEY", NEW_KEY_HEX)
    result = runner.invoke(app, ["--config", str(config_path), "rotate-key"])

    assert result.exit_code == 0, result.output
    new_vault = CredentialVault.from_hex(NEW_KEY_HEX, key_id="k2")
    swarm = store.get_swarm("ws-1")
    assert json.loads(swarm.api_key_envelope)["keyId"] == "k2"
    assert new_vault.decrypt("swarmApiKey", swarm.api_key_envelope) == "sk"
    repository = store.get_repository("https://github.com/acme/widgets", "ws-1")
    assert new_vault.decrypt("githubWebhookSecret", repository.webhook_secret_envelope) == "gh"


def test_rotate_stored_secrets_counts(tmp_path):
    old_vault = CredentialVault.from_hex(KEY_HEX, key_id="k1")
    vault = CredentialVault.from_hex(NEW_KEY_HEX, key_id="k2", previous={"k1": KEY_HEX})
    store = SwarmStateStore(tmp_path / "state")
    store.create_swarm(
        Swarm(workspace_id="ws-1", api_key_envelope=old_vault.encrypt_to_string("swarmApiKey", "a"))
    )
    store.create_swarm(
        Swarm(workspace_id="ws-2", api_key_envelope=vault.encrypt_to_string("swarmApiKey", "b"))
    )
    store.create_swarm(Swarm(workspace_id="ws-3", api_key_envelope="legacy-plain"))
    foreign = CredentialVault.from_hex("33" * 32, key_id="k1")
    store.create_swarm(
        Swarm(workspace_id="ws-4", api_key_envelope=foreign.encrypt_to_string("swarmApiKey", "d"))
    )

    dry = rotate_stored_secrets(vault, store, dry_run=True)
    assert dry == {"resealed": 2, "current": 1, "failed": 1}
    assert json.loads(store.get_swarm("ws-1").api_key_envelope)["keyId"] == "k1"

    counts = rotate_stored_secrets(vault, store)
    assert counts == {"resealed": 2, "current": 1, "failed": 1}
    assert vault.decrypt("swarmApiKey", store.get_swarm("ws-3").api_key_envelope) == "legacy-plain"
    assert not vault.needs_reseal(store.get_swarm("ws-1").api_key_envelope)
