"""Tests for keyring-backed git credential lookup."""

from swarmsync.configuration.settings import SecretStore
from swarmsync.models import Swarm
from swarmsync.store import GitCredentialStore


def _credential_store(state_store, fake_keyring):
    return GitCredentialStore(
        state_store, SecretStore(service_name="swarmsync-test", keyring_module=fake_keyring)
    )


def test_lookup_resolves_workspace_owner(state_store, fake_keyring):
    state_store.create_swarm(Swarm(workspace_id="ws-1", owner_id="user-7"))
    credentials = _credential_store(state_store, fake_keyring)
    credentials.save("user-7", "octocat", "ghp_token")

    found = credentials.lookup("ws-1")

    assert found.username == "octocat"
    assert found.token.get_secret_value() == "ghp_token"
    assert found.as_payload() == {"username": "octocat", "pat": "ghp_token"}


def test_token_is_not_rendered_in_repr(state_store, fake_keyring):
    credentials = _credential_store(state_store, fake_keyring)
    credentials.save("user-7", "octocat", "ghp_token")

    assert "ghp_token" not in repr(credentials.lookup_user("user-7"))


def test_lookup_without_owner_or_credentials(state_store, fake_keyring):
    state_store.create_swarm(Swarm(workspace_id="ws-1"))
    state_store.create_swarm(Swarm(workspace_id="ws-2", owner_id="user-8"))
    credentials = _credential_store(state_store, fake_keyring)

    assert credentials.lookup("ws-1") is None
    assert credentials.lookup("ws-2") is None
    assert credentials.lookup("ws-missing") is None


def test_malformed_entry_is_ignored(state_store, fake_keyring):
    fake_keyring.set_password("swarmsync-test", "git:user-7", "not json")
    credentials = _credential_store(state_store, fake_keyring)

    assert credentials.lookup_user("user-7") is None


def test_delete_is_idempotent(state_store, fake_keyring):
    credentials = _credential_store(state_store, fake_keyring)
    credentials.save("user-7", "octocat", "ghp_token")

    credentials.delete("user-7")
    credentials.delete("user-7")

    assert credentials.lookup_user("user-7") is None
