"""Shared fixtures for swarmsync tests."""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, Optional

import httpx
import keyring
import pytest

from swarmsync.models import Repository, Swarm, SwarmStatus
from swarmsync.store import SwarmStateStore
from swarmsync.swarm.api_client import SwarmAPIClient
from swarmsync.sync.status import StatusReconciler
from swarmsync.vault import CredentialVault, sign_payload

KEY_HEX = "11" * 32
SWARM_API_KEY = "sk-swarm-secret"
GITHUB_WEBHOOK_SECRET = "gh-webhook-secret-value"
WORKSPACE_ID = "ws-1"
REPO_URL = "https://github.com/acme/widgets"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeKeyring:
    """In-memory keyring-compatible backend."""

    errors = keyring.errors

    def __init__(self) -> None:
        self.passwords: Dict[tuple, str] = {}

    def set_password(self, service_name: str, key: str, value: str) -> None:
        self.passwords[(service_name, key)] = value

    def get_password(self, service_name: str, key: str) -> Optional[str]:
        return self.passwords.get((service_name, key))

    def delete_password(self, service_name: str, key: str) -> None:
        if (service_name, key) not in self.passwords:
            raise keyring.errors.PasswordDeleteError(key)
        del self.passwords[(service_name, key)]


class MockRequest:
    """Mock aiohttp.web.Request for testing."""

    def __init__(self, headers: Optional[Dict[str, str]] = None, body: bytes = b""):
        self.headers = headers or {}
        self._body = body

    async def read(self) -> bytes:
        return self._body

    async def json(self) -> Dict[str, Any]:
        return json.loads(self._body.decode("utf-8"))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault.from_hex(KEY_HEX)


@pytest.fixture
def state_store(tmp_path) -> SwarmStateStore:
    return SwarmStateStore(tmp_path / "state")


@pytest.fixture
def reconciler(state_store) -> StatusReconciler:
    return StatusReconciler(state_store)


@pytest.fixture
def fake_keyring() -> FakeKeyring:
    return FakeKeyring()


@pytest.fixture
def mock_request():
    """Provide mock aiohttp request."""
    return MockRequest


@pytest.fixture
def make_swarm(state_store, vault) -> Callable[..., Swarm]:
    """Create and persist a swarm with a sealed API key."""

    def _make(
        workspace_id: str = WORKSPACE_ID,
        *,
        name: str = "acme-host",
        api_key: Optional[str] = SWARM_API_KEY,
        status: SwarmStatus = SwarmStatus.PENDING,
        ingest_ref_id: Optional[str] = None,
        repository_url: Optional[str] = REPO_URL,
        **fields: Any,
    ) -> Swarm:
        swarm = Swarm(
            workspace_id=workspace_id,
            name=name,
            status=status,
            api_key_envelope=vault.encrypt_to_string("swarmApiKey", api_key) if api_key else None,
            ingest_ref_id=ingest_ref_id,
            repository_url=repository_url,
            **fields,
        )
        return state_store.create_swarm(swarm)

    return _make


@pytest.fixture
def make_repository(state_store, vault) -> Callable[..., Repository]:
    """Create and persist a tracked repository with a sealed webhook secret."""

    def _make(
        repository_url: str = REPO_URL,
        workspace_id: str = WORKSPACE_ID,
        *,
        secret: Optional[str] = GITHUB_WEBHOOK_SECRET,
        **fields: Any,
    ) -> Repository:
        envelope = vault.encrypt_to_string("githubWebhookSecret", secret) if secret else None
        repository = Repository.for_url(
            repository_url, workspace_id, webhook_secret_envelope=envelope, **fields
        )
        return state_store.create_repository(repository)

    return _make


@pytest.fixture
def signed_body() -> Callable[..., tuple]:
    """Serialize a payload and sign it the way the sender would."""

    def _sign(payload: Dict[str, Any], secret: str = SWARM_API_KEY) -> tuple:
        body = json.dumps(payload).encode("utf-8")
        return body, sign_payload(secret, body)

    return _sign


@pytest.fixture
def mock_swarm_host():
    """Build a SwarmAPIClient backed by an httpx.MockTransport.

    The returned client records every request on ``client.requests``.
    """

    def _build(handler: Callable[[httpx.Request], httpx.Response]) -> SwarmAPIClient:
        requests = []

        def _record(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        client = SwarmAPIClient(transport=httpx.MockTransport(_record))
        client.requests = requests
        return client

    return _build
