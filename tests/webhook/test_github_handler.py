"""Tests for GitHub repository webhooks."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from swarmsync.sync import SyncOutcome, SyncTrigger
from swarmsync.vault import hmac_sha256_hex
from swarmsync.webhook import GitHubWebhookService, WebhookRateLimiter

REPO_URL = "https://github.com/acme/widgets"
SECRET = "gh-webhook-secret-value"


def _push(ref="refs/heads/main", url=REPO_URL, default_branch="main"):
    return {"ref": ref, "repository": {"html_url": url, "default_branch": default_branch}}


def _pull_request(action="closed", merged=True, base="main"):
    return {
        "action": action,
        "pull_request": {"merged": merged, "base": {"ref": base}},
        "repository": {"html_url": REPO_URL, "default_branch": "main"},
    }


def _sign(payload, secret=SECRET):
    body = json.dumps(payload).encode()
    return body, "sha256=" + hmac_sha256_hex(secret, body)


@pytest.fixture
def trigger():
    mock = MagicMock(spec=SyncTrigger)
    mock.sync_workspace = AsyncMock(
        return_value=SyncOutcome(ok=True, status=200, request_id="req-9")
    )
    return mock


@pytest.fixture
def service(vault, state_store, trigger):
    return GitHubWebhookService(vault, state_store, trigger)


@pytest.fixture
def tracked(make_repository, make_swarm):
    make_repository()
    make_swarm()


class TestTriggeringEvents:
    @pytest.mark.asyncio
    async def test_push_to_default_branch(self, service, tracked, trigger):
        body, signature = _sign(_push())

        response = await service.process(signature, "push", body, "d-1")

        assert response.status == 202
        assert response.success
        assert response.data == {"delivery": "d-1", "request_id": "req-9", "workspace_id": "ws-1"}
        trigger.sync_workspace.assert_awaited_once_with("ws-1", repository_url=REPO_URL)

    @pytest.mark.asyncio
    async def test_push_with_git_suffix_url(self, service, tracked, trigger):
        body, signature = _sign(_push(url=REPO_URL + ".git"))

        response = await service.process(signature, "push", body, "d-1")

        assert response.status == 202
        trigger.sync_workspace.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_push_to_tracked_branch(self, service, make_repository, make_swarm, trigger):
        make_repository(branch="release")
        make_swarm()
        body, signature = _sign(_push(ref="refs/heads/release"))

        await service.process(signature, "push", body, "d-1")

        trigger.sync_workspace.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_merged_pull_request(self, service, tracked, trigger):
        body, signature = _sign(_pull_request())

        response = await service.process(signature, "pull_request", body, "d-2")

        assert response.status == 202
        trigger.sync_workspace.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_host_refusal_reports_failure(self, service, tracked, trigger):
        trigger.sync_workspace.return_value = SyncOutcome(ok=False, status=503)
        body, signature = _sign(_push())

        response = await service.process(signature, "push", body, "d-1")

        assert response.status == 202
        assert not response.success
        assert response.data["request_id"] is None


class TestIgnoredEvents:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "ref", ["refs/heads/feature/x", "refs/tags/v1.0", "refs/heads/"]
    )
    async def test_push_elsewhere(self, service, tracked, trigger, ref):
        body, signature = _sign(_push(ref=ref))

        response = await service.process(signature, "push", body, "d-1")

        assert response.status == 202
        assert response.success
        trigger.sync_workspace.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            _pull_request(action="opened", merged=False),
            _pull_request(merged=False),
            _pull_request(base="feature"),
        ],
    )
    async def test_unmerged_or_foreign_pull_request(self, service, tracked, trigger, payload):
        body, signature = _sign(payload)

        response = await service.process(signature, "pull_request", body, "d-1")

        assert response.status == 202
        trigger.sync_workspace.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_other_event(self, service, tracked, trigger):
        body, signature = _sign({"zen": "Keep it simple", "repository": {"html_url": REPO_URL}})

        response = await service.process(signature, "ping", body, "d-1")

        assert response.status == 202
        trigger.sync_workspace.assert_not_awaited()


class TestRejectedDeliveries:
    @pytest.mark.asyncio
    async def test_missing_headers(self, service, tracked):
        body, signature = _sign(_push())

        assert (await service.process(None, "push", body)).status == 400
        assert (await service.process(signature, None, body)).status == 400

    @pytest.mark.asyncio
    async def test_invalid_json(self, service):
        assert (await service.process("sha256=abc", "push", b"{nope")).status == 400

    @pytest.mark.asyncio
    async def test_missing_repository_url(self, service):
        body, signature = _sign({"ref": "refs/heads/main"})
        assert (await service.process(signature, "push", body)).status == 400

    @pytest.mark.asyncio
    async def test_untracked_repository(self, service, tracked, trigger):
        body, signature = _sign(_push(url="https://github.com/acme/other"))

        assert (await service.process(signature, "push", body)).status == 404
        trigger.sync_workspace.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_repository_without_secret(self, service, make_repository, trigger):
        make_repository(secret=None)
        body, signature = _sign(_push())

        assert (await service.process(signature, "push", body)).status == 404

    @pytest.mark.asyncio
    async def test_bad_signature(self, service, tracked, trigger):
        body, signature = _sign(_push(), secret="wrong")

        response = await service.process(signature, "push", body)

        assert response.status == 401
        trigger.sync_workspace.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_signature_without_prefix(self, service, tracked, trigger):
        body, signature = _sign(_push())

        response = await service.process(signature[len("sha256="):], "push", body)

        assert response.status == 401

    @pytest.mark.asyncio
    async def test_push_without_ref(self, service, tracked, trigger):
        body, signature = _sign({"repository": {"html_url": REPO_URL}})

        assert (await service.process(signature, "push", body)).status == 400

    @pytest.mark.asyncio
    async def test_missing_swarm(self, service, make_repository, trigger):
        make_repository()
        body, signature = _sign(_push())

        assert (await service.process(signature, "push", body)).status == 400
        trigger.sync_workspace.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rate_limited(self, vault, state_store, trigger, tracked):
        service = GitHubWebhookService(
            vault, state_store, trigger, WebhookRateLimiter(max_requests_per_minute=1)
        )
        body, signature = _sign(_push())

        first = await service.process(signature, "push", body, "d-1")
        second = await service.process(signature, "push", body, "d-2")

        assert first.status == 202
        assert second.status == 429
        assert trigger.sync_workspace.await_count == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_is_500(self, service, tracked, trigger):
        trigger.sync_workspace.side_effect = RuntimeError("boom")
        body, signature = _sign(_push())

        response = await service.process(signature, "push", body)

        assert response.status == 500
        assert "boom" not in json.dumps(response.to_body())
