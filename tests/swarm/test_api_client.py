"""Tests for the swarm host HTTP client."""

import json

import httpx
import pytest

from swarmsync.configuration.settings import SwarmHostSettings
from swarmsync.errors import UpstreamError
from swarmsync.swarm import ApiResult, SwarmAPIClient


class TestBaseUrl:
    def test_bare_host(self):
        client = SwarmAPIClient()
        assert client.base_url("acme-host", 7799) == "https://acme-host:7799"

    def test_host_with_scheme_keeps_its_scheme(self):
        client = SwarmAPIClient()
        assert client.base_url("http://acme.example.com/", 3355) == "http://acme.example.com:3355"

    def test_configured_scheme(self):
        client = SwarmAPIClient.from_settings(SwarmHostSettings(scheme="http", ingest_port=9000))
        assert client.ingest_port == 9000
        assert client.base_url("acme-host", client.ingest_port) == "http://acme-host:9000"


class TestRequests:
    @pytest.mark.asyncio
    async def test_start_ingest_sends_auth_headers_and_payload(self, mock_swarm_host):
        client = mock_swarm_host(lambda request: httpx.Response(200, json={"request_id": "req-1"}))

        result = await client.start_ingest(
            "acme-host", "sk-key", {"repo_url": "https://github.com/acme/widgets"}
        )

        assert result == ApiResult(ok=True, status=200, data={"request_id": "req-1"})
        sent = client.requests[0]
        assert sent.method == "POST"
        assert str(sent.url) == "https://acme-host:7799/sync_async"
        assert sent.headers["authorization"] == "Bearer sk-key"
        assert sent.headers["x-api-token"] == "sk-key"
        assert json.loads(sent.content) == {"repo_url": "https://github.com/acme/widgets"}

    @pytest.mark.asyncio
    async def test_full_ingest_endpoint(self, mock_swarm_host):
        client = mock_swarm_host(lambda request: httpx.Response(200, json={"request_id": "req-1"}))

        await client.start_ingest("acme-host", "sk-key", {}, endpoint="/ingest_async")

        assert client.requests[0].url.path == "/ingest_async"

    @pytest.mark.asyncio
    async def test_unknown_endpoint_rejected(self, mock_swarm_host):
        client = mock_swarm_host(lambda request: httpx.Response(200))

        with pytest.raises(ValueError):
            await client.start_ingest("acme-host", "sk-key", {}, endpoint="/delete")
        assert client.requests == []

    @pytest.mark.asyncio
    async def test_progress_passes_request_id(self, mock_swarm_host):
        client = mock_swarm_host(lambda request: httpx.Response(200, json={"status": "InProgress"}))

        result = await client.get_progress("acme-host", "sk-key", "req 1")

        sent = client.requests[0]
        assert sent.method == "GET"
        assert sent.url.path == "/progress"
        assert sent.url.params["request_id"] == "req 1"
        assert result.data == {"status": "InProgress"}

    @pytest.mark.asyncio
    async def test_stats_uses_stats_port(self, mock_swarm_host):
        client = mock_swarm_host(lambda request: httpx.Response(200, json={"nodes": 1}))

        await client.get_stats("acme-host", "sk-key")

        assert str(client.requests[0].url) == "https://acme-host:3355/stats"


class TestFailures:
    @pytest.mark.asyncio
    async def test_error_status_is_passed_through(self, mock_swarm_host):
        client = mock_swarm_host(lambda request: httpx.Response(503, json={"error": "busy"}))

        result = await client.get_stats("acme-host", "sk-key")

        assert not result.ok
        assert result.status == 503
        assert result.data == {"error": "busy"}

    @pytest.mark.asyncio
    async def test_non_json_body_yields_no_data(self, mock_swarm_host):
        client = mock_swarm_host(lambda request: httpx.Response(200, text="<html>ok</html>"))

        result = await client.get_stats("acme-host", "sk-key")

        assert result.ok
        assert result.data is None

    @pytest.mark.asyncio
    async def test_unreachable_host_is_502(self, mock_swarm_host):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = mock_swarm_host(refuse)

        result = await client.get_progress("acme-host", "sk-key", "req-1")

        assert result == ApiResult(ok=False, status=502, data=None)

    def test_raise_for_status(self):
        with pytest.raises(UpstreamError) as exc_info:
            ApiResult(ok=False, status=404).raise_for_status()
        assert exc_info.value.upstream_status == 404

        ok = ApiResult(ok=True, status=200, data={})
        assert ok.raise_for_status() is ok
