"""Async HTTP client for the swarm host's ingestion and stats services.

Endpoints (host ``{scheme}://{host}``):
- ``POST :7799/sync_async`` / ``POST :7799/ingest_async``: start a job,
  answer ``{"request_id": ...}``
- ``GET :7799/progress?request_id=...``: job progress
- ``GET :3355/stats``: health probe

Every call sends the decrypted swarm API key both as a bearer token and as
``x-api-token``. Calls never raise for HTTP or network failures; they return
an ``ApiResult`` whose ``status`` is the upstream status, or 502 when the
host could not be reached.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import httpx

from swarmsync.errors import UpstreamError

logger = logging.getLogger(__name__)

SYNC_ENDPOINT = "/sync_async"
INGEST_ENDPOINT = "/ingest_async"
PROGRESS_ENDPOINT = "/progress"
STATS_ENDPOINT = "/stats"

UNREACHABLE_STATUS = 502


@dataclass
class ApiResult:
    """Outcome of one swarm host request.

    Attributes:
        ok: True for a 2xx answer
        status: Upstream HTTP status, or 502 when the host was unreachable
        data: Parsed JSON body, or None when the body was not JSON
    """

    ok: bool
    status: int
    data: Optional[Any] = None

    def raise_for_status(self) -> "ApiResult":
        if not self.ok:
            raise UpstreamError(
                f"Swarm host answered {self.status}", upstream_status=self.status
            )
        return self


class SwarmAPIClient:
    """Client for the ingestion and stats services of a swarm host."""

    def __init__(
        self,
        *,
        scheme: str = "https",
        ingest_port: int = 7799,
        stats_port: int = 3355,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            scheme: URL scheme used when the host carries none
            ingest_port: Port of the ingestion service
            stats_port: Port of the stats service
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self.scheme = scheme
        self.ingest_port = ingest_port
        self.stats_port = stats_port
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, swarm_settings: Any, **kwargs: Any) -> "SwarmAPIClient":
        return cls(
            scheme=swarm_settings.scheme,
            ingest_port=swarm_settings.ingest_port,
            stats_port=swarm_settings.stats_port,
            timeout=swarm_settings.timeout_seconds,
            **kwargs,
        )

    def base_url(self, host: str, port: int) -> str:
        """Build ``scheme://host:port`` for a host name or URL."""
        candidate = host.strip()
        scheme = self.scheme
        if "://" in candidate:
            parsed = urlparse(candidate)
            scheme = parsed.scheme or scheme
            candidate = parsed.hostname or ""
        candidate = candidate.rstrip("/")
        return f"{scheme}://{candidate}:{port}"

    async def request(
        self,
        method: str,
        url: str,
        api_key: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> ApiResult:
        """Send one authenticated request.

        Returns:
            ApiResult; unreachable hosts yield status 502 and no data
        """
        headers = {
            "Authorization": f"Bearer {api_key}",
            "x-api-token": api_key,
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.request(
                    method, url, headers=headers, json=json, params=params
                )
        except httpx.HTTPError as e:
            logger.warning(
                f"Swarm host request failed: {type(e).__name__}",
                extra={"method": method, "url": url},
            )
            return ApiResult(ok=False, status=UNREACHABLE_STATUS, data=None)

        try:
            data = response.json()
        except ValueError:
            data = None

        ok = 200 <= response.status_code < 300
        if not ok:
            logger.warning(
                f"Swarm host answered {response.status_code}",
                extra={"method": method, "url": url},
            )
        return ApiResult(ok=ok, status=response.status_code, data=data)

    async def start_ingest(
        self,
        host: str,
        api_key: str,
        payload: Dict[str, Any],
        *,
        endpoint: str = SYNC_ENDPOINT,
    ) -> ApiResult:
        """Start an asynchronous sync or full ingest job."""
        if endpoint not in (SYNC_ENDPOINT, INGEST_ENDPOINT):
            raise ValueError(f"Unsupported ingest endpoint: {endpoint}")
        url = self.base_url(host, self.ingest_port) + endpoint
        return await self.request("POST", url, api_key, json=payload)

    async def get_progress(self, host: str, api_key: str, request_id: str) -> ApiResult:
        """Fetch progress of an ingestion job."""
        url = self.base_url(host, self.ingest_port) + PROGRESS_ENDPOINT
        return await self.request("GET", url, api_key, params={"request_id": request_id})

    async def get_stats(self, host: str, api_key: str) -> ApiResult:
        """Probe the stats service (activation health check)."""
        url = self.base_url(host, self.stats_port) + STATS_ENDPOINT
        return await self.request("GET", url, api_key)


__all__ = [
    "ApiResult",
    "SwarmAPIClient",
    "SYNC_ENDPOINT",
    "INGEST_ENDPOINT",
]
