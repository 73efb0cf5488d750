"""Webhook server implementation using aiohttp.

This module implements the HTTP server that receives ingestion-service
callbacks and GitHub repository webhooks. Deliveries are processed inline:
the job on the swarm host and its correlation id are the only tracking, so
there is no internal queue to drain. Store, keychain and audit I/O runs in
worker threads, off the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from aiohttp import web

from swarmsync.audit import DeliveryAuditLog
from swarmsync.errors import error_response

from .github_handler import GitHubWebhookService
from .ingest_handler import IngestionWebhookService
from .models import WebhookResponse

logger = logging.getLogger(__name__)

INGEST_CALLBACK_ROUTE = "/api/swarm/stakgraph/webhook"
GITHUB_WEBHOOK_ROUTE = "/api/github/webhook"
HEALTH_ROUTE = "/health"


def _delivery_status(status: int) -> str:
    if status == 200:
        return "applied"
    if status == 202:
        return "accepted"
    if status == 429:
        return "rate_limited"
    if status in (401, 403):
        return "signature_failed"
    if status >= 500:
        return "error"
    return "rejected"


def _error_webhook_response(error: Exception) -> WebhookResponse:
    body, status = error_response(error)
    return WebhookResponse(success=False, status=status, message=body["message"])


# ---------------------------------------------------------------------------
# Webhook Server
# ---------------------------------------------------------------------------


class WebhookServer:
    """Receives and processes inbound webhooks.

    Routes:
    - ``POST /api/swarm/stakgraph/webhook``: ingestion-service callbacks
    - ``POST /api/github/webhook``: GitHub repository webhooks
    - ``GET /health``: health check

    Example:
        >>> server = WebhookServer(ingest_service, github_service, port=8080)
        >>> await server.start()
        >>> # Server running...
        >>> await server.stop()
    """

    def __init__(
        self,
        ingest_service: IngestionWebhookService,
        github_service: GitHubWebhookService,
        *,
        host: str = "0.0.0.0",
        port: int = 8080,
        audit_log: Optional[DeliveryAuditLog] = None,
    ):
        """Initialize webhook server.

        Args:
            ingest_service: Handler for ingestion callbacks
            github_service: Handler for GitHub deliveries
            host: Bind address
            port: Bind port
            audit_log: Optional delivery audit trail
        """
        self.ingest_service = ingest_service
        self.github_service = github_service
        self.host = host
        self.port = port
        self.audit_log = audit_log

        self.app = web.Application()
        self._setup_routes()

        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

    def _setup_routes(self) -> None:
        """Setup HTTP routes."""
        self.app.router.add_post(INGEST_CALLBACK_ROUTE, self.handle_ingest_callback)
        self.app.router.add_post(GITHUB_WEBHOOK_ROUTE, self.handle_github_webhook)
        self.app.router.add_get(HEALTH_ROUTE, self.health_check)

    async def handle_ingest_callback(self, request: web.Request) -> web.Response:
        """Handle a callback from the ingestion service."""
        signature = request.headers.get("x-signature")
        request_id_header = request.headers.get("x-request-id") or request.headers.get(
            "idempotency-key"
        )
        body = await request.read()

        try:
            response = await asyncio.to_thread(
                self.ingest_service.process, signature, body, request_id_header
            )
        except Exception as e:
            logger.exception("Ingestion callback handler failed")
            response = _error_webhook_response(e)

        await asyncio.to_thread(
            self._audit,
            source="ingest_webhook",
            action="callback_received",
            response=response,
            delivery_id=request_id_header,
            request_id=response.data.get("request_id"),
            workspace_id=response.data.get("workspace_id"),
        )
        return web.json_response(response.to_body(), status=response.status)

    async def handle_github_webhook(self, request: web.Request) -> web.Response:
        """Handle a GitHub repository webhook."""
        signature = request.headers.get("x-hub-signature-256")
        event_type = request.headers.get("x-github-event")
        delivery_id = request.headers.get("x-github-delivery")
        body = await request.read()

        try:
            response = await self.github_service.process(signature, event_type, body, delivery_id)
        except Exception as e:
            logger.exception("GitHub webhook handler failed")
            response = _error_webhook_response(e)

        await asyncio.to_thread(
            self._audit,
            source="github_webhook",
            action="webhook_received",
            response=response,
            delivery_id=delivery_id,
            request_id=response.data.get("request_id"),
            workspace_id=response.data.get("workspace_id"),
            metadata={"event_type": event_type or ""},
        )
        return web.json_response(response.to_body(), status=response.status)

    async def health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        limiter = self.github_service.rate_limiter
        return web.json_response(
            {
                "status": "healthy",
                "rate_limiter_tracked_repos": len(limiter.request_times) if limiter else 0,
            }
        )

    def _audit(
        self,
        *,
        source: str,
        action: str,
        response: WebhookResponse,
        delivery_id: Optional[str],
        request_id: Optional[str] = None,
        workspace_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        if self.audit_log is None:
            return
        try:
            self.audit_log.record_delivery(
                source=source,
                action=action,
                status=_delivery_status(response.status),
                delivery_id=delivery_id,
                http_status=response.status,
                request_id=request_id,
                workspace_id=workspace_id,
                metadata=metadata,
            )
        except OSError as e:
            logger.error(f"Failed to write delivery audit entry: {e}")

    async def start(self) -> None:
        """Start webhook server."""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()

        logger.info(
            f"Webhook server listening on {self.host}:{self.port}",
            extra={"host": self.host, "port": self.port},
        )

    async def stop(self) -> None:
        """Stop webhook server gracefully."""
        logger.info("Stopping webhook server...")

        if self.site:
            await self.site.stop()
        if self.runner:
            await self.runner.cleanup()

        self.site = None
        self.runner = None
        logger.info("Webhook server stopped")

    async def serve_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run until ``stop_event`` is set or the task is cancelled."""
        stop_event = stop_event or asyncio.Event()
        await self.start()
        try:
            await stop_event.wait()
        finally:
            await self.stop()


__all__ = [
    "WebhookServer",
    "INGEST_CALLBACK_ROUTE",
    "GITHUB_WEBHOOK_ROUTE",
    "HEALTH_ROUTE",
]
