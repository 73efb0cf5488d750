"""Inbound webhooks: ingestion-service callbacks and GitHub deliveries.

Components:
- IngestionWebhookService: authenticates callbacks and reconciles job status
- GitHubWebhookService: authenticates GitHub deliveries and triggers syncs
- WebhookRateLimiter: per-repository rate limiting
- WebhookServer: aiohttp server exposing both routes
"""

from .github_handler import GitHubWebhookService, allowed_branches
from .ingest_handler import IngestionWebhookService
from .models import GitHubDelivery, WebhookEventType, WebhookResponse
from .security import WebhookRateLimiter
from .server import WebhookServer

__all__ = [
    "GitHubDelivery",
    "GitHubWebhookService",
    "IngestionWebhookService",
    "WebhookEventType",
    "WebhookRateLimiter",
    "WebhookResponse",
    "WebhookServer",
    "allowed_branches",
]
