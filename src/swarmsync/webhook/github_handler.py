"""GitHub repository webhooks that trigger incremental syncs.

A delivery is trusted only after its ``x-hub-signature-256`` matches the
HMAC of the raw body under the per-repository webhook secret. Only pushes to
tracked branches and merged pull requests into them start a sync; every other
authenticated delivery is acknowledged with 202.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional, Set

from swarmsync.models import Repository
from swarmsync.store import SwarmStateStore
from swarmsync.sync.trigger import SyncTrigger
from swarmsync.vault import CredentialVault, DecryptionError, verify_signature

from .models import DEFAULT_BRANCHES, GitHubDelivery, WebhookEventType, WebhookResponse
from .security import WebhookRateLimiter

logger = logging.getLogger(__name__)

WEBHOOK_SECRET_FIELD = "githubWebhookSecret"


def allowed_branches(repository: Repository, delivery: GitHubDelivery) -> Set[str]:
    """Branches whose changes trigger a sync."""
    candidates = [repository.branch, delivery.default_branch, *DEFAULT_BRANCHES]
    return {branch for branch in candidates if branch}


class GitHubWebhookService:
    """Authenticates GitHub deliveries and starts syncs for qualifying events."""

    def __init__(
        self,
        vault: CredentialVault,
        store: SwarmStateStore,
        trigger: SyncTrigger,
        rate_limiter: Optional[WebhookRateLimiter] = None,
    ):
        self.vault = vault
        self.store = store
        self.trigger = trigger
        self.rate_limiter = rate_limiter

    async def process(
        self,
        signature: Optional[str],
        event: Optional[str],
        raw_body: bytes,
        delivery_id: Optional[str] = None,
    ) -> WebhookResponse:
        """Process one GitHub delivery.

        Returns:
            400 malformed, 404 untracked repository, 401 bad signature,
            429 rate limited, 202 otherwise (``success`` tells whether a
            triggered sync was accepted by the swarm host)
        """
        if not signature or not event:
            logger.error("Missing signature or event header", extra={"delivery_id": delivery_id})
            return WebhookResponse(success=False, status=400)

        try:
            payload = json.loads(raw_body)
        except ValueError:
            logger.error("Error parsing GitHub payload", extra={"delivery_id": delivery_id})
            return WebhookResponse(success=False, status=400)
        if not isinstance(payload, dict):
            return WebhookResponse(success=False, status=400)

        delivery = GitHubDelivery.from_payload(event, payload, delivery_id)
        if not delivery.normalized_url:
            logger.error("Missing repository url in payload", extra={"delivery_id": delivery_id})
            return WebhookResponse(success=False, status=400)

        try:
            return await self._process_delivery(signature, raw_body, delivery)
        except Exception:
            logger.exception(
                "Error processing GitHub webhook",
                extra={"delivery_id": delivery_id, "event_type": event},
            )
            return WebhookResponse(success=False, status=500)

    async def _process_delivery(
        self, signature: str, raw_body: bytes, delivery: GitHubDelivery
    ) -> WebhookResponse:
        log_extra = {"delivery_id": delivery.delivery_id, "event_type": delivery.event}

        repository = await asyncio.to_thread(
            self.store.find_repository_by_url, delivery.normalized_url
        )
        if repository is None or not repository.webhook_secret_envelope:
            logger.error("Missing repository or webhook secret", extra=log_extra)
            return WebhookResponse(success=False, status=404)

        try:
            secret = self.vault.decrypt(WEBHOOK_SECRET_FIELD, repository.webhook_secret_envelope)
        except DecryptionError:
            logger.error("Failed to decrypt webhook secret", extra=log_extra)
            return WebhookResponse(success=False, status=401)

        if not verify_signature(raw_body, signature, secret, prefix_required=True):
            logger.error("GitHub signature mismatch", extra=log_extra)
            return WebhookResponse(success=False, status=401)

        if self.rate_limiter is not None and not self.rate_limiter.allow_request(
            delivery.normalized_url
        ):
            return WebhookResponse(success=False, status=429, message="Rate limit exceeded")

        branches = allowed_branches(repository, delivery)

        if delivery.event == WebhookEventType.PUSH.value:
            if not delivery.ref:
                logger.error("Push without ref", extra=log_extra)
                return WebhookResponse(success=False, status=400)
            if delivery.pushed_branch not in branches:
                logger.info(
                    f"Ignoring push to {delivery.ref}", extra=log_extra
                )
                return WebhookResponse(success=True, status=202)
        elif delivery.event == WebhookEventType.PULL_REQUEST.value:
            if not (
                delivery.action == "closed"
                and delivery.merged
                and delivery.base_ref in branches
            ):
                logger.info("Ignoring pull request event", extra=log_extra)
                return WebhookResponse(success=True, status=202)
        else:
            logger.info(f"Ignoring event {delivery.event}", extra=log_extra)
            return WebhookResponse(success=True, status=202)

        swarm = await asyncio.to_thread(self.store.get_swarm, repository.workspace_id)
        if swarm is None or not swarm.name or not swarm.api_key_envelope:
            logger.error(
                "Missing swarm or swarm API key",
                extra={**log_extra, "workspace_id": repository.workspace_id},
            )
            return WebhookResponse(success=False, status=400)

        outcome = await self.trigger.sync_workspace(
            repository.workspace_id, repository_url=repository.repository_url
        )
        logger.info(
            "Sync triggered from GitHub delivery",
            extra={
                **log_extra,
                "workspace_id": repository.workspace_id,
                "request_id": outcome.request_id,
                "upstream_status": outcome.status,
            },
        )
        return WebhookResponse(
            success=outcome.ok,
            status=202,
            data={
                "delivery": delivery.delivery_id,
                "request_id": outcome.request_id,
                "workspace_id": repository.workspace_id,
            },
        )


__all__ = ["GitHubWebhookService", "allowed_branches"]
