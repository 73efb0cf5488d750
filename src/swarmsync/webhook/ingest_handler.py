"""Callbacks from the ingestion service.

The ingestion service signs the raw body with the swarm API key
(``x-signature: sha256=<hex>``, prefix optional) and identifies the job by
``request_id``. Only the job currently recorded on a swarm is actionable;
callbacks for unknown or superseded jobs are acknowledged with 202 and change
nothing.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from swarmsync.store import SwarmStateStore
from swarmsync.sync.status import IngestUpdate, StatusReconciler
from swarmsync.vault import CredentialVault, DecryptionError, verify_signature

from .models import WebhookResponse

logger = logging.getLogger(__name__)

API_KEY_FIELD = "swarmApiKey"


class IngestionWebhookService:
    """Authenticates ingestion callbacks and hands them to the reconciler."""

    def __init__(
        self,
        vault: CredentialVault,
        store: SwarmStateStore,
        reconciler: Optional[StatusReconciler] = None,
    ):
        self.vault = vault
        self.store = store
        self.reconciler = reconciler or StatusReconciler(store)

    def process(
        self,
        signature: Optional[str],
        raw_body: bytes,
        request_id_header: Optional[str] = None,
    ) -> WebhookResponse:
        """Process one callback.

        Args:
            signature: Value of ``x-signature``
            raw_body: Request body exactly as received
            request_id_header: ``x-request-id`` / ``idempotency-key``, logged only

        Returns:
            400 malformed, 401 unauthenticated, 202 ignored, 200 applied,
            500 when the swarm write failed
        """
        if not signature:
            return WebhookResponse(success=False, status=400, message="Missing signature")

        try:
            payload = json.loads(raw_body)
        except ValueError:
            return WebhookResponse(success=False, status=400, message="Invalid JSON payload")
        if not isinstance(payload, dict):
            return WebhookResponse(success=False, status=400, message="Invalid JSON payload")

        request_id = _request_id(payload)
        if not request_id:
            return WebhookResponse(success=False, status=400, message="Missing request_id")

        logger.info(
            "Ingestion callback received",
            extra={"request_id": request_id, "request_id_header": request_id_header},
        )

        try:
            return self._process_verified(request_id, signature, raw_body, payload)
        except Exception:
            logger.exception(
                "Error processing ingestion callback", extra={"request_id": request_id}
            )
            return WebhookResponse(
                success=False, status=500, message="Failed to process webhook"
            )

    def _process_verified(
        self,
        request_id: str,
        signature: str,
        raw_body: bytes,
        payload: Dict[str, Any],
    ) -> WebhookResponse:
        swarm = self.store.find_swarm_by_ingest_ref(request_id)
        if swarm is None:
            logger.warning("No swarm found for request_id", extra={"request_id": request_id})
            return WebhookResponse(success=True, status=202, message="No matching job")

        if not swarm.api_key_envelope:
            logger.error(
                "Swarm missing API key", extra={"request_id": request_id, "workspace_id": swarm.workspace_id}
            )
            return WebhookResponse(success=False, status=401, message="Unauthorized")

        try:
            secret = self.vault.decrypt(API_KEY_FIELD, swarm.api_key_envelope)
        except DecryptionError:
            logger.error(
                "Failed to decrypt swarm API key",
                extra={"request_id": request_id, "workspace_id": swarm.workspace_id},
            )
            return WebhookResponse(success=False, status=401, message="Unauthorized")

        if not verify_signature(raw_body, signature, secret):
            logger.error(
                "Ingestion callback signature mismatch",
                extra={"request_id": request_id, "workspace_id": swarm.workspace_id},
            )
            return WebhookResponse(success=False, status=401, message="Unauthorized")

        update = IngestUpdate.from_payload(payload)
        outcome = self.reconciler.apply_ingest_update(swarm, update)

        if not outcome.applied:
            message = (
                "Job superseded" if outcome.reason == "superseded" else "Status not recognized"
            )
            return WebhookResponse(
                success=True,
                status=202,
                message=message,
                data={"request_id": request_id},
            )

        logger.info(
            "Ingestion callback processed",
            extra={
                "request_id": request_id,
                "workspace_id": swarm.workspace_id,
                "status": update.status,
            },
        )
        return WebhookResponse(
            success=True,
            status=200,
            data={
                "request_id": request_id,
                "step_status": outcome.step_status.value if outcome.step_status else None,
                "workspace_id": swarm.workspace_id,
            },
        )


def _request_id(payload: Dict[str, Any]) -> Optional[str]:
    value = payload.get("request_id")
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (str, int)):
        return str(value) or None
    return None


__all__ = ["IngestionWebhookService"]
