"""Start ingestion jobs on a workspace's swarm host.

``start_async_sync`` / ``ingest_async`` are the bare calls. ``sync_workspace``
is the full caller contract: mark the repository PENDING, start the job,
then record the returned ``request_id`` as the swarm's current job (or mark
the repository FAILED when the host refused).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from swarmsync.errors import RecordNotFoundError, ValidationError
from swarmsync.models import GitCredentials, Swarm
from swarmsync.store import GitCredentialStore, SwarmStateStore
from swarmsync.swarm.api_client import INGEST_ENDPOINT, SYNC_ENDPOINT, SwarmAPIClient
from swarmsync.vault import CredentialVault

from .status import StatusReconciler

logger = logging.getLogger(__name__)

INGEST_WEBHOOK_PATH = "/api/swarm/stakgraph/webhook"

API_KEY_FIELD = "swarmApiKey"


def callback_url_for(public_url: Optional[str]) -> Optional[str]:
    """Callback URL the ingestion service should call for a public base URL."""
    if not public_url:
        return None
    return public_url.rstrip("/") + INGEST_WEBHOOK_PATH


@dataclass
class SyncResult:
    """Answer of the swarm host to a job start request."""

    ok: bool
    status: int
    request_id: Optional[str] = None
    data: Optional[Any] = None


@dataclass
class SyncOutcome:
    """Result of ``sync_workspace``.

    ``superseded_request_id`` is the job id this sync replaced; callbacks for
    it are ignored from now on.
    """

    ok: bool
    status: int
    request_id: Optional[str] = None
    superseded_request_id: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.ok,
            "status": self.status,
            "request_id": self.request_id,
            "superseded_request_id": self.superseded_request_id,
            "message": self.message,
        }


class SyncTrigger:
    """Issues sync/ingest jobs and records their correlation ids."""

    def __init__(
        self,
        vault: CredentialVault,
        store: SwarmStateStore,
        client: SwarmAPIClient,
        *,
        reconciler: Optional[StatusReconciler] = None,
        credential_store: Optional[GitCredentialStore] = None,
        callback_url: Optional[str] = None,
        use_lsp: Optional[bool] = None,
    ):
        self.vault = vault
        self.store = store
        self.client = client
        self.reconciler = reconciler or StatusReconciler(store)
        self.credential_store = credential_store
        self.callback_url = callback_url
        self.use_lsp = use_lsp

    async def start_async_sync(
        self,
        host: str,
        encrypted_api_key: str,
        repo_url: str,
        credentials: Optional[GitCredentials] = None,
        callback_url: Optional[str] = None,
        use_lsp: Optional[bool] = None,
    ) -> SyncResult:
        """Start an incremental sync job on the host."""
        return await self._start(
            SYNC_ENDPOINT, host, encrypted_api_key, repo_url, credentials, callback_url, use_lsp
        )

    async def ingest_async(
        self,
        host: str,
        encrypted_api_key: str,
        repo_url: str,
        credentials: Optional[GitCredentials] = None,
        callback_url: Optional[str] = None,
        use_lsp: Optional[bool] = None,
    ) -> SyncResult:
        """Start a full re-ingest job on the host."""
        return await self._start(
            INGEST_ENDPOINT, host, encrypted_api_key, repo_url, credentials, callback_url, use_lsp
        )

    async def _start(
        self,
        endpoint: str,
        host: str,
        encrypted_api_key: str,
        repo_url: str,
        credentials: Optional[GitCredentials],
        callback_url: Optional[str],
        use_lsp: Optional[bool],
    ) -> SyncResult:
        api_key = self.vault.decrypt(API_KEY_FIELD, encrypted_api_key)

        payload: Dict[str, Any] = {"repo_url": repo_url}
        if credentials is not None:
            payload.update(credentials.as_payload())
        if use_lsp is not None:
            payload["use_lsp"] = use_lsp
        if callback_url:
            payload["callback_url"] = callback_url

        result = await self.client.start_ingest(host, api_key, payload, endpoint=endpoint)

        request_id = None
        if isinstance(result.data, dict) and result.data.get("request_id"):
            request_id = str(result.data["request_id"])

        return SyncResult(ok=result.ok, status=result.status, request_id=request_id, data=result.data)

    async def sync_workspace(
        self,
        workspace_id: str,
        *,
        repository_url: Optional[str] = None,
        credentials: Optional[GitCredentials] = None,
        callback_url: Optional[str] = None,
        use_lsp: Optional[bool] = None,
        full_ingest: bool = False,
    ) -> SyncOutcome:
        """Start a job for a workspace and record it as the current one.

        Raises:
            RecordNotFoundError: If the workspace has no swarm
            ValidationError: If the swarm lacks a host name, API key or repository
        """
        swarm = await asyncio.to_thread(self.store.get_swarm, workspace_id)
        if swarm is None:
            raise RecordNotFoundError(
                "Swarm not found", details={"workspace_id": workspace_id}
            )
        self._check_swarm(swarm)

        repo_url = repository_url or swarm.repository_url
        if not repo_url:
            raise ValidationError(
                "Repository URL not set", details={"workspace_id": workspace_id}
            )

        await asyncio.to_thread(
            self.reconciler.mark_sync_started, repo_url, workspace_id, branch=swarm.default_branch
        )

        if credentials is None and self.credential_store is not None:
            credentials = await asyncio.to_thread(self.credential_store.lookup, workspace_id)

        start = self.ingest_async if full_ingest else self.start_async_sync
        try:
            result = await start(
                swarm.name,
                swarm.api_key_envelope or "",
                repo_url,
                credentials,
                callback_url or self.callback_url,
                use_lsp if use_lsp is not None else self.use_lsp,
            )
        except Exception:
            await asyncio.to_thread(self.reconciler.mark_sync_failed, repo_url, workspace_id)
            raise

        if result.ok and result.request_id:
            _, superseded = await asyncio.to_thread(
                self.reconciler.record_job_started,
                swarm,
                result.request_id,
                repository_url=repo_url,
            )
            logger.info(
                "Ingestion job started",
                extra={
                    "workspace_id": workspace_id,
                    "request_id": result.request_id,
                    "full_ingest": full_ingest,
                },
            )
            return SyncOutcome(
                ok=True,
                status=result.status,
                request_id=result.request_id,
                superseded_request_id=superseded,
            )

        await asyncio.to_thread(self.reconciler.mark_sync_failed, repo_url, workspace_id)
        status = result.status if not result.ok else 502
        logger.warning(
            f"Swarm host did not start a job ({status})",
            extra={"workspace_id": workspace_id},
        )
        return SyncOutcome(ok=False, status=status, message="Failed to start sync")

    @staticmethod
    def _check_swarm(swarm: Swarm) -> None:
        if not swarm.name or not swarm.api_key_envelope:
            raise ValidationError(
                "Swarm not found or misconfigured",
                details={"workspace_id": swarm.workspace_id},
            )


__all__ = [
    "INGEST_WEBHOOK_PATH",
    "SyncResult",
    "SyncOutcome",
    "SyncTrigger",
    "callback_url_for",
]
