"""Canonical interpretation of ingestion job status.

``map_status`` turns whatever spelling the ingestion service reports into a
``StepStatus``. ``StatusReconciler`` is the single writer of job and
repository sync state, used both by webhook callbacks and by polling, so the
two paths cannot disagree on what a status means.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, Field

from swarmsync.errors import RecordNotFoundError, StaleRecordError
from swarmsync.models import (
    TERMINAL_STEP_STATUSES,
    IngestResult,
    Repository,
    RepositoryStatus,
    StepStatus,
    Swarm,
    SwarmStatus,
)
from swarmsync.store import SwarmStateStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Status mapping
# ---------------------------------------------------------------------------

_STATUS_TABLE: Dict[str, StepStatus] = {
    "pending": StepStatus.PENDING,
    "queued": StepStatus.PENDING,
    "waiting": StepStatus.PENDING,
    "started": StepStatus.STARTED,
    "processing": StepStatus.PROCESSING,
    "inprogress": StepStatus.PROCESSING,
    "running": StepStatus.PROCESSING,
    "complete": StepStatus.COMPLETED,
    "completed": StepStatus.COMPLETED,
    "success": StepStatus.COMPLETED,
    "succeeded": StepStatus.COMPLETED,
    "failed": StepStatus.FAILED,
    "failure": StepStatus.FAILED,
    "error": StepStatus.FAILED,
}

_SEPARATORS = re.compile(r"[\s_\-]+")


def map_status(raw: Any) -> Optional[StepStatus]:
    """Map a vendor status string onto ``StepStatus``.

    Matching ignores case, whitespace, underscores and hyphens. Unknown or
    non-string input returns None.
    """
    if not isinstance(raw, str):
        return None
    return _STATUS_TABLE.get(_SEPARATORS.sub("", raw).lower())


# ---------------------------------------------------------------------------
# Update / outcome types
# ---------------------------------------------------------------------------


class IngestUpdate(BaseModel):
    """Job state reported by a callback or a progress poll."""

    request_id: str = Field(..., min_length=1)
    status: Optional[str] = Field(default=None, description="Vendor status as received")
    progress: Optional[float] = None
    nodes: Optional[int] = None
    edges: Optional[int] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "IngestUpdate":
        """Build from a callback or progress body (``result`` holds the counts)."""
        result = payload.get("result")
        if not isinstance(result, Mapping):
            result = {}
        error = payload.get("error")
        return cls(
            request_id=str(payload.get("request_id") or ""),
            status=payload.get("status") if isinstance(payload.get("status"), str) else None,
            progress=_as_number(payload.get("progress"), float),
            nodes=_as_number(result.get("nodes"), int),
            edges=_as_number(result.get("edges"), int),
            error=str(error) if error else None,
            started_at=_as_timestamp(payload.get("started_at")),
            completed_at=_as_timestamp(payload.get("completed_at")),
            duration_ms=_as_number(payload.get("duration_ms"), int),
        )

    def to_result(self) -> IngestResult:
        return IngestResult(
            request_id=self.request_id,
            status=self.status,
            progress=self.progress,
            nodes=self.nodes,
            edges=self.edges,
            error=self.error,
            started_at=self.started_at,
            completed_at=self.completed_at,
            duration_ms=self.duration_ms,
        )


@dataclass
class ReconcileOutcome:
    """What ``apply_ingest_update`` did.

    ``applied`` is False for unknown statuses and for superseded jobs; in both
    cases nothing was written.
    """

    applied: bool
    step_status: Optional[StepStatus] = None
    swarm: Optional[Swarm] = None
    reason: Optional[str] = None
    repository_status: Optional[RepositoryStatus] = None
    repository_error: Optional[str] = None


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------


class StatusReconciler:
    """Single writer of job status and repository sync status."""

    def __init__(self, store: SwarmStateStore):
        self.store = store

    def apply_ingest_update(self, swarm: Swarm, update: IngestUpdate) -> ReconcileOutcome:
        """Commit a reported job state.

        The swarm write only happens while ``swarm.ingest_ref_id`` still equals
        ``update.request_id``. Terminal statuses also update the linked
        repository; a failure there is logged and reported, never raised.
        """
        step = map_status(update.status)
        if step is None:
            logger.info(
                f"Ignoring unknown ingestion status {update.status!r}",
                extra={"request_id": update.request_id, "workspace_id": swarm.workspace_id},
            )
            return ReconcileOutcome(applied=False, reason="unknown_status")

        changes: Dict[str, Any] = {
            "step_status": step,
            "last_result": update.to_result(),
        }
        if step == StepStatus.COMPLETED and swarm.status == SwarmStatus.PENDING:
            changes["status"] = SwarmStatus.ACTIVE

        try:
            updated = self.store.update_swarm(
                swarm.workspace_id,
                expect_ingest_ref_id=update.request_id,
                **changes,
            )
        except (StaleRecordError, RecordNotFoundError):
            logger.info(
                "Ingestion job superseded, update not applied",
                extra={"request_id": update.request_id, "workspace_id": swarm.workspace_id},
            )
            return ReconcileOutcome(applied=False, step_status=step, reason="superseded")

        outcome = ReconcileOutcome(applied=True, step_status=step, swarm=updated)

        # The job's own repository wins over the swarm's linked one
        repository_url = updated.ingest_repository_url or updated.repository_url
        if step in TERMINAL_STEP_STATUSES and repository_url:
            repo_status = (
                RepositoryStatus.SYNCED if step == StepStatus.COMPLETED else RepositoryStatus.FAILED
            )
            try:
                repository = self._require_repository(repository_url, updated.workspace_id)
                self.store.update_repository(
                    repository.repository_url, updated.workspace_id, status=repo_status
                )
                outcome.repository_status = repo_status
            except Exception as e:
                logger.error(
                    f"Failed to update repository status: {type(e).__name__}",
                    extra={
                        "request_id": update.request_id,
                        "workspace_id": updated.workspace_id,
                        "repository_url": repository_url,
                    },
                )
                outcome.repository_error = type(e).__name__

        logger.info(
            f"Ingestion status {step.value}",
            extra={"request_id": update.request_id, "workspace_id": updated.workspace_id},
        )
        return outcome

    def record_job_started(
        self, swarm: Swarm, request_id: str, *, repository_url: Optional[str] = None
    ) -> Tuple[Swarm, Optional[str]]:
        """Make ``request_id`` the swarm's current job.

        ``repository_url`` is the repository the job syncs; its row is the one
        flipped when the job resolves. Defaults to the swarm's linked repository.

        Returns:
            (updated swarm, id of the job this one replaced or None)
        """
        current = self.store.get_swarm(swarm.workspace_id) or swarm
        previous = current.ingest_ref_id

        updated = self.store.update_swarm(
            swarm.workspace_id,
            ingest_ref_id=request_id,
            ingest_repository_url=repository_url or current.repository_url,
            step_status=StepStatus.STARTED,
            last_result=IngestResult(request_id=request_id, status="started"),
        )

        superseded = previous if previous and previous != request_id else None
        if superseded:
            logger.info(
                "New ingestion job supersedes previous one",
                extra={
                    "request_id": request_id,
                    "superseded_request_id": superseded,
                    "workspace_id": swarm.workspace_id,
                },
            )
        return updated, superseded

    def mark_sync_started(
        self, repository_url: str, workspace_id: str, *, branch: Optional[str] = None
    ) -> Repository:
        """Flip a repository to PENDING, creating the row when missing."""
        repository = self.store.resolve_repository(repository_url, workspace_id)
        if repository is None:
            repository, created = self.store.ensure_repository(
                repository_url,
                workspace_id,
                branch=branch,
                status=RepositoryStatus.PENDING,
            )
            if created:
                return repository
        if repository.status == RepositoryStatus.PENDING:
            return repository
        return self.store.update_repository(
            repository.repository_url, workspace_id, status=RepositoryStatus.PENDING
        )

    def mark_sync_failed(self, repository_url: str, workspace_id: str) -> Repository:
        """Flip a repository to FAILED after a job could not be started."""
        repository = self.store.resolve_repository(repository_url, workspace_id)
        if repository is None:
            repository, _ = self.store.ensure_repository(repository_url, workspace_id)
        return self.store.update_repository(
            repository.repository_url, workspace_id, status=RepositoryStatus.FAILED
        )

    def _require_repository(self, repository_url: str, workspace_id: str) -> Repository:
        repository = self.store.resolve_repository(repository_url, workspace_id)
        if repository is None:
            raise RecordNotFoundError(
                "Repository not tracked for workspace",
                details={"repository_url": repository_url, "workspace_id": workspace_id},
            )
        return repository

    def mark_swarm_active(self, swarm: Swarm) -> Swarm:
        """Flip a swarm to ACTIVE after a successful health probe."""
        if swarm.status == SwarmStatus.ACTIVE:
            return swarm
        updated = self.store.update_swarm(swarm.workspace_id, status=SwarmStatus.ACTIVE)
        logger.info("Swarm is active", extra={"workspace_id": swarm.workspace_id})
        return updated


def _as_number(value: Any, cast: Any) -> Optional[Any]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return cast(value)
    except (TypeError, ValueError):
        return None


def _as_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        # Epoch seconds or milliseconds
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


__all__ = [
    "map_status",
    "IngestUpdate",
    "ReconcileOutcome",
    "StatusReconciler",
]
