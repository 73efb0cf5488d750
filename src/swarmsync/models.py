"""Data models for swarms, tracked repositories and ingestion results.

Records are Pydantic models persisted by ``swarmsync.store``. All datetimes
are timezone-aware (UTC). Secret fields hold serialized vault envelopes,
never plaintext.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, SecretStr, field_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SwarmStatus(str, Enum):
    """Provisioning state of a swarm host."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"
    DELETED = "DELETED"


class RepositoryStatus(str, Enum):
    """Sync state of a tracked repository."""

    PENDING = "PENDING"
    SYNCED = "SYNCED"
    FAILED = "FAILED"


class StepStatus(str, Enum):
    """Progress of an ingestion job."""

    PENDING = "PENDING"
    STARTED = "STARTED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


TERMINAL_STEP_STATUSES = frozenset({StepStatus.COMPLETED, StepStatus.FAILED})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


def _ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def normalize_repository_url(url: str) -> str:
    """Strip whitespace, trailing slashes and a trailing ``.git``."""
    normalized = url.strip().rstrip("/")
    if normalized.lower().endswith(".git"):
        normalized = normalized[: -len(".git")]
    return normalized


# ---------------------------------------------------------------------------
# Ingestion Result
# ---------------------------------------------------------------------------


class IngestResult(BaseModel):
    """Last reported state of an ingestion job (``Swarm.last_result``)."""

    request_id: Optional[str] = Field(default=None, description="Job correlation id")
    status: Optional[str] = Field(default=None, description="Vendor status as received")
    progress: Optional[float] = Field(default=None, description="Progress percentage")
    nodes: Optional[int] = Field(default=None, description="Graph node count")
    edges: Optional[int] = Field(default=None, description="Graph edge count")
    error: Optional[str] = Field(default=None, description="Error reported by host")
    started_at: Optional[datetime] = Field(default=None, description="Job start time")
    completed_at: Optional[datetime] = Field(default=None, description="Job end time")
    duration_ms: Optional[int] = Field(default=None, description="Job duration")
    updated_at: datetime = Field(default_factory=_utcnow, description="Last write time")

    @field_validator("started_at", "completed_at", "updated_at")
    @classmethod
    def _ensure_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _ensure_utc(value)


# ---------------------------------------------------------------------------
# Swarm
# ---------------------------------------------------------------------------


class Swarm(BaseModel):
    """External ingestion host bound 1:1 to a workspace."""

    id: str = Field(default_factory=_new_id, description="Swarm identifier")
    workspace_id: str = Field(..., min_length=1, description="Owning workspace (unique)")
    name: str = Field(default="", description="Swarm host name")
    swarm_url: Optional[str] = Field(default=None, description="Base URL of the swarm host")
    status: SwarmStatus = Field(default=SwarmStatus.PENDING)
    api_key_envelope: Optional[str] = Field(
        default=None, description="Sealed swarm API key"
    )
    ingest_ref_id: Optional[str] = Field(
        default=None, description="Correlation id of the most recent ingestion job"
    )
    ingest_repository_url: Optional[str] = Field(
        default=None, description="Repository the most recent ingestion job was started for"
    )
    step_status: Optional[StepStatus] = Field(default=None, description="Job progress")
    wizard_step: Optional[str] = Field(default=None, description="Setup step marker")
    last_result: Optional[IngestResult] = Field(default=None)
    repository_url: Optional[str] = Field(default=None, description="Linked repository")
    default_branch: Optional[str] = Field(default=None)
    owner_id: Optional[str] = Field(default=None, description="Workspace owner user id")
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _ensure_timezone(cls, value: datetime) -> datetime:
        return _ensure_utc(value)

    @property
    def host_address(self) -> str:
        """Host the ingestion service runs on.

        The host name wins; otherwise the hostname of ``swarm_url``.
        """
        if self.name:
            return self.name
        if self.swarm_url:
            return urlparse(self.swarm_url).hostname or ""
        return ""

    @property
    def is_active(self) -> bool:
        return self.status == SwarmStatus.ACTIVE


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class Repository(BaseModel):
    """Repository tracked for a workspace (unique on URL + workspace)."""

    id: str = Field(default_factory=_new_id)
    workspace_id: str = Field(..., min_length=1)
    repository_url: str = Field(..., min_length=1)
    name: str = Field(default="")
    status: RepositoryStatus = Field(default=RepositoryStatus.PENDING)
    branch: Optional[str] = Field(default=None, description="Tracked branch")
    webhook_id: Optional[str] = Field(default=None, description="GitHub hook id")
    webhook_secret_envelope: Optional[str] = Field(
        default=None, description="Sealed GitHub webhook secret"
    )
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _ensure_timezone(cls, value: datetime) -> datetime:
        return _ensure_utc(value)

    @classmethod
    def for_url(cls, repository_url: str, workspace_id: str, **fields: Any) -> "Repository":
        """Create a record named after the last path segment of its URL."""
        name = fields.pop("name", None) or normalize_repository_url(repository_url).split("/")[-1]
        return cls(
            repository_url=repository_url,
            workspace_id=workspace_id,
            name=name,
            **fields,
        )


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class GitCredentials(BaseModel):
    """Git username and token passed to the swarm host for private clones."""

    username: str = Field(..., min_length=1)
    token: SecretStr = Field(...)

    def as_payload(self) -> Dict[str, str]:
        """Request fields understood by the ingestion endpoints."""
        return {"username": self.username, "pat": self.token.get_secret_value()}


__all__ = [
    "SwarmStatus",
    "RepositoryStatus",
    "StepStatus",
    "TERMINAL_STEP_STATUSES",
    "IngestResult",
    "Swarm",
    "Repository",
    "GitCredentials",
    "normalize_repository_url",
]
