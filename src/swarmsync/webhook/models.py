"""Data models for inbound webhook deliveries.

Deliveries are never persisted; they are parsed, authenticated, acted on and
answered with a ``WebhookResponse``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

from swarmsync.models import normalize_repository_url


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class WebhookEventType(str, Enum):
    """GitHub webhook event types that can trigger a sync."""

    PUSH = "push"  # New commits pushed
    PULL_REQUEST = "pull_request"  # PR opened/updated/closed


BRANCH_REF_PREFIX = "refs/heads/"
DEFAULT_BRANCHES = ("main", "master")


# ---------------------------------------------------------------------------
# Response
# ---------------------------------------------------------------------------


class WebhookResponse(BaseModel):
    """Outcome of processing one delivery."""

    success: bool
    status: int = Field(..., ge=100, le=599)
    message: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict, description="Extra response fields")

    def to_body(self) -> Dict[str, Any]:
        """JSON body sent back to the sender."""
        body: Dict[str, Any] = {"success": self.success, "status": self.status}
        if self.message:
            body["message"] = self.message
        body.update(self.data)
        return body


# ---------------------------------------------------------------------------
# GitHub Delivery
# ---------------------------------------------------------------------------


class GitHubDelivery(BaseModel):
    """The parts of a GitHub delivery used to decide on a sync.

    Attributes:
        event: Value of ``X-GitHub-Event``
        delivery_id: Value of ``X-GitHub-Delivery``
        repository_url: ``repository.html_url`` or a URL built from ``full_name``
        default_branch: ``repository.default_branch``
        ref: Push ref (``refs/heads/<branch>``)
        action: Pull request action
        merged: Whether the pull request was merged
        base_ref: Pull request base branch
        received_at: When the delivery arrived
    """

    event: str
    delivery_id: Optional[str] = None
    repository_url: Optional[str] = None
    default_branch: Optional[str] = None
    ref: Optional[str] = None
    action: Optional[str] = None
    merged: bool = False
    base_ref: Optional[str] = None
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("received_at")
    @classmethod
    def _ensure_timezone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def from_payload(
        cls, event: str, payload: Mapping[str, Any], delivery_id: Optional[str] = None
    ) -> "GitHubDelivery":
        repository = payload.get("repository")
        if not isinstance(repository, Mapping):
            repository = {}
        pull_request = payload.get("pull_request")
        if not isinstance(pull_request, Mapping):
            pull_request = {}
        base = pull_request.get("base")
        if not isinstance(base, Mapping):
            base = {}

        return cls(
            event=event,
            delivery_id=delivery_id,
            repository_url=extract_repository_url(repository),
            default_branch=_as_str(repository.get("default_branch")),
            ref=_as_str(payload.get("ref")),
            action=_as_str(payload.get("action")),
            merged=pull_request.get("merged") is True,
            base_ref=_as_str(base.get("ref")),
        )

    @property
    def normalized_url(self) -> Optional[str]:
        if not self.repository_url:
            return None
        return normalize_repository_url(self.repository_url)

    @property
    def pushed_branch(self) -> Optional[str]:
        """Branch of a push ref, or None for tags and other refs."""
        if not self.ref or not self.ref.startswith(BRANCH_REF_PREFIX):
            return None
        return self.ref[len(BRANCH_REF_PREFIX):] or None


def extract_repository_url(repository: Mapping[str, Any]) -> Optional[str]:
    """Repository URL from a GitHub ``repository`` object."""
    html_url = _as_str(repository.get("html_url"))
    if html_url:
        return html_url
    full_name = _as_str(repository.get("full_name"))
    if full_name:
        return f"https://github.com/{full_name}"
    return None


def _as_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None


__all__ = [
    "WebhookEventType",
    "WebhookResponse",
    "GitHubDelivery",
    "DEFAULT_BRANCHES",
    "extract_repository_url",
]
