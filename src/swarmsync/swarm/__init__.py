"""Swarm host client: HTTP calls plus retry and deadline handling."""

from .api_client import INGEST_ENDPOINT, SYNC_ENDPOINT, ApiResult, SwarmAPIClient
from .retry_policy import Deadline, RetryPolicy, pause

__all__ = [
    "ApiResult",
    "SwarmAPIClient",
    "SYNC_ENDPOINT",
    "INGEST_ENDPOINT",
    "Deadline",
    "RetryPolicy",
    "pause",
]
