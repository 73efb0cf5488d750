"""Job orchestration: triggering, status reconciliation and polling."""

from .polling import ActivationResult, PollingFallback, ProgressOutcome, fetch_with_backoff
from .status import IngestUpdate, ReconcileOutcome, StatusReconciler, map_status
from .trigger import SyncOutcome, SyncResult, SyncTrigger, callback_url_for

__all__ = [
    "ActivationResult",
    "PollingFallback",
    "ProgressOutcome",
    "fetch_with_backoff",
    "IngestUpdate",
    "ReconcileOutcome",
    "StatusReconciler",
    "map_status",
    "SyncOutcome",
    "SyncResult",
    "SyncTrigger",
    "callback_url_for",
]
