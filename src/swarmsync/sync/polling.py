"""Active polling for when webhook callbacks are unavailable.

Two loops, both bounded by attempts, an optional ``Deadline`` and an optional
cancellation event:

- activation: probe the stats service with exponential backoff until the
  swarm answers, then flip it ACTIVE;
- progress: poll a job at a fixed delay until it completes, fails, or the
  attempt budget runs out.

Job results found by polling go through ``StatusReconciler`` exactly like
webhook callbacks.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from swarmsync.errors import DeadlineExceededError, ValidationError
from swarmsync.models import StepStatus, Swarm
from swarmsync.store import SwarmStateStore
from swarmsync.swarm.api_client import ApiResult, SwarmAPIClient
from swarmsync.swarm.retry_policy import Deadline, RetryPolicy, pause
from swarmsync.vault import CredentialVault

from .status import IngestUpdate, ReconcileOutcome, StatusReconciler, map_status

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Agent timeout - took too long to complete"

API_KEY_FIELD = "swarmApiKey"


@dataclass
class ActivationResult:
    ok: bool
    status: int
    message: str
    swarm: Optional[Swarm] = None


@dataclass
class ProgressOutcome:
    """Result of polling one job.

    Attributes:
        ok: True once the job completed with a result
        status: 200 on success, 500 for a failed job, the upstream status for a
            failed progress request, 408 on timeout
        result: ``result`` block of a completed job
        error: Error reported by the host, or the timeout message
        attempts: Progress requests made
        timed_out: True when attempts or the deadline ran out
        data: Last progress body
        reconcile: State change applied by ``track_ingest``
    """

    ok: bool
    status: int
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    attempts: int = 0
    timed_out: bool = False
    data: Optional[Any] = None
    reconcile: Optional[ReconcileOutcome] = None


async def fetch_with_backoff(
    operation: Callable[[], Awaitable[ApiResult]],
    policy: Optional[RetryPolicy] = None,
    *,
    deadline: Optional[Deadline] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> ApiResult:
    """Retry a swarm host call until it succeeds.

    Returns:
        The first successful result, or the last failed one once attempts
        (or the deadline) run out

    Raises:
        OperationCancelledError: If ``cancel_event`` is set during a wait
    """
    policy = policy or RetryPolicy()
    attempt = 0

    while True:
        last = await operation()
        # RetryPolicy guarantees max_attempts >= 1
        if last.ok or attempt >= policy.max_attempts - 1:
            return last

        delay = policy.calculate_delay(attempt)
        logger.debug(
            f"Attempt {attempt + 1} failed with {last.status}, retrying in {delay:.2f}s"
        )
        try:
            await pause(delay, deadline=deadline, cancel_event=cancel_event)
        except DeadlineExceededError:
            logger.info("Backoff deadline reached", extra={"attempts": attempt + 1})
            return last
        attempt += 1


class PollingFallback:
    """Discovers activation and job completion by polling the swarm host."""

    def __init__(
        self,
        vault: CredentialVault,
        store: SwarmStateStore,
        client: SwarmAPIClient,
        *,
        reconciler: Optional[StatusReconciler] = None,
        backoff_policy: Optional[RetryPolicy] = None,
        max_attempts: int = 100,
        delay_ms: int = 2000,
    ):
        self.vault = vault
        self.store = store
        self.client = client
        self.reconciler = reconciler or StatusReconciler(store)
        self.backoff_policy = backoff_policy or RetryPolicy()
        self.max_attempts = max_attempts
        self.delay_ms = delay_ms

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    async def poll_activation(
        self,
        swarm: Swarm,
        *,
        deadline: Optional[Deadline] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ActivationResult:
        """Probe the swarm's stats service and flip it ACTIVE when it answers.

        A host that keeps failing is reported as not yet active, not as an
        error.
        """
        if swarm.is_active:
            return ActivationResult(ok=True, status=200, message="Swarm already active", swarm=swarm)

        api_key = self._api_key(swarm)
        host = swarm.host_address
        result = await fetch_with_backoff(
            lambda: self.client.get_stats(host, api_key),
            self.backoff_policy,
            deadline=deadline,
            cancel_event=cancel_event,
        )

        if result.ok and result.status == 200 and result.data:
            updated = await asyncio.to_thread(self.reconciler.mark_swarm_active, swarm)
            return ActivationResult(ok=True, status=200, message="Swarm is active", swarm=updated)

        logger.info(
            f"Swarm not yet active ({result.status})",
            extra={"workspace_id": swarm.workspace_id},
        )
        return ActivationResult(
            ok=False, status=result.status, message="Swarm not yet active", swarm=swarm
        )

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    async def poll_progress(
        self,
        host: str,
        request_id: str,
        api_key: str,
        max_attempts: Optional[int] = None,
        delay_ms: Optional[int] = None,
        *,
        deadline: Optional[Deadline] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ProgressOutcome:
        """Poll a job until it completes, fails, or the budget runs out.

        Raises:
            OperationCancelledError: If ``cancel_event`` is set during a wait
        """
        max_attempts = max_attempts if max_attempts is not None else self.max_attempts
        delay_ms = delay_ms if delay_ms is not None else self.delay_ms

        attempts = 0
        last_data: Optional[Any] = None
        for attempt in range(max_attempts):
            result = await self.client.get_progress(host, api_key, request_id)
            attempts += 1

            if not result.ok:
                logger.error(
                    f"Progress check failed ({result.status})",
                    extra={"request_id": request_id},
                )
                return ProgressOutcome(
                    ok=False, status=result.status, data=result.data, attempts=attempts
                )

            last_data = result.data
            body = result.data if isinstance(result.data, dict) else {}
            step = map_status(body.get("status"))
            job_result = body.get("result")

            if step == StepStatus.COMPLETED and job_result:
                return ProgressOutcome(
                    ok=True, status=200, result=job_result, data=body, attempts=attempts
                )
            if step == StepStatus.FAILED:
                error = body.get("error")
                return ProgressOutcome(
                    ok=False,
                    status=500,
                    error=str(error) if error else None,
                    data=body,
                    attempts=attempts,
                )

            if attempt < max_attempts - 1:
                try:
                    await pause(delay_ms / 1000, deadline=deadline, cancel_event=cancel_event)
                except DeadlineExceededError:
                    break

        logger.warning(
            f"Gave up polling after {attempts} attempts", extra={"request_id": request_id}
        )
        return ProgressOutcome(
            ok=False,
            status=408,
            error=TIMEOUT_MESSAGE,
            attempts=attempts,
            timed_out=True,
            data=last_data,
        )

    async def track_ingest(
        self,
        swarm: Swarm,
        *,
        max_attempts: Optional[int] = None,
        delay_ms: Optional[int] = None,
        deadline: Optional[Deadline] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ProgressOutcome:
        """Poll the swarm's current job and commit a terminal answer.

        Raises:
            ValidationError: If the swarm has no job or is misconfigured
        """
        request_id = swarm.ingest_ref_id
        if not request_id:
            raise ValidationError(
                "No ingestion job to track", details={"workspace_id": swarm.workspace_id}
            )

        api_key = self._api_key(swarm)
        outcome = await self.poll_progress(
            swarm.host_address,
            request_id,
            api_key,
            max_attempts,
            delay_ms,
            deadline=deadline,
            cancel_event=cancel_event,
        )

        if outcome.ok or (outcome.status == 500 and isinstance(outcome.data, dict)):
            payload = dict(outcome.data or {})
            payload["request_id"] = request_id
            if outcome.ok:
                payload["status"] = "completed"
                payload["result"] = outcome.result
            outcome.reconcile = await asyncio.to_thread(
                self.reconciler.apply_ingest_update, swarm, IngestUpdate.from_payload(payload)
            )
        return outcome

    def _api_key(self, swarm: Swarm) -> str:
        if not swarm.host_address or not swarm.api_key_envelope:
            raise ValidationError(
                "Swarm not found or misconfigured",
                details={"workspace_id": swarm.workspace_id},
            )
        return self.vault.decrypt(API_KEY_FIELD, swarm.api_key_envelope)


__all__ = [
    "ActivationResult",
    "ProgressOutcome",
    "PollingFallback",
    "fetch_with_backoff",
    "TIMEOUT_MESSAGE",
]
