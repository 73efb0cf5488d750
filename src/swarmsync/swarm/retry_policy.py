"""Retry policy, deadlines and cancellable waits for swarm host calls.

Implements exponential backoff with optional jitter. Every wait between
attempts goes through ``pause`` so polling loops stay bounded by a
``Deadline`` and can be stopped early through an ``asyncio.Event``.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, Field

from swarmsync.errors import DeadlineExceededError, OperationCancelledError

logger = logging.getLogger(__name__)


class RetryPolicy(BaseModel):
    """Backoff schedule for retried calls.

    Attributes:
        max_attempts: Total attempts, including the first one
        base_delay_seconds: Delay after the first failed attempt
        backoff_multiplier: Growth factor per attempt
        max_delay_seconds: Cap applied to every single delay
        jitter_factor: Random jitter factor (0.0-1.0, default 0.0)
    """

    max_attempts: int = Field(default=5, ge=1, le=100)
    base_delay_seconds: float = Field(default=0.5, ge=0.0, le=3600.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0, le=10.0)
    max_delay_seconds: float = Field(default=8.0, ge=0.0, le=86400.0)
    jitter_factor: float = Field(default=0.0, ge=0.0, le=1.0)

    @classmethod
    def from_millis(
        cls,
        *,
        max_attempts: int,
        base_delay_ms: int,
        max_delay_ms: int,
        backoff_multiplier: float = 2.0,
    ) -> "RetryPolicy":
        return cls(
            max_attempts=max_attempts,
            base_delay_seconds=base_delay_ms / 1000,
            max_delay_seconds=max_delay_ms / 1000,
            backoff_multiplier=backoff_multiplier,
        )

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay after a failed attempt.

        Args:
            attempt: Failed attempt number (0-indexed)

        Returns:
            Delay in seconds with the cap and jitter applied
        """
        delay = self.base_delay_seconds * (self.backoff_multiplier**attempt)
        delay = min(delay, self.max_delay_seconds)

        if self.jitter_factor > 0 and delay > 0:
            jitter_amount = delay * self.jitter_factor
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))

        return delay


@dataclass(frozen=True)
class Deadline:
    """Point in monotonic time after which waiting stops."""

    expires_at: float

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        return cls(expires_at=time.monotonic() + seconds)

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at


async def pause(
    delay: float,
    *,
    deadline: Optional[Deadline] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> None:
    """Wait ``delay`` seconds unless the deadline or a cancel signal intervenes.

    Raises:
        DeadlineExceededError: If the deadline has passed or ends the wait early
        OperationCancelledError: If ``cancel_event`` is set before or during the wait
    """
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelledError()
    if deadline is not None and deadline.expired:
        raise DeadlineExceededError()

    wait_for = delay
    truncated = False
    if deadline is not None and deadline.remaining() < delay:
        wait_for = deadline.remaining()
        truncated = True

    if cancel_event is None:
        await asyncio.sleep(wait_for)
    else:
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=wait_for)
        except asyncio.TimeoutError:
            pass
        else:
            raise OperationCancelledError()

    if truncated:
        raise DeadlineExceededError()


__all__ = ["RetryPolicy", "Deadline", "pause"]
