"""Tests for backoff, deadlines and cancellable pauses."""

import asyncio
import time

import pytest

from swarmsync.errors import DeadlineExceededError, OperationCancelledError
from swarmsync.swarm import Deadline, RetryPolicy, pause


def test_exponential_schedule_is_capped():
    policy = RetryPolicy()

    delays = [policy.calculate_delay(attempt) for attempt in range(6)]

    assert delays == [0.5, 1.0, 2.0, 4.0, 8.0, 8.0]


def test_from_millis():
    policy = RetryPolicy.from_millis(max_attempts=3, base_delay_ms=100, max_delay_ms=250)

    assert policy.max_attempts == 3
    assert policy.calculate_delay(0) == pytest.approx(0.1)
    assert policy.calculate_delay(5) == pytest.approx(0.25)


def test_jitter_stays_within_bounds():
    policy = RetryPolicy(jitter_factor=0.5)

    for _ in range(50):
        assert 0.5 <= policy.calculate_delay(1) <= 1.5


def test_deadline_expiry():
    assert Deadline.after(-1).expired
    assert Deadline.after(-1).remaining() == 0.0
    assert not Deadline.after(60).expired


@pytest.mark.asyncio
async def test_pause_waits_full_delay():
    started = time.monotonic()
    await pause(0.02)
    assert time.monotonic() - started >= 0.015


@pytest.mark.asyncio
async def test_pause_with_expired_deadline_raises_immediately():
    with pytest.raises(DeadlineExceededError):
        await pause(10, deadline=Deadline.after(-1))


@pytest.mark.asyncio
async def test_pause_truncated_by_deadline():
    started = time.monotonic()

    with pytest.raises(DeadlineExceededError):
        await pause(10, deadline=Deadline.after(0.05))

    assert time.monotonic() - started < 5


@pytest.mark.asyncio
async def test_pause_with_set_event_raises():
    event = asyncio.Event()
    event.set()

    with pytest.raises(OperationCancelledError):
        await pause(10, cancel_event=event)


@pytest.mark.asyncio
async def test_pause_interrupted_by_event():
    event = asyncio.Event()
    asyncio.get_running_loop().call_later(0.02, event.set)

    with pytest.raises(OperationCancelledError):
        await pause(10, cancel_event=event)


@pytest.mark.asyncio
async def test_pause_with_unset_event_completes():
    await pause(0.01, cancel_event=asyncio.Event())
