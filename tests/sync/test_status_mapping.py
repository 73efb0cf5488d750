"""Tests for vendor status normalization and update parsing."""

from datetime import datetime, timezone

import pytest

from swarmsync.models import StepStatus
from swarmsync.sync import IngestUpdate, map_status


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Complete", StepStatus.COMPLETED),
        ("COMPLETED", StepStatus.COMPLETED),
        ("success", StepStatus.COMPLETED),
        ("Succeeded", StepStatus.COMPLETED),
        ("InProgress", StepStatus.PROCESSING),
        ("in_progress", StepStatus.PROCESSING),
        ("in-progress", StepStatus.PROCESSING),
        ("In Progress", StepStatus.PROCESSING),
        ("running", StepStatus.PROCESSING),
        ("Processing", StepStatus.PROCESSING),
        ("queued", StepStatus.PENDING),
        ("Waiting", StepStatus.PENDING),
        ("pending", StepStatus.PENDING),
        ("Started", StepStatus.STARTED),
        ("Failed", StepStatus.FAILED),
        ("failure", StepStatus.FAILED),
        ("ERROR", StepStatus.FAILED),
    ],
)
def test_known_statuses(raw, expected):
    assert map_status(raw) == expected


@pytest.mark.parametrize("raw", ["", "paused", "done-ish", None, 3, {"status": "complete"}])
def test_unknown_statuses(raw):
    assert map_status(raw) is None


def test_update_from_callback_payload():
    update = IngestUpdate.from_payload(
        {
            "request_id": "req-1",
            "status": "Complete",
            "progress": 100,
            "result": {"nodes": 42, "edges": 99},
            "started_at": "2024-05-01T10:00:00Z",
            "completed_at": 1714557600000,
            "duration_ms": "1500",
        }
    )

    assert update.request_id == "req-1"
    assert update.progress == 100.0
    assert update.nodes == 42
    assert update.edges == 99
    assert update.started_at == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    assert update.completed_at == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    assert update.duration_ms == 1500


def test_update_tolerates_odd_fields():
    update = IngestUpdate.from_payload(
        {
            "request_id": "req-1",
            "status": 7,
            "result": "n/a",
            "progress": "lots",
            "started_at": "yesterday",
            "error": "clone failed",
        }
    )

    assert update.status is None
    assert update.nodes is None
    assert update.progress is None
    assert update.started_at is None
    assert update.error == "clone failed"


def test_update_to_result():
    result = IngestUpdate(request_id="req-1", status="Complete", nodes=1).to_result()

    assert result.request_id == "req-1"
    assert result.status == "Complete"
    assert result.nodes == 1
