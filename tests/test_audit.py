"""Tests for the delivery audit trail."""

import json

from swarmsync.audit import DeliveryAuditLog


def _record(log, delivery_id="d-1", **kwargs):
    kwargs.setdefault("source", "ingest_webhook")
    kwargs.setdefault("action", "ingest_callback")
    kwargs.setdefault("status", "applied")
    return log.record_delivery(delivery_id=delivery_id, **kwargs)


def test_entries_are_chained(tmp_path):
    log = DeliveryAuditLog(tmp_path / "audit")

    first = _record(log, "d-1", http_status=200, request_id="req-1", workspace_id="ws-1")
    second = _record(log, "d-2", status="rejected", http_status=400)

    assert first["chain_prev"] is None
    assert second["chain_prev"] == first["chain_hash"]
    assert log.verify()
    events = list(log.iter_events())
    assert [e["delivery_id"] for e in events] == ["d-1", "d-2"]
    assert events[0]["request_id"] == "req-1"
    assert "request_id" not in events[1]


def test_missing_delivery_id_is_recorded_as_unknown(tmp_path):
    log = DeliveryAuditLog(tmp_path / "audit")

    entry = log.record_delivery(source="github_webhook", action="push", status="accepted")

    assert entry["delivery_id"] == "unknown"


def test_tampering_is_detected(tmp_path):
    log = DeliveryAuditLog(tmp_path / "audit")
    _record(log, "d-1")
    _record(log, "d-2")

    lines = log.path.read_text().splitlines()
    entry = json.loads(lines[0])
    entry["status"] = "accepted"
    lines[0] = json.dumps(entry, separators=(",", ":"))
    log.path.write_text("\n".join(lines) + "\n")

    assert not log.verify()


def test_removed_entry_is_detected(tmp_path):
    log = DeliveryAuditLog(tmp_path / "audit")
    for index in range(3):
        _record(log, f"d-{index}")

    lines = log.path.read_text().splitlines()
    log.path.write_text("\n".join([lines[0], lines[2]]) + "\n")

    assert not log.verify()


def test_chain_continues_across_rotation(tmp_path):
    log = DeliveryAuditLog(tmp_path / "audit", max_bytes=1)

    _record(log, "d-1")
    _record(log, "d-2")

    manifest = json.loads((tmp_path / "audit" / "deliveries_manifest.json").read_text())
    rotated = [tmp_path / "audit" / item["path"] for item in manifest["rotated"]]
    assert len(rotated) == 2
    assert all(log.verify(path=path) for path in rotated)
    second = next(iter(log.iter_events(path=rotated[1])))
    assert second["chain_prev"] == manifest["rotated"][0]["hash"]


def test_empty_log_verifies(tmp_path):
    log = DeliveryAuditLog(tmp_path / "audit")

    assert log.verify()
    assert list(log.iter_events()) == []
