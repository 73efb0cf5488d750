"""Tamper-evident trail of inbound webhook deliveries.

Each delivery outcome is appended as one JSON line carrying a SHA-256 hash
chain (``chain_prev`` / ``chain_hash``). Entries hold identifiers and
outcomes only, never payload bodies or secrets. The trail is for review; it
is not consulted to deduplicate deliveries.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Optional

from filelock import FileLock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEvent:
    """Represents one recorded delivery outcome."""

    delivery_id: str
    source: str
    action: str
    status: str
    timestamp: datetime
    http_status: Optional[int] = None
    request_id: Optional[str] = None
    workspace_id: Optional[str] = None
    metadata: Dict[str, object] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "delivery_id": self.delivery_id,
            "source": self.source,
            "action": self.action,
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.http_status is not None:
            payload["http_status"] = self.http_status
        if self.request_id:
            payload["request_id"] = self.request_id
        if self.workspace_id:
            payload["workspace_id"] = self.workspace_id
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload


@dataclass
class DeliveryAuditLog:
    """Writes append-only, hash-chained delivery logs.

    Attributes:
        output_dir: Directory for log files
        filename: Name of the active log file
        max_bytes: Size at which the active log is rotated
        manifest_name: Name of the manifest holding the chain head
    """

    output_dir: Path
    filename: str = "deliveries.log"
    max_bytes: int = 5 * 1024 * 1024
    manifest_name: str = "deliveries_manifest.json"

    def __post_init__(self) -> None:
        self.output_dir = Path(self.output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._path = self.output_dir / self.filename
        self._manifest_path = self.output_dir / self.manifest_name
        self._lock = FileLock(str(self.output_dir / f"{self.filename}.lock"))
        if not self._manifest_path.exists():
            self._save_manifest({"last_hash": None, "rotated": []})

    @property
    def path(self) -> Path:
        return self._path

    def record(self, event: AuditEvent) -> Dict[str, object]:
        """Append an event to the chain and return the stored entry."""
        with self._lock:
            manifest = self._load_manifest()
            entry = dict(event.to_payload())
            entry["chain_prev"] = manifest.get("last_hash")
            entry["chain_hash"] = _compute_chain_hash(entry)

            with self._path.open("a", encoding="utf-8") as fp:
                fp.write(json.dumps(entry, separators=(",", ":")) + "\n")

            manifest["last_hash"] = entry["chain_hash"]
            self._save_manifest(manifest)
            self._rotate_if_needed(manifest)
        return entry

    def record_delivery(
        self,
        *,
        source: str,
        action: str,
        status: str,
        delivery_id: Optional[str] = None,
        http_status: Optional[int] = None,
        request_id: Optional[str] = None,
        workspace_id: Optional[str] = None,
        metadata: Optional[Dict[str, object]] = None,
    ) -> Dict[str, object]:
        event = AuditEvent(
            delivery_id=delivery_id or "unknown",
            source=source,
            action=action,
            status=status,
            timestamp=datetime.now(timezone.utc),
            http_status=http_status,
            request_id=request_id,
            workspace_id=workspace_id,
            metadata=metadata or {},
        )
        return self.record(event)

    def verify(self, *, path: Optional[Path] = None) -> bool:
        """Verify the integrity of the chain in the active (or given) log.

        Returns:
            True if the chain is intact, False if an entry was altered,
            removed or reordered
        """
        target = path or self._path
        if not target.exists():
            return True

        previous_hash = self._chain_start(target)
        for entry in self.iter_events(path=target):
            if entry.get("chain_prev") != previous_hash:
                return False
            if entry.get("chain_hash") != _compute_chain_hash(entry):
                return False
            previous_hash = entry["chain_hash"]
        return True

    def iter_events(self, *, path: Optional[Path] = None) -> Iterable[Dict[str, object]]:
        target = path or self._path
        if not target.exists():
            return
        with target.open("r", encoding="utf-8") as fp:
            for line in fp:
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Failed to parse audit line as JSON")
                    yield {}

    def _chain_start(self, target: Path) -> Optional[str]:
        rotated = self._load_manifest().get("rotated", [])
        if target == self._path:
            return rotated[-1]["hash"] if rotated else None
        for index, item in enumerate(rotated):
            if item["path"] == target.name:
                return rotated[index - 1]["hash"] if index > 0 else None
        return None

    def _rotate_if_needed(self, manifest: Dict[str, object]) -> None:
        if self._path.stat().st_size < self.max_bytes:
            return
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")
        rotated_name = self.output_dir / f"deliveries-{timestamp}.log"
        os.replace(self._path, rotated_name)
        rotated = list(manifest.get("rotated", []))
        rotated.append(
            {
                "path": rotated_name.name,
                "closed_at": datetime.now(timezone.utc).isoformat(),
                "hash": manifest.get("last_hash"),
            }
        )
        manifest["rotated"] = rotated
        self._save_manifest(manifest)
        logger.info("Rotated delivery audit log", extra={"path": rotated_name.name})

    def _load_manifest(self) -> Dict[str, object]:
        return json.loads(self._manifest_path.read_text(encoding="utf-8"))

    def _save_manifest(self, manifest: Dict[str, object]) -> None:
        self._manifest_path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")


def _compute_chain_hash(payload: Dict[str, object]) -> str:
    canonical = json.dumps(
        {k: payload[k] for k in sorted(payload) if k != "chain_hash"},
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


__all__ = ["AuditEvent", "DeliveryAuditLog"]
