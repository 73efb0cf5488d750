"""Persistent state for swarms and tracked repositories.

File-based storage with one JSON document per record. Every write happens
under a per-key file lock and lands through an atomic replace, so the lock
plays the role of a unique-key constraint: concurrent writers for the same
workspace (swarms) or the same (repository URL, workspace) pair
(repositories) are serialized, writers for different keys never wait on each
other.

``update_swarm`` accepts an expected ``ingest_ref_id``; the write is rejected
with ``StaleRecordError`` when a newer job has replaced it in the meantime.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, List, Optional, Tuple

from filelock import FileLock

from swarmsync.errors import DuplicateRecordError, RecordNotFoundError, StaleRecordError
from swarmsync.models import Repository, Swarm, normalize_repository_url

logger = logging.getLogger(__name__)

_UNSET: Any = object()


def _record_key(*parts: str) -> str:
    digest = hashlib.sha256("\n".join(parts).encode("utf-8")).hexdigest()
    return digest[:32]


class SwarmStateStore:
    """Manager for persistent swarm and repository records."""

    def __init__(self, state_dir: Optional[Path] = None, *, lock_timeout: float = 10.0):
        """Initialize the store.

        Args:
            state_dir: Directory for record files (default: ~/.swarmsync/state/)
            lock_timeout: Seconds to wait for a record lock
        """
        if state_dir is None:
            state_dir = Path.home() / ".swarmsync" / "state"

        self.state_dir = Path(state_dir).expanduser().resolve()
        self._lock_timeout = lock_timeout
        self._swarm_dir = self.state_dir / "swarms"
        self._repo_dir = self.state_dir / "repositories"
        self._swarm_dir.mkdir(parents=True, exist_ok=True)
        self._repo_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def _swarm_path(self, workspace_id: str) -> Path:
        return self._swarm_dir / f"{_record_key(workspace_id)}.json"

    def _repository_path(self, repository_url: str, workspace_id: str) -> Path:
        return self._repo_dir / f"{_record_key(repository_url, workspace_id)}.json"

    def _lock(self, record_path: Path) -> FileLock:
        return FileLock(str(record_path.with_suffix(".lock")), timeout=self._lock_timeout)

    @staticmethod
    def _write_atomic(path: Path, payload: str) -> None:
        tmp_path = path.with_suffix(f".{os.getpid()}.tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        os.replace(tmp_path, path)

    # ------------------------------------------------------------------
    # Swarms
    # ------------------------------------------------------------------

    def create_swarm(self, swarm: Swarm) -> Swarm:
        """Persist a new swarm.

        Raises:
            DuplicateRecordError: If the workspace already has a swarm
        """
        path = self._swarm_path(swarm.workspace_id)
        with self._lock(path):
            if path.exists():
                raise DuplicateRecordError(
                    f"Swarm already exists for workspace {swarm.workspace_id}",
                    details={"workspace_id": swarm.workspace_id},
                )
            self._write_atomic(path, swarm.model_dump_json(indent=2))
        logger.debug("Created swarm", extra={"workspace_id": swarm.workspace_id})
        return swarm

    def get_swarm(self, workspace_id: str) -> Optional[Swarm]:
        """Load the swarm for a workspace, or None."""
        path = self._swarm_path(workspace_id)
        if not path.exists():
            return None
        with self._lock(path):
            return self._read_swarm(path)

    def find_swarm_by_ingest_ref(self, request_id: str) -> Optional[Swarm]:
        """Find the swarm whose current ``ingest_ref_id`` equals ``request_id``."""
        if not request_id:
            return None
        for swarm in self._iter_swarms():
            if swarm.ingest_ref_id == request_id:
                return swarm
        return None

    def list_swarms(self) -> List[Swarm]:
        """List all swarms."""
        return list(self._iter_swarms())

    def update_swarm(
        self,
        workspace_id: str,
        *,
        expect_ingest_ref_id: Any = _UNSET,
        **changes: Any,
    ) -> Swarm:
        """Apply field changes to a swarm in one atomic write.

        Args:
            workspace_id: Workspace the swarm belongs to
            expect_ingest_ref_id: When given, the write only happens if the
                stored ``ingest_ref_id`` still equals this value
            **changes: Field values to set

        Returns:
            The updated swarm

        Raises:
            RecordNotFoundError: If the workspace has no swarm
            StaleRecordError: If the stored correlation id differs
        """
        path = self._swarm_path(workspace_id)
        with self._lock(path):
            current = self._read_swarm(path) if path.exists() else None
            if current is None:
                raise RecordNotFoundError(
                    f"No swarm for workspace {workspace_id}",
                    details={"workspace_id": workspace_id},
                )
            if (
                expect_ingest_ref_id is not _UNSET
                and current.ingest_ref_id != expect_ingest_ref_id
            ):
                raise StaleRecordError(
                    "Swarm is tracking a different ingestion job",
                    details={"workspace_id": workspace_id},
                )

            data = current.model_dump()
            data.update(changes)
            data["updated_at"] = datetime.now(timezone.utc)
            updated = Swarm.model_validate(data)
            self._write_atomic(path, updated.model_dump_json(indent=2))
            return updated

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------

    def create_repository(self, repository: Repository) -> Repository:
        """Persist a new repository.

        Raises:
            DuplicateRecordError: If (repository_url, workspace_id) is taken
        """
        path = self._repository_path(repository.repository_url, repository.workspace_id)
        with self._lock(path):
            if path.exists():
                raise DuplicateRecordError(
                    "Repository already tracked for workspace",
                    details={
                        "repository_url": repository.repository_url,
                        "workspace_id": repository.workspace_id,
                    },
                )
            self._write_atomic(path, repository.model_dump_json(indent=2))
        return repository

    def get_repository(self, repository_url: str, workspace_id: str) -> Optional[Repository]:
        """Load a repository by its unique key, or None."""
        path = self._repository_path(repository_url, workspace_id)
        if not path.exists():
            return None
        with self._lock(path):
            return self._read_repository(path)

    def ensure_repository(
        self, repository_url: str, workspace_id: str, **defaults: Any
    ) -> Tuple[Repository, bool]:
        """Return the repository, creating it from ``defaults`` if missing.

        Returns:
            (repository, created)
        """
        existing = self.get_repository(repository_url, workspace_id)
        if existing is not None:
            return existing, False
        try:
            created = self.create_repository(
                Repository.for_url(repository_url, workspace_id, **defaults)
            )
            return created, True
        except DuplicateRecordError:
            # A concurrent writer created it first
            existing = self.get_repository(repository_url, workspace_id)
            if existing is None:
                raise
            return existing, False

    def update_repository(
        self, repository_url: str, workspace_id: str, **changes: Any
    ) -> Repository:
        """Apply field changes to a repository in one atomic write.

        Raises:
            RecordNotFoundError: If the repository is not tracked
        """
        path = self._repository_path(repository_url, workspace_id)
        with self._lock(path):
            current = self._read_repository(path) if path.exists() else None
            if current is None:
                raise RecordNotFoundError(
                    "Repository not tracked for workspace",
                    details={"repository_url": repository_url, "workspace_id": workspace_id},
                )
            data = current.model_dump()
            data.update(changes)
            data["updated_at"] = datetime.now(timezone.utc)
            updated = Repository.model_validate(data)
            self._write_atomic(path, updated.model_dump_json(indent=2))
            return updated

    def find_repository_by_url(self, url: str) -> Optional[Repository]:
        """Find a repository by URL, with or without a trailing ``.git``."""
        target = normalize_repository_url(url)
        for repository in self._iter_repositories():
            if normalize_repository_url(repository.repository_url) == target:
                return repository
        return None

    def resolve_repository(self, repository_url: str, workspace_id: str) -> Optional[Repository]:
        """Load a workspace's repository by exact key, else by normalized URL."""
        exact = self.get_repository(repository_url, workspace_id)
        if exact is not None:
            return exact
        target = normalize_repository_url(repository_url)
        for repository in self._iter_repositories():
            if (
                repository.workspace_id == workspace_id
                and normalize_repository_url(repository.repository_url) == target
            ):
                return repository
        return None

    def list_repositories(self, workspace_id: Optional[str] = None) -> List[Repository]:
        """List repositories, optionally for one workspace."""
        return [
            repository
            for repository in self._iter_repositories()
            if workspace_id is None or repository.workspace_id == workspace_id
        ]

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    @staticmethod
    def _read_swarm(path: Path) -> Optional[Swarm]:
        try:
            return Swarm.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except FileNotFoundError:
            return None

    @staticmethod
    def _read_repository(path: Path) -> Optional[Repository]:
        try:
            return Repository.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except FileNotFoundError:
            return None

    def _iter_swarms(self) -> Iterator[Swarm]:
        for record_file in sorted(self._swarm_dir.glob("*.json")):
            try:
                swarm = self._read_swarm(record_file)
            except ValueError:
                logger.warning(
                    "Skipping unreadable swarm record", extra={"path": record_file.name}
                )
                continue
            if swarm is not None:
                yield swarm

    def _iter_repositories(self) -> Iterator[Repository]:
        for record_file in sorted(self._repo_dir.glob("*.json")):
            try:
                repository = self._read_repository(record_file)
            except ValueError:
                logger.warning(
                    "Skipping unreadable repository record", extra={"path": record_file.name}
                )
                continue
            if repository is not None:
                yield repository


__all__ = ["SwarmStateStore"]
