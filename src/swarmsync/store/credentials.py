"""Git credential lookup for private repository clones.

Credentials are kept in the OS keychain (through ``SecretStore``) under the
key ``git:<user_id>``. Syncs use the credentials of the workspace owner, so a
lookup by workspace resolves the owner from the swarm record first.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from pydantic import SecretStr

from swarmsync.configuration.settings import SecretStore
from swarmsync.models import GitCredentials

from .state_store import SwarmStateStore

logger = logging.getLogger(__name__)


def _credential_key(user_id: str) -> str:
    return f"git:{user_id}"


class GitCredentialStore:
    """Stores and resolves git username/token pairs per user."""

    def __init__(self, state_store: SwarmStateStore, secret_store: Optional[SecretStore] = None):
        self._state_store = state_store
        self._secret_store = secret_store or SecretStore()

    def save(self, user_id: str, username: str, token: str) -> None:
        """Store credentials for a user."""
        payload = json.dumps({"username": username, "token": token})
        self._secret_store.set_secret(_credential_key(user_id), payload)
        logger.info("Stored git credentials", extra={"user_id": user_id})

    def delete(self, user_id: str) -> None:
        self._secret_store.delete_secret(_credential_key(user_id))

    def lookup_user(self, user_id: str) -> Optional[GitCredentials]:
        """Credentials for a user, or None when nothing usable is stored."""
        raw = self._secret_store.get_secret(_credential_key(user_id))
        if not raw:
            return None
        try:
            payload = json.loads(raw)
            username = payload.get("username")
            token = payload.get("token")
        except (ValueError, AttributeError):
            logger.warning("Ignoring malformed git credentials", extra={"user_id": user_id})
            return None
        if not username or not token:
            return None
        return GitCredentials(username=username, token=SecretStr(token))

    def lookup(self, workspace_id: str) -> Optional[GitCredentials]:
        """Credentials of the owner of a workspace, or None."""
        swarm = self._state_store.get_swarm(workspace_id)
        if swarm is None or not swarm.owner_id:
            return None
        return self.lookup_user(swarm.owner_id)


__all__ = ["GitCredentialStore"]
