"""File-backed persistence for swarms, repositories and git credentials."""

from .credentials import GitCredentialStore
from .state_store import SwarmStateStore

__all__ = ["GitCredentialStore", "SwarmStateStore"]
