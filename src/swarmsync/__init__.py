"""Swarm sync: code-graph ingestion orchestration for workspace swarm hosts."""

__version__ = "0.1.0"
