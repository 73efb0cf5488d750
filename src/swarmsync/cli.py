"""Operator CLI for swarm sync.

Commands:
    serve       Run the webhook server
    sync        Start a sync (or full ingest) for a workspace
    activate    Probe a swarm and mark it active once it answers
    progress    Poll the current ingestion job and record its outcome
    sign        Print a signature header for a test delivery
    encrypt     Print the sealed form of a secret
    rotate-key  Reseal stored secrets under the active key id
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.table import Table

from swarmsync.audit import DeliveryAuditLog
from swarmsync.configuration.settings import (
    DEFAULT_CONFIG_PATH,
    Settings,
    bootstrap_settings,
    build_vault,
)
from swarmsync.errors import RecordNotFoundError, SwarmSyncError
from swarmsync.store import GitCredentialStore, SwarmStateStore
from swarmsync.swarm.api_client import SwarmAPIClient
from swarmsync.swarm.retry_policy import Deadline, RetryPolicy
from swarmsync.sync.polling import PollingFallback
from swarmsync.sync.status import StatusReconciler
from swarmsync.sync.trigger import SyncTrigger, callback_url_for
from swarmsync.vault import CredentialVault, DecryptionError, sign_payload
from swarmsync.webhook import (
    GitHubWebhookService,
    IngestionWebhookService,
    WebhookRateLimiter,
    WebhookServer,
)

app = typer.Typer(help="Orchestrate code-graph ingestion on swarm hosts")
console = Console()

logger = logging.getLogger(__name__)

API_KEY_FIELD = "swarmApiKey"
WEBHOOK_SECRET_FIELD = "githubWebhookSecret"


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------


def _load_settings(ctx: typer.Context) -> Settings:
    config_path = (ctx.obj or {}).get("config_path", DEFAULT_CONFIG_PATH)
    return bootstrap_settings(path=config_path)


def _get_components(settings: Settings) -> Dict[str, Any]:
    """Build every component from resolved settings."""
    vault = build_vault(settings)
    store = SwarmStateStore(settings.storage.state_dir)
    client = SwarmAPIClient.from_settings(settings.swarm)
    reconciler = StatusReconciler(store)
    credential_store = GitCredentialStore(store)

    trigger = SyncTrigger(
        vault,
        store,
        client,
        reconciler=reconciler,
        credential_store=credential_store,
        callback_url=callback_url_for(settings.webhook.public_url),
        use_lsp=settings.swarm.use_lsp,
    )
    polling = PollingFallback(
        vault,
        store,
        client,
        reconciler=reconciler,
        backoff_policy=RetryPolicy.from_millis(
            max_attempts=settings.polling.backoff_attempts,
            base_delay_ms=settings.polling.backoff_base_delay_ms,
            max_delay_ms=settings.polling.backoff_max_delay_ms,
        ),
        max_attempts=settings.polling.max_attempts,
        delay_ms=settings.polling.delay_ms,
    )

    audit_log = None
    if settings.webhook.audit_enabled:
        audit_log = DeliveryAuditLog(settings.storage.audit_dir)

    return {
        "settings": settings,
        "vault": vault,
        "store": store,
        "client": client,
        "reconciler": reconciler,
        "credential_store": credential_store,
        "trigger": trigger,
        "polling": polling,
        "audit_log": audit_log,
    }


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {message}", style="bold")
    raise typer.Exit(1)


def _deadline(settings: Settings) -> Optional[Deadline]:
    if settings.polling.deadline_seconds is None:
        return None
    return Deadline.after(settings.polling.deadline_seconds)


# ---------------------------------------------------------------------------
# CLI Commands
# ---------------------------------------------------------------------------


@app.callback()
def main(
    ctx: typer.Context,
    config: Path = typer.Option(
        DEFAULT_CONFIG_PATH, "--config", "-c", help="Settings file (JSON or YAML)"
    ),
    log_level: str = typer.Option("INFO", "--log-level", "-l", help="Logging level"),
) -> None:
    """Orchestrate code-graph ingestion on swarm hosts."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"config_path": config}


@app.command("serve")
def serve(
    ctx: typer.Context,
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port"),
) -> None:
    """Run the webhook server until interrupted."""
    try:
        components = _get_components(_load_settings(ctx))
    except SwarmSyncError as e:
        _fail(e.message)

    settings: Settings = components["settings"]
    server = WebhookServer(
        IngestionWebhookService(
            components["vault"], components["store"], components["reconciler"]
        ),
        GitHubWebhookService(
            components["vault"],
            components["store"],
            components["trigger"],
            rate_limiter=WebhookRateLimiter(settings.webhook.rate_limit_per_minute),
        ),
        host=host or settings.webhook.host,
        port=port or settings.webhook.port,
        audit_log=components["audit_log"],
    )

    console.print(
        f"[green]✓[/green] Serving webhooks on {server.host}:{server.port}"
    )
    try:
        asyncio.run(server.serve_forever())
    except KeyboardInterrupt:
        console.print("Stopped")


@app.command("sync")
def sync(
    ctx: typer.Context,
    workspace_id: str = typer.Argument(..., help="Workspace ID"),
    ingest: bool = typer.Option(False, "--ingest", help="Full re-ingest instead of sync"),
    repo_url: Optional[str] = typer.Option(None, "--repo-url", help="Repository to sync"),
) -> None:
    """Start a sync job for a workspace."""
    try:
        components = _get_components(_load_settings(ctx))
        outcome = asyncio.run(
            components["trigger"].sync_workspace(
                workspace_id, repository_url=repo_url, full_ingest=ingest
            )
        )
    except SwarmSyncError as e:
        _fail(e.message)

    if not outcome.ok:
        _fail(f"Swarm host refused the job (status {outcome.status})")

    console.print(f"[green]✓[/green] Job started: {outcome.request_id}")
    if outcome.superseded_request_id:
        console.print(
            f"[yellow]Note:[/yellow] Superseded job {outcome.superseded_request_id}",
            style="dim",
        )


@app.command("activate")
def activate(
    ctx: typer.Context,
    workspace_id: str = typer.Argument(..., help="Workspace ID"),
) -> None:
    """Probe a swarm's stats service and mark it active."""
    try:
        components = _get_components(_load_settings(ctx))
        swarm = components["store"].get_swarm(workspace_id)
        if swarm is None:
            raise RecordNotFoundError("Swarm not found")
        result = asyncio.run(
            components["polling"].poll_activation(
                swarm, deadline=_deadline(components["settings"])
            )
        )
    except SwarmSyncError as e:
        _fail(e.message)

    if result.ok:
        console.print(f"[green]✓[/green] {result.message}")
    else:
        console.print(f"[yellow]{result.message}[/yellow] (status {result.status})")
        raise typer.Exit(2)


@app.command("progress")
def progress(
    ctx: typer.Context,
    workspace_id: str = typer.Argument(..., help="Workspace ID"),
    max_attempts: Optional[int] = typer.Option(None, "--max-attempts", help="Progress polls"),
    delay_ms: Optional[int] = typer.Option(None, "--delay-ms", help="Delay between polls"),
) -> None:
    """Poll the current ingestion job and record its outcome."""
    try:
        components = _get_components(_load_settings(ctx))
        swarm = components["store"].get_swarm(workspace_id)
        if swarm is None:
            raise RecordNotFoundError("Swarm not found")
        outcome = asyncio.run(
            components["polling"].track_ingest(
                swarm,
                max_attempts=max_attempts,
                delay_ms=delay_ms,
                deadline=_deadline(components["settings"]),
            )
        )
    except SwarmSyncError as e:
        _fail(e.message)

    table = Table(title=f"Ingestion job {swarm.ingest_ref_id}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Status", str(outcome.status))
    table.add_row("Attempts", str(outcome.attempts))
    if outcome.result:
        table.add_row("Nodes", str(outcome.result.get("nodes", "")))
        table.add_row("Edges", str(outcome.result.get("edges", "")))
    if outcome.error:
        table.add_row("Error", outcome.error)
    if outcome.reconcile and outcome.reconcile.step_status:
        table.add_row("Recorded", outcome.reconcile.step_status.value)
    console.print(table)

    if not outcome.ok:
        raise typer.Exit(1)


@app.command("sign")
def sign(
    body_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Request body"),
    secret: str = typer.Option(..., "--secret", "-s", help="Signing secret"),
) -> None:
    """Print a sha256= signature for a delivery body."""
    console.print(sign_payload(secret, body_file.read_bytes()), markup=False, highlight=False, soft_wrap=True)


@app.command("encrypt")
def encrypt(
    ctx: typer.Context,
    field: str = typer.Argument(..., help="Field name, e.g. swarmApiKey"),
    value: str = typer.Argument(..., help="Plaintext value"),
) -> None:
    """Print the sealed envelope string for a value."""
    try:
        vault = build_vault(_load_settings(ctx))
    except SwarmSyncError as e:
        _fail(e.message)
    console.print(vault.encrypt_to_string(field, value), markup=False, highlight=False, soft_wrap=True)


@app.command("rotate-key")
def rotate_key(
    ctx: typer.Context,
    dry_run: bool = typer.Option(False, "--dry-run", help="Only report what would change"),
) -> None:
    """Reseal stored secrets under the active key id.

    Retired key ids must be configured as previous keys so existing values
    can still be opened.
    """
    try:
        components = _get_components(_load_settings(ctx))
    except SwarmSyncError as e:
        _fail(e.message)

    counts = rotate_stored_secrets(components["vault"], components["store"], dry_run=dry_run)

    table = Table(title=f"Key rotation to {components['vault'].active_key_id}")
    table.add_column("Result", style="cyan")
    table.add_column("Count", style="green")
    for name in ("resealed", "current", "failed"):
        table.add_row(name, str(counts[name]))
    console.print(table)

    if counts["failed"]:
        raise typer.Exit(1)


def rotate_stored_secrets(
    vault: CredentialVault, store: SwarmStateStore, *, dry_run: bool = False
) -> Dict[str, int]:
    """Reseal every swarm API key and repository webhook secret.

    Returns:
        Counts of resealed, already current and failed values
    """
    counts = {"resealed": 0, "current": 0, "failed": 0}

    for swarm in store.list_swarms():
        stored = swarm.api_key_envelope
        if not stored:
            continue
        if not vault.needs_reseal(stored):
            counts["current"] += 1
            continue
        try:
            resealed = vault.reseal(API_KEY_FIELD, stored)
        except DecryptionError:
            logger.error("Cannot open swarm API key", extra={"workspace_id": swarm.workspace_id})
            counts["failed"] += 1
            continue
        if not dry_run:
            store.update_swarm(swarm.workspace_id, api_key_envelope=resealed)
        counts["resealed"] += 1

    for repository in store.list_repositories():
        stored = repository.webhook_secret_envelope
        if not stored:
            continue
        if not vault.needs_reseal(stored):
            counts["current"] += 1
            continue
        try:
            resealed = vault.reseal(WEBHOOK_SECRET_FIELD, stored)
        except DecryptionError:
            logger.error(
                "Cannot open webhook secret",
                extra={"repository_url": repository.repository_url},
            )
            counts["failed"] += 1
            continue
        if not dry_run:
            store.update_repository(
                repository.repository_url,
                repository.workspace_id,
                webhook_secret_envelope=resealed,
            )
        counts["resealed"] += 1

    return counts


if __name__ == "__main__":  # pragma: no cover
    app()
