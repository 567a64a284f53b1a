"""CLI output formatters for Rich tables and JSON.

Provides human-readable Rich table output (default) and machine-parseable
JSON output (--json flag). All formatting goes through these functions
so the CLI commands stay clean.
"""

import dataclasses
import json
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from src.db.models import Credential, SyncJobLog
from src.orchestrator.sync.models import SyncResult
from src.services.credential_service import MigrationStats
from src.services.sync_state_store import SyncState

console = Console()

STATUS_COLORS = {
    "running": "blue",
    "success": "green",
    "partial": "yellow",
    "failed": "red",
    "skipped": "dim",
}


def _render(renderable: Any) -> str:
    with console.capture() as capture:
        console.print(renderable)
    return capture.get()


def _colored(status: str) -> str:
    color = STATUS_COLORS.get(status, "white")
    return f"[{color}]{status}[/{color}]"


def _short_ts(value: str | None) -> str:
    return value[:19] if value else "—"


def format_results_table(results: list[SyncResult], as_json: bool = False) -> str:
    """Format sweep results as a Rich table or JSON."""
    if as_json:
        return json.dumps(
            [
                {k: v for k, v in dataclasses.asdict(r).items() if k != "error_stack"}
                for r in results
            ],
            indent=2,
        )

    if not results:
        return "No platforms configured. Add one with 'mediasync credentials add'."

    table = Table(title="Sync Results", show_lines=True)
    table.add_column("Platform", style="cyan")
    table.add_column("Status")
    table.add_column("Mode")
    table.add_column("New", justify="right", style="green")
    table.add_column("Existing", justify="right")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Pages", justify="right")
    table.add_column("Auth")
    table.add_column("Error")

    for r in results:
        table.add_row(
            r.platform,
            _colored(r.status),
            r.sync_mode or "—",
            str(r.items_new),
            str(r.items_existing),
            str(r.items_failed),
            f"{r.pages_requested}{' (early stop)' if r.early_stopped else ''}",
            r.auth_source or "—",
            escape(r.error or ""),
        )
    return _render(table)


def _job_to_dict(job: SyncJobLog) -> dict[str, Any]:
    return {
        "id": job.id,
        "platform": job.platform,
        "status": job.status,
        "sync_mode": job.sync_mode,
        "triggered_by": job.triggered_by,
        "auth_source": job.auth_source,
        "started_at": job.started_at,
        "completed_at": job.completed_at,
        "duration_ms": job.duration_ms,
        "items_total": job.items_total,
        "items_new": job.items_new,
        "items_existing": job.items_existing,
        "items_failed": job.items_failed,
        "pages_requested": job.pages_requested,
        "early_stopped": job.early_stopped,
        "last_synced_at": job.last_synced_at,
        "message": job.message,
    }


def format_job_table(jobs: list[SyncJobLog], as_json: bool = False) -> str:
    """Format a list of sync jobs as a Rich table or JSON."""
    if as_json:
        return json.dumps([_job_to_dict(j) for j in jobs], indent=2)

    if not jobs:
        return "No jobs found."

    table = Table(title="Sync Jobs", show_lines=True)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Platform")
    table.add_column("Status")
    table.add_column("Mode")
    table.add_column("New", justify="right", style="green")
    table.add_column("Fail", justify="right", style="red")
    table.add_column("Started")
    table.add_column("Message")

    for job in jobs:
        table.add_row(
            job.id[:12],
            job.platform,
            _colored(job.status),
            job.sync_mode,
            str(job.items_new),
            str(job.items_failed),
            _short_ts(job.started_at),
            escape(job.message or ""),
        )
    return _render(table)


def format_credentials_table(credentials: list[Credential], as_json: bool = False) -> str:
    """Format stored credentials. Secrets are never shown."""
    rows = [
        {
            "id": c.id,
            "platform": c.platform,
            "type": c.type,
            "is_valid": c.is_valid,
            "failure_count": c.failure_count,
            "usage_count": c.usage_count,
            "last_used_at": c.last_used_at,
            "created_at": c.created_at,
        }
        for c in credentials
    ]
    if as_json:
        return json.dumps(rows, indent=2)

    if not rows:
        return "No credentials stored."

    table = Table(title="Credentials")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Platform")
    table.add_column("Type")
    table.add_column("Valid")
    table.add_column("Failures", justify="right")
    table.add_column("Uses", justify="right")
    table.add_column("Last used")
    for row in rows:
        table.add_row(
            row["id"][:12],
            row["platform"],
            row["type"],
            "[green]yes[/green]" if row["is_valid"] else "[red]no[/red]",
            str(row["failure_count"]),
            str(row["usage_count"]),
            _short_ts(row["last_used_at"]),
        )
    return _render(table)


def format_validation_table(rows: list[dict[str, Any]], as_json: bool = False) -> str:
    """Format credential validation outcomes.

    Each row has id, platform, status ('valid', 'invalid' or 'error') and
    message.
    """
    if as_json:
        return json.dumps(rows, indent=2)

    if not rows:
        return "No credentials to validate."

    colors = {"valid": "green", "invalid": "red", "error": "yellow"}
    table = Table(title="Credential Validation")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Platform")
    table.add_column("Result")
    table.add_column("Message")
    for row in rows:
        color = colors.get(row["status"], "white")
        table.add_row(
            row["id"][:12],
            row["platform"],
            f"[{color}]{row['status']}[/{color}]",
            escape(row["message"] or ""),
        )
    return _render(table)


def format_stats(stats: dict[str, Any], as_json: bool = False) -> str:
    """Format job statistics."""
    if as_json:
        return json.dumps(stats, indent=2)

    table = Table(title="Sync Statistics", show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    for key, value in stats.items():
        table.add_row(key.replace("_", " "), "—" if value is None else str(value))
    return _render(table)


def format_sync_state(state: SyncState | None, platform: str, as_json: bool = False) -> str:
    """Format the derived sync state of one platform."""
    payload = None
    if state is not None:
        payload = {
            "platform": state.platform,
            "sync_mode": state.sync_mode.value,
            "last_cursor": state.last_cursor,
            "last_synced_at": state.last_synced_at.isoformat() if state.last_synced_at else None,
            "completed_at": state.completed_at.isoformat() if state.completed_at else None,
        }
    if as_json:
        return json.dumps(payload, indent=2)
    if payload is None:
        return f"{platform}: never synced successfully."
    return "\n".join(f"{key}: {value if value is not None else '—'}" for key, value in payload.items())


def format_migration_stats(stats: MigrationStats) -> str:
    """Summarize a credential migration pass."""
    mode = "DRY RUN (no changes written)" if stats.dry_run else "EXECUTED"
    lines = [
        f"[bold]Credential migration:[/bold] {mode}",
        f"  total:             {stats.total}",
        f"  already encrypted: {stats.already_encrypted}",
        f"  {'would migrate' if stats.dry_run else 'migrated'}:     {stats.migrated}",
        f"  failed:            {stats.failed}",
    ]
    for error in stats.errors:
        lines.append(f"  [red]- {escape(error)}[/red]")
    if stats.dry_run and stats.migrated:
        lines.append("Run again with --execute to apply.")
    return "\n".join(lines)
