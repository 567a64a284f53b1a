"""MediaSync CLI: sync watch history from Bilibili, Douban and Steam.

Usage:
    mediasync run                      Sync every configured platform once
    mediasync schedule                 Sync every 3 hours until stopped
    mediasync credentials add bilibili Store an encrypted credential
    mediasync credentials validate     Check stored credentials live
    mediasync jobs list                Show recent sync jobs
    mediasync key generate             Print a new encryption key
"""

import asyncio
import logging
import sys
from datetime import timedelta
from typing import Optional

import pydantic
import typer
from rich.console import Console
from rich.markup import escape

from src.cli.config import MediaSyncConfig, load_config
from src.cli.factory import Runtime, build_runtime
from src.cli.output import (
    format_credentials_table,
    format_job_table,
    format_migration_stats,
    format_results_table,
    format_stats,
    format_sync_state,
    format_validation_table,
)
from src.cli.scheduler import serve
from src.db.connection import get_db_context
from src.db.models import Platform, SyncJobStatus, TriggerType
from src.errors.domain import DomainError
from src.orchestrator.sync.recovery import recover_stale_jobs
from src.orchestrator.sync.sweep import sync_all_platforms
from src.services.credential_service import CredentialService
from src.services.credential_vault import (
    KeyConfigError,
    VaultError,
    generate_key,
    validate_encryption_setup,
)
from src.services.errors import AdapterFetchError
from src.services.job_service import JobService
from src.services.media_store import MediaStore
from src.services.sync_state_store import SyncStateStore
from src.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="mediasync",
    help="Incremental watch-history sync for Bilibili, Douban and Steam",
    no_args_is_help=True,
)
credentials_app = typer.Typer(help="Manage encrypted platform credentials")
jobs_app = typer.Typer(help="Inspect sync jobs")
config_app = typer.Typer(help="Configuration management")
key_app = typer.Typer(help="Encryption key utilities")

app.add_typer(credentials_app, name="credentials")
app.add_typer(jobs_app, name="jobs")
app.add_typer(config_app, name="config")
app.add_typer(key_app, name="key")

console = Console()

# --- Global state ---
_config_path: str | None = None
_verbose: bool = False

_PLATFORM_NAMES = ", ".join(p.value for p in Platform)


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to mediasync.yaml config file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """MediaSync: incremental watch-history sync."""
    global _config_path, _verbose
    _config_path = config
    _verbose = verbose


# --- Helpers ---


def _load_config() -> MediaSyncConfig:
    try:
        return load_config(config_path=_config_path)
    except FileNotFoundError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)
    except pydantic.ValidationError as e:
        console.print(f"[red]Invalid configuration:[/red]\n{escape(str(e))}")
        raise typer.Exit(1)


def _configure_logging(cfg: MediaSyncConfig) -> None:
    """Send logs to stderr (and optionally a file) so stdout stays parseable."""
    level = logging.DEBUG if _verbose else getattr(logging, cfg.logging.level.upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if cfg.logging.file:
        handlers.append(logging.FileHandler(cfg.logging.file))
    logging.basicConfig(
        level=level,
        format="%(levelname)s:%(name)s:%(message)s",
        handlers=handlers,
        force=True,
    )
    # httpx logs every request URL at INFO, including the Steam API key
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _require_encryption_key() -> None:
    try:
        validate_encryption_setup()
    except KeyConfigError as e:
        console.print(f"[red]Encryption setup invalid:[/red] {escape(str(e))}")
        console.print("Generate a key with 'mediasync key generate'.")
        raise typer.Exit(1)


def _bootstrap(require_key: bool = True) -> tuple[MediaSyncConfig, Runtime]:
    cfg = _load_config()
    _configure_logging(cfg)
    if require_key:
        _require_encryption_key()
    try:
        return cfg, build_runtime(cfg)
    except DomainError as e:
        console.print(f"[red]Invalid configuration:[/red] {escape(str(e))}")
        raise typer.Exit(1)


def _check_platform(platform: str) -> str:
    if platform not in {p.value for p in Platform}:
        console.print(f"[red]Unknown platform '{escape(platform)}'.[/red] Expected one of: {_PLATFORM_NAMES}")
        raise typer.Exit(1)
    return platform


# --- Version ---


@app.command()
def version():
    """Show MediaSync version."""
    from importlib.metadata import PackageNotFoundError
    from importlib.metadata import version as pkg_version
    try:
        v = pkg_version("mediasync")
    except PackageNotFoundError:
        v = "unknown"
    console.print(f"[bold]MediaSync[/bold] v{v}")
    console.print(f"  Platforms: {_PLATFORM_NAMES}")


# --- Sync commands ---


@app.command()
def run(
    platform: Optional[list[str]] = typer.Option(
        None, "--platform", "-p", help="Platform to sync (repeatable; default: all enabled)"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Sync every enabled platform once, then exit.

    Exits 0 once the sweep has run, even if individual platforms failed
    (see the job log). Exits 1 on setup errors such as a missing key.
    """
    cfg, runtime = _bootstrap()
    platforms = [_check_platform(p) for p in platform] if platform else cfg.platforms.enabled

    async def _run():
        with get_db_context(runtime.session_factory) as db:
            recover_stale_jobs(
                JobService(db), stale_after=timedelta(minutes=cfg.sync.stale_job_minutes)
            )
        return await sync_all_platforms(
            runtime.orchestrator,
            runtime.session_factory,
            runtime.vault,
            platforms=platforms,
            triggered_by=TriggerType.manual,
        )

    try:
        results = asyncio.run(_run())
    except KeyConfigError as e:
        console.print(f"[red]Encryption setup invalid:[/red] {escape(str(e))}")
        raise typer.Exit(1)
    finally:
        runtime.close()

    typer.echo(format_results_table(results, as_json=json_output))


@app.command()
def schedule(
    interval_hours: Optional[float] = typer.Option(
        None, "--interval-hours", help="Hours between sweeps (default from config: 3)"
    ),
    no_initial_run: bool = typer.Option(
        False, "--no-initial-run", help="Wait one interval before the first sweep"
    ),
):
    """Run the sweep on a fixed interval until interrupted."""
    cfg, runtime = _bootstrap()
    interval = interval_hours or cfg.schedule.interval_hours
    run_on_start = cfg.schedule.run_on_start and not no_initial_run

    async def _scheduled_sweep():
        try:
            results = await sync_all_platforms(
                runtime.orchestrator,
                runtime.session_factory,
                runtime.vault,
                platforms=cfg.platforms.enabled,
                triggered_by=TriggerType.scheduled,
            )
        except VaultError as e:
            logger.error("Scheduled sweep aborted: %s", e)
            return
        typer.echo(format_results_table(results))

    with get_db_context(runtime.session_factory) as db:
        recover_stale_jobs(
            JobService(db), stale_after=timedelta(minutes=cfg.sync.stale_job_minutes)
        )

    console.print(f"[bold]Scheduling sweeps every {interval:g} hour(s).[/bold] Ctrl+C to stop.")
    try:
        asyncio.run(serve(_scheduled_sweep, interval, run_on_start))
    finally:
        runtime.close()


# --- Credential commands ---


def _parse_meta(pairs: list[str]) -> dict[str, str]:
    metadata = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            console.print(f"[red]Invalid --meta '{escape(pair)}', expected key=value[/red]")
            raise typer.Exit(1)
        metadata[key.strip()] = value.strip()
    return metadata


@credentials_app.command("add")
def credentials_add(
    platform: str = typer.Argument(help=f"Platform ({_PLATFORM_NAMES})"),
    secret: str = typer.Option(
        ..., "--secret", prompt=True, hide_input=True,
        help="Cookie string or API key (prompted when omitted)",
    ),
    credential_type: str = typer.Option("cookie", "--type", "-t", help="cookie, api_key or user_id"),
    meta: Optional[list[str]] = typer.Option(
        None, "--meta", "-m", help="Metadata key=value (e.g. userId=ahbei, steamId=7656...)"
    ),
):
    """Encrypt and store a platform credential."""
    _check_platform(platform)
    _, runtime = _bootstrap()
    try:
        with get_db_context(runtime.session_factory) as db:
            credential = CredentialService(db=db, vault=runtime.vault).create_credential(
                platform, secret, credential_type=credential_type, metadata=_parse_meta(meta or []),
            )
            credential_id = credential.id
    except (DomainError, VaultError) as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)
    finally:
        runtime.close()
    console.print(f"[green]Stored {platform} credential[/green] {credential_id}")


@credentials_app.command("list")
def credentials_list(
    platform: Optional[str] = typer.Option(None, "--platform", "-p", help="Filter by platform"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List stored credentials (secrets are never shown)."""
    _, runtime = _bootstrap(require_key=False)
    try:
        with get_db_context(runtime.session_factory) as db:
            credentials = CredentialService(db=db, vault=runtime.vault).list_credentials(platform=platform)
            output = format_credentials_table(credentials, as_json=json_output)
    finally:
        runtime.close()
    typer.echo(output)


@credentials_app.command("validate")
def credentials_validate(
    platform: Optional[str] = typer.Option(None, "--platform", "-p", help="Only this platform"),
    credential_id: Optional[str] = typer.Option(None, "--id", help="Only this credential"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Check stored credentials against their platforms.

    Records the verdict on each credential. Exits 1 if any credential was
    rejected or could not be checked.
    """
    if platform is not None:
        _check_platform(platform)
    _, runtime = _bootstrap()

    async def _validate() -> list[dict]:
        rows = []
        with get_db_context(runtime.session_factory) as db:
            service = CredentialService(db=db, vault=runtime.vault)
            if credential_id:
                credentials = [service.get_credential(credential_id)]
            else:
                credentials = service.list_credentials(platform=platform)
            for credential in credentials:
                row = {"id": credential.id, "platform": credential.platform}
                try:
                    check = await service.validate_credential(
                        credential.id, runtime.orchestrator.adapter(credential.platform)
                    )
                except (AdapterFetchError, VaultError) as e:
                    logger.warning("Could not validate credential %s: %s", credential.id, e)
                    row.update(status="error", message=sanitize_error_message(str(e)))
                else:
                    row.update(
                        status="valid" if check.is_valid else "invalid",
                        message=check.message,
                    )
                rows.append(row)
        return rows

    try:
        rows = asyncio.run(_validate())
    except DomainError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)
    finally:
        runtime.close()

    typer.echo(format_validation_table(rows, as_json=json_output))
    if any(row["status"] != "valid" for row in rows):
        raise typer.Exit(1)


@credentials_app.command("migrate")
def credentials_migrate(
    execute: bool = typer.Option(False, "--execute", help="Write changes (default is a dry run)"),
):
    """Encrypt credentials still stored as plaintext."""
    _, runtime = _bootstrap()
    try:
        with get_db_context(runtime.session_factory) as db:
            stats = CredentialService(db=db, vault=runtime.vault).migrate_plaintext(execute=execute)
    finally:
        runtime.close()
    console.print(format_migration_stats(stats))
    if stats.failed:
        raise typer.Exit(1)


# --- Job commands ---


@jobs_app.command("list")
def jobs_list(
    platform: Optional[str] = typer.Option(None, "--platform", "-p", help="Filter by platform"),
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Filter by status"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum jobs to show"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List recent sync jobs, newest first."""
    status_filter = None
    if status is not None:
        try:
            status_filter = SyncJobStatus(status)
        except ValueError:
            console.print(f"[red]Unknown status '{escape(status)}'[/red]")
            raise typer.Exit(1)

    _, runtime = _bootstrap(require_key=False)
    try:
        with get_db_context(runtime.session_factory) as db:
            jobs = JobService(db).list_jobs(platform=platform, status=status_filter, limit=limit)
            output = format_job_table(jobs, as_json=json_output)
    finally:
        runtime.close()
    typer.echo(output)


@jobs_app.command("stats")
def jobs_stats(
    platform: Optional[str] = typer.Option(None, "--platform", "-p", help="Filter by platform"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show job outcome statistics and stored item counts."""
    _, runtime = _bootstrap(require_key=False)
    try:
        with get_db_context(runtime.session_factory) as db:
            stats = JobService(db).get_stats(platform=platform)
            stats["items_stored"] = MediaStore(db).count(platform=platform)
    finally:
        runtime.close()
    typer.echo(format_stats(stats, as_json=json_output))


@jobs_app.command("state")
def jobs_state(
    platform: str = typer.Argument(help=f"Platform ({_PLATFORM_NAMES})"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show the sync state derived from the last successful job."""
    _check_platform(platform)
    _, runtime = _bootstrap(require_key=False)
    try:
        with get_db_context(runtime.session_factory) as db:
            state = SyncStateStore(db).get_last_successful_sync(platform)
    finally:
        runtime.close()
    typer.echo(format_sync_state(state, platform, as_json=json_output))


# --- Config commands ---


@config_app.command("show")
def config_show():
    """Display resolved configuration."""
    cfg = _load_config()
    console.print_json(cfg.model_dump_json())


# --- Key commands ---


@key_app.command("generate")
def key_generate():
    """Print a new 64-hex-character key for CREDENTIAL_ENCRYPTION_KEY."""
    typer.echo(generate_key())
    console.print(
        "Set it as CREDENTIAL_ENCRYPTION_KEY. Keep it safe: stored credentials "
        "cannot be decrypted without it.",
        style="dim",
    )


if __name__ == "__main__":
    app()
