"""Tests for CLI output formatting."""

import json
from datetime import UTC, datetime

import pytest
from rich.console import Console

from src.cli import output as output_module
from src.cli.output import (
    format_credentials_table,
    format_job_table,
    format_migration_stats,
    format_results_table,
    format_stats,
    format_sync_state,
)
from src.db.models import Credential, SyncJobLog, SyncMode
from src.orchestrator.sync.models import SyncResult
from src.services.credential_service import MigrationStats
from src.services.sync_state_store import SyncState


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    """Render tables wide enough that cells never wrap."""
    monkeypatch.setattr(output_module, "console", Console(width=240))


def _result(**overrides) -> SyncResult:
    fields = dict(
        platform="bilibili", success=True, status="success", job_id="job-1",
        sync_mode="incremental", auth_source="environment",
        items_total=3, items_success=3, items_new=2, items_existing=1,
        pages_requested=2, duration_ms=120,
    )
    fields.update(overrides)
    return SyncResult(**fields)


def _job(**overrides) -> SyncJobLog:
    fields = dict(
        id="0f8fad5b-d9cb-469f-a165-70867728950e", platform="steam", status="partial",
        sync_mode="full", triggered_by="scheduled", auth_source="environment",
        started_at="2024-06-10T12:00:00.123456+00:00", completed_at=None,
        duration_ms=800, items_total=4, items_new=3, items_existing=0, items_failed=1,
        pages_requested=1, early_stopped=False, last_synced_at=None,
        message="Synced 3 new items (0 existing, 1 failed)",
    )
    fields.update(overrides)
    return SyncJobLog(**fields)


class TestFormatResultsTable:
    """Tests for sweep result rendering."""

    def test_json_omits_stack(self):
        output = format_results_table(
            [_result(status="failed", success=False, error="boom", error_stack="Traceback ...")],
            as_json=True,
        )
        parsed = json.loads(output)
        assert parsed[0]["platform"] == "bilibili"
        assert parsed[0]["error"] == "boom"
        assert "error_stack" not in parsed[0]

    def test_table(self):
        output = format_results_table([_result(early_stopped=True)])
        assert "bilibili" in output
        assert "success" in output
        assert "early stop" in output

    def test_error_text_is_not_treated_as_markup(self):
        output = format_results_table(
            [_result(status="failed", success=False, error="[steam] HTTP 403")]
        )
        assert "[steam]" in output

    def test_empty(self):
        assert "No platforms configured" in format_results_table([])
        assert json.loads(format_results_table([], as_json=True)) == []


class TestFormatJobTable:
    """Tests for job list rendering."""

    def test_renders_jobs_as_text(self):
        output = format_job_table([_job()])
        assert "0f8fad5b-d9c" in output
        assert "steam" in output
        assert "partial" in output

    def test_renders_jobs_as_json(self):
        parsed = json.loads(format_job_table([_job()], as_json=True))
        assert parsed[0]["id"] == "0f8fad5b-d9cb-469f-a165-70867728950e"
        assert parsed[0]["items_failed"] == 1
        assert parsed[0]["triggered_by"] == "scheduled"

    def test_empty(self):
        assert format_job_table([]) == "No jobs found."


class TestFormatCredentialsTable:

    def test_never_includes_secret(self):
        credential = Credential(
            id="a1b2c3d4-0000-0000-0000-000000000000", platform="douban", type="user_id",
            encrypted_value="SECRET-PAYLOAD", is_valid=True, failure_count=0, usage_count=2,
            last_used_at=None, created_at="2024-06-10T12:00:00+00:00",
        )
        text = format_credentials_table([credential])
        data = format_credentials_table([credential], as_json=True)

        assert "douban" in text
        assert "SECRET-PAYLOAD" not in text
        assert "SECRET-PAYLOAD" not in data
        assert json.loads(data)[0]["usage_count"] == 2

    def test_empty(self):
        assert format_credentials_table([]) == "No credentials stored."


class TestFormatStats:

    def test_json_passthrough(self):
        stats = {"total": 2, "success": 2, "avg_duration_ms": None}
        assert json.loads(format_stats(stats, as_json=True)) == stats

    def test_table_labels(self):
        output = format_stats({"items_new_total": 7})
        assert "items new total" in output
        assert "7" in output


class TestFormatSyncState:

    def test_never_synced(self):
        assert "never synced" in format_sync_state(None, "steam")
        assert json.loads(format_sync_state(None, "steam", as_json=True)) is None

    def test_state_as_json(self):
        synced = datetime(2024, 6, 10, 11, 0, tzinfo=UTC)
        state = SyncState(
            platform="bilibili", sync_mode=SyncMode.incremental,
            last_synced_at=synced, completed_at=None, last_cursor="2",
        )
        parsed = json.loads(format_sync_state(state, "bilibili", as_json=True))
        assert parsed["sync_mode"] == "incremental"
        assert parsed["last_synced_at"] == synced.isoformat()
        assert parsed["last_cursor"] == "2"


class TestFormatMigrationStats:

    def test_dry_run_hint(self):
        stats = MigrationStats(dry_run=True, total=2, migrated=1, already_encrypted=1)
        output = format_migration_stats(stats)
        assert "DRY RUN" in output
        assert "--execute" in output

    def test_errors_listed(self):
        stats = MigrationStats(dry_run=False, total=1, failed=1, errors=["cred-1: bad key"])
        output = format_migration_stats(stats)
        assert "EXECUTED" in output
        assert "cred-1: bad key" in output
