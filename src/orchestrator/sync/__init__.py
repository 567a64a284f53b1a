"""Incremental sync engine.

Provides the per-platform sync orchestrator, sync mode selection, the
all-platform sweep and crash recovery for interrupted jobs.
"""

from src.orchestrator.sync.executor import SyncOrchestrator
from src.orchestrator.sync.models import (
    PaginationOutcome,
    PaginationStop,
    SyncResult,
)
from src.orchestrator.sync.modes import (
    SyncPolicy,
    incremental_start,
    should_do_full_sync,
)
from src.orchestrator.sync.recovery import recover_stale_jobs
from src.orchestrator.sync.sweep import sync_all_platforms

__all__ = [
    "SyncOrchestrator",
    "SyncPolicy",
    "SyncResult",
    "PaginationOutcome",
    "PaginationStop",
    "should_do_full_sync",
    "incremental_start",
    "recover_stale_jobs",
    "sync_all_platforms",
]
