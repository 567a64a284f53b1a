"""Orchestration layer for MediaSync.

Main Entry Points:
    SyncOrchestrator: Runs one full or incremental sync for a platform.
    sync_all_platforms: Syncs every configured platform once.
"""

from src.orchestrator.sync import (
    SyncOrchestrator,
    SyncPolicy,
    SyncResult,
    sync_all_platforms,
)

__all__ = [
    "SyncOrchestrator",
    "SyncPolicy",
    "SyncResult",
    "sync_all_platforms",
]
