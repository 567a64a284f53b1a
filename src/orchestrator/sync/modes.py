"""Sync mode selection: how much history a run re-fetches.

A full sync walks deep into history (many pages) to repair gaps; an
incremental sync only looks back a little past the last high-water mark
and stops early once it is clearly re-reading known items. Full syncs
happen on a fixed cadence and always follow an incremental run, so
incremental runs never chain indefinitely.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from src.db.models import SyncMode
from src.errors.domain import ValidationError
from src.services.sync_state_store import SyncState

PAGE_FETCH_ALLOWANCE_SECONDS = 0.5
"""Budgeted wall time for one page request, on top of the rate-limit sleep."""


@dataclass(frozen=True)
class SyncPolicy:
    """Tunables for the pagination loop."""

    full_sync_interval: timedelta = timedelta(days=7)
    """Maximum age of the last full sync before another one is forced."""

    lookback: timedelta = timedelta(hours=1)
    """Incremental runs start this far before the last high-water mark."""

    full_sync_max_pages: int = 10
    """Page cap for a full sync."""

    incremental_max_pages: int = 5
    """Page cap for an incremental sync."""

    early_stop_threshold: int = 3
    """Consecutive all-known pages that end an incremental sync."""

    run_timeout_seconds: float = 25.0
    """Deadline for the fetch phase of one platform run."""

    def max_pages(self, mode: SyncMode) -> int:
        """Return the page cap for the given mode."""
        if mode == SyncMode.full:
            return self.full_sync_max_pages
        return self.incremental_max_pages

    def worst_case_seconds(self, mode: SyncMode, rate_limit_seconds: float) -> float:
        """Longest fetch phase a run in this mode can take.

        Every page costs one request allowance, and every page but the last
        is followed by a rate-limit sleep.
        """
        pages = self.max_pages(mode)
        return (pages - 1) * rate_limit_seconds + pages * PAGE_FETCH_ALLOWANCE_SECONDS


def check_policy_fits(policy: SyncPolicy, rate_limits: Mapping[str, float]) -> None:
    """Reject a policy whose page caps cannot finish inside the run deadline.

    A run that always times out records FAILED and never advances its sync
    state, so such a configuration would never ingest anything.

    Args:
        policy: Sync tunables to check.
        rate_limits: Inter-page delay in seconds, keyed by platform.

    Raises:
        ValidationError: Naming every platform and mode that cannot fit.
    """
    problems = []
    for platform, rate_limit in sorted(rate_limits.items()):
        for mode in (SyncMode.full, SyncMode.incremental):
            needed = policy.worst_case_seconds(mode, rate_limit)
            if needed > policy.run_timeout_seconds:
                problems.append(
                    f"{platform} {mode.value} sync needs up to {needed:.1f}s "
                    f"for {policy.max_pages(mode)} pages"
                )
    if problems:
        raise ValidationError(
            f"Sync page caps exceed run_timeout_seconds={policy.run_timeout_seconds:g}: "
            + "; ".join(problems)
        )


def should_do_full_sync(
    state: SyncState | None,
    now: datetime | None = None,
    policy: SyncPolicy | None = None,
) -> bool:
    """Decide between a full and an incremental sync.

    Args:
        state: Last successful sync state, None if there never was one.
        now: Current time (timezone-aware); defaults to UTC now.
        policy: Sync tunables; defaults to SyncPolicy().

    Returns:
        True when there is no prior state, when the last run was
        incremental, or when the last full sync is older than the interval.
    """
    if state is None:
        return True
    if state.sync_mode == SyncMode.incremental:
        return True
    if state.completed_at is None:
        return True

    policy = policy or SyncPolicy()
    now = now or datetime.now(UTC)
    return now - state.completed_at > policy.full_sync_interval


def incremental_start(state: SyncState | None, policy: SyncPolicy | None = None) -> datetime:
    """Earliest watch time an incremental run keeps.

    Items older than this are dropped from each page. Falls back to the
    epoch when the state has no high-water mark, which keeps everything.
    """
    policy = policy or SyncPolicy()
    if state is None or state.last_synced_at is None:
        return datetime.fromtimestamp(0, UTC)
    return state.last_synced_at - policy.lookback
