"""Data models for sync execution.

Defines dataclasses for the outcome of the pagination phase and for the
per-platform result returned to callers.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from src.platforms.models import WatchItem


class PaginationStop(str, Enum):
    """Why the pagination loop ended."""

    EARLY_STOPPED = "early_stopped"
    EXHAUSTED = "exhausted"
    MAX_PAGES = "max_pages"
    ERRORED = "errored"


@dataclass
class PaginationOutcome:
    """Everything the fetch phase accumulated before persistence."""

    items: dict[str, WatchItem] = field(default_factory=dict)
    """Normalized items keyed by external ID (newest watched_at wins)."""

    normalize_failures: int = 0
    """Records whose normalization raised."""

    pages_requested: int = 0
    """Page fetches attempted, including a failed one."""

    pages_retrieved: int = 0
    """Page fetches that returned a response."""

    last_cursor: str | None = None
    """Cursor returned by the last retrieved page."""

    stop_reason: PaginationStop = PaginationStop.EXHAUSTED
    """Why the loop ended."""

    fetch_error: str | None = None
    """Message of the page error that ended the loop, if any."""

    @property
    def early_stopped(self) -> bool:
        return self.stop_reason == PaginationStop.EARLY_STOPPED

    def newest_watched_at(self) -> datetime | None:
        if not self.items:
            return None
        return max(item.watched_at for item in self.items.values())


@dataclass
class SyncResult:
    """Outcome of one platform run, as reported to the sweep and the CLI."""

    platform: str
    """Platform identifier."""

    success: bool
    """True for success and partial runs."""

    status: str
    """Terminal job status (success, partial, failed)."""

    job_id: str | None = None
    """Job log row, None when the run was rejected before a job existed."""

    sync_mode: str | None = None
    """full or incremental."""

    auth_source: str | None = None
    """Provenance label of the auth used."""

    items_total: int = 0
    items_success: int = 0
    items_failed: int = 0
    items_new: int = 0
    items_existing: int = 0
    pages_requested: int = 0
    early_stopped: bool = False

    duration_ms: int = 0
    """Wall time of the run in milliseconds."""

    error: str | None = None
    """Error message for failed runs."""

    error_stack: str | None = None
    """Sanitized traceback for failed runs."""
