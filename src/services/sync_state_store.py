"""Read-side queries the sync orchestrator needs before and during a run.

Sync state is derived from the job log rather than stored separately:
the newest success or partial job for a platform is its state. Failed
jobs are ignored, so a failure can never roll the state back.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from src.db.models import MediaWatch, SyncJobLog, SyncJobStatus, SyncMode

# Keeps IN (...) lists under SQLite's bound-parameter limit
_ID_CHUNK_SIZE = 500


@dataclass(frozen=True)
class SyncState:
    """High-water mark of the last successful sync for one platform."""

    platform: str
    sync_mode: SyncMode
    last_cursor: str | None = None
    last_synced_at: datetime | None = None
    completed_at: datetime | None = None


def _parse_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SyncStateStore:
    """Queries over the job log and the media table.

    Attributes:
        db: SQLAlchemy session for database operations.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_last_successful_sync(self, platform: str) -> SyncState | None:
        """Return the state recorded by the newest success/partial job.

        Args:
            platform: Platform identifier.

        Returns:
            SyncState, or None if the platform never synced successfully.
        """
        job = (
            self.db.query(SyncJobLog)
            .filter(
                SyncJobLog.platform == platform,
                SyncJobLog.status.in_(
                    [SyncJobStatus.success.value, SyncJobStatus.partial.value]
                ),
            )
            .order_by(SyncJobLog.completed_at.desc())
            .first()
        )
        if job is None:
            return None

        return SyncState(
            platform=platform,
            sync_mode=SyncMode(job.sync_mode),
            last_cursor=job.last_cursor,
            last_synced_at=_parse_iso(job.last_synced_at),
            completed_at=_parse_iso(job.completed_at),
        )

    def get_existing_external_ids(
        self, platform: str, external_ids: Iterable[str]
    ) -> set[str]:
        """Return the subset of external_ids already stored for the platform."""
        ids = list(dict.fromkeys(external_ids))
        existing: set[str] = set()
        for start in range(0, len(ids), _ID_CHUNK_SIZE):
            chunk = ids[start:start + _ID_CHUNK_SIZE]
            rows = (
                self.db.query(MediaWatch.external_id)
                .filter(
                    MediaWatch.platform == platform,
                    MediaWatch.external_id.in_(chunk),
                )
                .all()
            )
            existing.update(row[0] for row in rows)
        return existing

    def has_running_job(self, platform: str) -> bool:
        """True if a job for the platform is still in the running state."""
        return (
            self.db.query(SyncJobLog.id)
            .filter(
                SyncJobLog.platform == platform,
                SyncJobLog.status == SyncJobStatus.running.value,
            )
            .first()
            is not None
        )
