"""Sync job log service with state machine validation.

Every sync run is recorded as one SyncJobLog row: created in the running
state, then moved to exactly one terminal state (success, partial or
failed). Rows are never deleted; the newest success/partial row is the
platform's sync state.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from src.db.models import SyncJobLog, SyncJobStatus, SyncMode, TriggerType
from src.errors.domain import NotFoundError
from src.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid job state transition.

    Attributes:
        current_state: The current state of the job.
        attempted_state: The state that was attempted.
        allowed_transitions: List of valid transition targets from current state.
    """

    def __init__(
        self,
        current_state: SyncJobStatus,
        attempted_state: SyncJobStatus,
        allowed_transitions: list[SyncJobStatus],
    ) -> None:
        self.current_state = current_state
        self.attempted_state = attempted_state
        self.allowed_transitions = allowed_transitions
        allowed_str = ", ".join(s.value for s in allowed_transitions) or "none (terminal)"
        super().__init__(
            f"Cannot transition from '{current_state.value}' to '{attempted_state.value}'. "
            f"Allowed transitions: {allowed_str}"
        )


# Valid state transitions for the job lifecycle
VALID_TRANSITIONS: dict[SyncJobStatus, list[SyncJobStatus]] = {
    SyncJobStatus.running: [
        SyncJobStatus.success,
        SyncJobStatus.partial,
        SyncJobStatus.failed,
    ],
    SyncJobStatus.success: [],  # terminal
    SyncJobStatus.partial: [],  # terminal
    SyncJobStatus.failed: [],  # terminal (a retry is a new job)
}


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class JobCounts:
    """Item and pagination counters written when a job finishes."""

    items_total: int = 0
    items_success: int = 0
    items_failed: int = 0
    items_new: int = 0
    items_existing: int = 0
    pages_requested: int = 0
    early_stopped: bool = False


class JobService:
    """Service for sync job lifecycle management.

    Attributes:
        db: SQLAlchemy session for database operations.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    # =========================================================================
    # Job CRUD Operations
    # =========================================================================

    def start_job(
        self,
        platform: str,
        sync_mode: SyncMode,
        triggered_by: TriggerType = TriggerType.manual,
        credential_id: str | None = None,
        auth_source: str | None = None,
    ) -> SyncJobLog:
        """Create a job in the running state.

        Args:
            platform: Platform identifier.
            sync_mode: Full or incremental.
            triggered_by: Manual (CLI one-shot) or scheduled.
            credential_id: Stored credential in use, if any.
            auth_source: 'credential' or 'environment'.

        Returns:
            The created SyncJobLog.
        """
        job = SyncJobLog(
            platform=platform,
            status=SyncJobStatus.running.value,
            sync_mode=sync_mode.value,
            triggered_by=triggered_by.value,
            credential_id=credential_id,
            auth_source=auth_source,
            started_at=_utc_now().isoformat(),
        )
        self.db.add(job)
        self.db.commit()
        self.db.refresh(job)
        logger.info("[%s] started %s sync job %s", platform, sync_mode.value, job.id)
        return job

    def get_job(self, job_id: str) -> SyncJobLog | None:
        """Get a job by its ID, or None if it does not exist."""
        return self.db.query(SyncJobLog).filter(SyncJobLog.id == job_id).first()

    def list_jobs(
        self,
        platform: str | None = None,
        status: SyncJobStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[SyncJobLog]:
        """List jobs with optional filtering and pagination.

        Args:
            platform: Filter by platform (optional).
            status: Filter by job status (optional).
            limit: Maximum number of jobs to return (default 50).
            offset: Number of jobs to skip for pagination (default 0).

        Returns:
            Jobs matching the criteria, newest first.
        """
        query = self.db.query(SyncJobLog)
        if platform is not None:
            query = query.filter(SyncJobLog.platform == platform)
        if status is not None:
            query = query.filter(SyncJobLog.status == status.value)
        query = query.order_by(SyncJobLog.started_at.desc())
        query = query.limit(limit).offset(offset)
        return query.all()

    # =========================================================================
    # State Machine Operations
    # =========================================================================

    def can_transition(self, current: SyncJobStatus, target: SyncJobStatus) -> bool:
        """Check if a state transition is valid."""
        return target in VALID_TRANSITIONS.get(current, [])

    def complete_job(
        self,
        job_id: str,
        status: SyncJobStatus,
        counts: JobCounts,
        *,
        last_cursor: str | None = None,
        last_synced_at: datetime | None = None,
        message: str | None = None,
        error_stack: str | None = None,
    ) -> SyncJobLog:
        """Move a running job to its terminal state and record results.

        Args:
            job_id: The UUID of the job to finish.
            status: success, partial or failed.
            counts: Item and pagination counters.
            last_cursor: Cursor of the last fetched page.
            last_synced_at: Newest watched_at seen (sync state high-water mark).
            message: Summary message (sanitized before storage).
            error_stack: Traceback for failures (sanitized before storage).

        Returns:
            The updated SyncJobLog.

        Raises:
            NotFoundError: If the job does not exist.
            InvalidStateTransition: If the job already finished.
        """
        job = self.get_job(job_id)
        if job is None:
            raise NotFoundError("SyncJobLog", job_id)

        current_status = SyncJobStatus(job.status)
        if not self.can_transition(current_status, status):
            raise InvalidStateTransition(
                current_state=current_status,
                attempted_state=status,
                allowed_transitions=VALID_TRANSITIONS.get(current_status, []),
            )

        completed = _utc_now()
        job.status = status.value
        job.completed_at = completed.isoformat()
        started = datetime.fromisoformat(job.started_at)
        job.duration_ms = max(int((completed - started).total_seconds() * 1000), 0)

        job.items_total = counts.items_total
        job.items_success = counts.items_success
        job.items_failed = counts.items_failed
        job.items_new = counts.items_new
        job.items_existing = counts.items_existing
        job.pages_requested = counts.pages_requested
        job.early_stopped = counts.early_stopped

        job.last_cursor = last_cursor
        job.last_synced_at = last_synced_at.isoformat() if last_synced_at else None
        job.message = sanitize_error_message(message)
        job.error_stack = sanitize_error_message(error_stack, max_length=8000)

        self.db.commit()
        self.db.refresh(job)
        logger.info(
            "[%s] job %s finished %s: %s", job.platform, job.id, status.value, job.message
        )
        return job

    def fail_job(
        self,
        job_id: str,
        message: str,
        *,
        error_stack: str | None = None,
        counts: JobCounts | None = None,
    ) -> SyncJobLog:
        """Finish a job as failed. Failed jobs never carry sync state."""
        return self.complete_job(
            job_id,
            SyncJobStatus.failed,
            counts or JobCounts(),
            message=message,
            error_stack=error_stack,
        )

    # =========================================================================
    # Recovery and Reporting
    # =========================================================================

    def list_running_jobs(self, platform: str | None = None) -> list[SyncJobLog]:
        """Return jobs still in the running state, oldest first."""
        query = self.db.query(SyncJobLog).filter(
            SyncJobLog.status == SyncJobStatus.running.value
        )
        if platform is not None:
            query = query.filter(SyncJobLog.platform == platform)
        return query.order_by(SyncJobLog.started_at.asc()).all()

    def get_stats(self, platform: str | None = None) -> dict[str, Any]:
        """Aggregate job outcomes for reporting.

        Returns:
            Dict with total/success/partial/failed/running counts,
            success_rate (0-100, success+partial over finished jobs),
            avg_duration_ms over finished jobs and items_new_total.
        """
        query = self.db.query(SyncJobLog.status, func.count(SyncJobLog.id))
        if platform is not None:
            query = query.filter(SyncJobLog.platform == platform)
        by_status = dict(query.group_by(SyncJobLog.status).all())

        finished_query = self.db.query(
            func.avg(SyncJobLog.duration_ms), func.sum(SyncJobLog.items_new)
        ).filter(SyncJobLog.status != SyncJobStatus.running.value)
        if platform is not None:
            finished_query = finished_query.filter(SyncJobLog.platform == platform)
        avg_duration, items_new_total = finished_query.one()

        success = by_status.get(SyncJobStatus.success.value, 0)
        partial = by_status.get(SyncJobStatus.partial.value, 0)
        failed = by_status.get(SyncJobStatus.failed.value, 0)
        running = by_status.get(SyncJobStatus.running.value, 0)
        finished = success + partial + failed

        return {
            "total": finished + running,
            "success": success,
            "partial": partial,
            "failed": failed,
            "running": running,
            "success_rate": round((success + partial) / finished * 100, 1) if finished else 0.0,
            "avg_duration_ms": int(avg_duration) if avg_duration is not None else None,
            "items_new_total": int(items_new_total or 0),
        }
