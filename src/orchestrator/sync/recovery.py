"""Crash recovery for interrupted sync jobs.

A job left in the running state means the process died mid-run (normal
completion always reaches a terminal state). Such a job would block its
platform forever through the running-job guard, so jobs older than the
stale threshold are failed with an explanatory message.
"""

import logging
from datetime import UTC, datetime, timedelta

from src.services.job_service import JobService

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER = timedelta(minutes=30)


def recover_stale_jobs(
    job_service: JobService,
    platform: str | None = None,
    stale_after: timedelta = DEFAULT_STALE_AFTER,
    now: datetime | None = None,
) -> list[str]:
    """Fail running jobs that started longer ago than stale_after.

    Args:
        job_service: JobService for database access.
        platform: Restrict to one platform (all platforms when None).
        stale_after: Age after which a running job counts as interrupted.
        now: Current time (timezone-aware); defaults to UTC now.

    Returns:
        IDs of the jobs that were failed.
    """
    now = now or datetime.now(UTC)
    cutoff = now - stale_after
    recovered = []

    for job in job_service.list_running_jobs(platform=platform):
        started = datetime.fromisoformat(job.started_at)
        if started > cutoff:
            continue
        minutes = int((now - started).total_seconds() // 60)
        job_service.fail_job(
            job.id,
            f"Interrupted: job was still running after {minutes} minutes "
            "and was marked failed by recovery",
        )
        logger.warning(
            "[%s] recovered interrupted job %s (started %s)",
            job.platform, job.id, job.started_at,
        )
        recovered.append(job.id)

    return recovered
