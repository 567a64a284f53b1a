"""Recurring sweep scheduling on top of APScheduler's asyncio scheduler.

One interval job runs the sweep. max_instances=1 and coalesce=True mean a
slow sweep is never overlapped by the next tick, and ticks missed while
the machine slept collapse into a single run.
"""

import asyncio
import contextlib
import logging
import signal
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "sync_all_platforms"


def build_scheduler(
    sweep: Callable[[], Awaitable[Any]],
    interval_hours: float,
    run_on_start: bool = True,
) -> AsyncIOScheduler:
    """Create (but do not start) a scheduler with the sweep job registered."""
    scheduler = AsyncIOScheduler(timezone="UTC")
    job_kwargs: dict[str, Any] = {
        "trigger": IntervalTrigger(hours=interval_hours),
        "id": SWEEP_JOB_ID,
        "name": "Sync all platforms",
        "max_instances": 1,
        "coalesce": True,
        "misfire_grace_time": 600,
    }
    if run_on_start:
        job_kwargs["next_run_time"] = datetime.now(UTC)
    scheduler.add_job(sweep, **job_kwargs)
    return scheduler


async def serve(
    sweep: Callable[[], Awaitable[Any]],
    interval_hours: float,
    run_on_start: bool = True,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Run the scheduler until SIGINT/SIGTERM or stop_event is set."""
    stop_event = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on Windows event loops
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    scheduler = build_scheduler(sweep, interval_hours, run_on_start)
    scheduler.start()
    logger.info("Scheduler started: sweep every %g hour(s)", interval_hours)
    try:
        await stop_event.wait()
    finally:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
