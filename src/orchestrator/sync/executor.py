"""Sync execution engine: one platform run from mode decision to job log.

Run lifecycle:
    FULL_SYNC_DECIDED -> PAGINATING -> EARLY_STOPPED | EXHAUSTED | ERRORED -> PERSISTED

The fetch phase is the only part that suspends (network and rate-limit
sleeps) and runs under the overall deadline. Persistence is synchronous,
item by item, so one bad record costs one item rather than the run.
"""

import asyncio
import logging
import time
import traceback
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime, timedelta

from sqlalchemy.orm import Session

from src.db.connection import SessionFactory
from src.db.models import SyncJobLog, SyncJobStatus, SyncMode, TriggerType
from src.errors.domain import ValidationError
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
from src.orchestrator.sync.recovery import DEFAULT_STALE_AFTER, recover_stale_jobs
from src.platforms.clients.base import PlatformAdapter
from src.platforms.models import PlatformAuth, WatchItem
from src.services.errors import (
    AdapterFetchError,
    ConcurrentSyncError,
    SyncTimeoutError,
)
from src.services.job_service import JobCounts, JobService
from src.services.media_store import MediaStore
from src.services.sync_state_store import SyncState, SyncStateStore

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class SyncOrchestrator:
    """Runs incremental/full syncs for registered platforms.

    One orchestrator instance owns one in-process lock per platform; a
    second run for a platform that is already syncing is rejected with
    ConcurrentSyncError instead of queueing. The database running-job
    guard covers other processes sharing the same store.

    Args:
        session_factory: Zero-arg callable returning a new Session.
        adapters: Platform clients keyed by platform name.
        policy: Pagination tunables.
        sleep: Awaitable sleep used for rate limiting (injectable for tests).
        clock: Returns the current timezone-aware time.
        stale_after: Age after which a running job is treated as crashed.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        adapters: Mapping[str, PlatformAdapter],
        policy: SyncPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utc_now,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
    ) -> None:
        self._session_factory = session_factory
        self._adapters = dict(adapters)
        self._policy = policy or SyncPolicy()
        self._sleep = sleep
        self._clock = clock
        self._stale_after = stale_after
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def platforms(self) -> list[str]:
        """Platforms with a registered adapter."""
        return list(self._adapters)

    @property
    def policy(self) -> SyncPolicy:
        return self._policy

    def adapter(self, platform: str) -> PlatformAdapter:
        """Return the adapter for a platform.

        Raises:
            ValidationError: If no adapter is registered.
        """
        adapter = self._adapters.get(platform)
        if adapter is None:
            raise ValidationError(f"No adapter registered for platform '{platform}'")
        return adapter

    def is_running(self, platform: str) -> bool:
        lock = self._locks.get(platform)
        return lock is not None and lock.locked()

    async def run(
        self,
        platform: str,
        auth: PlatformAuth,
        *,
        triggered_by: TriggerType = TriggerType.manual,
        credential_id: str | None = None,
        auth_source: str | None = None,
    ) -> SyncResult:
        """Run one sync for a platform.

        Args:
            platform: Platform identifier.
            auth: Validated auth material from the adapter's build_auth().
            triggered_by: Manual or scheduled.
            credential_id: Stored credential in use, if any.
            auth_source: Provenance label recorded on the job.

        Returns:
            SyncResult for the run. Fetch errors, timeouts and persistence
            failures are reported through the result and the job log.

        Raises:
            ConcurrentSyncError: If a run for the platform is in progress.
            ValidationError: If no adapter is registered for the platform.
        """
        adapter = self.adapter(platform)
        lock = self._locks.setdefault(platform, asyncio.Lock())
        if lock.locked():
            raise ConcurrentSyncError(platform)

        async with lock:
            db = self._session_factory()
            try:
                return await self._run_locked(
                    db, adapter, auth, triggered_by, credential_id, auth_source
                )
            finally:
                db.close()

    async def _run_locked(
        self,
        db: Session,
        adapter: PlatformAdapter,
        auth: PlatformAuth,
        triggered_by: TriggerType,
        credential_id: str | None,
        auth_source: str | None,
    ) -> SyncResult:
        platform = adapter.platform_name
        started = time.monotonic()
        jobs = JobService(db)
        state_store = SyncStateStore(db)

        recover_stale_jobs(
            jobs, platform=platform, stale_after=self._stale_after, now=self._clock()
        )
        if state_store.has_running_job(platform):
            raise ConcurrentSyncError(platform)

        # FULL_SYNC_DECIDED
        state = state_store.get_last_successful_sync(platform)
        full = should_do_full_sync(state, now=self._clock(), policy=self._policy)
        mode = SyncMode.full if full else SyncMode.incremental
        job = jobs.start_job(
            platform,
            mode,
            triggered_by=triggered_by,
            credential_id=credential_id,
            auth_source=auth_source,
        )
        logger.info(
            "[%s] %s sync (last success: %s, auth: %s)",
            platform, mode.value,
            state.completed_at.isoformat() if state and state.completed_at else "never",
            auth_source or "unspecified",
        )

        # PAGINATING
        timeout = self._policy.run_timeout_seconds
        try:
            outcome = await asyncio.wait_for(
                self._paginate(adapter, auth, mode, state, state_store),
                timeout=timeout,
            )
        except TimeoutError:
            error = SyncTimeoutError(platform, timeout)
            logger.error("[%s] %s", platform, error)
            job = jobs.fail_job(job.id, str(error))
            return self._to_result(job, started, error=str(error))
        except AdapterFetchError as e:
            logger.error("[%s] first page fetch failed: %s", platform, e)
            job = jobs.fail_job(
                job.id,
                f"First page fetch failed: {e}",
                error_stack=traceback.format_exc(),
                counts=JobCounts(pages_requested=1),
            )
            return self._to_result(job, started, error=str(e))
        except Exception as e:
            logger.exception("[%s] sync aborted by unexpected error", platform)
            job = jobs.fail_job(
                job.id,
                f"{type(e).__name__}: {e}",
                error_stack=traceback.format_exc(),
            )
            return self._to_result(job, started, error=f"{type(e).__name__}: {e}")

        # PERSISTED
        counts = self._persist(db, platform, outcome)
        status = SyncJobStatus.success if counts.items_failed == 0 else SyncJobStatus.partial
        last_synced_at = outcome.newest_watched_at()
        if last_synced_at is None and state is not None:
            last_synced_at = state.last_synced_at
        now = self._clock()
        if last_synced_at is not None and last_synced_at > now:
            # A future mark would filter out every item of the next incremental run
            logger.warning(
                "[%s] newest item is dated in the future (%s); high-water mark capped at now",
                platform, last_synced_at.isoformat(),
            )
            last_synced_at = now

        message = (
            f"Synced {counts.items_new} new items "
            f"({counts.items_existing} existing, {counts.items_failed} failed)"
        )
        if outcome.early_stopped:
            message += f"; early stop after {outcome.pages_requested} pages"
        if outcome.fetch_error:
            message += f"; stopped after page error: {outcome.fetch_error}"

        job = jobs.complete_job(
            job.id,
            status,
            counts,
            last_cursor=outcome.last_cursor,
            last_synced_at=last_synced_at,
            message=message,
        )
        return self._to_result(job, started)

    async def _paginate(
        self,
        adapter: PlatformAdapter,
        auth: PlatformAuth,
        mode: SyncMode,
        state: SyncState | None,
        state_store: SyncStateStore,
    ) -> PaginationOutcome:
        """Fetch pages until early stop, exhaustion, page cap or a page error.

        Raises:
            AdapterFetchError: If the very first page fails.
        """
        platform = adapter.platform_name
        outcome = PaginationOutcome()
        max_pages = self._policy.max_pages(mode)
        start = incremental_start(state, self._policy) if mode == SyncMode.incremental else None
        known_pages = 0
        cursor: str | None = None

        for page in range(1, max_pages + 1):
            outcome.pages_requested += 1
            try:
                fetched = await adapter.fetch_page(auth, cursor)
            except AdapterFetchError as e:
                if outcome.pages_retrieved == 0:
                    raise
                logger.warning(
                    "[%s] page %d failed, keeping %d accumulated items: %s",
                    platform, page, len(outcome.items), e,
                )
                outcome.stop_reason = PaginationStop.ERRORED
                outcome.fetch_error = str(e)
                break

            outcome.pages_retrieved += 1
            if fetched.next_cursor is not None:
                outcome.last_cursor = fetched.next_cursor
            if not fetched.items:
                logger.info("[%s] no more items at page %d", platform, page)
                outcome.stop_reason = PaginationStop.EXHAUSTED
                break

            page_items = self._normalize_page(adapter, fetched.items, outcome)
            if start is not None:
                relevant = [item for item in page_items if item.watched_at >= start]
                if len(relevant) < len(page_items):
                    logger.debug(
                        "[%s] page %d: %d/%d items within timeframe",
                        platform, page, len(relevant), len(page_items),
                    )
                page_items = relevant

            if mode == SyncMode.incremental and page_items:
                page_ids = {item.external_id for item in page_items}
                existing = state_store.get_existing_external_ids(platform, page_ids)
                if len(existing) == len(page_ids):
                    known_pages += 1
                    logger.info(
                        "[%s] page %d: all items exist (early stop count: %d/%d)",
                        platform, page, known_pages, self._policy.early_stop_threshold,
                    )
                else:
                    known_pages = 0

            for item in page_items:
                previous = outcome.items.get(item.external_id)
                if previous is None or item.watched_at > previous.watched_at:
                    outcome.items[item.external_id] = item

            if known_pages >= self._policy.early_stop_threshold:
                logger.info("[%s] early stop triggered after %d pages", platform, page)
                outcome.stop_reason = PaginationStop.EARLY_STOPPED
                break
            if fetched.next_cursor is None:
                outcome.stop_reason = PaginationStop.EXHAUSTED
                break

            cursor = fetched.next_cursor
            if page < max_pages:
                await self._sleep(adapter.rate_limit_seconds)
        else:
            outcome.stop_reason = PaginationStop.MAX_PAGES

        logger.info(
            "[%s] fetched %d items from %d pages (mode: %s, stop: %s)",
            platform, len(outcome.items), outcome.pages_requested,
            mode.value, outcome.stop_reason.value,
        )
        return outcome

    def _normalize_page(
        self,
        adapter: PlatformAdapter,
        raw_items: list[dict],
        outcome: PaginationOutcome,
    ) -> list[WatchItem]:
        items = []
        for raw in raw_items:
            try:
                items.append(adapter.normalize(raw))
            except Exception as e:
                outcome.normalize_failures += 1
                logger.warning(
                    "[%s] failed to normalize record: %s: %s",
                    adapter.platform_name, type(e).__name__, e,
                )
        return items

    def _persist(self, db: Session, platform: str, outcome: PaginationOutcome) -> JobCounts:
        """Upsert every accumulated item; failures are counted, not raised."""
        store = MediaStore(db)
        counts = JobCounts(
            items_total=len(outcome.items) + outcome.normalize_failures,
            items_failed=outcome.normalize_failures,
            pages_requested=outcome.pages_requested,
            early_stopped=outcome.early_stopped,
        )

        for item in outcome.items.values():
            try:
                _, created = store.upsert(item)
            except Exception as e:
                db.rollback()
                counts.items_failed += 1
                logger.warning(
                    "[%s] failed to save item %s: %s: %s",
                    platform, item.external_id, type(e).__name__, e,
                )
                continue
            counts.items_success += 1
            if created:
                counts.items_new += 1
            else:
                counts.items_existing += 1

        return counts

    def _to_result(
        self, job: SyncJobLog, started: float, error: str | None = None
    ) -> SyncResult:
        return SyncResult(
            platform=job.platform,
            success=job.status in (SyncJobStatus.success.value, SyncJobStatus.partial.value),
            status=job.status,
            job_id=job.id,
            sync_mode=job.sync_mode,
            auth_source=job.auth_source,
            items_total=job.items_total,
            items_success=job.items_success,
            items_failed=job.items_failed,
            items_new=job.items_new,
            items_existing=job.items_existing,
            pages_requested=job.pages_requested,
            early_stopped=job.early_stopped,
            duration_ms=int((time.monotonic() - started) * 1000),
            error=error,
            error_stack=job.error_stack,
        )
