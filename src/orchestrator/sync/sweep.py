"""Sync every configured platform once.

Auth for all platforms is resolved up front, so a missing encryption key
fails the sweep before any network traffic. Platforms then run
concurrently; within one platform, stored credentials are tried in order
until one run succeeds. A failing platform never aborts the others.
"""

import asyncio
import logging
import traceback
from collections.abc import Iterable, Mapping

from src.db.connection import SessionFactory, get_db_context
from src.db.models import SyncJobStatus, TriggerType
from src.errors.domain import ValidationError
from src.orchestrator.sync.executor import SyncOrchestrator
from src.orchestrator.sync.models import SyncResult
from src.services.credential_resolver import (
    PlatformResolution,
    ResolvedAuth,
    resolve_platform_auths,
)
from src.services.credential_service import CredentialService
from src.services.credential_vault import CredentialVault
from src.services.errors import ConcurrentSyncError
from src.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)

STATUS_SKIPPED = "skipped"


async def sync_all_platforms(
    orchestrator: SyncOrchestrator,
    session_factory: SessionFactory,
    vault: CredentialVault,
    *,
    platforms: Iterable[str] | None = None,
    triggered_by: TriggerType = TriggerType.scheduled,
    environ: Mapping[str, str] | None = None,
) -> list[SyncResult]:
    """Run one sync per configured platform.

    Args:
        orchestrator: Orchestrator holding the platform adapters.
        session_factory: Session factory for credential reads and updates.
        vault: Vault for decrypting stored credentials.
        platforms: Platforms to sync (defaults to every registered adapter).
        triggered_by: Manual (one-shot) or scheduled.
        environ: Environment for fallback auth (defaults to os.environ).

    Returns:
        One SyncResult per attempted run, plus failed results for stored
        credentials that could not be used. Platforms with no auth at all
        produce no result.

    Raises:
        KeyConfigError: If the encryption key is missing or malformed.
    """
    selected = list(platforms) if platforms is not None else orchestrator.platforms

    resolutions: list[PlatformResolution] = []
    with get_db_context(session_factory) as db:
        for platform in selected:
            resolutions.append(
                resolve_platform_auths(platform, db=db, vault=vault, environ=environ)
            )

    outcomes = await asyncio.gather(
        *(
            _sync_platform(orchestrator, session_factory, vault, resolution, triggered_by)
            for resolution in resolutions
        ),
        return_exceptions=True,
    )

    results: list[SyncResult] = []
    for resolution, outcome in zip(resolutions, outcomes):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            logger.error(
                "[%s] platform sync crashed: %s",
                resolution.platform, outcome,
                exc_info=(type(outcome), outcome, outcome.__traceback__),
            )
            results.append(
                SyncResult(
                    platform=resolution.platform,
                    success=False,
                    status=SyncJobStatus.failed.value,
                    error=sanitize_error_message(f"{type(outcome).__name__}: {outcome}"),
                    error_stack=sanitize_error_message(
                        "".join(traceback.format_exception(outcome)), max_length=8000
                    ),
                )
            )
        else:
            results.extend(outcome)

    succeeded = sum(1 for r in results if r.success)
    logger.info(
        "Sweep finished: %d run(s), %d succeeded, %d new items",
        len(results), succeeded, sum(r.items_new for r in results),
    )
    return results


async def _sync_platform(
    orchestrator: SyncOrchestrator,
    session_factory: SessionFactory,
    vault: CredentialVault,
    resolution: PlatformResolution,
    triggered_by: TriggerType,
) -> list[SyncResult]:
    platform = resolution.platform
    results = []

    for credential_id, reason in resolution.rejected:
        results.append(
            SyncResult(
                platform=platform,
                success=False,
                status=SyncJobStatus.failed.value,
                auth_source=f"credential:{credential_id[:8]}",
                error=sanitize_error_message(f"Credential could not be decrypted: {reason}"),
            )
        )
        _record_usage(session_factory, vault, credential_id, success=False)

    for auth in resolution.auths:
        result = await _run_with_auth(orchestrator, auth, triggered_by)
        results.append(result)
        if auth.credential_id and result.status != STATUS_SKIPPED:
            _record_usage(session_factory, vault, auth.credential_id, success=result.success)
        if result.success or result.status == STATUS_SKIPPED:
            break

    return results


async def _run_with_auth(
    orchestrator: SyncOrchestrator,
    auth: ResolvedAuth,
    triggered_by: TriggerType,
) -> SyncResult:
    adapter = orchestrator.adapter(auth.platform)
    try:
        platform_auth = adapter.build_auth(auth.secret, auth.metadata)
    except ValidationError as e:
        logger.error("[%s] unusable auth from %s: %s", auth.platform, auth.label, e)
        return SyncResult(
            platform=auth.platform,
            success=False,
            status=SyncJobStatus.failed.value,
            auth_source=auth.label,
            error=str(e),
        )

    try:
        return await orchestrator.run(
            auth.platform,
            platform_auth,
            triggered_by=triggered_by,
            credential_id=auth.credential_id,
            auth_source=auth.label,
        )
    except ConcurrentSyncError as e:
        logger.warning("[%s] %s; skipping", auth.platform, e)
        return SyncResult(
            platform=auth.platform,
            success=False,
            status=STATUS_SKIPPED,
            auth_source=auth.label,
            error=str(e),
        )


def _record_usage(
    session_factory: SessionFactory,
    vault: CredentialVault,
    credential_id: str,
    success: bool,
) -> None:
    with get_db_context(session_factory) as db:
        CredentialService(db=db, vault=vault).record_usage(credential_id, success=success)
