"""Tests for sync_all_platforms: auth resolution, fallbacks and isolation."""

import pytest

from src.db.connection import get_db_context
from src.db.models import SyncMode, TriggerType
from src.errors.domain import ValidationError
from src.orchestrator.sync.executor import SyncOrchestrator
from src.orchestrator.sync.sweep import STATUS_SKIPPED, sync_all_platforms
from src.services.credential_service import CredentialService
from src.services.credential_vault import CredentialVault, KeyConfigError
from src.services.job_service import JobService
from tests.helpers import FakePlatformAdapter, make_record, recent

BILI_ENV = {"BILIBILI_SESSDATA": "from-env"}


@pytest.fixture
def bilibili():
    return FakePlatformAdapter(pages=[[make_record("BV1", recent(5))]], name="bilibili")


@pytest.fixture
def steam():
    return FakePlatformAdapter(pages=[[make_record("570", recent(5))]], name="steam")


@pytest.fixture
def orchestrator(session_factory, bilibili, steam, no_sleep):
    return SyncOrchestrator(
        session_factory=session_factory,
        adapters={"bilibili": bilibili, "steam": steam},
        sleep=no_sleep,
    )


def _store(session_factory, vault, platform: str, secret: str, **metadata) -> str:
    with get_db_context(session_factory) as db:
        return CredentialService(db=db, vault=vault).create_credential(
            platform, secret, metadata=metadata
        ).id


def _credential(session_factory, vault, credential_id: str):
    with get_db_context(session_factory) as db:
        return CredentialService(db=db, vault=vault).get_credential(credential_id)


class TestSweep:
    """One result per attempted run; platforms are isolated."""

    @pytest.mark.asyncio
    async def test_nothing_configured(self, orchestrator, session_factory, vault):
        results = await sync_all_platforms(orchestrator, session_factory, vault, environ={})
        assert results == []

    @pytest.mark.asyncio
    async def test_environment_fallback(self, orchestrator, session_factory, vault, bilibili):
        results = await sync_all_platforms(
            orchestrator, session_factory, vault, environ=BILI_ENV,
            triggered_by=TriggerType.manual,
        )

        assert len(results) == 1
        assert results[0].platform == "bilibili"
        assert results[0].status == "success"
        assert results[0].auth_source == "environment"
        with get_db_context(session_factory) as db:
            job = JobService(db).get_job(results[0].job_id)
            assert job.triggered_by == "manual"

    @pytest.mark.asyncio
    async def test_stored_credential_usage_recorded(self, orchestrator, session_factory, vault):
        credential_id = _store(session_factory, vault, "bilibili", "SESSDATA=stored")

        results = await sync_all_platforms(orchestrator, session_factory, vault, environ=BILI_ENV)

        assert results[0].auth_source == f"credential:{credential_id[:8]}"
        credential = _credential(session_factory, vault, credential_id)
        assert credential.usage_count == 1
        assert credential.last_validated_at is not None

    @pytest.mark.asyncio
    async def test_next_credential_tried_after_failure(
        self, orchestrator, session_factory, vault, bilibili
    ):
        first = _store(session_factory, vault, "bilibili", "SESSDATA=expired")
        second = _store(session_factory, vault, "bilibili", "SESSDATA=fresh")
        bilibili.configure_failure_on_call(1, "API error -101")

        results = await sync_all_platforms(orchestrator, session_factory, vault, environ={})

        assert [r.status for r in results] == ["failed", "success"]
        assert _credential(session_factory, vault, first).failure_count == 1
        assert _credential(session_factory, vault, second).failure_count == 0

    @pytest.mark.asyncio
    async def test_undecryptable_credential_reported(self, orchestrator, session_factory, vault):
        other = CredentialVault(key_hex="cd" * 32)
        credential_id = _store(session_factory, other, "bilibili", "SESSDATA=wrong-key")

        results = await sync_all_platforms(orchestrator, session_factory, vault, environ={})

        assert len(results) == 1
        assert results[0].status == "failed"
        assert "could not be decrypted" in results[0].error
        assert _credential(session_factory, vault, credential_id).failure_count == 1

    @pytest.mark.asyncio
    async def test_unusable_auth_is_failed_result(
        self, orchestrator, session_factory, vault, bilibili, monkeypatch
    ):
        """Auth that fails build_auth never reaches the orchestrator."""
        def rejecting_build_auth(secret, metadata):
            raise ValidationError("Bilibili cookie must contain SESSDATA")

        monkeypatch.setattr(bilibili, "build_auth", rejecting_build_auth)

        results = await sync_all_platforms(
            orchestrator, session_factory, vault, platforms=["bilibili"], environ=BILI_ENV
        )

        assert results[0].status == "failed"
        assert "SESSDATA" in results[0].error
        assert results[0].job_id is None
        assert bilibili.fetch_count == 0

    @pytest.mark.asyncio
    async def test_blank_environment_values_ignored(self, orchestrator, session_factory, vault):
        results = await sync_all_platforms(
            orchestrator, session_factory, vault,
            platforms=["bilibili"],
            environ={"BILIBILI_SESSDATA": " "},
        )
        assert results == []

    @pytest.mark.asyncio
    async def test_one_platform_crash_does_not_stop_others(
        self, orchestrator, session_factory, vault, steam, monkeypatch
    ):
        def exploding_build_auth(secret, metadata):
            raise RuntimeError("adapter bug")

        monkeypatch.setattr(steam, "build_auth", exploding_build_auth)
        _store(session_factory, vault, "steam", "KEY")

        results = await sync_all_platforms(orchestrator, session_factory, vault, environ=BILI_ENV)

        by_platform = {r.platform: r for r in results}
        assert by_platform["bilibili"].status == "success"
        assert by_platform["steam"].status == "failed"
        assert "RuntimeError" in by_platform["steam"].error

    @pytest.mark.asyncio
    async def test_running_platform_is_skipped(self, orchestrator, session_factory, vault, bilibili):
        with get_db_context(session_factory) as db:
            JobService(db).start_job("bilibili", SyncMode.full)

        results = await sync_all_platforms(orchestrator, session_factory, vault, environ=BILI_ENV)

        assert results[0].status == STATUS_SKIPPED
        assert bilibili.fetch_count == 0

    @pytest.mark.asyncio
    async def test_platform_filter(self, orchestrator, session_factory, vault, steam):
        _store(session_factory, vault, "steam", "KEY")

        results = await sync_all_platforms(
            orchestrator, session_factory, vault, platforms=["bilibili"], environ=BILI_ENV
        )

        assert [r.platform for r in results] == ["bilibili"]
        assert steam.fetch_count == 0

    @pytest.mark.asyncio
    async def test_missing_key_aborts_before_any_fetch(
        self, orchestrator, session_factory, vault, bilibili
    ):
        _store(session_factory, vault, "bilibili", "SESSDATA=stored")
        keyless = CredentialVault(env_var="MEDIASYNC_TEST_UNSET_KEY")

        with pytest.raises(KeyConfigError):
            await sync_all_platforms(orchestrator, session_factory, keyless, environ={})
        assert bilibili.fetch_count == 0
