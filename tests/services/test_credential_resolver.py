"""Tests for platform auth resolution (stored credentials, then environment)."""

import logging

import pytest

from src.services.credential_resolver import (
    SOURCE_CREDENTIAL,
    SOURCE_ENVIRONMENT,
    ResolvedAuth,
    resolve_from_environment,
    resolve_platform_auths,
)
from src.services.credential_service import CredentialService
from src.services.credential_vault import CredentialVault, KeyConfigError


class TestResolveFromEnvironment:
    """Per-platform environment variable resolution."""

    def test_bilibili_builds_cookie(self):
        auth = resolve_from_environment(
            "bilibili",
            {"BILIBILI_SESSDATA": "sess", "BILIBILI_BILI_JCT": "jct", "BILIBILI_BUVID3": ""},
        )
        assert auth.source == SOURCE_ENVIRONMENT
        assert auth.secret == "SESSDATA=sess; bili_jct=jct"

    def test_bilibili_requires_sessdata(self):
        assert resolve_from_environment("bilibili", {"BILIBILI_BILI_JCT": "jct"}) is None

    def test_douban_cookie_optional(self):
        auth = resolve_from_environment("douban", {"DOUBAN_USER_ID": "ahbei"})
        assert auth.secret is None
        assert auth.metadata == {"userId": "ahbei"}

    def test_steam_needs_both(self):
        assert resolve_from_environment("steam", {"STEAM_API_KEY": "k"}) is None
        auth = resolve_from_environment("steam", {"STEAM_API_KEY": "k", "STEAM_ID": "7656"})
        assert auth.secret == "k"
        assert auth.metadata == {"steamId": "7656"}

    def test_unknown_platform(self):
        assert resolve_from_environment("netflix", {}) is None


class TestResolvePlatformAuths:
    """Stored credentials take precedence over the environment."""

    def test_stored_credentials_first(self, db_session, vault):
        service = CredentialService(db=db_session, vault=vault)
        first = service.create_credential("bilibili", "SESSDATA=one")
        second = service.create_credential("bilibili", "SESSDATA=two")

        resolution = resolve_platform_auths(
            "bilibili", db=db_session, vault=vault,
            environ={"BILIBILI_SESSDATA": "from-env"},
        )

        assert [a.credential_id for a in resolution.auths] == [first.id, second.id]
        assert [a.secret for a in resolution.auths] == ["SESSDATA=one", "SESSDATA=two"]
        assert all(a.source == SOURCE_CREDENTIAL for a in resolution.auths)
        assert resolution.rejected == []

    def test_invalid_credentials_skipped(self, db_session, vault):
        service = CredentialService(db=db_session, vault=vault)
        credential = service.create_credential("bilibili", "SESSDATA=one")
        credential.is_valid = False
        db_session.commit()

        resolution = resolve_platform_auths(
            "bilibili", db=db_session, vault=vault, environ={"BILIBILI_SESSDATA": "env"}
        )

        assert len(resolution.auths) == 1
        assert resolution.auths[0].source == SOURCE_ENVIRONMENT

    def test_undecryptable_credential_rejected(self, db_session, vault):
        service = CredentialService(db=db_session, vault=vault)
        credential = service.create_credential("bilibili", "SESSDATA=one")
        other_vault = CredentialVault(key_hex="cd" * 32)

        resolution = resolve_platform_auths(
            "bilibili", db=db_session, vault=other_vault, environ={}
        )

        assert resolution.auths == []
        assert resolution.rejected[0][0] == credential.id

    def test_missing_key_propagates(self, db_session, vault):
        CredentialService(db=db_session, vault=vault).create_credential("bilibili", "SESSDATA=a")
        keyless = CredentialVault(env_var="MEDIASYNC_TEST_UNSET_KEY")

        with pytest.raises(KeyConfigError):
            resolve_platform_auths("bilibili", db=db_session, vault=keyless, environ={})

    def test_nothing_configured(self, db_session, vault):
        resolution = resolve_platform_auths("steam", db=db_session, vault=vault, environ={})
        assert resolution.auths == []
        assert resolution.rejected == []

    def test_environment_fallback_warns_every_time(self, db_session, vault, caplog):
        """Each sweep that falls back to the environment says so."""
        environ = {"STEAM_API_KEY": "KEY", "STEAM_ID": "76561198000000000"}

        with caplog.at_level(logging.WARNING, logger="src.services.credential_resolver"):
            for _ in range(2):
                resolve_platform_auths("steam", db=db_session, vault=vault, environ=environ)

        warnings = [r for r in caplog.records if "using environment variables" in r.getMessage()]
        assert len(warnings) == 2
        assert all("[steam]" in r.getMessage() for r in warnings)


class TestResolvedAuth:
    """Provenance labels."""

    def test_label_for_credential(self):
        auth = ResolvedAuth(
            platform="steam", source=SOURCE_CREDENTIAL, credential_id="abcdef0123456789"
        )
        assert auth.label == "credential:abcdef01"

    def test_label_for_environment(self):
        assert ResolvedAuth(platform="steam", source=SOURCE_ENVIRONMENT).label == "environment"

    def test_secret_hidden_from_repr(self):
        auth = ResolvedAuth(platform="steam", source=SOURCE_ENVIRONMENT, secret="hunter2")
        assert "hunter2" not in repr(auth)
