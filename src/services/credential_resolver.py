"""Platform auth resolution with explicit provenance.

Resolution order per platform:
    1. Valid stored credentials (decrypted through the vault), oldest first
    2. Environment variables, only when no stored credential is usable

Every resolved value is tagged with where it came from, so job logs and
CLI output can tell "stored credential abc123" apart from "environment".
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from src.db.models import Platform
from src.services.credential_service import CredentialService
from src.services.credential_vault import CredentialDecryptionError, CredentialVault

logger = logging.getLogger(__name__)

SOURCE_CREDENTIAL = "credential"
SOURCE_ENVIRONMENT = "environment"


@dataclass(frozen=True)
class ResolvedAuth:
    """Auth material plus its provenance."""

    platform: str
    source: str
    secret: str | None = field(default=None, repr=False)
    metadata: dict[str, Any] = field(default_factory=dict)
    credential_id: str | None = None

    @property
    def label(self) -> str:
        if self.credential_id:
            return f"{self.source}:{self.credential_id[:8]}"
        return self.source


@dataclass
class PlatformResolution:
    """Everything found for one platform.

    Attributes:
        auths: Usable auth material, in the order it should be tried.
        rejected: (credential_id, reason) for stored credentials that
            could not be decrypted.
    """

    platform: str
    auths: list[ResolvedAuth] = field(default_factory=list)
    rejected: list[tuple[str, str]] = field(default_factory=list)


def _bilibili_from_env(environ: Mapping[str, str]) -> ResolvedAuth | None:
    sessdata = environ.get("BILIBILI_SESSDATA", "").strip()
    if not sessdata:
        return None
    parts = [f"SESSDATA={sessdata}"]
    for name, var in (("bili_jct", "BILIBILI_BILI_JCT"), ("buvid3", "BILIBILI_BUVID3")):
        value = environ.get(var, "").strip()
        if value:
            parts.append(f"{name}={value}")
    return ResolvedAuth(
        platform=Platform.bilibili.value,
        source=SOURCE_ENVIRONMENT,
        secret="; ".join(parts),
    )


def _douban_from_env(environ: Mapping[str, str]) -> ResolvedAuth | None:
    user_id = environ.get("DOUBAN_USER_ID", "").strip()
    if not user_id:
        return None
    return ResolvedAuth(
        platform=Platform.douban.value,
        source=SOURCE_ENVIRONMENT,
        secret=environ.get("DOUBAN_COOKIE", "").strip() or None,
        metadata={"userId": user_id},
    )


def _steam_from_env(environ: Mapping[str, str]) -> ResolvedAuth | None:
    api_key = environ.get("STEAM_API_KEY", "").strip()
    steam_id = environ.get("STEAM_ID", "").strip()
    if not api_key or not steam_id:
        return None
    return ResolvedAuth(
        platform=Platform.steam.value,
        source=SOURCE_ENVIRONMENT,
        secret=api_key,
        metadata={"steamId": steam_id},
    )


_ENV_RESOLVERS = {
    Platform.bilibili.value: _bilibili_from_env,
    Platform.douban.value: _douban_from_env,
    Platform.steam.value: _steam_from_env,
}


def resolve_from_environment(
    platform: str, environ: Mapping[str, str] | None = None
) -> ResolvedAuth | None:
    """Build auth for a platform from its environment variables, if all are set."""
    resolver = _ENV_RESOLVERS.get(platform)
    if resolver is None:
        return None
    return resolver(os.environ if environ is None else environ)


def resolve_platform_auths(
    platform: str,
    *,
    db: Session,
    vault: CredentialVault,
    environ: Mapping[str, str] | None = None,
) -> PlatformResolution:
    """Resolve every usable auth for a platform, stored credentials first.

    A stored credential that fails to decrypt (tampered value or wrong
    key) is reported in ``rejected`` and skipped. A missing or malformed
    key is a setup error and propagates.

    Args:
        platform: Platform identifier.
        db: SQLAlchemy session.
        vault: Vault for decrypting stored secrets.
        environ: Environment mapping (defaults to os.environ).

    Returns:
        PlatformResolution; ``auths`` is empty when nothing is configured.

    Raises:
        KeyConfigError: If the encryption key is missing or malformed.
    """
    resolution = PlatformResolution(platform=platform)
    service = CredentialService(db=db, vault=vault)

    for credential in service.list_credentials(platform=platform, valid_only=True):
        try:
            secret = service.decrypt_secret(credential)
        except CredentialDecryptionError as e:
            logger.error(
                "[%s] stored credential %s could not be decrypted: %s",
                platform, credential.id, e,
            )
            resolution.rejected.append((credential.id, str(e)))
            continue
        resolution.auths.append(
            ResolvedAuth(
                platform=platform,
                source=SOURCE_CREDENTIAL,
                secret=secret,
                metadata=service.get_metadata(credential),
                credential_id=credential.id,
            )
        )

    if resolution.auths:
        logger.info(
            "[%s] using %d stored credential(s)", platform, len(resolution.auths)
        )
        return resolution

    env_auth = resolve_from_environment(platform, environ)
    if env_auth is not None:
        logger.warning(
            "[%s] no stored credential available; using environment variables. "
            "Store one with 'mediasync credentials add' to keep it encrypted at rest.",
            platform,
        )
        resolution.auths.append(env_auth)
    else:
        logger.info("[%s] no credentials configured; skipping", platform)

    return resolution
