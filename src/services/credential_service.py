"""CredentialService: CRUD, encryption and usage tracking for platform credentials.

Secrets are written through CredentialVault.safe_encrypt, so a value that
is already in vault format is stored unchanged. Rows written by older
deployments may still hold plaintext; migrate_plaintext() converts them.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from src.db.models import Credential, Platform, utc_now_iso
from src.errors.domain import NotFoundError, ValidationError
from src.platforms.clients.base import PlatformAdapter
from src.platforms.models import CredentialCheck
from src.services.credential_vault import CredentialVault, VaultError
from src.utils.redaction import redact_for_logging

logger = logging.getLogger(__name__)

VALID_CREDENTIAL_TYPES = frozenset({"cookie", "api_key", "user_id"})

# Consecutive failed runs before a credential is marked invalid
DEFAULT_MAX_FAILURES = 5


@dataclass
class MigrationStats:
    """Outcome of a plaintext-to-vault migration pass."""

    total: int = 0
    already_encrypted: int = 0
    migrated: int = 0
    failed: int = 0
    dry_run: bool = True
    errors: list[str] = field(default_factory=list)


def _deserialize_metadata(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Credential metadata is not valid JSON; ignoring it")
        return {}
    return value if isinstance(value, dict) else {}


class CredentialService:
    """Manages stored platform credentials.

    Attributes:
        db: SQLAlchemy session for database operations.
        vault: Vault used to encrypt and decrypt secrets.
    """

    def __init__(
        self,
        db: Session,
        vault: CredentialVault,
        max_failures: int = DEFAULT_MAX_FAILURES,
    ) -> None:
        self.db = db
        self.vault = vault
        self.max_failures = max_failures

    def create_credential(
        self,
        platform: str,
        secret: str,
        credential_type: str = "cookie",
        metadata: dict[str, Any] | None = None,
    ) -> Credential:
        """Encrypt and store a credential.

        Args:
            platform: Platform identifier.
            secret: Plaintext secret (or an existing vault payload).
            credential_type: 'cookie', 'api_key' or 'user_id'.
            metadata: Non-secret fields such as user IDs.

        Returns:
            The stored Credential.

        Raises:
            ValidationError: On unknown platform or credential type.
            EmptyInputError: If the secret is blank.
            KeyConfigError: If the encryption key is not configured.
        """
        if platform not in {p.value for p in Platform}:
            raise ValidationError(f"Unknown platform '{platform}'")
        if credential_type not in VALID_CREDENTIAL_TYPES:
            raise ValidationError(
                f"Unknown credential type '{credential_type}'. "
                f"Expected one of: {', '.join(sorted(VALID_CREDENTIAL_TYPES))}"
            )

        credential = Credential(
            platform=platform,
            type=credential_type,
            encrypted_value=self.vault.safe_encrypt(secret),
            metadata_json=json.dumps(metadata or {}, ensure_ascii=False),
        )
        self.db.add(credential)
        self.db.commit()
        self.db.refresh(credential)
        logger.info(
            "Stored %s credential %s for %s (metadata=%s)",
            credential_type, credential.id, platform,
            redact_for_logging(metadata or {}),
        )
        return credential

    def get_credential(self, credential_id: str) -> Credential:
        """Return a credential by ID.

        Raises:
            NotFoundError: If no such credential exists.
        """
        credential = self.db.query(Credential).filter(Credential.id == credential_id).first()
        if credential is None:
            raise NotFoundError("Credential", credential_id)
        return credential

    def list_credentials(
        self, platform: str | None = None, valid_only: bool = False
    ) -> list[Credential]:
        """List credentials, oldest first, optionally filtered."""
        query = self.db.query(Credential)
        if platform is not None:
            query = query.filter(Credential.platform == platform)
        if valid_only:
            query = query.filter(Credential.is_valid.is_(True))
        return query.order_by(Credential.created_at.asc()).all()

    def get_metadata(self, credential: Credential) -> dict[str, Any]:
        return _deserialize_metadata(credential.metadata_json)

    def decrypt_secret(self, credential: Credential) -> str:
        """Return the plaintext secret.

        Legacy plaintext rows are returned as-is with a warning; run
        migrate_plaintext() to encrypt them.

        Raises:
            KeyConfigError, AuthenticationError: From the vault.
        """
        if not self.vault.is_encrypted(credential.encrypted_value):
            logger.warning(
                "Credential %s (%s) is stored unencrypted; run 'mediasync credentials migrate'",
                credential.id, credential.platform,
            )
            return credential.encrypted_value
        return self.vault.decrypt(credential.encrypted_value)

    def record_usage(self, credential_id: str, success: bool) -> Credential:
        """Update usage counters after a sync run.

        Success resets the failure streak and stamps last_validated_at.
        Failure extends the streak and invalidates the credential once it
        reaches max_failures.
        """
        credential = self.get_credential(credential_id)
        now = utc_now_iso()
        credential.usage_count += 1
        credential.last_used_at = now
        if success:
            credential.failure_count = 0
            credential.last_validated_at = now
            credential.is_valid = True
        else:
            credential.failure_count += 1
            if credential.failure_count >= self.max_failures and credential.is_valid:
                credential.is_valid = False
                logger.warning(
                    "Credential %s (%s) marked invalid after %d consecutive failures",
                    credential.id, credential.platform, credential.failure_count,
                )
        self.db.commit()
        self.db.refresh(credential)
        return credential

    async def validate_credential(
        self, credential_id: str, adapter: PlatformAdapter
    ) -> CredentialCheck:
        """Present a stored credential to its platform and record the verdict.

        Sets is_valid and last_validated_at; an accepted credential also
        has its failure streak cleared. Incomplete auth material counts as
        a rejection without any request being made.

        Args:
            credential_id: Credential to check.
            adapter: Client for the credential's platform.

        Returns:
            The platform's verdict.

        Raises:
            NotFoundError: If no such credential exists.
            ValidationError: If the adapter serves a different platform.
            AdapterFetchError: If the platform gave no answer; nothing is
                recorded in that case.
            KeyConfigError, AuthenticationError: From the vault.
        """
        credential = self.get_credential(credential_id)
        if adapter.platform_name != credential.platform:
            raise ValidationError(
                f"Credential {credential_id} is for {credential.platform}, "
                f"not {adapter.platform_name}"
            )

        secret = self.decrypt_secret(credential)
        try:
            auth = adapter.build_auth(secret, self.get_metadata(credential))
        except ValidationError as e:
            check = CredentialCheck(is_valid=False, message=str(e))
        else:
            check = await adapter.validate(auth)

        credential.is_valid = check.is_valid
        credential.last_validated_at = utc_now_iso()
        if check.is_valid:
            credential.failure_count = 0
        self.db.commit()
        self.db.refresh(credential)

        log = logger.info if check.is_valid else logger.warning
        log(
            "Credential %s (%s) %s: %s",
            credential.id, credential.platform,
            "accepted" if check.is_valid else "rejected", check.message,
        )
        return check

    def migrate_plaintext(self, execute: bool = False) -> MigrationStats:
        """Encrypt credentials still stored as plaintext.

        Each new payload is decrypted again and compared with the original
        before it is saved, so a bad key can never replace a readable
        secret with an unreadable one.

        Args:
            execute: Write changes. When False (default) only report.

        Returns:
            MigrationStats for the pass.
        """
        stats = MigrationStats(dry_run=not execute)
        for credential in self.list_credentials():
            stats.total += 1
            if self.vault.is_encrypted(credential.encrypted_value):
                stats.already_encrypted += 1
                continue

            try:
                encrypted = self.vault.encrypt(credential.encrypted_value)
                if self.vault.decrypt(encrypted) != credential.encrypted_value:
                    raise ValueError("round-trip verification mismatch")
            except (VaultError, ValueError) as e:
                stats.failed += 1
                stats.errors.append(f"{credential.id}: {e}")
                logger.error("Failed to migrate credential %s: %s", credential.id, e)
                continue

            if execute:
                credential.encrypted_value = encrypted
                self.db.commit()
            stats.migrated += 1

        logger.info(
            "Credential migration %s: %d total, %d already encrypted, %d migrated, %d failed",
            "executed" if execute else "dry run",
            stats.total, stats.already_encrypted, stats.migrated, stats.failed,
        )
        return stats
