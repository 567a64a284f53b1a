"""Service layer for MediaSync.

Provides the credential vault and the database-backed services used by
the sync orchestrator: credentials, job log, sync state and media store.
Import service classes from their modules; only the vault is re-exported
here since it has no database dependencies.
"""

from src.services.credential_vault import (
    AuthenticationError,
    CredentialVault,
    EmptyInputError,
    FormatError,
    KeyConfigError,
    VaultError,
    validate_encryption_setup,
)

__all__ = [
    "CredentialVault",
    "validate_encryption_setup",
    "VaultError",
    "EmptyInputError",
    "KeyConfigError",
    "FormatError",
    "AuthenticationError",
]
