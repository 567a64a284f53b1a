"""AES-256-GCM credential vault for platform secrets stored at rest.

Wire format (colon-separated, each segment standard base64):

    base64(iv):base64(authTag):base64(ciphertext)

The IV and the authentication tag are both 16 bytes. The format is
byte-compatible with rows written by earlier deployments of the service,
so existing encrypted credentials decrypt unchanged.

Key source:
    CREDENTIAL_ENCRYPTION_KEY env var, exactly 64 hex characters (32 bytes).
    The key is read on every operation so rotating the variable takes
    effect without restarting the process.
"""

import base64
import binascii
import logging
import os
import re
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

KEY_ENV_VAR = "CREDENTIAL_ENCRYPTION_KEY"
IV_LENGTH = 16
AUTH_TAG_LENGTH = 16
_KEY_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")
_SEGMENT_PATTERN = re.compile(r"^[A-Za-z0-9+/]+=*$")


class VaultError(Exception):
    """Base class for all credential vault failures."""


class EmptyInputError(VaultError):
    """Raised when asked to encrypt an empty or whitespace-only secret."""


class KeyConfigError(VaultError):
    """Raised when the encryption key is missing or malformed."""


class CredentialDecryptionError(VaultError):
    """Raised when a stored credential cannot be decrypted."""


class FormatError(CredentialDecryptionError):
    """Raised when a payload is not in iv:authTag:ciphertext form."""


class AuthenticationError(CredentialDecryptionError):
    """Raised when the GCM tag does not verify (tampering or wrong key)."""


def generate_key() -> str:
    """Return a fresh 64-character hex key suitable for CREDENTIAL_ENCRYPTION_KEY."""
    return secrets.token_hex(32)


class CredentialVault:
    """Encrypts and decrypts platform credentials with AES-256-GCM.

    All operations are synchronous and free of I/O apart from reading the
    key from the environment.

    Args:
        key_hex: Explicit 64-char hex key. When omitted the key is read from
            ``env_var`` on each call.
        env_var: Environment variable holding the hex key.
    """

    def __init__(self, key_hex: str | None = None, env_var: str = KEY_ENV_VAR) -> None:
        self._key_hex = key_hex
        self._env_var = env_var

    def _load_key(self) -> bytes:
        """Resolve and validate the 32-byte key.

        Raises:
            KeyConfigError: If the key is missing or not 64 hex characters.
        """
        if self._key_hex is not None:
            raw = self._key_hex.strip()
            origin = "explicit key"
        else:
            raw = os.environ.get(self._env_var, "").strip()
            origin = self._env_var
        if not raw:
            raise KeyConfigError(
                f"{self._env_var} environment variable is not set"
            )
        if not _KEY_PATTERN.match(raw):
            raise KeyConfigError(
                f"{origin} must be 64 hex characters (32 bytes) for AES-256"
            )
        return bytes.fromhex(raw)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a secret into vault format.

        A fresh random IV is drawn per call, so encrypting the same
        plaintext twice yields different payloads.

        Args:
            plaintext: Secret to encrypt. Must contain non-whitespace.

        Returns:
            ``base64(iv):base64(authTag):base64(ciphertext)``.

        Raises:
            EmptyInputError: If plaintext is empty or whitespace-only.
            KeyConfigError: If the key is missing or malformed.
        """
        if not plaintext or not plaintext.strip():
            raise EmptyInputError("Cannot encrypt empty credential data")

        key = self._load_key()
        iv = os.urandom(IV_LENGTH)
        sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag to the ciphertext
        ciphertext, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]

        return ":".join(
            base64.b64encode(part).decode("ascii") for part in (iv, tag, ciphertext)
        )

    def decrypt(self, payload: str) -> str:
        """Decrypt a vault-format payload back to the original secret.

        Args:
            payload: ``iv:authTag:ciphertext`` string produced by encrypt().

        Returns:
            The original plaintext.

        Raises:
            FormatError: If the payload does not have exactly three parts.
            KeyConfigError: If the key is missing or malformed.
            AuthenticationError: If any segment was altered or the key is wrong.
        """
        parts = payload.split(":")
        if len(parts) != 3:
            raise FormatError(
                "Invalid encrypted data format. Expected format: iv:authTag:ciphertext"
            )

        key = self._load_key()
        iv, tag, ciphertext = (_decode_segment(part) for part in parts)
        if len(tag) != AUTH_TAG_LENGTH:
            raise AuthenticationError("Authentication tag has invalid length")

        try:
            plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
        except InvalidTag as e:
            raise AuthenticationError(
                "Credential authentication failed: data was modified or the key is wrong"
            ) from e
        except ValueError as e:
            # Raised for IV lengths AESGCM refuses outright
            raise AuthenticationError(f"Credential could not be authenticated: {e}") from e

        return plaintext.decode("utf-8")

    def is_encrypted(self, data: str | None) -> bool:
        """Return True if data structurally looks like vault format.

        Does not touch the key and does not verify the tag.
        """
        if not data:
            return False
        parts = data.split(":")
        if len(parts) != 3:
            return False
        return all(_SEGMENT_PATTERN.match(part) for part in parts)

    def safe_encrypt(self, data: str) -> str:
        """Encrypt data unless it is already in vault format."""
        if self.is_encrypted(data):
            return data
        return self.encrypt(data)


def _decode_segment(segment: str) -> bytes:
    """Decode one base64 segment, rejecting anything non-canonical.

    A segment whose re-encoding differs from the input has been altered
    (including changes confined to padding bits), so it is reported as an
    authentication failure rather than silently normalized.
    """
    try:
        raw = base64.b64decode(segment, validate=True)
    except (binascii.Error, ValueError) as e:
        raise AuthenticationError("Encrypted segment is not valid base64") from e
    if base64.b64encode(raw).decode("ascii") != segment:
        raise AuthenticationError("Encrypted segment is not canonical base64")
    return raw


def validate_encryption_setup(key_hex: str | None = None, env_var: str = KEY_ENV_VAR) -> None:
    """Verify the encryption key is usable. Called once at startup.

    Raises:
        KeyConfigError: If the key is missing or malformed.
    """
    CredentialVault(key_hex=key_hex, env_var=env_var)._load_key()
    logger.info("Credential encryption key loaded from %s", env_var if key_hex is None else "explicit key")
