"""Abstract base class for platform clients.

Each platform (Bilibili, Douban, Steam) implements this interface so the
sync orchestrator can paginate any activity feed the same way.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from src.platforms.models import CredentialCheck, FetchPage, PlatformAuth, WatchItem
from src.services.errors import AdapterFetchError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0


def is_auth_rejection(error: AdapterFetchError) -> bool:
    """True when the platform answered with a client error other than throttling."""
    return error.status_code is not None and 400 <= error.status_code < 500 and error.status_code != 429


class PlatformAdapter(ABC):
    """Abstract base class for external platform clients.

    Concrete implementations must handle:
    - Validating platform-specific auth material
    - Fetching one page of activity history per call
    - Normalizing raw records into WatchItem
    - Checking auth material against the live platform

    Example implementation:
        class SteamClient(PlatformAdapter):
            @property
            def platform_name(self) -> str:
                return "steam"

            async def fetch_page(self, auth, cursor):
                # Call the Steam Web API
                ...
    """

    # Fixed delay the orchestrator sleeps between page requests
    RATE_LIMIT_SECONDS = 1.0

    def __init__(self, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self._timeout = timeout

    @property
    @abstractmethod
    def platform_name(self) -> str:
        """Return the platform identifier.

        Returns:
            Platform name: 'bilibili', 'douban', 'steam'
        """
        ...

    @property
    def rate_limit_seconds(self) -> float:
        """Seconds to wait between consecutive page requests."""
        return self.RATE_LIMIT_SECONDS

    @abstractmethod
    def build_auth(self, secret: str | None, metadata: dict[str, Any]) -> PlatformAuth:
        """Validate auth material and package it for fetch_page.

        Args:
            secret: Decrypted secret (cookie string or API key), may be None
                for platforms whose public pages need no secret.
            metadata: Non-secret fields such as user IDs.

        Returns:
            PlatformAuth ready for fetch_page.

        Raises:
            ValidationError: If required fields are missing.
        """
        ...

    @abstractmethod
    async def fetch_page(self, auth: PlatformAuth, cursor: str | None) -> FetchPage:
        """Fetch one page of history.

        Args:
            auth: Auth material from build_auth().
            cursor: Cursor from the previous page, None for the first page.

        Returns:
            Raw records and the next cursor (None when exhausted).

        Raises:
            AdapterFetchError: On transport, HTTP or platform API errors.
        """
        ...

    @abstractmethod
    def normalize(self, raw: dict[str, Any]) -> WatchItem:
        """Convert one raw record to a WatchItem. Pure, no I/O."""
        ...

    @abstractmethod
    async def validate(self, auth: PlatformAuth) -> CredentialCheck:
        """Ask the platform whether the auth material is still accepted.

        A credential the platform rejects yields is_valid=False. Failures
        that say nothing about the credential (network errors, 5xx,
        throttling) raise instead, so callers never invalidate a good
        credential during an outage.

        Raises:
            AdapterFetchError: If the platform could not give an answer.
        """
        ...

    async def _get(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """GET with uniform error mapping.

        Raises:
            AdapterFetchError: On transport errors or any non-200 status.
        """
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(url, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise AdapterFetchError(
                self.platform_name, f"Request failed: {type(e).__name__}: {e}"
            ) from e

        if response.status_code != 200:
            raise AdapterFetchError(
                self.platform_name,
                f"Unexpected HTTP status {response.status_code}",
                status_code=response.status_code,
            )
        return response
