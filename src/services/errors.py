"""Shared service-layer error types for platform sync.

Centralised here to avoid circular imports between the platform clients,
the orchestrator and the job service.
"""

from dataclasses import dataclass

from src.errors.domain import ConflictError


@dataclass
class AdapterFetchError(Exception):
    """A platform page request failed (transport, HTTP status or API code).

    Attributes:
        platform: Platform identifier
        message: Human-readable error message
        status_code: HTTP status, if the server answered
        api_code: Platform-level error code from the response body, if any
    """

    platform: str
    message: str
    status_code: int | None = None
    api_code: int | None = None

    def __str__(self) -> str:
        """Return formatted error message."""
        return f"[{self.platform}] {self.message}"


class ConcurrentSyncError(ConflictError):
    """A sync run for the platform is already in progress."""

    def __init__(self, platform: str) -> None:
        super().__init__(f"A sync for '{platform}' is already running")
        self.platform = platform


class SyncTimeoutError(TimeoutError):
    """A sync run exceeded its overall deadline."""

    def __init__(self, platform: str, timeout_seconds: float) -> None:
        super().__init__(
            f"Sync for '{platform}' timed out after {timeout_seconds:g}s"
        )
        self.platform = platform
        self.timeout_seconds = timeout_seconds
