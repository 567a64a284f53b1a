"""Scripted platform adapter for orchestrator and sweep tests.

Serves pre-configured pages in order, can fail on a specific call and
records every fetch, so tests can assert exactly how many pages the
orchestrator requested.
"""

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from src.errors.domain import ValidationError
from src.platforms.clients.base import PlatformAdapter
from src.platforms.models import CredentialCheck, FetchPage, PlatformAuth, WatchItem
from src.services.errors import AdapterFetchError


def make_record(
    external_id: str,
    watched_at: datetime | None = None,
    title: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Build a raw record in the fake platform's format."""
    return {
        "id": external_id,
        "title": title or f"Item {external_id}",
        "ts": (watched_at or datetime.now(UTC)).timestamp(),
        **extra,
    }


@dataclass
class FetchCall:
    """Record of one fetch_page call."""

    cursor: str | None
    error: str | None = None


class FakePlatformAdapter(PlatformAdapter):
    """Adapter whose pages are configured by the test.

    Page N (1-indexed) returns ``pages[N-1]`` with cursor ``str(N)``; the
    last configured page returns no cursor. Fetching past the configured
    pages returns an empty page.
    """

    RATE_LIMIT_SECONDS = 0.0

    def __init__(
        self,
        pages: list[list[dict[str, Any]]] | None = None,
        name: str = "bilibili",
    ) -> None:
        super().__init__(timeout=1.0)
        self._name = name
        self.pages = pages or []
        self.calls: list[FetchCall] = []
        self._failures: dict[int, str] = {}
        self.fetch_delay = 0.0
        self.endless = False
        self.rejected_secrets: set[str] = set()
        self.validation_unavailable = False
        self.validated: list[str | None] = []

    @property
    def platform_name(self) -> str:
        return self._name

    def configure_failure_on_call(self, call_number: int, error: str) -> None:
        """Make the given fetch (1-indexed) raise AdapterFetchError."""
        self._failures[call_number] = error

    @property
    def fetch_count(self) -> int:
        return len(self.calls)

    def build_auth(self, secret: str | None, metadata: dict[str, Any]) -> PlatformAuth:
        if not secret:
            raise ValidationError("Fake auth requires a secret")
        return PlatformAuth(platform=self._name, secret=secret, metadata=dict(metadata))

    async def fetch_page(self, auth: PlatformAuth, cursor: str | None) -> FetchPage:
        call_number = len(self.calls) + 1
        if call_number in self._failures:
            error = self._failures[call_number]
            self.calls.append(FetchCall(cursor, error=error))
            raise AdapterFetchError(self._name, error, status_code=500)

        self.calls.append(FetchCall(cursor))
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)

        index = int(cursor) if cursor else 0
        if index >= len(self.pages):
            return FetchPage(items=[], next_cursor=None)
        has_more = self.endless or index + 1 < len(self.pages)
        return FetchPage(
            items=self.pages[index],
            next_cursor=str(index + 1) if has_more else None,
        )

    async def validate(self, auth: PlatformAuth) -> CredentialCheck:
        self.validated.append(auth.secret)
        if self.validation_unavailable:
            raise AdapterFetchError(self._name, "Unexpected HTTP status 503", status_code=503)
        if auth.secret in self.rejected_secrets:
            return CredentialCheck(is_valid=False, message="secret rejected")
        return CredentialCheck(is_valid=True, message="ok", metadata={"account": "fake"})

    def normalize(self, raw: dict[str, Any]) -> WatchItem:
        if raw.get("broken"):
            raise ValueError(f"cannot normalize {raw['id']}")
        return WatchItem(
            platform=self._name,
            external_id=raw["id"],
            type="video",
            title=raw["title"],
            watched_at=datetime.fromtimestamp(raw["ts"], UTC),
            progress=raw.get("progress"),
            rating=raw.get("rating"),
            metadata={"source": "fake"},
        )


def recent(minutes: int = 0) -> datetime:
    """A timestamp `minutes` before now, truncated to whole seconds."""
    return (datetime.now(UTC) - timedelta(minutes=minutes)).replace(microsecond=0)
