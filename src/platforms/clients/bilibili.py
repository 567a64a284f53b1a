"""Bilibili watch-history client.

Reads the logged-in user's history feed from the web interface API:

    GET https://api.bilibili.com/x/web-interface/history/cursor?ps=20&max=..&view_at=..

Auth is the browser cookie (SESSDATA is mandatory; bili_jct and buvid3 are
passed through when present). The feed is cursor-paginated, newest first,
and the response carries the cursor for the next page.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from src.db.models import MediaType, Platform
from src.errors.domain import ValidationError
from src.platforms.clients.base import PlatformAdapter, is_auth_rejection
from src.platforms.models import CredentialCheck, FetchPage, PlatformAuth, WatchItem
from src.services.errors import AdapterFetchError

logger = logging.getLogger(__name__)

HISTORY_URL = "https://api.bilibili.com/x/web-interface/history/cursor"
MYINFO_URL = "https://api.bilibili.com/x/space/myinfo"
VIDEO_URL = "https://www.bilibili.com/video/{bvid}"
PAGE_SIZE = 20

# Watch timestamps outside (now - 10 years, now] are treated as corrupt
_MAX_HISTORY_AGE = timedelta(days=3650)

_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
_COOKIE_FIELDS = ("SESSDATA", "bili_jct", "buvid3")


def parse_cookie(cookie: str) -> dict[str, str]:
    """Split a 'k=v; k2=v2' cookie string into a dict.

    Keys and values are stripped; segments without '=' are ignored.
    """
    pairs: dict[str, str] = {}
    for segment in cookie.split(";"):
        name, sep, value = segment.partition("=")
        if sep and name.strip():
            pairs[name.strip()] = value.strip()
    return pairs


class BilibiliClient(PlatformAdapter):
    """Bilibili history API client.

    Example:
        client = BilibiliClient()
        auth = client.build_auth("SESSDATA=...; bili_jct=...; buvid3=...", {})
        page = await client.fetch_page(auth, None)
        items = [client.normalize(raw) for raw in page.items]
    """

    RATE_LIMIT_SECONDS = 1.0

    @property
    def platform_name(self) -> str:
        return Platform.bilibili.value

    def build_auth(self, secret: str | None, metadata: dict[str, Any]) -> PlatformAuth:
        """Validate the cookie and keep only the fields the API needs.

        Raises:
            ValidationError: If SESSDATA is missing.
        """
        cookies = parse_cookie(secret or "")
        if not cookies.get("SESSDATA"):
            raise ValidationError("Bilibili cookie must contain SESSDATA")

        header = "; ".join(
            f"{name}={cookies[name]}" for name in _COOKIE_FIELDS if cookies.get(name)
        )
        return PlatformAuth(
            platform=self.platform_name, secret=header, metadata=dict(metadata)
        )

    async def fetch_page(self, auth: PlatformAuth, cursor: str | None) -> FetchPage:
        """Fetch one page of the history feed.

        The cursor is 'max:view_at' as returned by the previous page.

        Raises:
            AdapterFetchError: On HTTP errors or a non-zero API code
                (-101 means the cookie has expired).
        """
        params: dict[str, Any] = {"ps": PAGE_SIZE}
        if cursor:
            max_id, _, view_at = cursor.partition(":")
            params["max"] = max_id
            params["view_at"] = view_at

        response = await self._get(HISTORY_URL, params=params, headers=self._headers(auth))
        body = self._json(response)

        code = body.get("code")
        if code != 0:
            raise AdapterFetchError(
                self.platform_name,
                f"API error {code}: {body.get('message', 'unknown')}",
                api_code=code,
            )

        data = body.get("data") or {}
        items = data.get("list") or []
        next_cursor = None
        page_cursor = data.get("cursor") or {}
        if items and page_cursor.get("max"):
            next_cursor = f"{page_cursor['max']}:{page_cursor.get('view_at', 0)}"

        logger.debug("[bilibili] fetched %d items, next cursor %s", len(items), next_cursor)
        return FetchPage(items=items, next_cursor=next_cursor)

    async def validate(self, auth: PlatformAuth) -> CredentialCheck:
        """Check the cookie against the logged-in user's profile.

        Code -101 (not logged in) and any other non-zero code mark the
        cookie invalid.
        """
        try:
            response = await self._get(MYINFO_URL, headers=self._headers(auth))
        except AdapterFetchError as e:
            if is_auth_rejection(e):
                return CredentialCheck(is_valid=False, message=e.message)
            raise

        body = self._json(response)
        data = body.get("data")
        if body.get("code") != 0 or not data:
            return CredentialCheck(
                is_valid=False,
                message=f"API error {body.get('code')}: {body.get('message') or 'invalid cookie'}",
            )
        return CredentialCheck(
            is_valid=True,
            message="Bilibili cookie is valid",
            metadata={"mid": data.get("mid"), "name": data.get("name"), "level": data.get("level")},
        )

    def _headers(self, auth: PlatformAuth) -> dict[str, str]:
        return {
            "Cookie": auth.secret or "",
            "User-Agent": _USER_AGENT,
            "Referer": "https://www.bilibili.com",
        }

    def _json(self, response) -> dict[str, Any]:
        try:
            return response.json()
        except ValueError as e:
            raise AdapterFetchError(self.platform_name, "Response is not JSON") from e

    def normalize(self, raw: dict[str, Any]) -> WatchItem:
        history = raw.get("history") or {}
        bvid = history.get("bvid") or ""
        external_id = bvid or str(raw.get("kid") or "")

        progress_seconds = raw.get("progress") or 0
        duration_seconds = raw.get("duration") or 0
        # progress is -1 when the player did not record a position
        if duration_seconds > 0 and progress_seconds > 0:
            progress = min(round(progress_seconds / duration_seconds * 100), 100)
        else:
            progress = 0

        videos = raw.get("videos") or 0
        content_type = MediaType.series if videos > 1 else MediaType.video

        now = datetime.now(UTC)
        view_at = raw.get("view_at") or 0
        watched_at = datetime.fromtimestamp(view_at, UTC)
        if not (now - _MAX_HISTORY_AGE < watched_at <= now):
            watched_at = now

        return WatchItem(
            platform=self.platform_name,
            external_id=external_id,
            type=content_type.value,
            title=raw.get("title") or "",
            cover=raw.get("cover") or None,
            url=VIDEO_URL.format(bvid=bvid) if bvid else None,
            watched_at=watched_at,
            progress=progress,
            metadata={
                "author": raw.get("author_name"),
                "authorMid": raw.get("author_mid"),
                "bvid": bvid or None,
                "oid": history.get("oid"),
                "cid": history.get("cid"),
                "page": history.get("page"),
                "videos": videos,
                "kid": raw.get("kid"),
                "viewAtRaw": view_at,
                "progressSeconds": raw.get("progress"),
                "durationSeconds": duration_seconds,
            },
        )
