"""Douban movie collection client.

Douban has no public API for a user's "watched" list, so this client reads
the HTML collection pages (15 entries per page, newest first):

    GET https://movie.douban.com/people/{user_id}/collect?start=N&sort=time&rating=all&filter=all&mode=grid

The cursor is the numeric ``start`` offset. A cookie is optional and only
needed for users whose collection is private.
"""

import logging
import re
from datetime import UTC, date, datetime, timedelta
from html.parser import HTMLParser
from typing import Any

from src.db.models import MediaType, Platform
from src.errors.domain import ValidationError
from src.platforms.clients.base import PlatformAdapter, is_auth_rejection
from src.platforms.models import CredentialCheck, FetchPage, PlatformAuth, WatchItem
from src.services.errors import AdapterFetchError

logger = logging.getLogger(__name__)

COLLECT_URL = "https://movie.douban.com/people/{user_id}/collect"
PROFILE_URL = "https://www.douban.com/people/{user_id}/"
SUBJECT_URL = "https://movie.douban.com/subject/{subject_id}/"
PAGE_SIZE = 15

_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
_SUBJECT_ID = re.compile(r"subject/(\d+)")
_RATING_CLASS = re.compile(r"rating(\d)-t")
_YEAR = re.compile(r"(\d{4})")
_MONTH_DAY = re.compile(r"^(\d{2})-(\d{2})$")
_FULL_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_VOID_TAGS = frozenset({"img", "br", "input", "meta", "link", "hr", "source", "wbr"})


class _CollectPageParser(HTMLParser):
    """Extracts one raw record per ``.item`` block of a collection page."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.records: list[dict[str, str]] = []
        self._stack: list[tuple[str, frozenset[str]]] = []
        self._current: dict[str, str] | None = None
        self._item_depth = 0

    def _inside(self, css_class: str) -> bool:
        return any(css_class in classes for _, classes in self._stack[self._item_depth:])

    def _inside_tag(self, tag: str) -> bool:
        return any(name == tag for name, _ in self._stack[self._item_depth:])

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        attributes = dict(attrs)
        classes = frozenset((attributes.get("class") or "").split())

        if self._current is None:
            if "item" in classes:
                self._current = {
                    "href": "", "cover": "", "title": "",
                    "rating_class": "", "date": "", "intro": "",
                }
                self._item_depth = len(self._stack)
        else:
            if tag == "a" and self._inside("pic") and not self._current["href"]:
                self._current["href"] = attributes.get("href") or ""
            elif tag == "img" and self._inside("pic") and not self._current["cover"]:
                self._current["cover"] = attributes.get("src") or ""
            for css_class in classes:
                if _RATING_CLASS.fullmatch(css_class):
                    self._current["rating_class"] = css_class

        if tag not in _VOID_TAGS:
            self._stack.append((tag, classes))

    def handle_endtag(self, tag: str) -> None:
        for index in range(len(self._stack) - 1, -1, -1):
            if self._stack[index][0] == tag:
                del self._stack[index:]
                break
        else:
            return

        if self._current is not None and len(self._stack) <= self._item_depth:
            self.records.append(self._current)
            self._current = None

    def handle_data(self, data: str) -> None:
        if self._current is None:
            return
        if self._inside("title") and self._inside_tag("em"):
            self._current["title"] += data
        elif self._inside("date"):
            self._current["date"] += data
        elif self._inside("intro"):
            self._current["intro"] += data


def parse_collect_page(html: str) -> list[dict[str, Any]]:
    """Parse a collection page into raw records.

    Entries without a subject link are skipped.
    """
    parser = _CollectPageParser()
    parser.feed(html)
    parser.close()

    records = []
    for entry in parser.records:
        match = _SUBJECT_ID.search(entry["href"])
        if not match:
            continue
        rating_match = _RATING_CLASS.fullmatch(entry["rating_class"])
        year_match = _YEAR.search(entry["intro"])
        subject_id = match.group(1)
        records.append({
            "id": subject_id,
            "title": entry["title"].strip(),
            "cover": entry["cover"],
            "rating": int(rating_match.group(1)) if rating_match else 0,
            "date": entry["date"].strip(),
            "year": year_match.group(1) if year_match else None,
            "url": SUBJECT_URL.format(subject_id=subject_id),
        })
    return records


def parse_douban_date(text: str, today: date) -> date:
    """Resolve Douban's date column to a calendar date.

    Accepts '今天' (today), '昨天' (yesterday), 'MM-DD' and 'YYYY-MM-DD'.
    A month-day that would land after today belongs to last year. Anything
    else resolves to today.
    """
    if text == "今天":
        return today
    if text == "昨天":
        return today - timedelta(days=1)

    month_day = _MONTH_DAY.match(text)
    if month_day:
        try:
            resolved = date(today.year, int(month_day.group(1)), int(month_day.group(2)))
        except ValueError:
            return today
        if resolved > today:
            try:
                return resolved.replace(year=today.year - 1)
            except ValueError:
                # 02-29 has no counterpart in a non-leap previous year
                return today
        return resolved

    if _FULL_DATE.match(text):
        try:
            return date.fromisoformat(text)
        except ValueError:
            return today

    return today


class DoubanClient(PlatformAdapter):
    """Douban movie collection scraper.

    Example:
        client = DoubanClient()
        auth = client.build_auth(None, {"userId": "ahbei"})
        page = await client.fetch_page(auth, None)
    """

    RATE_LIMIT_SECONDS = 2.0

    @property
    def platform_name(self) -> str:
        return Platform.douban.value

    def build_auth(self, secret: str | None, metadata: dict[str, Any]) -> PlatformAuth:
        """Require a user ID; keep the cookie when one is supplied.

        The user ID comes from metadata ('userId' or 'user_id'). A secret
        without '=' is treated as a bare user ID rather than a cookie.

        Raises:
            ValidationError: If no user ID is available.
        """
        user_id = metadata.get("userId") or metadata.get("user_id")
        cookie = secret
        if not user_id and secret and "=" not in secret:
            user_id, cookie = secret.strip(), None
        if not user_id:
            raise ValidationError("Douban auth requires a userId")

        return PlatformAuth(
            platform=self.platform_name,
            secret=cookie or None,
            metadata={**metadata, "userId": str(user_id)},
        )

    async def fetch_page(self, auth: PlatformAuth, cursor: str | None) -> FetchPage:
        """Fetch and parse one collection page. The cursor is the item offset."""
        start = int(cursor) if cursor else 0
        response = await self._get(
            COLLECT_URL.format(user_id=auth.metadata["userId"]),
            params={
                "start": start,
                "sort": "time",
                "rating": "all",
                "filter": "all",
                "mode": "grid",
            },
            headers=self._headers(auth),
        )
        records = parse_collect_page(response.text)
        next_cursor = str(start + PAGE_SIZE) if records else None

        logger.debug("[douban] parsed %d items at offset %d", len(records), start)
        return FetchPage(items=records, next_cursor=next_cursor)

    async def validate(self, auth: PlatformAuth) -> CredentialCheck:
        """Check that the user ID resolves to a profile page.

        A supplied cookie must carry Douban's session fields (dbcl2 or
        bid); a 404 means the user ID does not exist.
        """
        if auth.secret and "dbcl2=" not in auth.secret and "bid=" not in auth.secret:
            return CredentialCheck(
                is_valid=False,
                message="Cookie missing Douban authentication fields (bid or dbcl2)",
            )

        user_id = auth.metadata["userId"]
        try:
            await self._get(PROFILE_URL.format(user_id=user_id), headers=self._headers(auth))
        except AdapterFetchError as e:
            if is_auth_rejection(e):
                return CredentialCheck(
                    is_valid=False, message=f"Douban profile {user_id} unavailable: {e.message}"
                )
            raise
        return CredentialCheck(
            is_valid=True, message="Douban profile is reachable", metadata={"userId": user_id}
        )

    def _headers(self, auth: PlatformAuth) -> dict[str, str]:
        headers = {
            "User-Agent": _USER_AGENT,
            "Referer": "https://movie.douban.com",
        }
        if auth.secret:
            headers["Cookie"] = auth.secret
        return headers

    def normalize(self, raw: dict[str, Any]) -> WatchItem:
        today = datetime.now(UTC).date()
        watched_on = parse_douban_date(raw.get("date") or "", today)
        rating = raw.get("rating") or None

        return WatchItem(
            platform=self.platform_name,
            external_id=str(raw["id"]),
            type=MediaType.movie.value,
            title=raw.get("title") or "",
            cover=raw.get("cover") or None,
            url=raw.get("url") or SUBJECT_URL.format(subject_id=raw["id"]),
            watched_at=datetime(watched_on.year, watched_on.month, watched_on.day, tzinfo=UTC),
            rating=rating,
            metadata={"year": raw.get("year")},
        )
