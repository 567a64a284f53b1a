"""Steam Web API client for played games.

Uses IPlayerService/GetOwnedGames with app info. The endpoint returns the
whole library in one response, so there is only ever one page; games with
no recorded last-played time are skipped.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from src.db.models import MediaType, Platform
from src.errors.domain import ValidationError
from src.platforms.clients.base import PlatformAdapter, is_auth_rejection
from src.platforms.models import CredentialCheck, FetchPage, PlatformAuth, WatchItem
from src.services.errors import AdapterFetchError

logger = logging.getLogger(__name__)

OWNED_GAMES_URL = "https://api.steampowered.com/IPlayerService/GetOwnedGames/v1/"
PLAYER_SUMMARIES_URL = "https://api.steampowered.com/ISteamUser/GetPlayerSummaries/v0002/"
STORE_URL = "https://store.steampowered.com/app/{appid}"
HEADER_IMAGE_URL = "https://cdn.cloudflare.steamstatic.com/steam/apps/{appid}/header.jpg"

# communityvisibilitystate 3 is the only state that exposes the game library
_PUBLIC_PROFILE = 3


class SteamClient(PlatformAdapter):
    """Steam owned-games client.

    Example:
        client = SteamClient()
        auth = client.build_auth("<api key>", {"steamId": "7656119..."})
        page = await client.fetch_page(auth, None)
    """

    RATE_LIMIT_SECONDS = 1.0

    @property
    def platform_name(self) -> str:
        return Platform.steam.value

    def build_auth(self, secret: str | None, metadata: dict[str, Any]) -> PlatformAuth:
        """Require both the Web API key and the 64-bit Steam ID.

        Raises:
            ValidationError: If either is missing.
        """
        steam_id = metadata.get("steamId") or metadata.get("steam_id")
        if not secret or not secret.strip():
            raise ValidationError("Steam auth requires an API key")
        if not steam_id:
            raise ValidationError("Steam auth requires a steamId")

        return PlatformAuth(
            platform=self.platform_name,
            secret=secret.strip(),
            metadata={**metadata, "steamId": str(steam_id)},
        )

    async def fetch_page(self, auth: PlatformAuth, cursor: str | None) -> FetchPage:
        """Fetch the played part of the library. Always the last page."""
        response = await self._get(
            OWNED_GAMES_URL,
            params={
                "key": auth.secret,
                "steamid": auth.metadata["steamId"],
                "include_appinfo": 1,
                "include_played_free_games": 1,
                "format": "json",
            },
        )
        try:
            body = response.json()
        except ValueError as e:
            raise AdapterFetchError(self.platform_name, "Response is not JSON") from e

        games = (body.get("response") or {}).get("games")
        if not isinstance(games, list):
            # Private profiles answer 200 with an empty response object
            logger.warning("[steam] no games returned; profile may be private")
            games = []

        played = [game for game in games if game.get("rtime_last_played")]
        return FetchPage(items=played, next_cursor=None)

    async def validate(self, auth: PlatformAuth) -> CredentialCheck:
        """Check the key and Steam ID with a player summary lookup.

        Steam answers 403 for a bad key and an empty player list for an
        unknown Steam ID. A private profile is still a valid credential,
        but its library will come back empty.
        """
        try:
            response = await self._get(
                PLAYER_SUMMARIES_URL,
                params={"key": auth.secret, "steamids": auth.metadata["steamId"]},
            )
        except AdapterFetchError as e:
            if is_auth_rejection(e):
                return CredentialCheck(is_valid=False, message=f"Steam rejected the API key: {e.message}")
            raise

        try:
            body = response.json()
        except ValueError as e:
            raise AdapterFetchError(self.platform_name, "Response is not JSON") from e

        players = (body.get("response") or {}).get("players") or []
        if not players:
            return CredentialCheck(
                is_valid=False,
                message=f"Steam ID {auth.metadata['steamId']} not found",
            )

        player = players[0]
        public = player.get("communityvisibilitystate") == _PUBLIC_PROFILE
        return CredentialCheck(
            is_valid=True,
            message="Steam API key is valid" if public else "Steam API key is valid; profile is not public",
            metadata={"personaName": player.get("personaname"), "publicProfile": public},
        )

    def normalize(self, raw: dict[str, Any]) -> WatchItem:
        appid = raw["appid"]
        return WatchItem(
            platform=self.platform_name,
            external_id=str(appid),
            type=MediaType.game.value,
            title=raw.get("name") or f"App {appid}",
            cover=HEADER_IMAGE_URL.format(appid=appid),
            url=STORE_URL.format(appid=appid),
            watched_at=datetime.fromtimestamp(raw["rtime_last_played"], UTC),
            metadata={
                "appId": appid,
                "playtimeForever": raw.get("playtime_forever", 0),
                "playtime2Weeks": raw.get("playtime_2weeks"),
                "imgIconUrl": raw.get("img_icon_url"),
            },
        )
