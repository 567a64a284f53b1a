"""Test Steam owned-games client."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from src.errors.domain import ValidationError
from src.platforms import build_default_adapters
from src.platforms.clients.steam import OWNED_GAMES_URL, PLAYER_SUMMARIES_URL, SteamClient
from src.services.errors import AdapterFetchError

GAMES = [
    {
        "appid": 570,
        "name": "Dota 2",
        "playtime_forever": 12034,
        "playtime_2weeks": 300,
        "img_icon_url": "0bbb630d63262dd66d2fdd0f7d37e8661a410075",
        "rtime_last_played": 1717000000,
    },
    {"appid": 10, "name": "Counter-Strike", "playtime_forever": 0, "rtime_last_played": 0},
    {"appid": 440, "name": "Team Fortress 2", "playtime_forever": 50},
]


def _response(body: dict, status_code: int = 200) -> MagicMock:
    mock_response = MagicMock()
    mock_response.status_code = status_code
    mock_response.json.return_value = body
    return mock_response


class TestSteamAuth:

    def test_requires_key_and_steam_id(self):
        client = SteamClient()
        with pytest.raises(ValidationError, match="API key"):
            client.build_auth("", {"steamId": "7656"})
        with pytest.raises(ValidationError, match="steamId"):
            client.build_auth("KEY", {})

    def test_accepts_snake_case(self):
        auth = SteamClient().build_auth(" KEY ", {"steam_id": 76561198000000000})
        assert auth.secret == "KEY"
        assert auth.metadata["steamId"] == "76561198000000000"


class TestSteamFetchPage:

    @pytest.mark.asyncio
    async def test_only_played_games(self):
        client = SteamClient()
        auth = client.build_auth("KEY", {"steamId": "7656"})

        with patch.object(httpx.AsyncClient, "get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = _response({"response": {"game_count": 3, "games": GAMES}})
            page = await client.fetch_page(auth, None)

        assert [g["appid"] for g in page.items] == [570]
        assert page.next_cursor is None
        args, kwargs = mock_get.call_args
        assert args[0] == OWNED_GAMES_URL
        assert kwargs["params"]["key"] == "KEY"
        assert kwargs["params"]["steamid"] == "7656"
        assert kwargs["params"]["include_appinfo"] == 1

    @pytest.mark.asyncio
    async def test_private_profile(self):
        client = SteamClient()
        auth = client.build_auth("KEY", {"steamId": "7656"})

        with patch.object(httpx.AsyncClient, "get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = _response({"response": {}})
            page = await client.fetch_page(auth, None)

        assert page.items == []

    @pytest.mark.asyncio
    async def test_forbidden_key(self):
        client = SteamClient()
        auth = client.build_auth("BADKEY", {"steamId": "7656"})

        with patch.object(httpx.AsyncClient, "get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = _response({}, status_code=403)
            with pytest.raises(AdapterFetchError) as exc_info:
                await client.fetch_page(auth, None)

        assert exc_info.value.status_code == 403
        assert "BADKEY" not in str(exc_info.value)


class TestSteamNormalize:

    def test_normalize(self):
        item = SteamClient().normalize(GAMES[0])

        assert item.external_id == "570"
        assert item.type == "game"
        assert item.title == "Dota 2"
        assert item.url == "https://store.steampowered.com/app/570"
        assert item.cover.endswith("/570/header.jpg")
        assert item.watched_at == datetime.fromtimestamp(1717000000, UTC)
        assert item.metadata["playtimeForever"] == 12034
        assert item.metadata["playtime2Weeks"] == 300


class TestDefaultAdapters:

    def test_one_adapter_per_platform(self):
        adapters = build_default_adapters(timeout=5.0)
        assert sorted(adapters) == ["bilibili", "douban", "steam"]
        assert adapters["douban"].rate_limit_seconds == 2.0


class TestSteamValidate:
    """Key and Steam ID check via player summaries."""

    @pytest.mark.asyncio
    async def test_known_player_is_valid(self):
        client = SteamClient()
        auth = client.build_auth("KEY", {"steamId": "76561198000000000"})
        player = {"steamid": "76561198000000000", "personaname": "gaben", "communityvisibilitystate": 3}

        with patch.object(httpx.AsyncClient, "get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = _response({"response": {"players": [player]}})
            check = await client.validate(auth)

        assert check.is_valid is True
        assert check.metadata == {"personaName": "gaben", "publicProfile": True}
        args, kwargs = mock_get.call_args
        assert args[0] == PLAYER_SUMMARIES_URL
        assert kwargs["params"] == {"key": "KEY", "steamids": "76561198000000000"}

    @pytest.mark.asyncio
    async def test_private_profile_still_valid(self):
        client = SteamClient()
        auth = client.build_auth("KEY", {"steamId": "7656"})

        with patch.object(httpx.AsyncClient, "get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = _response(
                {"response": {"players": [{"personaname": "x", "communityvisibilitystate": 1}]}}
            )
            check = await client.validate(auth)

        assert check.is_valid is True
        assert "not public" in check.message

    @pytest.mark.asyncio
    async def test_unknown_steam_id_is_invalid(self):
        client = SteamClient()
        auth = client.build_auth("KEY", {"steamId": "1"})

        with patch.object(httpx.AsyncClient, "get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = _response({"response": {"players": []}})
            check = await client.validate(auth)

        assert check.is_valid is False
        assert "not found" in check.message

    @pytest.mark.asyncio
    async def test_bad_key_is_invalid(self):
        client = SteamClient()
        auth = client.build_auth("BADKEY", {"steamId": "7656"})

        with patch.object(httpx.AsyncClient, "get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = _response({}, status_code=403)
            check = await client.validate(auth)

        assert check.is_valid is False
        assert "403" in check.message

    @pytest.mark.asyncio
    async def test_network_error_raises(self):
        client = SteamClient()
        auth = client.build_auth("KEY", {"steamId": "7656"})

        with patch.object(httpx.AsyncClient, "get", new_callable=AsyncMock) as mock_get:
            mock_get.side_effect = httpx.ConnectError("refused")
            with pytest.raises(AdapterFetchError):
                await client.validate(auth)
