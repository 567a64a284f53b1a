"""Platform client implementations."""

from src.platforms.clients.base import PlatformAdapter
from src.platforms.clients.bilibili import BilibiliClient
from src.platforms.clients.douban import DoubanClient
from src.platforms.clients.steam import SteamClient

__all__ = [
    "PlatformAdapter",
    "BilibiliClient",
    "DoubanClient",
    "SteamClient",
]
