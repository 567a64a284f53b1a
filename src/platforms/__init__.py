"""External platform access: clients, auth material and canonical models."""

from src.platforms.clients import (
    BilibiliClient,
    DoubanClient,
    PlatformAdapter,
    SteamClient,
)


def build_default_adapters(timeout: float = 15.0) -> dict[str, PlatformAdapter]:
    """Return one client per supported platform, keyed by platform name."""
    adapters: list[PlatformAdapter] = [
        BilibiliClient(timeout=timeout),
        DoubanClient(timeout=timeout),
        SteamClient(timeout=timeout),
    ]
    return {adapter.platform_name: adapter for adapter in adapters}


__all__ = [
    "PlatformAdapter",
    "BilibiliClient",
    "DoubanClient",
    "SteamClient",
    "build_default_adapters",
]
