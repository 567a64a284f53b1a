"""Models shared by platform clients and the sync orchestrator."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator


class PlatformAuth(BaseModel):
    """Validated auth material for one platform request sequence."""

    platform: str = Field(..., description="Platform identifier")
    secret: str | None = Field(None, repr=False, description="Decrypted secret (cookie or API key)")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Non-secret fields (user IDs)")


class FetchPage(BaseModel):
    """One page of raw platform records plus the cursor for the next page."""

    items: list[dict[str, Any]] = Field(default_factory=list, description="Raw platform records")
    next_cursor: str | None = Field(None, description="Opaque cursor, None when history is exhausted")


class WatchItem(BaseModel):
    """Canonical activity record, normalized from any platform."""

    platform: str = Field(..., description="Source platform")
    external_id: str = Field(..., min_length=1, description="Platform-native ID")
    type: str = Field(..., description="Content type (video, series, movie, game)")
    title: str = Field(..., description="Display title")
    cover: str | None = Field(None, description="Cover image URL")
    url: str | None = Field(None, description="Item URL on the platform")
    watched_at: datetime = Field(..., description="Most recent activity (timezone-aware UTC)")
    progress: int | None = Field(None, ge=0, le=100, description="Percent watched/played")
    rating: int | None = Field(None, ge=0, le=5, description="User rating on the platform")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Platform-specific extras")

    @field_validator("watched_at")
    @classmethod
    def _require_timezone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("watched_at must be timezone-aware")
        return value


class CredentialCheck(BaseModel):
    """Outcome of presenting auth material to the live platform."""

    is_valid: bool = Field(..., description="Whether the platform accepted the credential")
    message: str = Field("", description="Human-readable reason")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Account details the platform returned")
