"""SQLAlchemy ORM models for the MediaSync state database.

This module defines the stored credentials, the canonical watch-history
table and the sync job log. Uses SQLAlchemy 2.0 style with Mapped and
mapped_column.
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
)


def generate_uuid() -> str:
    """Generate a UUID4 string for primary keys."""
    return str(uuid4())


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format."""
    return datetime.now(UTC).isoformat()


# Enums matching the database schema constraints


class Platform(str, Enum):
    """External platforms with a sync adapter."""

    bilibili = "bilibili"
    douban = "douban"
    steam = "steam"


class SyncJobStatus(str, Enum):
    """Status values for sync job log entries.

    Lifecycle: running -> success/partial/failed (exactly once)
    """

    running = "running"
    success = "success"
    partial = "partial"
    failed = "failed"


class SyncMode(str, Enum):
    """How much history a sync run re-fetches."""

    full = "full"
    incremental = "incremental"


class TriggerType(str, Enum):
    """What started a sync run."""

    manual = "manual"
    scheduled = "scheduled"


class MediaType(str, Enum):
    """Canonical content types for watch items."""

    video = "video"
    series = "series"
    movie = "movie"
    game = "game"


# SQLAlchemy Base


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Models


class Credential(Base):
    """Encrypted platform credential.

    Attributes:
        id: UUID primary key
        platform: Platform identifier (bilibili, douban, steam)
        type: Credential kind ('cookie', 'api_key', 'user_id')
        encrypted_value: Vault-format ciphertext (iv:authTag:ciphertext)
        metadata_json: TEXT JSON with platform-specific non-secret fields
        is_valid: False once the credential has failed too often
        failure_count: Consecutive sync failures since the last success
        usage_count: Number of sync runs that used this credential
        last_validated_at: ISO8601 timestamp of the last successful run or live check
        last_used_at: ISO8601 timestamp of the last run
        created_at: ISO8601 timestamp of creation
        updated_at: ISO8601 timestamp of last update
    """

    __tablename__ = "credentials"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    platform: Mapped[str] = mapped_column(String(20), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False, default="cookie")
    encrypted_value: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True, default="{}")
    is_valid: Mapped[bool] = mapped_column(nullable=False, default=True)
    failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_validated_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    last_used_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    __table_args__ = (
        Index("idx_credentials_platform", "platform"),
    )

    def __repr__(self) -> str:
        return (
            f"<Credential(id={self.id!r}, platform={self.platform!r}, "
            f"is_valid={self.is_valid!r})>"
        )


class MediaWatch(Base):
    """One item of a user's activity history on an external platform.

    (platform, external_id) is the natural key; re-ingesting an item
    updates its mutable fields instead of inserting a duplicate.

    Attributes:
        id: UUID primary key
        platform: Platform identifier
        external_id: Platform-native ID (bvid, Douban subject ID, Steam appid)
        type: Content type (video, series, movie, game)
        title: Display title
        cover: Cover image URL
        url: Canonical item URL on the platform
        watched_at: ISO8601 UTC timestamp of the most recent activity
        progress: Percent watched/played (0-100), if known
        rating: Platform rating (Douban 1-5), if known
        metadata_json: TEXT JSON with platform-specific extras
        created_at: ISO8601 timestamp of first ingestion
        updated_at: ISO8601 timestamp of last upsert
    """

    __tablename__ = "media_watches"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    platform: Mapped[str] = mapped_column(String(20), nullable=False)
    external_id: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    cover: Mapped[str | None] = mapped_column(Text, nullable=True)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    watched_at: Mapped[str] = mapped_column(String(50), nullable=False)
    progress: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True, default="{}")
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    __table_args__ = (
        UniqueConstraint("platform", "external_id", name="uq_media_watches_platform_external_id"),
        Index("idx_media_watches_watched_at", "watched_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<MediaWatch(platform={self.platform!r}, "
            f"external_id={self.external_id!r}, title={self.title!r})>"
        )


class SyncJobLog(Base):
    """Append-only record of one sync run for one platform.

    Created in the running state and moved to a terminal state exactly
    once. The newest success/partial row doubles as the platform's
    sync state (last_synced_at, completed_at, sync_mode, last_cursor).

    Attributes:
        id: UUID primary key
        platform: Platform identifier
        status: running, success, partial or failed
        sync_mode: full or incremental
        triggered_by: manual or scheduled
        credential_id: Stored credential used, None for environment auth
        auth_source: Where the auth came from ('credential' or 'environment')
        started_at: ISO8601 timestamp when the run began
        completed_at: ISO8601 timestamp when the run reached a terminal state
        duration_ms: Wall time of the run in milliseconds
        items_total: Items accumulated from the platform
        items_success: Items upserted without error
        items_failed: Items that failed normalization or persistence
        items_new: Items inserted for the first time
        items_existing: Items that already existed and were updated
        pages_requested: Page fetches attempted
        early_stopped: True if pagination stopped on consecutive known pages
        last_cursor: Cursor returned by the last fetched page
        last_synced_at: Newest watched_at seen by this run
        message: Human-readable summary
        error_stack: Sanitized traceback for failed runs
    """

    __tablename__ = "sync_job_logs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    platform: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SyncJobStatus.running.value
    )
    sync_mode: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SyncMode.full.value
    )
    triggered_by: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TriggerType.manual.value
    )
    credential_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    auth_source: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Timestamps (ISO8601 strings for SQLite compatibility)
    started_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    completed_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Item counts
    items_total: Mapped[int] = mapped_column(default=0, nullable=False)
    items_success: Mapped[int] = mapped_column(default=0, nullable=False)
    items_failed: Mapped[int] = mapped_column(default=0, nullable=False)
    items_new: Mapped[int] = mapped_column(default=0, nullable=False)
    items_existing: Mapped[int] = mapped_column(default=0, nullable=False)

    # Pagination
    pages_requested: Mapped[int] = mapped_column(default=0, nullable=False)
    early_stopped: Mapped[bool] = mapped_column(nullable=False, default=False)
    last_cursor: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_synced_at: Mapped[str | None] = mapped_column(String(50), nullable=True)

    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_stack: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_sync_job_logs_platform_status", "platform", "status"),
        Index("idx_sync_job_logs_started_at", "started_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<SyncJobLog(id={self.id!r}, platform={self.platform!r}, "
            f"status={self.status!r})>"
        )
