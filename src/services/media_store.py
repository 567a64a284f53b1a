"""Idempotent persistence of normalized watch items.

(platform, external_id) is the natural key. Re-ingesting an item refreshes
watched_at and descriptive fields; progress and rating only change when the
platform reports a value, so a later page without a rating never erases
one recorded earlier.
"""

import json
import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.db.models import MediaWatch, utc_now_iso
from src.platforms.models import WatchItem

logger = logging.getLogger(__name__)


class MediaStore:
    """Upsert and lookup of MediaWatch rows.

    Attributes:
        db: SQLAlchemy session for database operations.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, platform: str, external_id: str) -> MediaWatch | None:
        return (
            self.db.query(MediaWatch)
            .filter(
                MediaWatch.platform == platform,
                MediaWatch.external_id == external_id,
            )
            .first()
        )

    def count(self, platform: str | None = None) -> int:
        query = self.db.query(func.count(MediaWatch.id))
        if platform is not None:
            query = query.filter(MediaWatch.platform == platform)
        return query.scalar() or 0

    def upsert(self, item: WatchItem) -> tuple[MediaWatch, bool]:
        """Insert the item or update the existing row with the same key.

        Commits on success. The caller rolls back on failure.

        Args:
            item: Normalized watch item.

        Returns:
            (row, created) where created is True for a first-time insert.
        """
        existing = self.get(item.platform, item.external_id)
        if existing is not None:
            self._apply(existing, item)
            self.db.commit()
            return existing, False

        row = MediaWatch(
            platform=item.platform,
            external_id=item.external_id,
            type=item.type,
            title=item.title,
            cover=item.cover,
            url=item.url,
            watched_at=item.watched_at.isoformat(),
            progress=item.progress,
            rating=item.rating,
            metadata_json=json.dumps(item.metadata, ensure_ascii=False, default=str),
        )
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError:
            # Inserted concurrently by another writer; fall back to update
            self.db.rollback()
            existing = self.get(item.platform, item.external_id)
            if existing is None:
                raise
            self._apply(existing, item)
            self.db.commit()
            return existing, False
        return row, True

    def _apply(self, row: MediaWatch, item: WatchItem) -> None:
        row.watched_at = item.watched_at.isoformat()
        if item.progress is not None:
            row.progress = item.progress
        if item.rating is not None:
            row.rating = item.rating
        if item.title:
            row.title = item.title
        if item.cover:
            row.cover = item.cover
        if item.url:
            row.url = item.url
        row.type = item.type

        merged = json.loads(row.metadata_json or "{}")
        merged.update(item.metadata)
        row.metadata_json = json.dumps(merged, ensure_ascii=False, default=str)
        row.updated_at = utc_now_iso()
