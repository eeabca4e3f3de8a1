from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from shelfmark.models import MEDIA_OTHER, MEDIA_TYPES, Bookmark


@dataclass(frozen=True)
class BookmarkRecord:
    """Read-side view of a bookmark row with plain-string tags and keywords."""

    id: int
    title: str
    url: str
    created_at: datetime
    description: str = ""
    tags: list[str] = field(default_factory=list)
    ai_keywords: list[str] = field(default_factory=list)
    collection_id: int | None = None
    media_type: str = MEDIA_OTHER
    is_favorite: bool = False
    is_archived: bool = False
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, bookmark: Bookmark) -> "BookmarkRecord":
        media_type = bookmark.media_type if bookmark.media_type in MEDIA_TYPES else MEDIA_OTHER
        return cls(
            id=bookmark.id,
            title=bookmark.title or "",
            url=bookmark.url or "",
            created_at=as_aware(bookmark.created_at),
            description=bookmark.description or "",
            tags=bookmark.tag_names,
            ai_keywords=bookmark.ai_keywords,
            collection_id=bookmark.collection_id,
            media_type=media_type,
            is_favorite=bool(bookmark.is_favorite),
            is_archived=bool(bookmark.is_archived),
            updated_at=as_aware(bookmark.updated_at) if bookmark.updated_at else None,
        )


def as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
