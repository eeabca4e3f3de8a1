from __future__ import annotations

from sqlalchemy import inspect

from shelfmark.extensions import db
from shelfmark.models import Bookmark
from shelfmark.services.media import infer_media_type


def backfill_media_types(batch_size: int = 500) -> int:
    """Fill ``media_type`` on rows stored before it was inferred at save time."""
    if not inspect(db.engine).has_table(Bookmark.__tablename__):
        return 0

    updated = 0
    while True:
        rows = (
            Bookmark.query.filter(Bookmark.media_type.is_(None))
            .order_by(Bookmark.id.asc())
            .limit(batch_size)
            .all()
        )
        if not rows:
            break
        for bookmark in rows:
            bookmark.media_type = infer_media_type(bookmark.url)
        updated += len(rows)
        db.session.commit()
    return updated
