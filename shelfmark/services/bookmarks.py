from __future__ import annotations

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from shelfmark.extensions import db
from shelfmark.models import (
    Bookmark,
    BookmarkKeyword,
    BookmarkLike,
    BookmarkTag,
    Collection,
    Tag,
    utcnow,
)
from shelfmark.services.categorizer import Categorization, Categorizer
from shelfmark.services.common import merge_tags, parse_tags, to_bool, to_int
from shelfmark.services.content import extract_thumbnail, favicon_for
from shelfmark.services.errors import NotFoundError, ValidationError
from shelfmark.services.media import infer_media_type

MAX_KEYWORDS = 20


def _clean(value) -> str:
    return str(value).strip() if value is not None else ""


def _optional_text(value) -> str | None:
    return _clean(value) or None


def get_user_bookmark(user_id: int, bookmark_id: int) -> Bookmark:
    bookmark = Bookmark.query.filter_by(id=bookmark_id, user_id=user_id).first()
    if not bookmark:
        raise NotFoundError("bookmark not found")
    return bookmark


def get_user_collection(user_id: int, collection_id) -> Collection:
    collection = None
    parsed_id = to_int(collection_id, None)
    if parsed_id is not None:
        collection = Collection.query.filter_by(id=parsed_id, user_id=user_id).first()
    if not collection:
        raise NotFoundError("collection not found")
    return collection


def _resolve_collection_id(user_id: int, raw) -> int | None:
    if raw in (None, "", "all"):
        return None
    return get_user_collection(user_id, raw).id


def assign_tags(user_id: int, bookmark: Bookmark, names: list[str]) -> None:
    existing_links = {link.tag.name: link for link in bookmark.tag_links}
    links = []
    for name in names:
        link = existing_links.get(name)
        if link is None:
            tag = Tag.query.filter_by(user_id=user_id, name=name).first()
            if not tag:
                tag = Tag(user_id=user_id, name=name)
                db.session.add(tag)
            link = BookmarkTag(tag=tag)
        links.append(link)
    bookmark.tag_links = links
    bookmark.tag_links.reorder()


def set_keywords(bookmark: Bookmark, keywords: list[str]) -> None:
    cleaned: list[str] = []
    for keyword in keywords:
        text = _clean(keyword)[:120]
        if text and text.lower() not in {item.lower() for item in cleaned}:
            cleaned.append(text)
    bookmark.keywords = [BookmarkKeyword(keyword=word) for word in cleaned[:MAX_KEYWORDS]]
    bookmark.keywords.reorder()


def create_or_merge_bookmark(user_id: int, payload: dict) -> tuple[Bookmark, bool]:
    """Save a bookmark, merging into an existing row with the same URL.

    Returns ``(bookmark, created)``. A second save of a URL the user already
    owns unions the incoming tags into the stored ones and creates nothing.
    Two concurrent saves of one URL can still both insert; that race is accepted.
    """
    title = _clean(payload.get("title"))
    url = _clean(payload.get("url"))
    if not title or not url:
        raise ValidationError("title and url are required")

    tags = parse_tags(payload.get("tags") or [])
    existing = (
        Bookmark.query.filter_by(user_id=user_id, url=url)
        .order_by(Bookmark.id.asc())
        .first()
    )
    if existing:
        merged = merge_tags(existing.tag_names, tags)
        if merged != existing.tag_names:
            assign_tags(user_id, existing, merged)
            existing.updated_at = utcnow()
            db.session.commit()
        return existing, False

    bookmark = Bookmark(
        user_id=user_id,
        collection_id=_resolve_collection_id(user_id, payload.get("collection_id")),
        url=url,
        title=title,
        description=_optional_text(payload.get("description")),
        media_type=infer_media_type(url),
        is_favorite=to_bool(payload.get("is_favorite")),
        favicon_url=_optional_text(payload.get("favicon_url")) or favicon_for(url),
        thumbnail_url=_optional_text(payload.get("thumbnail_url")),
    )
    db.session.add(bookmark)
    db.session.flush()
    assign_tags(user_id, bookmark, tags)
    db.session.commit()
    return bookmark, True


def update_bookmark(
    user_id: int, bookmark: Bookmark, payload: dict, require_all: bool = False
) -> Bookmark:
    if require_all and (
        not _clean(payload.get("title")) or not _clean(payload.get("url"))
    ):
        raise ValidationError("title and url are required")
    for field in ("title", "url"):
        if field in payload and not _clean(payload.get(field)):
            raise ValidationError(f"{field} cannot be empty")
    if "url" in payload:
        taken = Bookmark.query.filter(
            Bookmark.user_id == user_id,
            Bookmark.url == _clean(payload["url"]),
            Bookmark.id != bookmark.id,
        ).first()
        if taken:
            raise ValidationError("another bookmark already uses this url")

    if "title" in payload:
        bookmark.title = _clean(payload["title"])
    if "url" in payload:
        url = _clean(payload["url"])
        if url != bookmark.url:
            bookmark.url = url
            bookmark.media_type = infer_media_type(url)
            bookmark.favicon_url = favicon_for(url)
    if "description" in payload or require_all:
        bookmark.description = _optional_text(payload.get("description"))
    if "collection_id" in payload or require_all:
        bookmark.collection_id = _resolve_collection_id(
            user_id, payload.get("collection_id")
        )
    if "tags" in payload or require_all:
        assign_tags(user_id, bookmark, parse_tags(payload.get("tags") or []))
    if "is_favorite" in payload or require_all:
        bookmark.is_favorite = to_bool(payload.get("is_favorite"))
    if "is_archived" in payload:
        bookmark.is_archived = to_bool(payload.get("is_archived"))
    if "thumbnail_url" in payload or require_all:
        bookmark.thumbnail_url = _optional_text(payload.get("thumbnail_url"))

    bookmark.updated_at = utcnow()
    db.session.commit()
    return bookmark


def delete_bookmark(bookmark: Bookmark) -> None:
    db.session.delete(bookmark)
    db.session.commit()


def like_bookmark(user_id: int, bookmark: Bookmark) -> tuple[BookmarkLike | None, bool]:
    """Returns ``(like, created)``; a repeated like is reported, not raised."""
    like = BookmarkLike(bookmark_id=bookmark.id, user_id=user_id)
    db.session.add(like)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return None, False
    return like, True


def unlike_bookmark(user_id: int, bookmark: Bookmark) -> None:
    BookmarkLike.query.filter_by(bookmark_id=bookmark.id, user_id=user_id).delete()
    db.session.commit()


def like_summary(bookmark_ids, viewer_id: int) -> dict[int, tuple[int, bool]]:
    ids = list(bookmark_ids)
    if not ids:
        return {}
    counts = dict(
        db.session.query(BookmarkLike.bookmark_id, func.count(BookmarkLike.user_id.distinct()))
        .filter(BookmarkLike.bookmark_id.in_(ids))
        .group_by(BookmarkLike.bookmark_id)
        .all()
    )
    liked = {
        row.bookmark_id
        for row in db.session.query(BookmarkLike.bookmark_id)
        .filter(BookmarkLike.bookmark_id.in_(ids), BookmarkLike.user_id == viewer_id)
        .all()
    }
    return {item: (counts.get(item, 0), item in liked) for item in ids}


def serialize_bookmarks(bookmarks, viewer_id: int) -> list[dict]:
    summary = like_summary([bookmark.id for bookmark in bookmarks], viewer_id)
    return [
        bookmark.as_dict(*summary.get(bookmark.id, (0, False))) for bookmark in bookmarks
    ]


def apply_categorization(
    user_id: int, bookmark: Bookmark, result: Categorization, merge_suggested_tags=True
) -> None:
    bookmark.ai_category = result.category
    bookmark.ai_summary = result.summary or None
    bookmark.ai_confidence = result.confidence
    set_keywords(bookmark, result.keywords)
    if merge_suggested_tags and result.tags:
        assign_tags(user_id, bookmark, merge_tags(bookmark.tag_names, result.tags))
    bookmark.enriched_at = utcnow()


def enrich_bookmark(bookmark: Bookmark, categorizer: Categorizer) -> bool:
    """Best-effort AI categorization and thumbnail lookup.

    Never raises: enrichment failures are logged and the bookmark keeps whatever
    it already had.
    """
    config = current_app.config
    enriched = True
    try:
        result = categorizer.categorize(
            bookmark.title, bookmark.url, bookmark.description
        )
        apply_categorization(bookmark.user_id, bookmark, result)
        if not bookmark.thumbnail_url:
            bookmark.thumbnail_url = extract_thumbnail(
                bookmark.url,
                timeout=config["CONTENT_FETCH_TIMEOUT"],
                max_bytes=config["CONTENT_MAX_BYTES"],
            )
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        current_app.logger.warning(
            "Enrichment failed for bookmark %s: %s", bookmark.id, exc
        )
        enriched = False
    return enriched


def popular_tags(user_id: int, limit: int | None = 10) -> list[tuple[str, int]]:
    rows = (
        db.session.query(Tag.name, func.count(BookmarkTag.bookmark_id))
        .join(BookmarkTag, BookmarkTag.tag_id == Tag.id)
        .filter(Tag.user_id == user_id)
        .group_by(Tag.name)
        .order_by(func.count(BookmarkTag.bookmark_id).desc(), Tag.name.asc())
        .limit(limit)
        .all()
    )
    return [(name, count) for name, count in rows]


def ensure_collection_path(
    user_id: int, path: list[str], parent_id: int | None = None, cache=None
) -> int | None:
    cache = cache if cache is not None else {}
    for part in path:
        name = _clean(part)
        if not name:
            continue
        key = (parent_id, name)
        if key not in cache:
            collection = Collection.query.filter_by(
                user_id=user_id, name=name, parent_id=parent_id
            ).first()
            if not collection:
                collection = Collection(user_id=user_id, name=name, parent_id=parent_id)
                db.session.add(collection)
                db.session.flush()
            cache[key] = collection.id
        parent_id = cache[key]
    return parent_id


def import_entries(user_id: int, entries, root_collection: str | None = None) -> dict:
    """Create bookmarks for imported entries, skipping URLs the user already has."""
    stats = {"imported": 0, "skipped": 0, "errors": 0, "total": len(entries)}
    cache: dict = {}
    root_id = None
    if root_collection:
        root_id = ensure_collection_path(user_id, [root_collection], cache=cache)
        db.session.commit()
    known_urls = {
        url for (url,) in db.session.query(Bookmark.url).filter_by(user_id=user_id).all()
    }

    for entry in entries:
        if entry.url in known_urls:
            stats["skipped"] += 1
            continue
        try:
            collection_id = ensure_collection_path(
                user_id, entry.folder_path, parent_id=root_id, cache=cache
            )
            bookmark = Bookmark(
                user_id=user_id,
                collection_id=collection_id,
                url=entry.url,
                title=entry.title or entry.url,
                media_type=infer_media_type(entry.url),
                favicon_url=favicon_for(entry.url),
            )
            if entry.added_at:
                bookmark.created_at = entry.added_at
            db.session.add(bookmark)
            db.session.flush()
            assign_tags(user_id, bookmark, entry.tags)
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            # Collections created inside the failed transaction are gone too.
            cache = {key: value for key, value in cache.items() if value == root_id}
            current_app.logger.warning("Failed to import %s: %s", entry.url, exc)
            stats["errors"] += 1
            continue
        known_urls.add(entry.url)
        stats["imported"] += 1

    return stats
