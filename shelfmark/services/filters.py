from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone

from flask import current_app
from sqlalchemy import false, func, or_
from sqlalchemy.exc import SQLAlchemyError

from shelfmark.extensions import db
from shelfmark.models import (
    MEDIA_TYPES,
    Bookmark,
    BookmarkKeyword,
    BookmarkTag,
    Collection,
    SearchHistory,
    Tag,
)
from shelfmark.services.collections import resolve_collection_ids
from shelfmark.services.common import parse_tags, to_bool, to_int
from shelfmark.services.records import BookmarkRecord
from shelfmark.services.search import rank_by_search_relevance

TAG_MODE_ANY = "any"
TAG_MODE_ALL = "all"
TAG_MODES = {TAG_MODE_ANY, TAG_MODE_ALL}

SORT_COLUMNS = {
    "created_at": Bookmark.created_at,
    "updated_at": Bookmark.updated_at,
    "title": Bookmark.title,
}
DEFAULT_SORT = "created_at"

DATE_RANGES = {"today": 0, "week": 7, "month": 30}

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


@dataclass
class ListQuery:
    collection: str | None = None
    tags: list[str] = field(default_factory=list)
    tag_mode: str = TAG_MODE_ANY
    media_type: str | None = None
    search: str | None = None
    sort: str = DEFAULT_SORT
    order: str = "desc"
    limit: int = DEFAULT_LIMIT
    offset: int = 0
    favorites_only: bool = False
    include_archived: bool = False
    date_range: str = "all"

    def __post_init__(self):
        if self.sort not in SORT_COLUMNS:
            self.sort = DEFAULT_SORT
            self.order = "desc"
        elif self.order != "asc":
            self.order = "desc"
        if self.tag_mode not in TAG_MODES:
            self.tag_mode = TAG_MODE_ANY
        self.search = (self.search or "").strip() or None
        self.offset = max(0, self.offset)

    @classmethod
    def from_args(cls, args, default_limit=DEFAULT_LIMIT, max_limit=MAX_LIMIT):
        collection = args.get("collection")
        if collection is None:
            collection = args.get("collection_id")
        limit = to_int(args.get("limit"), default_limit)
        return cls(
            collection=collection,
            tags=parse_tags(args.get("tags") or ""),
            tag_mode=(args.get("tag_mode") or TAG_MODE_ANY).strip().lower(),
            media_type=(args.get("media_type") or "").strip().lower() or None,
            search=args.get("search") or args.get("q"),
            sort=(args.get("sort") or DEFAULT_SORT).strip().lower(),
            order=(args.get("order") or "desc").strip().lower(),
            limit=min(max(limit, 1), max_limit),
            offset=to_int(args.get("offset"), 0),
            favorites_only=to_bool(args.get("favorites")),
            include_archived=to_bool(args.get("include_archived")),
            date_range=(args.get("date") or "all").strip().lower(),
        )


@dataclass
class ListResult:
    items: list[Bookmark]
    total: int


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _has_tag(names):
    return Bookmark.tag_links.any(BookmarkTag.tag.has(Tag.name.in_(names)))


def text_match_clause(search: str):
    lowered = search.strip().lower()
    pattern = f"%{_escape_like(lowered)}%"
    return or_(
        func.lower(Bookmark.title).like(pattern, escape="\\"),
        func.lower(func.coalesce(Bookmark.description, "")).like(pattern, escape="\\"),
        func.lower(Bookmark.url).like(pattern, escape="\\"),
        _has_tag([lowered]),
        Bookmark.keywords.any(func.lower(BookmarkKeyword.keyword) == lowered),
    )


def _date_floor(date_range: str, now: datetime) -> datetime | None:
    days = DATE_RANGES.get(date_range)
    if days is None:
        return None
    start_of_today = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)
    return start_of_today - timedelta(days=days)


def apply_filters(query, user_id: int, list_query: ListQuery, collection_ids=None):
    query = query.filter(Bookmark.user_id == user_id)

    if not list_query.include_archived:
        query = query.filter(Bookmark.is_archived.is_(False))

    if collection_ids is not None:
        stored_ids = {
            to_int(value, None)
            for value in collection_ids
            if to_int(value, None) is not None
        }
        if stored_ids:
            query = query.filter(Bookmark.collection_id.in_(stored_ids))
        else:
            query = query.filter(false())

    if list_query.tags:
        if list_query.tag_mode == TAG_MODE_ALL:
            for name in list_query.tags:
                query = query.filter(_has_tag([name]))
        else:
            query = query.filter(_has_tag(list_query.tags))

    if list_query.media_type:
        if list_query.media_type in MEDIA_TYPES:
            query = query.filter(Bookmark.media_type == list_query.media_type)
        else:
            query = query.filter(false())

    if list_query.search:
        query = query.filter(text_match_clause(list_query.search))

    if list_query.favorites_only:
        query = query.filter(Bookmark.is_favorite.is_(True))

    floor = _date_floor(list_query.date_range, datetime.now(timezone.utc))
    if floor is not None:
        query = query.filter(Bookmark.created_at >= floor)

    return query


def apply_sort(query, list_query: ListQuery):
    column = SORT_COLUMNS[list_query.sort]
    if list_query.order == "asc":
        return query.order_by(column.asc(), Bookmark.id.asc())
    return query.order_by(column.desc(), Bookmark.id.desc())


def user_collection_edges(user_id: int):
    return (
        db.session.query(Collection.id, Collection.parent_id)
        .filter(Collection.user_id == user_id)
        .all()
    )


def list_bookmarks(user_id: int, list_query: ListQuery) -> ListResult:
    collection_ids = resolve_collection_ids(
        list_query.collection, user_collection_edges(user_id)
    )
    query = apply_filters(Bookmark.query, user_id, list_query, collection_ids)
    total = query.count()
    query = apply_sort(query, list_query)

    if not list_query.search:
        items = query.offset(list_query.offset).limit(list_query.limit).all()
        return ListResult(items=items, total=total)

    rows = query.all()
    by_id = {row.id: row for row in rows}
    ranked = rank_by_search_relevance(
        [BookmarkRecord.from_model(row) for row in rows], list_query.search
    )
    page = ranked[list_query.offset : list_query.offset + list_query.limit]
    return ListResult(items=[by_id[record.id] for record in page], total=total)


def record_search(user_id: int, query: str, results_count: int) -> None:
    try:
        db.session.add(
            SearchHistory(
                user_id=user_id, query_text=query[:512], results_count=results_count
            )
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning(
            "Failed to record search history for user %s: %s", user_id, exc
        )
