from __future__ import annotations

from datetime import datetime, timedelta, timezone

from shelfmark.services.records import as_aware

TITLE_POINTS = 10
TAG_POINTS = 7
KEYWORD_POINTS = 6
DESCRIPTION_POINTS = 5
URL_POINTS = 3
FAVORITE_POINTS = 2
RECENT_POINTS = 1
RECENT_WINDOW = timedelta(days=7)


def _safe(value: str | None) -> str:
    return (value or "").lower()


def _any_contains(values, q: str) -> bool:
    return any(q in _safe(value) for value in values or [])


def score_bookmark(bookmark, query: str, now: datetime | None = None) -> int:
    q = (query or "").strip().lower()
    if not q:
        return 0
    now = as_aware(now or datetime.now(timezone.utc))

    score = 0
    if q in _safe(bookmark.title):
        score += TITLE_POINTS
    if _any_contains(bookmark.tags, q):
        score += TAG_POINTS
    if _any_contains(getattr(bookmark, "ai_keywords", None), q):
        score += KEYWORD_POINTS
    if q in _safe(bookmark.description):
        score += DESCRIPTION_POINTS
    if q in _safe(bookmark.url):
        score += URL_POINTS
    if getattr(bookmark, "is_favorite", False):
        score += FAVORITE_POINTS

    created_at = getattr(bookmark, "created_at", None)
    if created_at is not None and now - as_aware(created_at) <= RECENT_WINDOW:
        score += RECENT_POINTS
    return score


def rank_by_search_relevance(bookmarks, query: str, now: datetime | None = None):
    items = list(bookmarks)
    if not query or not query.strip():
        return items

    now = now or datetime.now(timezone.utc)
    scores = {id(item): score_bookmark(item, query, now) for item in items}
    # list.sort is stable, so equal scores keep their incoming order.
    items.sort(key=lambda item: scores[id(item)], reverse=True)
    return items
