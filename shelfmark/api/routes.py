from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

from flask import current_app, g, jsonify, request
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from shelfmark.api import api_bp
from shelfmark.extensions import db
from shelfmark.models import (
    DEFAULT_COLLECTION_COLOR,
    DEFAULT_COLLECTION_ICON,
    MEDIA_OTHER,
    Bookmark,
    Collection,
    SearchHistory,
    User,
    utcnow,
)
from shelfmark.services.bookmark_import import parse_bookmark_html, parse_sync_payload
from shelfmark.services.bookmarks import (
    apply_categorization,
    create_or_merge_bookmark,
    delete_bookmark,
    enrich_bookmark,
    get_user_bookmark,
    get_user_collection,
    import_entries,
    like_bookmark,
    like_summary,
    popular_tags,
    serialize_bookmarks,
    unlike_bookmark,
    update_bookmark,
)
from shelfmark.services.categorizer import fold_into_existing
from shelfmark.services.collections import (
    ALL_COLLECTIONS,
    collection_tree,
    descendant_ids,
    subtree_bookmark_counts,
)
from shelfmark.services.common import to_bool, to_int
from shelfmark.services.content import extract_thumbnail
from shelfmark.services.errors import (
    ConflictError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from shelfmark.services.filters import (
    TAG_MODE_ANY,
    ListQuery,
    list_bookmarks,
    record_search,
)
from shelfmark.services.records import as_aware
from shelfmark.services.security import api_auth_required

SAVED_TAG = "save"
SYNC_COLLECTION = "Browser Import"
ANALYTICS_PERIODS = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}


@api_bp.errorhandler(ServiceError)
def handle_service_error(exc: ServiceError):
    return jsonify({"error": exc.message}), exc.status_code


@api_bp.errorhandler(SQLAlchemyError)
def handle_database_error(exc: SQLAlchemyError):
    db.session.rollback()
    current_app.logger.exception("Database error on %s %s", request.method, request.path)
    return jsonify({"error": "internal server error"}), 500


def _categorizer():
    return current_app.extensions["categorizer"]


def _list_query() -> ListQuery:
    return ListQuery.from_args(
        request.args,
        default_limit=current_app.config["DEFAULT_PAGE_SIZE"],
        max_limit=current_app.config["MAX_PAGE_SIZE"],
    )


def _page_payload(list_query: ListQuery, result, viewer_id: int) -> dict:
    return {
        "items": serialize_bookmarks(result.items, viewer_id),
        "total": result.total,
        "limit": list_query.limit,
        "offset": list_query.offset,
    }


def _bookmark_payload(bookmark: Bookmark, viewer_id: int) -> dict:
    return serialize_bookmarks([bookmark], viewer_id)[0]


def _required_text(payload: dict, *fields) -> list[str]:
    values = [str(payload.get(field) or "").strip() for field in fields]
    if not all(values):
        raise ValidationError(f"{' and '.join(fields)} are required")
    return values


@api_bp.route("/health")
def health():
    return jsonify({"status": "ok", "service": "Shelfmark"})


@api_bp.route("/admin/users", methods=["POST"])
@api_auth_required(admin=True)
def admin_create_user():
    payload = request.get_json(silent=True) or {}
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""
    if not username or not password:
        raise ValidationError("username and password are required")
    if User.query.filter_by(username=username).first():
        raise ConflictError("username already exists")

    user = User(
        username=username,
        is_admin=to_bool(payload.get("is_admin")),
        is_active=True,
    )
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return jsonify({"status": "created", "user_id": user.id}), 201


# Collections


def _direct_counts(user_id: int) -> dict:
    rows = (
        db.session.query(Bookmark.collection_id, func.count(Bookmark.id))
        .filter(
            Bookmark.user_id == user_id,
            Bookmark.is_archived.is_(False),
            Bookmark.collection_id.isnot(None),
        )
        .group_by(Bookmark.collection_id)
        .all()
    )
    return dict(rows)


def _validate_parent(user_id: int, collection: Collection | None, raw_parent):
    if raw_parent in (None, "", ALL_COLLECTIONS):
        return None
    parent = get_user_collection(user_id, raw_parent)
    if collection is not None:
        rows = Collection.query.filter_by(user_id=user_id).all()
        if parent.id == collection.id or parent.id in descendant_ids(collection.id, rows):
            raise ValidationError("a collection cannot be nested inside itself")
    return parent.id


def _name_taken(user_id: int, name: str, parent_id, exclude_id=None) -> bool:
    query = Collection.query.filter_by(user_id=user_id, name=name, parent_id=parent_id)
    if exclude_id is not None:
        query = query.filter(Collection.id != exclude_id)
    return query.first() is not None


def _ensure_unique_name(user_id: int, name: str, parent_id, exclude_id=None):
    if _name_taken(user_id, name, parent_id, exclude_id):
        raise ValidationError("a collection with this name already exists here")


def _lifted_name(user_id: int, child: Collection, parent_id, former_parent: str) -> str:
    """Name a child keeps when it moves up; clashes get the old parent's name."""
    if not _name_taken(user_id, child.name, parent_id, exclude_id=child.id):
        return child.name
    candidate = f"{child.name} ({former_parent})"
    counter = 2
    while _name_taken(user_id, candidate, parent_id, exclude_id=child.id):
        candidate = f"{child.name} ({former_parent} {counter})"
        counter += 1
    return candidate


@api_bp.route("/collections", methods=["GET"])
@api_auth_required()
def collections_list():
    user = g.api_user
    rows = (
        Collection.query.filter_by(user_id=user.id).order_by(Collection.name.asc()).all()
    )
    direct = _direct_counts(user.id)
    totals = subtree_bookmark_counts(rows, direct)
    total_bookmarks = Bookmark.query.filter_by(user_id=user.id, is_archived=False).count()

    def serialize(row: Collection) -> dict:
        return {
            **row.as_dict(),
            "bookmark_count": direct.get(row.id, 0),
            "total_count": totals.get(row.id, 0),
        }

    everything = {
        "id": ALL_COLLECTIONS,
        "name": "All Bookmarks",
        "description": None,
        "parent_id": None,
        "color": DEFAULT_COLLECTION_COLOR,
        "icon": DEFAULT_COLLECTION_ICON,
        "bookmark_count": total_bookmarks,
        "total_count": total_bookmarks,
    }
    if to_bool(request.args.get("tree")):
        items = collection_tree(rows, serialize=serialize)
    else:
        items = [serialize(row) for row in rows]
    return jsonify({"items": [everything, *items]})


@api_bp.route("/collections", methods=["POST"])
@api_auth_required()
def collections_create():
    user = g.api_user
    payload = request.get_json(silent=True) or {}
    name = (payload.get("name") or "").strip()
    if not name:
        raise ValidationError("collection name is required")

    parent_id = _validate_parent(user.id, None, payload.get("parent_id"))
    _ensure_unique_name(user.id, name, parent_id)
    collection = Collection(
        user_id=user.id,
        name=name,
        description=(payload.get("description") or "").strip() or None,
        parent_id=parent_id,
        color=(payload.get("color") or "").strip() or DEFAULT_COLLECTION_COLOR,
        icon=(payload.get("icon") or "").strip() or DEFAULT_COLLECTION_ICON,
    )
    db.session.add(collection)
    db.session.commit()
    return jsonify(collection.as_dict()), 201


@api_bp.route("/collections/<int:collection_id>", methods=["GET"])
@api_auth_required()
def collections_get(collection_id: int):
    user = g.api_user
    collection = get_user_collection(user.id, collection_id)
    bookmarks = (
        Bookmark.query.filter_by(
            user_id=user.id, collection_id=collection.id, is_archived=False
        )
        .order_by(Bookmark.created_at.desc(), Bookmark.id.desc())
        .all()
    )
    return jsonify(
        {
            **collection.as_dict(),
            "children": [
                child.as_dict()
                for child in sorted(collection.children, key=lambda row: row.name.lower())
            ],
            "bookmarks": serialize_bookmarks(bookmarks, user.id),
        }
    )


@api_bp.route("/collections/<int:collection_id>", methods=["PATCH", "PUT"])
@api_auth_required()
def collections_update(collection_id: int):
    user = g.api_user
    collection = get_user_collection(user.id, collection_id)
    payload = request.get_json(silent=True) or {}

    name = collection.name
    if "name" in payload:
        name = (payload.get("name") or "").strip()
        if not name:
            raise ValidationError("collection name cannot be empty")
    parent_id = collection.parent_id
    if "parent_id" in payload:
        parent_id = _validate_parent(user.id, collection, payload.get("parent_id"))
    if name != collection.name or parent_id != collection.parent_id:
        _ensure_unique_name(user.id, name, parent_id, exclude_id=collection.id)

    collection.name = name
    collection.parent_id = parent_id
    if "description" in payload:
        collection.description = (payload.get("description") or "").strip() or None
    if "color" in payload:
        collection.color = (payload.get("color") or "").strip() or DEFAULT_COLLECTION_COLOR
    if "icon" in payload:
        collection.icon = (payload.get("icon") or "").strip() or DEFAULT_COLLECTION_ICON
    collection.updated_at = utcnow()
    db.session.commit()
    return jsonify(collection.as_dict())


@api_bp.route("/collections/<int:collection_id>", methods=["DELETE"])
@api_auth_required()
def collections_delete(collection_id: int):
    user = g.api_user
    collection = get_user_collection(user.id, collection_id)

    for bookmark in list(collection.bookmarks):
        bookmark.collection = None
    for child in list(collection.children):
        child.name = _lifted_name(user.id, child, collection.parent_id, collection.name)
        child.parent = collection.parent
    db.session.delete(collection)
    db.session.commit()
    return jsonify({"status": "deleted"})


# Bookmarks


@api_bp.route("/tags", methods=["GET"])
@api_auth_required()
def tags_list():
    user = g.api_user
    rows = popular_tags(user.id, limit=None)
    return jsonify({"items": [{"name": name, "count": count} for name, count in rows]})


@api_bp.route("/bookmarks", methods=["GET"])
@api_auth_required()
def bookmarks_list_api():
    user = g.api_user
    list_query = _list_query()
    result = list_bookmarks(user.id, list_query)
    return jsonify(_page_payload(list_query, result, user.id))


@api_bp.route("/bookmarks/saved", methods=["GET"])
@api_auth_required()
def bookmarks_saved_api():
    user = g.api_user
    list_query = replace(_list_query(), tags=[SAVED_TAG], tag_mode=TAG_MODE_ANY)
    result = list_bookmarks(user.id, list_query)
    return jsonify(_page_payload(list_query, result, user.id))


@api_bp.route("/bookmarks", methods=["POST"])
@api_auth_required()
def bookmarks_create_api():
    user = g.api_user
    payload = request.get_json(silent=True) or {}
    bookmark, created = create_or_merge_bookmark(user.id, payload)
    if created and current_app.config["AUTO_ENRICH"]:
        enrich_bookmark(bookmark, _categorizer())
    return jsonify(_bookmark_payload(bookmark, user.id)), 201 if created else 200


@api_bp.route("/bookmarks/<int:bookmark_id>", methods=["GET"])
@api_auth_required()
def bookmarks_get_api(bookmark_id: int):
    user = g.api_user
    bookmark = get_user_bookmark(user.id, bookmark_id)
    return jsonify(_bookmark_payload(bookmark, user.id))


@api_bp.route("/bookmarks/<int:bookmark_id>", methods=["PATCH", "PUT"])
@api_auth_required()
def bookmarks_update_api(bookmark_id: int):
    user = g.api_user
    bookmark = get_user_bookmark(user.id, bookmark_id)
    payload = request.get_json(silent=True) or {}
    update_bookmark(user.id, bookmark, payload, require_all=request.method == "PUT")
    return jsonify(_bookmark_payload(bookmark, user.id))


@api_bp.route("/bookmarks/<int:bookmark_id>", methods=["DELETE"])
@api_auth_required()
def bookmarks_delete_api(bookmark_id: int):
    user = g.api_user
    delete_bookmark(get_user_bookmark(user.id, bookmark_id))
    return jsonify({"status": "deleted"})


@api_bp.route("/bookmarks/<int:bookmark_id>/like", methods=["POST"])
@api_auth_required()
def bookmarks_like_api(bookmark_id: int):
    user = g.api_user
    bookmark = get_user_bookmark(user.id, bookmark_id)
    _, created = like_bookmark(user.id, bookmark)
    count, liked = like_summary([bookmark_id], user.id)[bookmark_id]
    return (
        jsonify({"bookmark_id": bookmark_id, "likes_count": count, "is_liked": liked}),
        201 if created else 200,
    )


@api_bp.route("/bookmarks/<int:bookmark_id>/like", methods=["DELETE"])
@api_auth_required()
def bookmarks_unlike_api(bookmark_id: int):
    user = g.api_user
    bookmark = get_user_bookmark(user.id, bookmark_id)
    unlike_bookmark(user.id, bookmark)
    count, liked = like_summary([bookmark_id], user.id)[bookmark_id]
    return jsonify({"bookmark_id": bookmark_id, "likes_count": count, "is_liked": liked})


@api_bp.route("/search", methods=["GET"])
@api_auth_required()
def search_api():
    user = g.api_user
    query = (request.args.get("q") or "").strip()
    if not query:
        raise ValidationError("q is required")

    list_query = replace(_list_query(), search=query)
    result = list_bookmarks(user.id, list_query)
    payload = _page_payload(list_query, result, user.id)
    record_search(user.id, query, result.total)
    return jsonify({**payload, "query": query})


# Enrichment


@api_bp.route("/bookmarks/categorize", methods=["POST"])
@api_auth_required()
def categorize_preview_api():
    payload = request.get_json(silent=True) or {}
    title, url = _required_text(payload, "title", "url")
    result = _categorizer().categorize(
        title, url, payload.get("description"), payload.get("content")
    )
    return jsonify(result.as_dict())


@api_bp.route("/bookmarks/<int:bookmark_id>/categorize", methods=["POST"])
@api_auth_required()
def categorize_bookmark_api(bookmark_id: int):
    user = g.api_user
    bookmark = get_user_bookmark(user.id, bookmark_id)
    result = _categorizer().categorize(bookmark.title, bookmark.url, bookmark.description)
    apply_categorization(user.id, bookmark, result)
    db.session.commit()
    return jsonify(
        {
            "bookmark": _bookmark_payload(bookmark, user.id),
            "categorization": result.as_dict(),
        }
    )


@api_bp.route("/bookmarks/batch-categorize", methods=["POST"])
@api_auth_required()
def batch_categorize_api():
    user = g.api_user
    payload = request.get_json(silent=True) or {}
    query = Bookmark.query.filter_by(user_id=user.id)

    raw_ids = payload.get("bookmark_ids")
    if raw_ids is not None:
        if not isinstance(raw_ids, list):
            raise ValidationError("bookmark_ids must be a list")
        ids = {to_int(item, None) for item in raw_ids} - {None}
        bookmarks = query.filter(Bookmark.id.in_(ids)).order_by(Bookmark.id.asc()).all()
    else:
        bookmarks = (
            query.filter(Bookmark.enriched_at.is_(None))
            .order_by(Bookmark.created_at.asc(), Bookmark.id.asc())
            .limit(current_app.config["ENRICH_BATCH_SIZE"])
            .all()
        )

    results = _categorizer().batch_categorize(bookmarks)
    for bookmark in bookmarks:
        apply_categorization(user.id, bookmark, results[bookmark.id])
    db.session.commit()
    return jsonify(
        {
            "processed": len(bookmarks),
            "items": serialize_bookmarks(bookmarks, user.id),
        }
    )


@api_bp.route("/bookmarks/suggest-tags", methods=["POST"])
@api_auth_required()
def suggest_tags_api():
    user = g.api_user
    payload = request.get_json(silent=True) or {}
    title, url = _required_text(payload, "title", "url")

    popular = popular_tags(user.id, limit=10)
    known = [name for name, _ in popular_tags(user.id, limit=None)]
    suggested = _categorizer().suggest_tags(
        title, url, payload.get("description"), payload.get("category")
    )
    return jsonify(
        {
            "suggested": fold_into_existing(suggested, known),
            "popular": [name for name, _ in popular],
        }
    )


@api_bp.route("/bookmarks/extract-thumbnail", methods=["POST"])
@api_auth_required()
def extract_thumbnail_api():
    payload = request.get_json(silent=True) or {}
    url = (payload.get("url") or "").strip()
    if not url:
        raise ValidationError("url is required")

    thumbnail_url = extract_thumbnail(
        url,
        timeout=current_app.config["CONTENT_FETCH_TIMEOUT"],
        max_bytes=current_app.config["CONTENT_MAX_BYTES"],
    )
    if not thumbnail_url:
        raise NotFoundError("no thumbnail found")
    return jsonify({"thumbnail_url": thumbnail_url})


# Import


@api_bp.route("/bookmarks/sync", methods=["POST"])
@api_auth_required()
def bookmarks_sync_api():
    user = g.api_user
    payload = request.get_json(silent=True)
    rows = payload.get("bookmarks") if isinstance(payload, dict) else payload
    if not isinstance(rows, list):
        raise ValidationError("bookmarks must be a list")

    entries = parse_sync_payload(rows)
    stats = import_entries(user.id, entries, root_collection=SYNC_COLLECTION)
    current_app.logger.info(
        "Browser sync for user %s: %s imported, %s skipped",
        user.id,
        stats["imported"],
        stats["skipped"],
    )
    return jsonify({"status": "done", **stats})


@api_bp.route("/import/browser-html", methods=["POST"])
@api_auth_required()
def import_browser_html_api():
    user = g.api_user
    upload = request.files.get("file")
    if not upload:
        raise ValidationError("file field is required")

    html = upload.read().decode("utf-8", errors="ignore")
    stats = import_entries(user.id, parse_bookmark_html(html))
    return jsonify({"status": "done", **stats})


# Analytics


@api_bp.route("/analytics", methods=["GET"])
@api_auth_required()
def analytics_api():
    user = g.api_user
    period = request.args.get("period") or "7d"
    if period not in ANALYTICS_PERIODS:
        period = "7d"
    since = datetime.now(timezone.utc) - timedelta(days=ANALYTICS_PERIODS[period])

    active = Bookmark.query.filter_by(user_id=user.id, is_archived=False)
    new_rows = (
        db.session.query(Bookmark.created_at)
        .filter(Bookmark.user_id == user.id, Bookmark.created_at >= since)
        .all()
    )
    activity: dict[str, int] = {}
    for (created_at,) in new_rows:
        day = as_aware(created_at).date().isoformat()
        activity[day] = activity.get(day, 0) + 1

    searches = (
        SearchHistory.query.filter(
            SearchHistory.user_id == user.id, SearchHistory.created_at >= since
        )
        .order_by(SearchHistory.created_at.desc(), SearchHistory.id.desc())
        .limit(10)
        .all()
    )
    collections = Collection.query.filter_by(user_id=user.id).order_by(Collection.name).all()
    direct = _direct_counts(user.id)
    media_mix: dict[str, int] = {}
    for media_type, count in (
        db.session.query(Bookmark.media_type, func.count(Bookmark.id))
        .filter(Bookmark.user_id == user.id, Bookmark.is_archived.is_(False))
        .group_by(Bookmark.media_type)
        .all()
    ):
        key = media_type or MEDIA_OTHER
        media_mix[key] = media_mix.get(key, 0) + count

    return jsonify(
        {
            "period": period,
            "overview": {
                "total_bookmarks": active.count(),
                "new_bookmarks": len(new_rows),
                "total_collections": len(collections),
                "total_searches": len(searches),
                "favorites": active.filter(Bookmark.is_favorite.is_(True)).count(),
            },
            "recent_searches": [row.as_dict() for row in searches],
            "collections": [
                {
                    "id": row.id,
                    "name": row.name,
                    "color": row.color,
                    "count": direct.get(row.id, 0),
                }
                for row in collections
            ],
            "activity": [
                {"date": day, "bookmarks": count} for day, count in sorted(activity.items())
            ],
            "top_tags": [
                {"name": name, "count": count} for name, count in popular_tags(user.id)
            ],
            "media_types": media_mix,
        }
    )
