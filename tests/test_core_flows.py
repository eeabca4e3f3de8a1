import io
import logging

from sqlalchemy.exc import OperationalError

from shelfmark.extensions import db
from shelfmark.models import (
    Bookmark,
    BookmarkKeyword,
    Collection,
    SearchHistory,
    User,
)


def _create_user(username: str, password: str, is_admin=False):
    user = User(username=username, is_admin=is_admin, is_active=True)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


def _token(client, username: str, password: str):
    response = client.post(
        "/api/v1/auth/token",
        json={"username": username, "password": password, "token_name": "pytest"},
    )
    assert response.status_code == 200
    return response.get_json()["token"]


def _auth(client, app, username="alice", password="secret"):
    with app.app_context():
        _create_user(username, password)
    return {"Authorization": f"Bearer {_token(client, username, password)}"}


def _save(client, headers, **payload):
    payload.setdefault("title", payload.get("url", "Untitled"))
    response = client.post("/api/v1/bookmarks", headers=headers, json=payload)
    assert response.status_code in (200, 201), response.get_json()
    return response.get_json()


def _collection(client, headers, name, parent_id=None):
    response = client.post(
        "/api/v1/collections",
        headers=headers,
        json={"name": name, "parent_id": parent_id},
    )
    assert response.status_code == 201
    return response.get_json()["id"]


def _urls(response):
    return sorted(item["url"] for item in response.get_json()["items"])


def test_bootstrap_admin_only_once(client):
    response = client.post(
        "/api/v1/auth/bootstrap-admin", json={"username": "admin", "password": "secret"}
    )
    assert response.status_code == 201

    response = client.post(
        "/api/v1/auth/bootstrap-admin", json={"username": "other", "password": "secret"}
    )
    assert response.status_code == 409


def test_admin_only_user_creation(client, app):
    with app.app_context():
        _create_user("admin", "secret", is_admin=True)
        _create_user("member", "secret", is_admin=False)

    member_token = _token(client, "member", "secret")
    response = client.post(
        "/api/v1/admin/users",
        headers={"Authorization": f"Bearer {member_token}"},
        json={"username": "blocked", "password": "test"},
    )
    assert response.status_code == 403

    admin_headers = {"Authorization": f"Bearer {_token(client, 'admin', 'secret')}"}
    response = client.post(
        "/api/v1/admin/users",
        headers=admin_headers,
        json={"username": "newbie", "password": "test"},
    )
    assert response.status_code == 201

    response = client.post(
        "/api/v1/admin/users",
        headers=admin_headers,
        json={"username": "newbie", "password": "test"},
    )
    assert response.status_code == 409
    assert response.get_json() == {"error": "username already exists"}


def test_requests_without_credentials_are_rejected(client):
    for path in ("/api/v1/bookmarks", "/api/v1/search?q=x", "/api/v1/collections"):
        response = client.get(path)
        assert response.status_code == 401
        assert response.get_json() == {"error": "authentication required"}

    response = client.get(
        "/api/v1/bookmarks", headers={"Authorization": "Bearer not-a-token"}
    )
    assert response.status_code == 401


def test_session_login_and_logout(client, app):
    with app.app_context():
        _create_user("alice", "secret")

    response = client.post(
        "/api/v1/auth/login", json={"username": "alice", "password": "wrong"}
    )
    assert response.status_code == 401

    response = client.post(
        "/api/v1/auth/login", json={"username": "alice", "password": "secret"}
    )
    assert response.status_code == 200
    assert client.get("/api/v1/bookmarks").status_code == 200

    assert client.post("/api/v1/auth/logout").status_code == 200
    assert client.get("/api/v1/bookmarks").status_code == 401


def test_create_bookmark_infers_media_and_normalizes_tags(client, app):
    headers = _auth(client, app)

    response = client.post(
        "/api/v1/bookmarks",
        headers=headers,
        json={
            "title": "  Talk  ",
            "url": "https://youtu.be/abc12345678",
            "tags": ["Conference", "python", "conference"],
        },
    )

    assert response.status_code == 201
    body = response.get_json()
    assert body["title"] == "Talk"
    assert body["media_type"] == "video"
    assert body["tags"] == ["conference", "python"]
    assert body["collection"] is None
    assert body["favicon_url"].endswith("domain=youtu.be&sz=32")
    assert body["likes_count"] == 0
    assert body["is_liked"] is False


def test_create_bookmark_requires_title_and_url(client, app):
    headers = _auth(client, app)

    response = client.post(
        "/api/v1/bookmarks", headers=headers, json={"url": "https://example.com"}
    )
    assert response.status_code == 400
    assert response.get_json() == {"error": "title and url are required"}

    response = client.post(
        "/api/v1/bookmarks", headers=headers, json={"title": "No link", "url": "  "}
    )
    assert response.status_code == 400

    with app.app_context():
        assert Bookmark.query.count() == 0


def test_saving_same_url_merges_tags_instead_of_duplicating(client, app):
    headers = _auth(client, app)

    first = client.post(
        "/api/v1/bookmarks",
        headers=headers,
        json={"title": "Docs", "url": "https://example.com/docs", "tags": "a,b"},
    )
    second = client.post(
        "/api/v1/bookmarks",
        headers=headers,
        json={"title": "Docs again", "url": "https://example.com/docs", "tags": "b,c"},
    )

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.get_json()["id"] == first.get_json()["id"]
    assert second.get_json()["tags"] == ["a", "b", "c"]
    assert second.get_json()["title"] == "Docs"

    with app.app_context():
        assert Bookmark.query.count() == 1


def test_other_users_cannot_see_or_touch_bookmarks(client, app):
    alice = _auth(client, app, "alice")
    bob = _auth(client, app, "bob")
    bookmark_id = _save(client, alice, url="https://example.com/private")["id"]

    assert client.get(f"/api/v1/bookmarks/{bookmark_id}", headers=bob).status_code == 404
    response = client.patch(
        f"/api/v1/bookmarks/{bookmark_id}", headers=bob, json={"title": "mine"}
    )
    assert response.status_code == 404
    assert response.get_json() == {"error": "bookmark not found"}
    assert client.delete(f"/api/v1/bookmarks/{bookmark_id}", headers=bob).status_code == 404
    assert (
        client.post(f"/api/v1/bookmarks/{bookmark_id}/like", headers=bob).status_code
        == 404
    )
    assert client.get("/api/v1/bookmarks", headers=bob).get_json()["total"] == 0

    # Same URL for another user is a separate bookmark.
    response = client.post(
        "/api/v1/bookmarks",
        headers=bob,
        json={"title": "Mine", "url": "https://example.com/private"},
    )
    assert response.status_code == 201
    assert response.get_json()["id"] != bookmark_id


def test_update_and_delete_bookmark(client, app):
    headers = _auth(client, app)
    bookmark_id = _save(
        client, headers, title="Old", url="https://example.com/a", tags=["x"]
    )["id"]

    response = client.patch(
        f"/api/v1/bookmarks/{bookmark_id}",
        headers=headers,
        json={"title": "New", "url": "https://example.com/song.mp3", "is_favorite": True},
    )
    body = response.get_json()
    assert response.status_code == 200
    assert body["title"] == "New"
    assert body["media_type"] == "audio"
    assert body["is_favorite"] is True
    assert body["tags"] == ["x"]

    response = client.put(
        f"/api/v1/bookmarks/{bookmark_id}", headers=headers, json={"title": "Only title"}
    )
    assert response.status_code == 400

    response = client.patch(
        f"/api/v1/bookmarks/{bookmark_id}", headers=headers, json={"title": ""}
    )
    assert response.status_code == 400

    response = client.delete(f"/api/v1/bookmarks/{bookmark_id}", headers=headers)
    assert response.status_code == 200
    assert client.get(f"/api/v1/bookmarks/{bookmark_id}", headers=headers).status_code == 404


def test_update_cannot_move_bookmark_onto_another_saved_url(client, app):
    headers = _auth(client, app)
    _save(client, headers, title="First", url="https://example.com/first")
    second_id = _save(client, headers, title="Second", url="https://example.com/second")["id"]

    response = client.patch(
        f"/api/v1/bookmarks/{second_id}",
        headers=headers,
        json={"url": "https://example.com/first"},
    )
    assert response.status_code == 400

    with app.app_context():
        assert Bookmark.query.filter_by(url="https://example.com/first").count() == 1
        assert db.session.get(Bookmark, second_id).url == "https://example.com/second"


def test_collection_filter_includes_descendants(client, app):
    headers = _auth(client, app)
    root = _collection(client, headers, "Root")
    child_a = _collection(client, headers, "ChildA", root)
    child_b = _collection(client, headers, "ChildB", child_a)

    for collection_id, url in (
        (root, "https://example.com/1"),
        (child_a, "https://example.com/2"),
        (child_b, "https://example.com/3"),
        (None, "https://example.com/none"),
    ):
        _save(client, headers, url=url, collection_id=collection_id)

    response = client.get(f"/api/v1/bookmarks?collection_id={root}", headers=headers)
    assert _urls(response) == [
        "https://example.com/1",
        "https://example.com/2",
        "https://example.com/3",
    ]
    assert response.get_json()["total"] == 3

    response = client.get(f"/api/v1/bookmarks?collection={child_a}", headers=headers)
    assert _urls(response) == ["https://example.com/2", "https://example.com/3"]

    response = client.get("/api/v1/bookmarks?collection_id=all", headers=headers)
    assert response.get_json()["total"] == 4

    for missing in ("9999", "abc"):
        response = client.get(
            f"/api/v1/bookmarks?collection_id={missing}", headers=headers
        )
        assert response.status_code == 200
        assert response.get_json()["items"] == []


def test_saving_into_unknown_collection_is_rejected(client, app):
    headers = _auth(client, app)

    response = client.post(
        "/api/v1/bookmarks",
        headers=headers,
        json={"title": "x", "url": "https://example.com", "collection_id": 42},
    )

    assert response.status_code == 404
    assert response.get_json() == {"error": "collection not found"}


def test_tag_filter_any_and_all(client, app):
    headers = _auth(client, app)
    _save(client, headers, url="https://example.com/both", tags=["python", "web"])
    _save(client, headers, url="https://example.com/python", tags=["python"])
    _save(client, headers, url="https://example.com/web", tags=["web"])
    _save(client, headers, url="https://example.com/none")

    response = client.get("/api/v1/bookmarks?tags=python,web", headers=headers)
    assert _urls(response) == [
        "https://example.com/both",
        "https://example.com/python",
        "https://example.com/web",
    ]

    response = client.get(
        "/api/v1/bookmarks?tags=python,web&tag_mode=all", headers=headers
    )
    assert _urls(response) == ["https://example.com/both"]


def test_saved_bucket_lists_bookmarks_tagged_save(client, app):
    headers = _auth(client, app)
    _save(client, headers, url="https://example.com/later", tags=["save", "read"])
    _save(client, headers, url="https://example.com/now", tags=["read"])

    response = client.get("/api/v1/bookmarks/saved?tags=read", headers=headers)

    assert _urls(response) == ["https://example.com/later"]


def test_media_type_and_favorites_filters(client, app):
    headers = _auth(client, app)
    _save(client, headers, url="https://www.youtube.com/watch?v=dQw4w9WgXcQ")
    _save(client, headers, url="https://example.com/episode.mp3", is_favorite=True)
    _save(client, headers, url="https://example.com/article")

    response = client.get("/api/v1/bookmarks?media_type=video", headers=headers)
    assert _urls(response) == ["https://www.youtube.com/watch?v=dQw4w9WgXcQ"]

    response = client.get("/api/v1/bookmarks?media_type=podcast", headers=headers)
    assert response.get_json()["items"] == []

    response = client.get("/api/v1/bookmarks?favorites=1", headers=headers)
    assert _urls(response) == ["https://example.com/episode.mp3"]


def test_archived_bookmarks_are_hidden_by_default(client, app):
    headers = _auth(client, app)
    bookmark_id = _save(client, headers, url="https://example.com/old")["id"]
    client.patch(
        f"/api/v1/bookmarks/{bookmark_id}", headers=headers, json={"is_archived": True}
    )

    assert client.get("/api/v1/bookmarks", headers=headers).get_json()["total"] == 0
    response = client.get("/api/v1/bookmarks?include_archived=1", headers=headers)
    assert response.get_json()["total"] == 1


def test_pagination_is_bounded_and_sort_falls_back(client, app):
    headers = _auth(client, app)
    ids = [
        _save(client, headers, title=f"Item {index}", url=f"https://example.com/{index}")["id"]
        for index in range(5)
    ]

    response = client.get("/api/v1/bookmarks?limit=2&offset=1", headers=headers)
    body = response.get_json()
    assert body["total"] == 5
    assert body["limit"] == 2
    assert body["offset"] == 1
    assert [item["id"] for item in body["items"]] == [ids[3], ids[2]]

    assert client.get("/api/v1/bookmarks?limit=0", headers=headers).get_json()["limit"] == 1
    assert (
        client.get("/api/v1/bookmarks?limit=100000", headers=headers).get_json()["limit"]
        == 200
    )

    response = client.get(
        "/api/v1/bookmarks?sort=password_hash&order=asc", headers=headers
    )
    assert [item["id"] for item in response.get_json()["items"]] == list(reversed(ids))

    response = client.get("/api/v1/bookmarks?sort=title&order=asc", headers=headers)
    assert [item["title"] for item in response.get_json()["items"]] == [
        f"Item {index}" for index in range(5)
    ]


def test_search_ranks_results_and_records_history(client, app):
    headers = _auth(client, app)
    _save(
        client,
        headers,
        title="Frontend link",
        url="https://example.com/react/intro",
    )
    _save(
        client,
        headers,
        title="Frontend notes",
        url="https://example.com/notes",
        description="Why I moved to react",
    )
    _save(
        client,
        headers,
        title="React Hooks Guide",
        url="https://example.com/hooks",
        tags=["react"],
    )
    _save(client, headers, title="Unrelated", url="https://example.com/other")

    response = client.get("/api/v1/search?q=react", headers=headers)

    assert response.status_code == 200
    body = response.get_json()
    assert body["total"] == 3
    assert [item["title"] for item in body["items"]] == [
        "React Hooks Guide",
        "Frontend notes",
        "Frontend link",
    ]

    with app.app_context():
        history = SearchHistory.query.all()
        assert [(row.query_text, row.results_count) for row in history] == [("react", 3)]

    assert client.get("/api/v1/search?q=", headers=headers).status_code == 400


def test_search_still_answers_when_history_cannot_be_written(
    client, app, monkeypatch, caplog
):
    headers = _auth(client, app)
    _save(client, headers, title="React Hooks Guide", url="https://example.com/hooks")
    _save(client, headers, title="Unrelated", url="https://example.com/other")

    def failing_history(**kwargs):
        raise OperationalError("INSERT INTO search_history", {}, Exception("disk I/O error"))

    monkeypatch.setattr("shelfmark.services.filters.SearchHistory", failing_history)

    with caplog.at_level(logging.WARNING):
        response = client.get("/api/v1/search?q=react", headers=headers)

    assert response.status_code == 200
    body = response.get_json()
    assert [item["title"] for item in body["items"]] == ["React Hooks Guide"]
    assert "Failed to record search history" in caplog.text
    with app.app_context():
        assert SearchHistory.query.count() == 0


def test_list_search_matches_ai_keywords(client, app):
    headers = _auth(client, app)
    bookmark_id = _save(client, headers, title="Plain", url="https://example.com/p")["id"]
    with app.app_context():
        bookmark = db.session.get(Bookmark, bookmark_id)
        bookmark.keywords = [BookmarkKeyword(keyword="Orchestration")]
        db.session.commit()

    response = client.get("/api/v1/bookmarks?search=orchestration", headers=headers)

    assert [item["id"] for item in response.get_json()["items"]] == [bookmark_id]
    assert response.get_json()["items"][0]["ai_keywords"] == ["Orchestration"]


def test_likes_are_idempotent(client, app):
    headers = _auth(client, app)
    bookmark_id = _save(client, headers, url="https://example.com/liked")["id"]

    first = client.post(f"/api/v1/bookmarks/{bookmark_id}/like", headers=headers)
    second = client.post(f"/api/v1/bookmarks/{bookmark_id}/like", headers=headers)

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.get_json() == {
        "bookmark_id": bookmark_id,
        "likes_count": 1,
        "is_liked": True,
    }
    body = client.get(f"/api/v1/bookmarks/{bookmark_id}", headers=headers).get_json()
    assert body["likes_count"] == 1
    assert body["is_liked"] is True

    response = client.delete(f"/api/v1/bookmarks/{bookmark_id}/like", headers=headers)
    assert response.get_json()["likes_count"] == 0
    assert response.get_json()["is_liked"] is False
    response = client.delete(f"/api/v1/bookmarks/{bookmark_id}/like", headers=headers)
    assert response.status_code == 200


def test_collections_list_counts_and_tree(client, app):
    headers = _auth(client, app)
    root = _collection(client, headers, "Root")
    child = _collection(client, headers, "Child", root)
    _save(client, headers, url="https://example.com/r", collection_id=root)
    _save(client, headers, url="https://example.com/c1", collection_id=child)
    _save(client, headers, url="https://example.com/c2", collection_id=child)
    _save(client, headers, url="https://example.com/loose")

    items = client.get("/api/v1/collections", headers=headers).get_json()["items"]
    assert items[0]["id"] == "all"
    assert items[0]["bookmark_count"] == 4
    by_name = {item["name"]: item for item in items[1:]}
    assert by_name["Root"]["bookmark_count"] == 1
    assert by_name["Root"]["total_count"] == 3
    assert by_name["Child"]["total_count"] == 2

    items = client.get("/api/v1/collections?tree=1", headers=headers).get_json()["items"]
    assert [item["name"] for item in items] == ["All Bookmarks", "Root"]
    assert [item["name"] for item in items[1]["children"]] == ["Child"]

    response = client.get(f"/api/v1/collections/{child}", headers=headers)
    assert sorted(item["url"] for item in response.get_json()["bookmarks"]) == [
        "https://example.com/c1",
        "https://example.com/c2",
    ]

    response = client.post(
        "/api/v1/collections", headers=headers, json={"name": "Child", "parent_id": root}
    )
    assert response.status_code == 400


def test_collection_cannot_be_moved_under_itself(client, app):
    headers = _auth(client, app)
    root = _collection(client, headers, "Root")
    child = _collection(client, headers, "Child", root)
    grandchild = _collection(client, headers, "Grandchild", child)

    for parent_id in (root, grandchild):
        response = client.patch(
            f"/api/v1/collections/{root}", headers=headers, json={"parent_id": parent_id}
        )
        assert response.status_code == 400

    response = client.patch(
        f"/api/v1/collections/{grandchild}",
        headers=headers,
        json={"parent_id": None, "name": "Promoted", "color": "#000000"},
    )
    assert response.status_code == 200
    assert response.get_json()["parent_id"] is None
    assert response.get_json()["name"] == "Promoted"


def test_deleting_collection_keeps_bookmarks_and_lifts_children(client, app):
    headers = _auth(client, app)
    root = _collection(client, headers, "Root")
    child = _collection(client, headers, "Child", root)
    grandchild = _collection(client, headers, "Grandchild", child)
    bookmark_id = _save(client, headers, url="https://example.com/kept", collection_id=child)["id"]

    response = client.delete(f"/api/v1/collections/{child}", headers=headers)
    assert response.status_code == 200

    bookmark = client.get(f"/api/v1/bookmarks/{bookmark_id}", headers=headers).get_json()
    assert bookmark["collection_id"] is None
    with app.app_context():
        assert db.session.get(Collection, child) is None
        assert db.session.get(Collection, grandchild).parent_id == root


def test_deleting_collection_renames_lifted_children_that_clash(client, app):
    headers = _auth(client, app)
    root = _collection(client, headers, "Root")
    _collection(client, headers, "Docs", root)
    middle = _collection(client, headers, "Middle", root)
    nested_docs = _collection(client, headers, "Docs", middle)

    response = client.delete(f"/api/v1/collections/{middle}", headers=headers)
    assert response.status_code == 200

    with app.app_context():
        lifted = db.session.get(Collection, nested_docs)
        assert lifted.parent_id == root
        assert lifted.name == "Docs (Middle)"
        names = Collection.query.filter_by(parent_id=root).all()
        assert sorted(c.name for c in names) == ["Docs", "Docs (Middle)"]


def test_deleting_top_level_collection_keeps_root_names_unique(client, app):
    headers = _auth(client, app)
    _collection(client, headers, "Docs")
    outer = _collection(client, headers, "Outer")
    _collection(client, headers, "Docs", outer)

    response = client.delete(f"/api/v1/collections/{outer}", headers=headers)
    assert response.status_code == 200

    with app.app_context():
        names = Collection.query.filter_by(parent_id=None).all()
        assert sorted(c.name for c in names) == ["Docs", "Docs (Outer)"]


def test_tags_endpoint_lists_usage_counts(client, app):
    headers = _auth(client, app)
    _save(client, headers, url="https://example.com/1", tags=["python", "web"])
    _save(client, headers, url="https://example.com/2", tags=["python"])

    items = client.get("/api/v1/tags", headers=headers).get_json()["items"]

    assert items == [{"name": "python", "count": 2}, {"name": "web", "count": 1}]


def test_auto_enrich_applies_categorization_and_thumbnail(client, app, monkeypatch):
    app.config["AUTO_ENRICH"] = True
    monkeypatch.setattr(
        "shelfmark.services.bookmarks.extract_thumbnail",
        lambda url, timeout, max_bytes: "https://img.example.com/t.png",
    )
    headers = _auth(client, app)

    body = _save(
        client,
        headers,
        title="Awesome programming repo",
        url="https://github.com/org/repo",
        tags=["mine"],
    )

    assert body["ai_category"] == "Development"
    assert body["tags"] == ["mine", "programming", "code", "github.com"]
    assert body["ai_keywords"] == ["awesome", "programming", "repo"]
    assert body["thumbnail_url"] == "https://img.example.com/t.png"


def test_enrichment_failure_does_not_block_saving(client, app, monkeypatch):
    app.config["AUTO_ENRICH"] = True

    def boom(*args, **kwargs):
        raise RuntimeError("categorizer exploded")

    monkeypatch.setattr(app.extensions["categorizer"], "categorize", boom)
    headers = _auth(client, app)

    response = client.post(
        "/api/v1/bookmarks",
        headers=headers,
        json={"title": "Still saved", "url": "https://example.com/saved"},
    )

    assert response.status_code == 201
    body = response.get_json()
    assert body["title"] == "Still saved"
    assert body["ai_category"] is None
    assert body["ai_keywords"] == []


def test_categorize_preview_and_apply(client, app):
    headers = _auth(client, app)

    response = client.post(
        "/api/v1/bookmarks/categorize",
        headers=headers,
        json={"title": "Daily news roundup", "url": "https://example.com"},
    )
    assert response.status_code == 200
    assert response.get_json()["category"] == "News"

    response = client.post(
        "/api/v1/bookmarks/categorize", headers=headers, json={"title": "No url"}
    )
    assert response.status_code == 400

    bookmark_id = _save(
        client, headers, title="Learn SQL course", url="https://example.com/sql"
    )["id"]
    response = client.post(f"/api/v1/bookmarks/{bookmark_id}/categorize", headers=headers)
    body = response.get_json()
    assert body["categorization"]["category"] == "Education"
    assert body["bookmark"]["ai_category"] == "Education"
    assert "learning" in body["bookmark"]["tags"]


def test_batch_categorize_processes_unenriched_bookmarks(client, app):
    headers = _auth(client, app)
    _save(client, headers, title="Some news", url="https://example.com/n")
    _save(client, headers, title="A handy tool", url="https://example.com/t")

    response = client.post("/api/v1/bookmarks/batch-categorize", headers=headers, json={})
    body = response.get_json()
    assert body["processed"] == 2
    assert sorted(item["ai_category"] for item in body["items"]) == ["News", "Tools"]

    response = client.post("/api/v1/bookmarks/batch-categorize", headers=headers, json={})
    assert response.get_json()["processed"] == 0

    response = client.post(
        "/api/v1/bookmarks/batch-categorize", headers=headers, json={"bookmark_ids": "1"}
    )
    assert response.status_code == 400


def test_suggest_tags_folds_into_existing_tags(client, app):
    headers = _auth(client, app)
    _save(client, headers, url="https://example.com/1", tags=["kubernete"])

    response = client.post(
        "/api/v1/bookmarks/suggest-tags",
        headers=headers,
        json={
            "title": "Kubernetes operators",
            "url": "https://www.k8s.io/docs",
            "category": "Tools",
        },
    )

    body = response.get_json()
    assert body["suggested"] == ["tools", "k8s.io", "kubernete", "operators"]
    assert body["popular"] == ["kubernete"]


def test_extract_thumbnail_endpoint(client, app, monkeypatch):
    headers = _auth(client, app)

    response = client.post(
        "/api/v1/bookmarks/extract-thumbnail",
        headers=headers,
        json={"url": "https://youtu.be/abc12345678"},
    )
    assert response.get_json() == {
        "thumbnail_url": "https://img.youtube.com/vi/abc12345678/maxresdefault.jpg"
    }

    monkeypatch.setattr(
        "shelfmark.api.routes.extract_thumbnail", lambda url, timeout, max_bytes: None
    )
    response = client.post(
        "/api/v1/bookmarks/extract-thumbnail",
        headers=headers,
        json={"url": "https://example.com/plain"},
    )
    assert response.status_code == 404


def test_browser_sync_imports_into_browser_collection(client, app):
    headers = _auth(client, app)
    _save(client, headers, url="https://example.com/known")
    payload = {
        "bookmarks": [
            {
                "title": "Docs",
                "url": "https://docs.example.com",
                "parentTitle": "Reading",
                "dateAdded": 1700000000000,
            },
            {"title": "Known", "url": "https://example.com/known"},
            {"title": "", "url": "https://example.com/untitled"},
        ]
    }

    response = client.post("/api/v1/bookmarks/sync", headers=headers, json=payload)
    assert response.status_code == 200
    body = response.get_json()
    assert (body["imported"], body["skipped"], body["errors"]) == (2, 1, 0)

    response = client.post("/api/v1/bookmarks/sync", headers=headers, json=payload)
    assert response.get_json()["skipped"] == 3

    with app.app_context():
        imported = Bookmark.query.filter_by(url="https://docs.example.com").one()
        assert imported.collection.name == "Browser Import"
        assert imported.tag_names == ["reading"]
        assert imported.created_at.year == 2023
        untitled = Bookmark.query.filter_by(url="https://example.com/untitled").one()
        assert untitled.title == "Untitled"
        assert Collection.query.filter_by(name="Browser Import").count() == 1

    response = client.post("/api/v1/bookmarks/sync", headers=headers, json={"bookmarks": "x"})
    assert response.status_code == 400


def test_import_browser_html_builds_collections(client, app):
    headers = _auth(client, app)
    html = b"""
<!DOCTYPE NETSCAPE-Bookmark-file-1>
<DL><p>
  <DT><H3>Work</H3>
  <DL><p>
    <DT><A HREF="https://example.com/a" TAGS="ops">A</A>
    <DT><H3>Infra</H3>
    <DL><p>
      <DT><A HREF="https://example.com/b">B</A>
    </DL><p>
  </DL><p>
</DL><p>
"""

    response = client.post(
        "/api/v1/import/browser-html",
        headers=headers,
        data={"file": (io.BytesIO(html), "bookmarks.html")},
        content_type="multipart/form-data",
    )

    assert response.status_code == 200
    assert response.get_json()["imported"] == 2
    with app.app_context():
        work = Collection.query.filter_by(name="Work", parent_id=None).one()
        work_id = work.id
        infra = Collection.query.filter_by(name="Infra").one()
        assert infra.parent_id == work.id
        b = Bookmark.query.filter_by(url="https://example.com/b").one()
        assert b.collection_id == infra.id
        a = Bookmark.query.filter_by(url="https://example.com/a").one()
        assert a.tag_names == ["ops"]

    response = client.get(f"/api/v1/bookmarks?collection_id={work_id}", headers=headers)
    assert response.get_json()["total"] == 2

    response = client.post("/api/v1/import/browser-html", headers=headers, data={})
    assert response.status_code == 400


def test_analytics_summary(client, app):
    headers = _auth(client, app)
    root = _collection(client, headers, "Root")
    _save(client, headers, url="https://youtu.be/abc12345678", collection_id=root, tags=["t"])
    _save(client, headers, url="https://example.com/a", is_favorite=True, tags=["t"])
    client.get("/api/v1/search?q=example", headers=headers)

    body = client.get("/api/v1/analytics?period=30d", headers=headers).get_json()

    assert body["period"] == "30d"
    assert body["overview"]["total_bookmarks"] == 2
    assert body["overview"]["new_bookmarks"] == 2
    assert body["overview"]["favorites"] == 1
    assert body["overview"]["total_collections"] == 1
    assert body["recent_searches"][0]["query"] == "example"
    assert body["collections"] == [
        {"id": root, "name": "Root", "color": "#6c47ff", "count": 1}
    ]
    assert sum(day["bookmarks"] for day in body["activity"]) == 2
    assert body["top_tags"] == [{"name": "t", "count": 2}]
    assert body["media_types"] == {"video": 1, "other": 1}

    body = client.get("/api/v1/analytics?period=forever", headers=headers).get_json()
    assert body["period"] == "7d"
