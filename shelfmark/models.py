import hashlib
import secrets
from datetime import datetime, timezone

from flask_login import UserMixin
from sqlalchemy.ext.associationproxy import association_proxy
from sqlalchemy.ext.orderinglist import ordering_list
from werkzeug.security import check_password_hash, generate_password_hash

from shelfmark.extensions import db, login_manager


MEDIA_AUDIO = "audio"
MEDIA_VIDEO = "video"
MEDIA_OTHER = "other"
MEDIA_TYPES = (MEDIA_AUDIO, MEDIA_VIDEO, MEDIA_OTHER)

DEFAULT_COLLECTION_COLOR = "#6c47ff"
DEFAULT_COLLECTION_ICON = "folder"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    is_admin = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    bookmarks = db.relationship("Bookmark", backref="user", lazy=True)
    collections = db.relationship("Collection", backref="user", lazy=True)

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)


@login_manager.user_loader
def load_user(user_id: str):
    return db.session.get(User, int(user_id))


class Collection(db.Model):
    __tablename__ = "collections"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("collections.id"), nullable=True)
    color = db.Column(db.String(32), nullable=False, default=DEFAULT_COLLECTION_COLOR)
    icon = db.Column(db.String(64), nullable=False, default=DEFAULT_COLLECTION_ICON)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    children = db.relationship(
        "Collection", backref=db.backref("parent", remote_side=[id])
    )

    __table_args__ = (
        db.UniqueConstraint(
            "user_id", "name", "parent_id", name="uq_collection_user_name_parent"
        ),
    )

    def as_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "parent_id": self.parent_id,
            "color": self.color,
            "icon": self.icon,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Bookmark(db.Model):
    __tablename__ = "bookmarks"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    collection_id = db.Column(
        db.Integer, db.ForeignKey("collections.id"), nullable=True, index=True
    )

    url = db.Column(db.Text, nullable=False)
    title = db.Column(db.String(512), nullable=False)
    description = db.Column(db.Text, nullable=True)
    media_type = db.Column(db.String(16), nullable=True, index=True)
    is_favorite = db.Column(db.Boolean, nullable=False, default=False)
    is_archived = db.Column(db.Boolean, nullable=False, default=False)
    favicon_url = db.Column(db.Text, nullable=True)
    thumbnail_url = db.Column(db.Text, nullable=True)

    ai_category = db.Column(db.String(120), nullable=True)
    ai_summary = db.Column(db.Text, nullable=True)
    ai_confidence = db.Column(db.Float, nullable=True)
    enriched_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    collection = db.relationship("Collection", backref="bookmarks")
    tag_links = db.relationship(
        "BookmarkTag",
        backref="bookmark",
        cascade="all, delete-orphan",
        order_by="BookmarkTag.position",
        collection_class=ordering_list("position"),
    )
    tags = association_proxy(
        "tag_links", "tag", creator=lambda tag: BookmarkTag(tag=tag)
    )
    keywords = db.relationship(
        "BookmarkKeyword",
        backref="bookmark",
        cascade="all, delete-orphan",
        order_by="BookmarkKeyword.position",
        collection_class=ordering_list("position"),
    )
    likes = db.relationship(
        "BookmarkLike", backref="bookmark", cascade="all, delete-orphan"
    )

    __table_args__ = (
        db.Index("ix_bookmark_user_url", "user_id", "url"),
        db.Index("ix_bookmark_user_created", "user_id", "created_at"),
    )

    @property
    def tag_names(self) -> list[str]:
        return [tag.name for tag in self.tags]

    @property
    def ai_keywords(self) -> list[str]:
        return [row.keyword for row in self.keywords]

    def as_dict(self, likes_count: int = 0, is_liked: bool = False):
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "description": self.description or "",
            "collection_id": self.collection_id,
            "collection": {
                "id": self.collection.id,
                "name": self.collection.name,
                "color": self.collection.color,
                "icon": self.collection.icon,
            }
            if self.collection
            else None,
            "tags": self.tag_names,
            "media_type": self.media_type,
            "is_favorite": self.is_favorite,
            "is_archived": self.is_archived,
            "favicon_url": self.favicon_url,
            "thumbnail_url": self.thumbnail_url,
            "ai_category": self.ai_category,
            "ai_summary": self.ai_summary,
            "ai_keywords": self.ai_keywords,
            "ai_confidence": self.ai_confidence,
            "likes_count": likes_count,
            "is_liked": is_liked,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Tag(db.Model):
    __tablename__ = "tags"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    name = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (db.UniqueConstraint("user_id", "name", name="uq_tag_user_name"),)


class BookmarkTag(db.Model):
    __tablename__ = "bookmark_tags"

    bookmark_id = db.Column(
        db.Integer, db.ForeignKey("bookmarks.id"), primary_key=True
    )
    tag_id = db.Column(db.Integer, db.ForeignKey("tags.id"), primary_key=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    tag = db.relationship("Tag", backref="bookmark_links")


class BookmarkKeyword(db.Model):
    __tablename__ = "bookmark_keywords"

    id = db.Column(db.Integer, primary_key=True)
    bookmark_id = db.Column(
        db.Integer, db.ForeignKey("bookmarks.id"), nullable=False, index=True
    )
    keyword = db.Column(db.String(120), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)


class BookmarkLike(db.Model):
    __tablename__ = "bookmark_likes"

    id = db.Column(db.Integer, primary_key=True)
    bookmark_id = db.Column(
        db.Integer, db.ForeignKey("bookmarks.id"), nullable=False, index=True
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        db.UniqueConstraint("bookmark_id", "user_id", name="uq_bookmark_like"),
    )

    def as_dict(self):
        return {
            "id": self.id,
            "bookmark_id": self.bookmark_id,
            "user_id": self.user_id,
            "created_at": _iso(self.created_at),
        }


class SearchHistory(db.Model):
    __tablename__ = "search_history"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    # "query" would shadow Model.query
    query_text = db.Column("query", db.String(512), nullable=False)
    results_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def as_dict(self):
        return {
            "query": self.query_text,
            "results_count": self.results_count,
            "created_at": _iso(self.created_at),
        }


class ApiToken(db.Model):
    __tablename__ = "api_tokens"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    name = db.Column(db.String(120), nullable=False)
    token_hash = db.Column(db.String(128), nullable=False, unique=True)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    user = db.relationship("User", backref="api_tokens")

    @staticmethod
    def issue_token(prefix="sm"):
        token = f"{prefix}_{secrets.token_urlsafe(32)}"
        token_hash = hashlib.sha256(token.encode("utf-8")).hexdigest()
        return token, token_hash
