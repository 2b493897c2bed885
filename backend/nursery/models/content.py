from __future__ import annotations

from ..extensions import db
from nursery.time_utils import to_utc_z


class BlogPost(db.Model):
    __tablename__ = "blog_posts"
    __table_args__ = (
        db.Index("ix_blog_posts_published", "is_published", "published_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(280), nullable=False, unique=True, index=True)
    content = db.Column(db.Text, nullable=False)
    excerpt = db.Column(db.String(500), nullable=True)
    featured_image_url = db.Column(db.String(512), nullable=True)
    category = db.Column(db.String(64), nullable=True)
    tags = db.Column(db.JSON, nullable=False, default=list)
    is_published = db.Column(db.Boolean, nullable=False, default=False)
    published_at = db.Column(db.DateTime(timezone=True), nullable=True)
    author_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "slug": self.slug,
            "content": self.content,
            "excerpt": self.excerpt,
            "featured_image_url": self.featured_image_url,
            "category": self.category,
            "tags": self.tags or [],
            "is_published": self.is_published,
            "published_at": to_utc_z(self.published_at),
            "author_id": self.author_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PlantCareGuide(db.Model):
    __tablename__ = "plant_care_guides"
    __table_args__ = (
        db.Index("ix_plant_care_guides_published", "is_published", "published_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(280), nullable=False, unique=True, index=True)
    content = db.Column(db.Text, nullable=False)
    excerpt = db.Column(db.String(500), nullable=True)
    featured_image_url = db.Column(db.String(512), nullable=True)
    plant_type = db.Column(db.String(64), nullable=True)
    difficulty_level = db.Column(db.String(16), nullable=False, default="beginner")
    tags = db.Column(db.JSON, nullable=False, default=list)
    is_published = db.Column(db.Boolean, nullable=False, default=False)
    published_at = db.Column(db.DateTime(timezone=True), nullable=True)
    author_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "slug": self.slug,
            "content": self.content,
            "excerpt": self.excerpt,
            "featured_image_url": self.featured_image_url,
            "plant_type": self.plant_type,
            "difficulty_level": self.difficulty_level,
            "tags": self.tags or [],
            "is_published": self.is_published,
            "published_at": to_utc_z(self.published_at),
            "author_id": self.author_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
