# Overview: Service-layer operations for editorial content; blog posts and plant-care guides.

"""
Both content kinds share one lifecycle:

- slug derived from `slug` or `title`, unique per kind
- draft until is_published; the first publish stamps published_at,
  unpublishing clears it
- storefront lists show published items only, newest first
"""

from __future__ import annotations

from ..extensions import db
from ..models import BlogPost, PlantCareGuide
from ..validation import ModelValidationPolicy, ValidationError, NotFoundError, validate_payload
from .identifier_service import unique_slug
from nursery.time_utils import utcnow


DIFFICULTY_LEVELS = ("beginner", "intermediate", "advanced")

BLOG_POLICY = ModelValidationPolicy(
    writable_fields={"title", "content", "excerpt", "featured_image_url", "category", "tags", "is_published"},
    required_on_create={"title", "content"},
)

GUIDE_POLICY = ModelValidationPolicy(
    writable_fields={
        "title", "content", "excerpt", "featured_image_url",
        "plant_type", "difficulty_level", "tags", "is_published",
    },
    required_on_create={"title", "content"},
)

CONTENT_KINDS = {
    "blog": (BlogPost, BLOG_POLICY, "Blog post"),
    "guide": (PlantCareGuide, GUIDE_POLICY, "Plant care guide"),
}


def _kind(kind: str):
    try:
        return CONTENT_KINDS[kind]
    except KeyError:
        raise ValueError(f"Unknown content kind: {kind}")


def _validate(model, policy, payload: dict, partial: bool) -> dict:
    patch = validate_payload(model=model, payload=payload, policy=policy, partial=partial)
    if "tags" in patch and patch["tags"] is not None:
        if not isinstance(patch["tags"], list) or not all(isinstance(t, str) for t in patch["tags"]):
            raise ValidationError("tags must be a list of strings", {"tags": "must be a list of strings"})
    if patch.get("difficulty_level") is not None and patch["difficulty_level"] not in DIFFICULTY_LEVELS:
        raise ValidationError(
            f"difficulty_level must be one of: {', '.join(DIFFICULTY_LEVELS)}",
            {"difficulty_level": f"must be one of: {', '.join(DIFFICULTY_LEVELS)}"},
        )
    return patch


def _apply_publish_flag(item, patch: dict) -> None:
    if "is_published" not in patch:
        return
    if patch["is_published"] and item.published_at is None:
        item.published_at = utcnow()
    elif not patch["is_published"]:
        item.published_at = None


def create_item(kind: str, payload: dict, author_id: int | None = None):
    model, policy, _ = _kind(kind)
    patch = _validate(model, policy, payload, partial=False)

    item = model(**patch)
    item.slug = unique_slug(model, (payload or {}).get("slug") or patch["title"])
    item.author_id = author_id
    if item.tags is None:
        item.tags = []
    _apply_publish_flag(item, patch)
    db.session.add(item)
    db.session.commit()
    return item


def get_item(kind: str, item_id: int):
    model, _, label = _kind(kind)
    item = db.session.get(model, item_id)
    if item is None:
        raise NotFoundError(f"{label} not found")
    return item


def update_item(kind: str, item_id: int, payload: dict):
    model, policy, _ = _kind(kind)
    patch = _validate(model, policy, payload, partial=True)
    item = get_item(kind, item_id)

    for key, value in patch.items():
        setattr(item, key, value)
    if (payload or {}).get("slug"):
        item.slug = unique_slug(model, payload["slug"], exclude_id=item.id)
    _apply_publish_flag(item, patch)
    db.session.commit()
    return item


def delete_item(kind: str, item_id: int) -> None:
    item = get_item(kind, item_id)
    db.session.delete(item)
    db.session.commit()


def list_items(
    kind: str,
    *,
    published_only: bool = True,
    is_published: bool | None = None,
    search: str | None = None,
    category: str | None = None,
    plant_type: str | None = None,
    difficulty_level: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list, int]:
    """
    Content listing. Storefront calls keep published_only=True; the admin
    console passes False and may filter on is_published explicitly.
    """
    model, _, _ = _kind(kind)
    q = db.session.query(model)
    if published_only:
        q = q.filter(model.is_published.is_(True))
    elif is_published is not None:
        q = q.filter(model.is_published.is_(is_published))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(db.or_(model.title.ilike(like), model.slug.ilike(like), model.excerpt.ilike(like)))
    if category and model is BlogPost:
        q = q.filter(BlogPost.category == category)
    if model is PlantCareGuide:
        if plant_type:
            q = q.filter(PlantCareGuide.plant_type == plant_type)
        if difficulty_level:
            q = q.filter(PlantCareGuide.difficulty_level == difficulty_level)

    total = q.count()
    order_col = model.published_at if published_only else model.created_at
    items = (
        q.order_by(order_col.desc(), model.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total


def get_published_by_slug(kind: str, slug: str):
    model, _, label = _kind(kind)
    item = db.session.query(model).filter(model.slug == slug, model.is_published.is_(True)).first()
    if item is None:
        raise NotFoundError(f"{label} not found")
    return item
