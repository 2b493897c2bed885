# Overview: Flask API routes for published editorial content; blog posts and plant-care guides.

from flask import Blueprint, request

from ..responses import success, failure, paginated, validation_failure, server_error
from ..services import content_service
from ..validation import ValidationError, NotFoundError, parse_pagination


content_bp = Blueprint("content", __name__, url_prefix="/api/content")


def _list(kind: str, **filters):
    try:
        page, limit = parse_pagination(request.args, 10)
        items, total = content_service.list_items(
            kind,
            search=request.args.get("search"),
            page=page,
            limit=limit,
            **filters,
        )
        return paginated([i.to_dict() for i in items], total, page, limit)
    except ValidationError as e:
        return validation_failure(e)
    except Exception as e:
        return server_error(f"Error listing {kind} content", e)


def _detail(kind: str, slug: str):
    try:
        return success(content_service.get_published_by_slug(kind, slug).to_dict())
    except NotFoundError as e:
        return failure(str(e), 404)
    except Exception as e:
        return server_error(f"Error loading {kind} content", e)


@content_bp.get("/blog")
def list_blog_route():
    """Query: page, limit, search, category"""
    return _list("blog", category=request.args.get("category"))


@content_bp.get("/blog/<slug>")
def get_blog_route(slug: str):
    return _detail("blog", slug)


@content_bp.get("/plant-guides")
def list_guides_route():
    """Query: page, limit, search, plantType, difficulty"""
    return _list(
        "guide",
        plant_type=request.args.get("plantType"),
        difficulty_level=request.args.get("difficulty"),
    )


@content_bp.get("/plant-guides/<slug>")
def get_guide_route(slug: str):
    return _detail("guide", slug)
