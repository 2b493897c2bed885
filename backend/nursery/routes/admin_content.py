# Overview: Flask API routes for content administration; blog and guide authoring plus review moderation.

from flask import Blueprint, request, g

from ..responses import success, failure, paginated, validation_failure, server_error
from ..services import content_service, review_service
from ..validation import ValidationError, NotFoundError, parse_pagination
from ..decorators import require_auth, require_capability
from ..permissions import Capability


admin_content_bp = Blueprint("admin_content", __name__, url_prefix="/api/admin/content")

# URL segment -> content kind
KIND_SEGMENTS = {"blog": "blog", "plant-guides": "guide"}


def _kind_or_404(segment: str):
    return KIND_SEGMENTS.get(segment)


def _published_filter():
    raw = request.args.get("isPublished")
    if raw is None:
        return None
    return raw.lower() in ("1", "true", "yes")


@admin_content_bp.get("/<segment>")
@require_auth
@require_capability(Capability.MANAGE_CONTENT)
def list_content_route(segment: str):
    """Drafts included. Query: page, limit, search, isPublished"""
    kind = _kind_or_404(segment)
    if kind is None:
        return failure("Not found", 404)
    try:
        page, limit = parse_pagination(request.args)
        items, total = content_service.list_items(
            kind,
            published_only=False,
            is_published=_published_filter(),
            search=request.args.get("search"),
            page=page,
            limit=limit,
        )
        return paginated([i.to_dict() for i in items], total, page, limit)
    except ValidationError as e:
        return validation_failure(e)
    except Exception as e:
        return server_error("Error in admin list_content", e)


@admin_content_bp.post("/<segment>")
@require_auth
@require_capability(Capability.MANAGE_CONTENT)
def create_content_route(segment: str):
    """
    Request body (blog): title, content, excerpt, category, tags, featured_image_url, is_published
    Request body (guide): title, content, excerpt, plant_type, difficulty_level, tags, is_published
    """
    kind = _kind_or_404(segment)
    if kind is None:
        return failure("Not found", 404)
    data = request.get_json(silent=True) or {}
    try:
        item = content_service.create_item(kind, data, author_id=g.current_user.id)
        return success(item.to_dict(), message="Content created successfully", status=201)
    except ValidationError as e:
        return validation_failure(e)
    except Exception as e:
        return server_error("Error in create_content", e)


@admin_content_bp.get("/<segment>/<int:item_id>")
@require_auth
@require_capability(Capability.MANAGE_CONTENT)
def get_content_route(segment: str, item_id: int):
    kind = _kind_or_404(segment)
    if kind is None:
        return failure("Not found", 404)
    try:
        return success(content_service.get_item(kind, item_id).to_dict())
    except NotFoundError as e:
        return failure(str(e), 404)
    except Exception as e:
        return server_error("Error in get_content", e)


@admin_content_bp.put("/<segment>/<int:item_id>")
@admin_content_bp.patch("/<segment>/<int:item_id>")
@require_auth
@require_capability(Capability.MANAGE_CONTENT)
def update_content_route(segment: str, item_id: int):
    kind = _kind_or_404(segment)
    if kind is None:
        return failure("Not found", 404)
    data = request.get_json(silent=True) or {}
    try:
        item = content_service.update_item(kind, item_id, data)
        return success(item.to_dict(), message="Content updated successfully")
    except ValidationError as e:
        return validation_failure(e)
    except NotFoundError as e:
        return failure(str(e), 404)
    except Exception as e:
        return server_error("Error in update_content", e)


@admin_content_bp.delete("/<segment>/<int:item_id>")
@require_auth
@require_capability(Capability.MANAGE_CONTENT)
def delete_content_route(segment: str, item_id: int):
    kind = _kind_or_404(segment)
    if kind is None:
        return failure("Not found", 404)
    try:
        content_service.delete_item(kind, item_id)
        return success(message="Content deleted successfully")
    except NotFoundError as e:
        return failure(str(e), 404)
    except Exception as e:
        return server_error("Error in delete_content", e)


# =============================================================================
# REVIEW MODERATION
# =============================================================================

@admin_content_bp.get("/reviews/pending")
@require_auth
@require_capability(Capability.MODERATE_REVIEWS)
def pending_reviews_route():
    try:
        page, limit = parse_pagination(request.args)
        reviews, total = review_service.list_pending_reviews(page=page, limit=limit)
        return paginated([r.to_dict() for r in reviews], total, page, limit, key="reviews")
    except ValidationError as e:
        return validation_failure(e)
    except Exception as e:
        return server_error("Error in pending_reviews", e)


@admin_content_bp.put("/reviews/<int:review_id>")
@admin_content_bp.patch("/reviews/<int:review_id>")
@require_auth
@require_capability(Capability.MODERATE_REVIEWS)
def moderate_review_route(review_id: int):
    """Request body: {"is_approved": true}"""
    data = request.get_json(silent=True) or {}
    try:
        review = review_service.set_review_approval(review_id, data.get("is_approved"))
        return success(review.to_dict(), message="Review updated")
    except ValidationError as e:
        return validation_failure(e)
    except NotFoundError as e:
        return failure(str(e), 404)
    except Exception as e:
        return server_error("Error in moderate_review", e)


@admin_content_bp.delete("/reviews/<int:review_id>")
@require_auth
@require_capability(Capability.MODERATE_REVIEWS)
def delete_review_route(review_id: int):
    try:
        review_service.delete_review(review_id)
        return success(message="Review deleted")
    except NotFoundError as e:
        return failure(str(e), 404)
    except Exception as e:
        return server_error("Error in delete_review", e)
