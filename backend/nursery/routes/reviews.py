# Overview: Flask API routes for the signed-in customer's own reviews.

from flask import Blueprint, g

from ..responses import success, server_error
from ..services import review_service
from ..decorators import require_auth


reviews_bp = Blueprint("reviews", __name__, url_prefix="/api/reviews")


@reviews_bp.get("/mine")
@reviews_bp.get("/my-reviews")
@require_auth
def my_reviews_route():
    """Every review the caller wrote, including ones awaiting approval."""
    try:
        reviews = review_service.list_user_reviews(g.current_user.id)
        return success([r.to_dict() for r in reviews], count=len(reviews))
    except Exception as e:
        return server_error("Error in my_reviews", e)
