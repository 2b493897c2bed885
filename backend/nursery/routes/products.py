# Overview: Flask API routes for the public catalog; product listing, detail, categories and reviews.

from flask import Blueprint, request, g

from ..responses import success, failure, paginated, validation_failure, server_error
from ..services import catalog_service, review_service
from ..services.review_service import ReviewError
from ..validation import ValidationError, NotFoundError, parse_pagination
from ..decorators import require_auth


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products_route():
    """
    Storefront product listing. Active products only.

    Query parameters:
    - page, limit: paging (default limit 12)
    - category: category slug
    - search: matches name and description
    - sort: newest | price_low | price_high | rating | name
    - minPrice, maxPrice: price bounds in cents
    - careLevel: easy | moderate | difficult
    """
    try:
        page, limit = parse_pagination(request.args, catalog_service.DEFAULT_PAGE_SIZE)
        products, total = catalog_service.list_products(
            page=page,
            limit=limit,
            category=request.args.get("category"),
            search=request.args.get("search"),
            sort=request.args.get("sort", "newest"),
            min_price=request.args.get("minPrice", type=int),
            max_price=request.args.get("maxPrice", type=int),
            care_level=request.args.get("careLevel"),
        )
        return paginated(products, total, page, limit, key="products")
    except ValidationError as e:
        return validation_failure(e)
    except Exception as e:
        return server_error("Error in list_products", e)


@products_bp.get("/categories")
def list_categories_route():
    try:
        categories = catalog_service.list_categories()
        return success([c.to_dict() for c in categories])
    except Exception as e:
        return server_error("Error in list_categories", e)


@products_bp.get("/<slug>")
def get_product_route(slug: str):
    try:
        return success(catalog_service.get_product_by_slug(slug))
    except NotFoundError as e:
        return failure(str(e), 404)
    except Exception as e:
        return server_error("Error in get_product", e)


@products_bp.get("/<int:product_id>/reviews")
def list_reviews_route(product_id: int):
    """Approved reviews for a product, newest first."""
    try:
        page, limit = parse_pagination(request.args)
        reviews, total = review_service.list_product_reviews(product_id, page=page, limit=limit)
        return paginated([r.to_dict() for r in reviews], total, page, limit, key="reviews")
    except ValidationError as e:
        return validation_failure(e)
    except Exception as e:
        return server_error("Error in list_reviews", e)


@products_bp.post("/<int:product_id>/reviews")
@require_auth
def add_review_route(product_id: int):
    """
    Review a purchased and delivered product.

    Request body: {"rating": 1-5, "title", "comment", "orderId"}
    Reviews are hidden until approved by a content admin.
    """
    data = request.get_json(silent=True) or {}
    try:
        review = review_service.add_review(
            g.current_user.id,
            product_id,
            data.get("rating"),
            title=data.get("title"),
            comment=data.get("comment"),
            order_id=data.get("orderId"),
        )
        return success(review.to_dict(), message="Review submitted for approval", status=201)
    except ValidationError as e:
        return validation_failure(e)
    except NotFoundError as e:
        return failure(str(e), 404)
    except ReviewError as e:
        return failure(str(e), e.status)
    except Exception as e:
        return server_error("Error in add_review", e)
