# Overview: Service-layer operations for product reviews; verified-purchase submission, moderation and listing.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, OrderItem, Product, ProductReview
from ..validation import ValidationError, NotFoundError


MAX_TITLE_LENGTH = 100
MAX_COMMENT_LENGTH = 1000


class ReviewError(Exception):
    """Review rule violation. `status` is 403 (not a buyer) or 400 (duplicate)."""

    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.status = status


def _validate_review(rating, title, comment) -> None:
    errors = {}
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        errors["rating"] = "Rating must be a number between 1 and 5"
    if title and len(str(title)) > MAX_TITLE_LENGTH:
        errors["title"] = f"Title cannot exceed {MAX_TITLE_LENGTH} characters"
    if comment and len(str(comment)) > MAX_COMMENT_LENGTH:
        errors["comment"] = f"Comment cannot exceed {MAX_COMMENT_LENGTH} characters"
    if errors:
        raise ValidationError("Invalid review", errors)


def _delivered_order_ids(user_id: int, product_id: int) -> list[int]:
    rows = (
        db.session.query(Order.id)
        .join(OrderItem, OrderItem.order_id == Order.id)
        .filter(
            Order.user_id == user_id,
            Order.status == "delivered",
            OrderItem.product_id == product_id,
        )
        .order_by(Order.delivered_at.asc(), Order.id.asc())
        .all()
    )
    return [r[0] for r in rows]


def add_review(user_id: int, product_id: int, rating, title=None, comment=None, order_id: int | None = None) -> ProductReview:
    """
    Review a product the user bought and received.

    Each delivered order containing the product allows one review. When no
    order is given, the oldest delivered order not yet reviewed is used.
    The review stays hidden until a content admin approves it.
    """
    _validate_review(rating, title, comment)
    if db.session.get(Product, product_id) is None:
        raise NotFoundError("Product not found")

    eligible = _delivered_order_ids(user_id, product_id)
    if order_id is not None:
        eligible = [oid for oid in eligible if oid == order_id]
    if not eligible:
        raise ReviewError("You can only review products you purchased and received", 403)

    reviewed = {
        r[0]
        for r in db.session.query(ProductReview.order_id)
        .filter(ProductReview.user_id == user_id, ProductReview.product_id == product_id)
        .all()
    }
    open_orders = [oid for oid in eligible if oid not in reviewed]
    if not open_orders:
        raise ReviewError("You have already reviewed this product for this order", 400)

    review = ProductReview(
        user_id=user_id,
        product_id=product_id,
        order_id=open_orders[0],
        rating=rating,
        title=(str(title).strip() or None) if title else None,
        comment=(str(comment).strip() or None) if comment else None,
        is_verified_purchase=True,
        is_approved=False,
    )
    db.session.add(review)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ReviewError("You have already reviewed this product for this order", 400)

    current_app.logger.info("Review %s submitted for product %s by user %s", review.id, product_id, user_id)
    return review


def list_product_reviews(product_id: int, *, page: int = 1, limit: int = 20) -> tuple[list[ProductReview], int]:
    """Approved reviews only."""
    q = db.session.query(ProductReview).filter(
        ProductReview.product_id == product_id,
        ProductReview.is_approved.is_(True),
    )
    total = q.count()
    reviews = (
        q.order_by(ProductReview.created_at.desc(), ProductReview.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return reviews, total


def list_user_reviews(user_id: int) -> list[ProductReview]:
    """Every review the user wrote, approved or not."""
    return (
        db.session.query(ProductReview)
        .filter(ProductReview.user_id == user_id)
        .order_by(ProductReview.created_at.desc(), ProductReview.id.desc())
        .all()
    )


def list_pending_reviews(*, page: int = 1, limit: int = 20) -> tuple[list[ProductReview], int]:
    q = db.session.query(ProductReview).filter(ProductReview.is_approved.is_(False))
    total = q.count()
    reviews = (
        q.order_by(ProductReview.created_at.asc(), ProductReview.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return reviews, total


def set_review_approval(review_id: int, approved: bool) -> ProductReview:
    if not isinstance(approved, bool):
        raise ValidationError("is_approved must be true or false", {"is_approved": "must be a boolean"})
    review = db.session.get(ProductReview, review_id)
    if review is None:
        raise NotFoundError("Review not found")
    review.is_approved = approved
    db.session.commit()
    return review


def delete_review(review_id: int) -> None:
    review = db.session.get(ProductReview, review_id)
    if review is None:
        raise NotFoundError("Review not found")
    db.session.delete(review)
    db.session.commit()
