from __future__ import annotations

from ..extensions import db
from nursery.time_utils import to_utc_z


class ProductReview(db.Model):
    """
    Verified-purchase product review.

    Only written for a delivered order that contains the product; one per
    (user, product, order). Hidden from the storefront until approved.
    """
    __tablename__ = "product_reviews"
    __table_args__ = (
        db.UniqueConstraint("user_id", "product_id", "order_id", name="uq_product_reviews_user_product_order"),
        db.CheckConstraint("rating >= 1 AND rating <= 5", name="ck_product_reviews_rating_range"),
        db.Index("ix_product_reviews_product_approved", "product_id", "is_approved"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)

    rating = db.Column(db.Integer, nullable=False)
    title = db.Column(db.String(200), nullable=True)
    comment = db.Column(db.Text, nullable=True)
    is_verified_purchase = db.Column(db.Boolean, nullable=False, default=True)
    is_approved = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    user = db.relationship("User")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        profile = self.user.profile if self.user else None
        return {
            "id": self.id,
            "user_id": self.user_id,
            "reviewer_name": profile.first_name if profile else None,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "order_id": self.order_id,
            "rating": self.rating,
            "title": self.title,
            "comment": self.comment,
            "is_verified_purchase": self.is_verified_purchase,
            "is_approved": self.is_approved,
            "created_at": to_utc_z(self.created_at),
        }
