from __future__ import annotations

from ..extensions import db


class Cart(db.Model):
    """One cart per user, created lazily on first add."""
    __tablename__ = "carts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    items = db.relationship(
        "CartItem",
        back_populates="cart",
        order_by="CartItem.id",
        cascade="all, delete-orphan",
    )


class CartItem(db.Model):
    """A product line in a cart. (cart_id, product_id) is unique: adds merge."""
    __tablename__ = "cart_items"
    __table_args__ = (
        db.UniqueConstraint("cart_id", "product_id", name="uq_cart_items_cart_product"),
        db.CheckConstraint("quantity > 0", name="ck_cart_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    added_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cart = db.relationship("Cart", back_populates="items")
    product = db.relationship("Product")
