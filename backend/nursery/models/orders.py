from __future__ import annotations

from ..extensions import db
from nursery.time_utils import to_utc_z


class Order(db.Model):
    """
    Customer order.

    LIFECYCLE: status moves only along order_service.ORDER_TRANSITIONS.
    Every change goes through order_service.update_order_status, which stamps
    the matching *_at column and appends an OrderStatusHistory row.

    Money fields are minor units and are computed once at creation; they
    never follow later product price changes.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_user_placed", "user_id", "placed_at"),
        db.Index("ix_orders_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    order_number = db.Column(db.String(32), nullable=False, unique=True)
    tracking_number = db.Column(db.String(32), nullable=False, unique=True)

    status = db.Column(db.String(32), nullable=False, default="pending")
    payment_status = db.Column(db.String(32), nullable=False, default="pending")

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="INR")

    # Payment gateway references
    gateway_order_id = db.Column(db.String(64), nullable=True, index=True)
    gateway_payment_id = db.Column(db.String(64), nullable=True)
    payment_method = db.Column(db.String(32), nullable=True)

    shipping_address = db.Column(db.JSON, nullable=True)
    shipping_partner = db.Column(db.String(100), nullable=True)
    customer_notes = db.Column(db.String(500), nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)

    cancellation_reason = db.Column(db.String(64), nullable=True)
    cancellation_comments = db.Column(db.String(500), nullable=True)

    placed_at = db.Column(db.DateTime(timezone=True), nullable=False)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processing_started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    packed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    out_for_delivery_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_failed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    user = db.relationship("User")
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )
    history = db.relationship(
        "OrderStatusHistory",
        back_populates="order",
        order_by="OrderStatusHistory.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status!r}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "order_number": self.order_number,
            "tracking_number": self.tracking_number,
            "status": self.status,
            "payment_status": self.payment_status,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "shipping_cents": self.shipping_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "currency": self.currency,
            "gateway_order_id": self.gateway_order_id,
            "payment_method": self.payment_method,
            "shipping_address": self.shipping_address,
            "shipping_partner": self.shipping_partner,
            "customer_notes": self.customer_notes,
            "cancellation_reason": self.cancellation_reason,
            "cancellation_comments": self.cancellation_comments,
            "placed_at": to_utc_z(self.placed_at),
            "confirmed_at": to_utc_z(self.confirmed_at),
            "processing_started_at": to_utc_z(self.processing_started_at),
            "packed_at": to_utc_z(self.packed_at),
            "shipped_at": to_utc_z(self.shipped_at),
            "out_for_delivery_at": to_utc_z(self.out_for_delivery_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "payment_failed_at": to_utc_z(self.payment_failed_at),
            "refunded_at": to_utc_z(self.refunded_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Line snapshot: name and unit price are copied at order time."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    order = db.relationship("Order", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_slug": self.product.slug if self.product else None,
            "image_url": self.product.image_url if self.product else None,
            "quantity": self.quantity,
            "price_cents": self.price_cents,
            "line_total_cents": self.line_total_cents,
        }


class OrderStatusHistory(db.Model):
    """Append-only audit trail of order status changes. Never updated or deleted."""
    __tablename__ = "order_status_history"
    __table_args__ = (
        db.Index("ix_order_status_history_order", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    from_status = db.Column(db.String(32), nullable=True)
    status = db.Column(db.String(32), nullable=False)
    notes = db.Column(db.String(500), nullable=True)
    tracking_number = db.Column(db.String(64), nullable=True)
    shipping_partner = db.Column(db.String(100), nullable=True)
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # customer | admin | payment | webhook | system
    source = db.Column(db.String(16), nullable=False, default="system")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    order = db.relationship("Order", back_populates="history")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "from_status": self.from_status,
            "status": self.status,
            "notes": self.notes,
            "tracking_number": self.tracking_number,
            "shipping_partner": self.shipping_partner,
            "updated_by": self.updated_by,
            "source": self.source,
            "created_at": to_utc_z(self.created_at),
        }
