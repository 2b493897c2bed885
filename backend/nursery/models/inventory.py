from __future__ import annotations

from ..extensions import db
from nursery.time_utils import to_utc_z


class InventoryMovement(db.Model):
    """
    Append-only audit trail of stock changes.

    One row per stock mutation, written in the same transaction as the
    quantity update. Never updated or deleted.

    quantity is always positive; movement_type gives the direction.
    stock_after is the product quantity immediately after this movement.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.Index("ix_inventory_movements_product_time", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(16), nullable=False)  # increase | decrease
    quantity = db.Column(db.Integer, nullable=False)
    stock_after = db.Column(db.Integer, nullable=False)

    # initial_stock | restock | adjustment | order_placed | order_cancelled
    reason = db.Column(db.String(32), nullable=False, default="adjustment")
    notes = db.Column(db.String(500), nullable=True)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "stock_after": self.stock_after,
            "reason": self.reason,
            "notes": self.notes,
            "actor_user_id": self.actor_user_id,
            "order_id": self.order_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
