from __future__ import annotations

from ..extensions import db
from nursery.time_utils import to_utc_z


class PaymentTransaction(db.Model):
    """
    One row per payment attempt against the gateway.

    transaction_id is the gateway's order id (unique); the gateway payment id
    is filled in on verification. gateway_response keeps the raw payload
    received from the gateway or webhook for reconciliation.
    """
    __tablename__ = "payment_transactions"
    __table_args__ = (
        db.Index("ix_payment_transactions_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    transaction_id = db.Column(db.String(64), nullable=False, unique=True)
    gateway_payment_id = db.Column(db.String(64), nullable=True, index=True)
    payment_gateway = db.Column(db.String(32), nullable=False, default="razorpay")

    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="INR")

    # pending | completed | failed | refunded
    status = db.Column(db.String(16), nullable=False, default="pending")
    payment_method = db.Column(db.String(32), nullable=True)
    failure_reason = db.Column(db.String(255), nullable=True)
    gateway_response = db.Column(db.JSON, nullable=True)

    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    order = db.relationship("Order", backref=db.backref("payment_transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "transaction_id": self.transaction_id,
            "gateway_payment_id": self.gateway_payment_id,
            "payment_gateway": self.payment_gateway,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "status": self.status,
            "payment_method": self.payment_method,
            "failure_reason": self.failure_reason,
            "paid_at": to_utc_z(self.paid_at),
            "refunded_at": to_utc_z(self.refunded_at),
            "created_at": to_utc_z(self.created_at),
        }
