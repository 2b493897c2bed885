# Overview: Service-layer operations for orders; creation, the status state machine, cancellation, and queries.

"""
Order Lifecycle

STATE MACHINE:
Every status change (admin console, customer cancel, payment verification,
gateway webhook) goes through `update_order_status` / `_apply_transition`,
which validates against ORDER_TRANSITIONS. There is no side door: refunded
and payment_failed are ordinary edges of the table.

    pending ──► confirmed ──► processing ──► packed ──► shipped ──► out_for_delivery ──► delivered
      │  ▲          │              │
      │  └─ payment_failed         │
      ▼             ▼              ▼
    cancelled ◄─────┴──────────────┘ ──► refunded

ATOMICITY:
create_order runs stock checks, order + items insert, stock decrements,
the initial history row and the notification intents in ONE transaction.
Any failure rolls all of it back: no orphan orders, no partial decrements.

CONCURRENCY:
Status changes lock the order row (SELECT ... FOR UPDATE where supported)
and Order carries a version counter, so two writers cannot both advance
the same order from the same state.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from flask import current_app

from ..extensions import db
from ..models import Order, OrderItem, OrderStatusHistory, Product, User
from ..validation import ValidationError, NotFoundError
from .concurrency import lock_for_update, lock_one, run_with_retry
from .identifier_service import generate_order_number, generate_tracking_number
from .inventory_service import (
    apply_stock_change,
    check_and_notify_low_stock,
    InsufficientStockError,
    OPERATION_DECREASE,
    OPERATION_INCREASE,
)
from . import cart_service
from . import notification_service
from nursery.time_utils import utcnow


# =============================================================================
# STATE MACHINE
# =============================================================================

FORWARD_STATUSES = (
    "pending",
    "confirmed",
    "processing",
    "packed",
    "shipped",
    "out_for_delivery",
    "delivered",
)

ORDER_STATUSES = FORWARD_STATUSES + ("payment_failed", "cancelled", "refunded")

ORDER_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"confirmed", "payment_failed", "cancelled"}),
    "payment_failed": frozenset({"confirmed", "cancelled"}),
    "confirmed": frozenset({"processing", "cancelled"}),
    "processing": frozenset({"packed", "cancelled"}),
    "packed": frozenset({"shipped"}),
    "shipped": frozenset({"out_for_delivery"}),
    "out_for_delivery": frozenset({"delivered"}),
    "delivered": frozenset(),
    "cancelled": frozenset({"refunded"}),
    "refunded": frozenset(),
}

CANCELLABLE_STATUSES = frozenset({"pending", "confirmed", "processing"})
TERMINAL_STATUSES = frozenset({"delivered", "refunded"})

# Shipping metadata must be known once the parcel leaves the warehouse
TRACKING_REQUIRED_STATUSES = frozenset({"shipped", "out_for_delivery"})

STATUS_TIMESTAMP_COLUMNS = {
    "confirmed": "confirmed_at",
    "processing": "processing_started_at",
    "packed": "packed_at",
    "shipped": "shipped_at",
    "out_for_delivery": "out_for_delivery_at",
    "delivered": "delivered_at",
    "cancelled": "cancelled_at",
    "payment_failed": "payment_failed_at",
    "refunded": "refunded_at",
}

CANCELLATION_REASONS = (
    "changed_mind",
    "delivery_delayed",
    "wrong_item_ordered",
    "better_price_elsewhere",
    "address_change_needed",
    "payment_issue",
    "other",
)

PAYMENT_PENDING = "pending"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"
PAYMENT_REFUND_PENDING = "refund_pending"
PAYMENT_REFUNDED = "refunded"


class OrderTransitionError(ValueError):
    """Requested status change is not an edge of the transition table."""


class OrderAccessError(PermissionError):
    """Order exists but belongs to someone else."""


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ORDER_TRANSITIONS.get(from_status, frozenset())


def assert_transition(from_status: str, to_status: str) -> None:
    if to_status not in ORDER_STATUSES:
        raise ValidationError(f"Unknown order status: {to_status}", {"status": "is not a valid order status"})
    if not can_transition(from_status, to_status):
        raise OrderTransitionError(f"Invalid status transition from {from_status} to {to_status}")


def next_statuses(status: str) -> list[str]:
    """Allowed next statuses, in lifecycle order (for admin UIs)."""
    allowed = ORDER_TRANSITIONS.get(status, frozenset())
    return [s for s in ORDER_STATUSES if s in allowed]


# =============================================================================
# PRICING
# =============================================================================

@dataclass(frozen=True)
class OrderTotals:
    subtotal_cents: int
    tax_cents: int
    shipping_cents: int
    discount_cents: int
    total_cents: int


def compute_totals(subtotal_cents: int, discount_cents: int = 0, total_override_cents: int | None = None) -> OrderTotals:
    """
    total = subtotal + tax + shipping - discount, unless an explicit
    override is supplied (promotional/negotiated totals).

    Tax uses TAX_RATE_BPS (basis points, rounded half up). Shipping is
    SHIPPING_FEE_CENTS unless the subtotal reaches
    FREE_SHIPPING_THRESHOLD_CENTS (a threshold of 0 disables free shipping).
    """
    config = current_app.config
    tax_rate_bps = config.get("TAX_RATE_BPS", 0)
    tax_cents = (subtotal_cents * tax_rate_bps + 5000) // 10000

    shipping_cents = config.get("SHIPPING_FEE_CENTS", 0)
    threshold = config.get("FREE_SHIPPING_THRESHOLD_CENTS", 0)
    if threshold and subtotal_cents >= threshold:
        shipping_cents = 0

    discount_cents = min(discount_cents, subtotal_cents + tax_cents + shipping_cents)
    if total_override_cents is not None:
        total_cents = total_override_cents
    else:
        total_cents = subtotal_cents + tax_cents + shipping_cents - discount_cents

    return OrderTotals(
        subtotal_cents=subtotal_cents,
        tax_cents=tax_cents,
        shipping_cents=shipping_cents,
        discount_cents=discount_cents,
        total_cents=total_cents,
    )


# =============================================================================
# CREATION
# =============================================================================

def _normalize_items(items) -> dict[int, int]:
    """[{product_id, quantity}, ...] -> {product_id: total_qty}; duplicates are merged."""
    if not isinstance(items, list) or not items:
        raise ValidationError("Order must contain at least one item", {"items": "must be a non-empty list"})

    merged: dict[int, int] = {}
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError("Invalid order item", {f"items[{index}]": "must be an object"})
        product_id = raw.get("product_id", raw.get("productId"))
        quantity = raw.get("quantity")
        if isinstance(product_id, bool) or not isinstance(product_id, int) or product_id <= 0:
            raise ValidationError("Invalid order item", {f"items[{index}].product_id": "must be a positive integer"})
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("Invalid order item", {f"items[{index}].quantity": "must be a positive integer"})
        merged[product_id] = merged.get(product_id, 0) + quantity
    return merged


def _append_history(
    order: Order,
    status: str,
    *,
    from_status: str | None,
    updated_by: int | None,
    notes: str | None = None,
    tracking_number: str | None = None,
    shipping_partner: str | None = None,
    source: str = "system",
) -> OrderStatusHistory:
    row = OrderStatusHistory(
        order_id=order.id,
        from_status=from_status,
        status=status,
        notes=notes,
        tracking_number=tracking_number,
        shipping_partner=shipping_partner,
        updated_by=updated_by,
        source=source,
        created_at=utcnow(),
    )
    db.session.add(row)
    return row


def create_order(
    user_id: int,
    items,
    *,
    discount_cents: int = 0,
    total_override_cents: int | None = None,
    shipping_address: dict | None = None,
    customer_notes: str | None = None,
    from_cart: bool = False,
) -> Order:
    """
    Place an order atomically.

    Steps (one transaction):
    1. Lock and check every product (exists, active, enough stock).
    2. Price lines from live product prices; compute totals.
    3. Insert Order (pending/pending) with order and tracking numbers.
    4. Insert OrderItems with name/price snapshots.
    5. Decrement stock through the ledger (conditional UPDATE + movement).
    6. Initial history row, low-stock alerts, confirmation email intent.
    7. Clear the cart when the order came from it.

    Raises ValidationError, NotFoundError or InsufficientStockError; on any
    error nothing is persisted.
    """
    lines = _normalize_items(items)
    if isinstance(discount_cents, bool) or not isinstance(discount_cents, int) or discount_cents < 0:
        raise ValidationError("discount must be a non-negative integer", {"discount_cents": "must be >= 0"})
    if total_override_cents is not None and (
        isinstance(total_override_cents, bool) or not isinstance(total_override_cents, int) or total_override_cents < 0
    ):
        raise ValidationError("total override must be a non-negative integer", {"total_cents": "must be >= 0"})

    def _op() -> Order:
        products = {
            p.id: p
            for p in lock_for_update(
                db.session.query(Product).filter(Product.id.in_(list(lines.keys())))
            ).all()
        }

        # 1. Validate every line before writing anything
        for product_id, quantity in lines.items():
            product = products.get(product_id)
            if product is None:
                raise NotFoundError(f"Product {product_id} not found")
            if not product.is_active:
                raise ValidationError(f"{product.name} is no longer available", {"items": f"{product.name} is unavailable"})
            if product.stock_quantity < quantity:
                raise InsufficientStockError(product_id, quantity, product.stock_quantity, product.name)

        # 2. Price from live product data
        subtotal = sum(products[pid].price_cents * qty for pid, qty in lines.items())
        totals = compute_totals(subtotal, discount_cents, total_override_cents)

        # 3. Order header
        now = utcnow()
        order = Order(
            user_id=user_id,
            order_number=generate_order_number(),
            tracking_number=generate_tracking_number(),
            status="pending",
            payment_status=PAYMENT_PENDING,
            subtotal_cents=totals.subtotal_cents,
            tax_cents=totals.tax_cents,
            shipping_cents=totals.shipping_cents,
            discount_cents=totals.discount_cents,
            total_cents=totals.total_cents,
            currency=current_app.config.get("CURRENCY", "INR"),
            shipping_address=shipping_address,
            customer_notes=customer_notes,
            placed_at=now,
        )
        db.session.add(order)
        db.session.flush()

        # 4. Line snapshots
        for product_id, quantity in lines.items():
            product = products[product_id]
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=product_id,
                product_name=product.name,
                quantity=quantity,
                price_cents=product.price_cents,
                line_total_cents=product.price_cents * quantity,
            ))

        # 5. Stock (conditional UPDATE guards against concurrent orders)
        for product_id, quantity in lines.items():
            apply_stock_change(
                product_id,
                quantity,
                OPERATION_DECREASE,
                reason="order_placed",
                actor_user_id=user_id,
                order_id=order.id,
                notes=f"Order {order.order_number}",
            )

        # 6. History + notifications
        _append_history(order, "pending", from_status=None, updated_by=user_id,
                        notes="Order placed", source="customer")
        for product_id in lines:
            check_and_notify_low_stock(product_id)

        # 7. Checkout from cart empties it in the same transaction
        if from_cart:
            cart_service.clear_cart_items(user_id)

        db.session.flush()
        db.session.refresh(order)
        notification_service.queue_order_confirmation(order)

        db.session.commit()
        return order

    try:
        order = run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Order %s placed by user %s: %s line(s), total %s",
        order.order_number, user_id, len(lines), order.total_cents,
    )
    return order


def create_order_from_cart(user_id: int, **kwargs) -> Order:
    lines = cart_service.get_cart_lines(user_id)
    if not lines:
        raise ValidationError("Cart is empty", {"cart": "is empty"})
    return create_order(user_id, lines, from_cart=True, **kwargs)


# =============================================================================
# STATUS CHANGES
# =============================================================================

def _lock_order(order_id: int) -> Order:
    order = lock_one(Order, Order.id == order_id)
    if order is None:
        raise NotFoundError("Order not found")
    return order


def _apply_transition(
    order: Order,
    new_status: str,
    *,
    updated_by: int | None,
    notes: str | None = None,
    tracking_number: str | None = None,
    shipping_partner: str | None = None,
    source: str = "admin",
) -> None:
    """Validate, stamp the status timestamp, persist shipping metadata, append history. Does NOT commit."""
    assert_transition(order.status, new_status)

    if new_status in TRACKING_REQUIRED_STATUSES:
        if not (shipping_partner or order.shipping_partner):
            raise ValidationError(
                f"Shipping partner is required for status {new_status}",
                {"shippingPartner": "is required"},
            )

    previous = order.status
    now = utcnow()
    order.status = new_status
    setattr(order, STATUS_TIMESTAMP_COLUMNS[new_status], now)
    if tracking_number:
        order.tracking_number = tracking_number
    if shipping_partner:
        order.shipping_partner = shipping_partner

    _append_history(
        order,
        new_status,
        from_status=previous,
        updated_by=updated_by,
        notes=notes,
        tracking_number=tracking_number or (order.tracking_number if new_status in TRACKING_REQUIRED_STATUSES else None),
        shipping_partner=shipping_partner,
        source=source,
    )


def transition_order(
    order: Order,
    new_status: str,
    *,
    updated_by: int | None = None,
    notes: str | None = None,
    tracking_number: str | None = None,
    shipping_partner: str | None = None,
    source: str = "admin",
    idempotent: bool = False,
    notify: bool = True,
) -> bool:
    """
    Transition an already-locked order inside the caller's transaction.

    With idempotent=True, re-applying the current status is a no-op
    (returns False). The payment verification and webhook paths both use
    this so whichever arrives second changes nothing.
    """
    if idempotent and order.status == new_status:
        return False
    _apply_transition(
        order,
        new_status,
        updated_by=updated_by,
        notes=notes,
        tracking_number=tracking_number,
        shipping_partner=shipping_partner,
        source=source,
    )
    if notify:
        notification_service.queue_order_status_update(order)
    return True


def update_order_status(
    order_id: int,
    new_status: str,
    *,
    updated_by: int | None = None,
    notes: str | None = None,
    tracking_number: str | None = None,
    shipping_partner: str | None = None,
    source: str = "admin",
    idempotent: bool = False,
    allowed: Iterable[str] | None = None,
) -> Order:
    """
    Move an order to `new_status` along the transition table and commit.

    `allowed` narrows the statuses this caller may set; the admin endpoint
    passes FORWARD_STATUSES so cancellation and refunds only happen through
    cancel_order and the refund webhook.

    Raises OrderTransitionError for an illegal edge, ValidationError for
    missing shipping metadata or a status outside `allowed`, NotFoundError
    for an unknown order.
    """
    if allowed is not None and new_status not in allowed:
        raise ValidationError(
            f"Status {new_status} cannot be set here",
            {"status": f"must be one of: {', '.join(allowed)}"},
        )

    def _op() -> Order:
        order = _lock_order(order_id)
        changed = transition_order(
            order,
            new_status,
            updated_by=updated_by,
            notes=notes,
            tracking_number=tracking_number,
            shipping_partner=shipping_partner,
            source=source,
            idempotent=idempotent,
        )
        db.session.commit()
        if changed:
            current_app.logger.info("Order %s -> %s (%s)", order.order_number, new_status, source)
        return order

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


def cancel_order(order_id: int, user_id: int, reason: str, comments: str | None = None) -> Order:
    """
    Customer cancellation.

    Allowed from CANCELLABLE_STATUSES only. If the order was paid, the
    gateway refund is requested FIRST; a gateway failure, or a paid order
    with no captured payment id on record, aborts with no state change.
    Then, in one transaction: status -> cancelled, stock restored for
    every line, history row, cancellation email intent.
    The refund settles later via the refund.processed webhook
    (cancelled -> refunded).
    """
    from . import payment_service

    if reason not in CANCELLATION_REASONS:
        raise ValidationError(
            "Invalid cancellation reason",
            {"reason": f"must be one of: {', '.join(CANCELLATION_REASONS)}"},
        )
    comments = (comments or "").strip() or None
    if reason == "other" and not comments:
        raise ValidationError("Comments are required when reason is 'other'", {"comments": "is required"})

    order = get_order_for_user(order_id, user_id)
    if order.status not in CANCELLABLE_STATUSES:
        raise OrderTransitionError("Order cannot be cancelled in current status")

    refund_requested = False
    if order.payment_status == PAYMENT_COMPLETED:
        payment_service.request_refund(order, reason=reason)
        refund_requested = True

    def _op() -> Order:
        locked = _lock_order(order_id)
        if locked.status not in CANCELLABLE_STATUSES:
            raise OrderTransitionError("Order cannot be cancelled in current status")

        note = f"Cancelled: {reason}" + (f" - {comments}" if comments else "")
        _apply_transition(locked, "cancelled", updated_by=user_id, notes=note, source="customer")
        locked.cancellation_reason = reason
        locked.cancellation_comments = comments
        if refund_requested:
            locked.payment_status = PAYMENT_REFUND_PENDING

        for item in locked.items:
            apply_stock_change(
                item.product_id,
                item.quantity,
                OPERATION_INCREASE,
                reason="order_cancelled",
                actor_user_id=user_id,
                order_id=locked.id,
                notes=f"Order {locked.order_number} cancelled",
            )

        notification_service.queue_order_cancelled(locked)
        db.session.commit()
        return locked

    try:
        order = run_with_retry(_op)
    except Exception:
        db.session.rollback()
        if refund_requested:
            current_app.logger.error(
                "Refund requested for order %s but cancellation failed; reconcile manually", order_id,
            )
        raise

    current_app.logger.info("Order %s cancelled by user %s (%s)", order.order_number, user_id, reason)
    return order


def add_admin_note(order_id: int, note: str, admin_id: int) -> Order:
    """Administrative notes are the one thing still writable on closed orders."""
    note = (note or "").strip()
    if not note:
        raise ValidationError("Note cannot be empty", {"note": "is required"})
    order = get_order(order_id)
    stamp = utcnow().strftime("%Y-%m-%d %H:%M")
    entry = f"[{stamp} admin:{admin_id}] {note}"
    order.admin_notes = f"{order.admin_notes}\n{entry}" if order.admin_notes else entry
    db.session.commit()
    return order


# =============================================================================
# QUERIES
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    return order


def get_order_for_user(order_id: int, user_id: int) -> Order:
    order = get_order(order_id)
    if order.user_id != user_id:
        raise OrderAccessError("You do not have access to this order")
    return order


def get_status_history(order_id: int) -> list[OrderStatusHistory]:
    return (
        db.session.query(OrderStatusHistory)
        .filter(OrderStatusHistory.order_id == order_id)
        .order_by(OrderStatusHistory.created_at.asc(), OrderStatusHistory.id.asc())
        .all()
    )


def list_user_orders(user_id: int, *, status: str | None = None, page: int = 1, limit: int = 10) -> tuple[list[Order], int]:
    q = db.session.query(Order).filter(Order.user_id == user_id)
    if status:
        q = q.filter(Order.status == status)
    total = q.count()
    orders = (
        q.order_by(Order.placed_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return orders, total


def list_orders(
    *,
    status: str | None = None,
    payment_status: str | None = None,
    search: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Order], int]:
    """Back-office order list. search matches order number, tracking number or customer email."""
    q = db.session.query(Order).join(User, Order.user_id == User.id)
    if status:
        if status not in ORDER_STATUSES:
            raise ValidationError(f"Unknown order status: {status}", {"status": "is not a valid order status"})
        q = q.filter(Order.status == status)
    if payment_status:
        q = q.filter(Order.payment_status == payment_status)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(db.or_(
            Order.order_number.ilike(like),
            Order.tracking_number.ilike(like),
            User.email.ilike(like),
        ))
    if start_date:
        q = q.filter(Order.placed_at >= start_date)
    if end_date:
        q = q.filter(Order.placed_at <= end_date)

    total = q.count()
    orders = (
        q.order_by(Order.placed_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return orders, total


def order_detail(order: Order) -> dict:
    data = order.to_dict()
    data["customer_email"] = order.user.email if order.user else None
    data["history"] = [h.to_dict() for h in get_status_history(order.id)]
    data["next_statuses"] = next_statuses(order.status)
    return data
