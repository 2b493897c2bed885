# Overview: Service-layer operations for inventory; stock checks, the stock ledger, and admin stock views.

"""
Stock Ledger

INVARIANTS:
- products.stock_quantity is never negative.
- Every stock change writes exactly one InventoryMovement in the same
  transaction as the quantity change.

WHY a conditional UPDATE: a read-compute-write sequence lets two concurrent
orders both see "5 left" and both take 4. The decrement is a single
statement

    UPDATE products SET stock_quantity = stock_quantity - :q
    WHERE id = :id AND stock_quantity >= :q

so the database serializes competing writers and a rowcount of 0 means the
stock was not there. No read lock is held between check and write.

COMPOSITION: `apply_stock_change` never commits; order creation and
cancellation call it inside their own transaction. `update_stock` is the
standalone (admin) entry point and commits.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import update

from ..extensions import db
from ..models import Product, InventoryMovement
from ..models.catalog import STOCK_LOW, STOCK_OUT, STOCK_IN
from ..validation import ValidationError, NotFoundError
from .concurrency import run_with_retry
from . import notification_service
from nursery.time_utils import utcnow


OPERATION_INCREASE = "increase"
OPERATION_DECREASE = "decrease"
OPERATIONS = (OPERATION_INCREASE, OPERATION_DECREASE)

STOCK_STATUSES = (STOCK_IN, STOCK_LOW, STOCK_OUT)


class InsufficientStockError(ValueError):
    """Requested decrement exceeds current stock."""

    def __init__(self, product_id: int, requested: int, available: int | None, product_name: str | None = None):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        self.product_name = product_name
        label = product_name or f"product {product_id}"
        super().__init__(f"Insufficient stock for {label}: only {available or 0} units available")


STOCK_PRODUCT_MISSING = "product_missing"
STOCK_PRODUCT_INACTIVE = "product_inactive"
STOCK_INSUFFICIENT = "insufficient"


@dataclass(frozen=True)
class StockCheck:
    available: bool
    current_stock: int
    message: str | None = None
    reason: str | None = None  # one of the STOCK_* codes when unavailable

    def to_dict(self) -> dict:
        return {
            "available": self.available,
            "currentStock": self.current_stock,
            "message": self.message,
            "reason": self.reason,
        }


def check_stock(product_id: int, requested_qty: int) -> StockCheck:
    """Pure read: can `requested_qty` units of the product be taken right now?"""
    row = (
        db.session.query(Product.stock_quantity, Product.is_active)
        .filter(Product.id == product_id)
        .first()
    )
    if row is None:
        return StockCheck(available=False, current_stock=0, message="Product not found",
                          reason=STOCK_PRODUCT_MISSING)

    stock, is_active = row
    if not is_active:
        return StockCheck(available=False, current_stock=stock, message="Product is not available",
                          reason=STOCK_PRODUCT_INACTIVE)
    if stock < requested_qty:
        return StockCheck(available=False, current_stock=stock, message=f"Only {stock} units available",
                          reason=STOCK_INSUFFICIENT)
    return StockCheck(available=True, current_stock=stock)


def apply_stock_change(
    product_id: int,
    quantity: int,
    operation: str,
    *,
    reason: str = "adjustment",
    actor_user_id: int | None = None,
    notes: str | None = None,
    order_id: int | None = None,
) -> InventoryMovement:
    """
    Atomically change stock and record the movement. Does NOT commit.

    Raises:
        ValidationError: bad quantity/operation
        NotFoundError: unknown product
        InsufficientStockError: decrement would go negative
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer", {"quantity": "must be a positive integer"})
    if operation not in OPERATIONS:
        raise ValidationError(
            "operation must be 'increase' or 'decrease'",
            {"operation": "must be 'increase' or 'decrease'"},
        )

    if operation == OPERATION_DECREASE:
        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.stock_quantity >= quantity)
            .values(stock_quantity=Product.stock_quantity - quantity, updated_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
    else:
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(stock_quantity=Product.stock_quantity + quantity, updated_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )

    result = db.session.execute(stmt)
    if not result.rowcount:
        product = db.session.get(Product, product_id, populate_existing=True)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        raise InsufficientStockError(product_id, quantity, product.stock_quantity, product.name)

    stock_after = db.session.query(Product.stock_quantity).filter(Product.id == product_id).scalar()

    movement = InventoryMovement(
        product_id=product_id,
        movement_type=operation,
        quantity=quantity,
        stock_after=stock_after,
        reason=reason,
        notes=notes,
        actor_user_id=actor_user_id,
        order_id=order_id,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def update_stock(
    product_id: int,
    quantity: int,
    operation: str,
    *,
    reason: str = "adjustment",
    actor_user_id: int | None = None,
    notes: str | None = None,
) -> InventoryMovement:
    """Standalone stock change (admin restock/adjustment). Commits, then runs the low-stock check."""
    def _op():
        movement = apply_stock_change(
            product_id,
            quantity,
            operation,
            reason=reason,
            actor_user_id=actor_user_id,
            notes=notes,
        )
        check_and_notify_low_stock(product_id)
        db.session.commit()
        return movement

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


def check_and_notify_low_stock(product_id: int) -> bool:
    """
    Re-read the stock-status view for the product and queue a stock alert
    to every active inventory admin when it is LOW or OUT_OF_STOCK.

    Does NOT commit; the alert rides on the caller's transaction.
    Returns True when an alert was queued.
    """
    product = db.session.get(Product, product_id)
    if product is None:
        return False
    db.session.refresh(product)
    if product.stock_status not in (STOCK_LOW, STOCK_OUT):
        return False
    return notification_service.queue_stock_alert(product) > 0


# =============================================================================
# ADMIN VIEWS
# =============================================================================

def get_inventory_status(
    *,
    page: int = 1,
    limit: int = 20,
    status: str | None = None,
    search: str | None = None,
) -> tuple[list[Product], int]:
    """Paged stock-status view, lowest stock first."""
    q = db.session.query(Product)
    if status:
        if status not in STOCK_STATUSES:
            raise ValidationError(
                f"status must be one of: {', '.join(STOCK_STATUSES)}",
                {"status": f"must be one of: {', '.join(STOCK_STATUSES)}"},
            )
        q = q.filter(Product.stock_status == status)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(db.or_(Product.name.ilike(like), Product.sku.ilike(like)))

    total = q.count()
    items = (
        q.order_by(Product.stock_quantity.asc(), Product.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total


def get_low_stock_items() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(Product.stock_status == STOCK_LOW, Product.is_active.is_(True))
        .order_by(Product.stock_quantity.asc())
        .all()
    )


def get_inventory_movements(
    *,
    product_id: int | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[InventoryMovement], int]:
    q = db.session.query(InventoryMovement)
    if product_id:
        q = q.filter(InventoryMovement.product_id == product_id)
    if start_date:
        q = q.filter(InventoryMovement.occurred_at >= start_date)
    if end_date:
        q = q.filter(InventoryMovement.occurred_at <= end_date)

    total = q.count()
    items = (
        q.order_by(InventoryMovement.occurred_at.desc(), InventoryMovement.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total


def update_thresholds(
    product_id: int,
    min_threshold: int,
    max_threshold: int,
    reorder_quantity: int | None = None,
) -> Product:
    """Set the low/high water marks that drive the stock-status view."""
    errors = {}
    for field, value in (("min_threshold", min_threshold), ("max_threshold", max_threshold)):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            errors[field] = "must be a non-negative integer"
    if reorder_quantity is not None and (isinstance(reorder_quantity, bool) or not isinstance(reorder_quantity, int) or reorder_quantity < 0):
        errors["reorder_quantity"] = "must be a non-negative integer"
    if not errors and min_threshold > max_threshold:
        errors["min_threshold"] = "cannot exceed max_threshold"
    if errors:
        raise ValidationError("Invalid thresholds", errors)

    def _op():
        product = db.session.get(Product, product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        product.min_stock_threshold = min_threshold
        product.max_stock_threshold = max_threshold
        if reorder_quantity is not None:
            product.reorder_quantity = reorder_quantity
        db.session.commit()
        return product

    return run_with_retry(_op)
