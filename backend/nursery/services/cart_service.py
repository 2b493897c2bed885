# Overview: Service-layer operations for carts; merges saved lines with live product data.

"""
Cart Aggregator

- One Cart per user, created lazily on first add.
- (cart_id, product_id) is unique: adding a product already in the cart
  increases that line's quantity instead of inserting a second line.
- Stock is checked against the merged quantity on add and re-checked on
  quantity updates. Nothing is reserved: stock is only taken at order time.
- validate_cart_items is advisory. It reports lines whose quantity now
  exceeds stock but never edits the cart.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Cart, CartItem, Product
from ..validation import NotFoundError, ValidationError, parse_positive_int
from .concurrency import run_with_retry
from .inventory_service import (
    check_stock,
    InsufficientStockError,
    STOCK_PRODUCT_INACTIVE,
    STOCK_PRODUCT_MISSING,
)


def _get_cart(user_id: int) -> Cart | None:
    return db.session.query(Cart).filter(Cart.user_id == user_id).first()


def _get_or_create_cart(user_id: int) -> Cart:
    cart = _get_cart(user_id)
    if cart is not None:
        return cart
    cart = Cart(user_id=user_id)
    db.session.add(cart)
    try:
        db.session.flush()
    except IntegrityError:
        # Another request created it first
        db.session.rollback()
        cart = _get_cart(user_id)
        if cart is None:
            raise
    return cart


def _get_owned_item(user_id: int, item_id: int) -> CartItem:
    item = (
        db.session.query(CartItem)
        .join(Cart, CartItem.cart_id == Cart.id)
        .filter(CartItem.id == item_id, Cart.user_id == user_id)
        .first()
    )
    if item is None:
        raise NotFoundError("Cart item not found")
    return item


def _require_stock(product_id: int, quantity: int) -> None:
    result = check_stock(product_id, quantity)
    if result.reason == STOCK_PRODUCT_MISSING:
        raise NotFoundError("Product not found")
    if result.reason == STOCK_PRODUCT_INACTIVE:
        raise ValidationError("Product is not available", {"productId": "is not available"})
    if not result.available:
        raise InsufficientStockError(product_id, quantity, result.current_stock)


def _line_dict(item: CartItem) -> dict:
    product: Product = item.product
    return {
        "id": item.id,
        "product_id": item.product_id,
        "quantity": item.quantity,
        "line_total_cents": item.quantity * product.price_cents,
        "product": {
            "id": product.id,
            "name": product.name,
            "slug": product.slug,
            "price_cents": product.price_cents,
            "stock_quantity": product.stock_quantity,
            "stock_status": product.stock_status,
            "image_url": product.image_url,
            "is_active": product.is_active,
        },
    }


def get_cart(user_id: int) -> dict:
    """Cart with live product snapshot and totals. Users without a cart get an empty one."""
    cart = _get_cart(user_id)
    items = [_line_dict(item) for item in cart.items] if cart else []
    return {
        "id": cart.id if cart else None,
        "items": items,
        "total_items": sum(i["quantity"] for i in items),
        "total_amount_cents": sum(i["line_total_cents"] for i in items),
    }


def add_to_cart(user_id: int, product_id: int, quantity) -> CartItem:
    quantity = parse_positive_int(quantity, "quantity")
    product_id = parse_positive_int(product_id, "productId")

    def _op():
        cart = _get_or_create_cart(user_id)
        item = (
            db.session.query(CartItem)
            .filter(CartItem.cart_id == cart.id, CartItem.product_id == product_id)
            .first()
        )
        merged = quantity + (item.quantity if item else 0)
        _require_stock(product_id, merged)

        if item is None:
            item = CartItem(cart_id=cart.id, product_id=product_id, quantity=quantity)
            db.session.add(item)
        else:
            item.quantity = merged
        db.session.commit()
        return item

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


def update_cart_item(user_id: int, item_id: int, quantity) -> CartItem:
    quantity = parse_positive_int(quantity, "quantity")
    item = _get_owned_item(user_id, item_id)
    _require_stock(item.product_id, quantity)
    item.quantity = quantity
    db.session.commit()
    return item


def remove_from_cart(user_id: int, item_id: int) -> None:
    item = _get_owned_item(user_id, item_id)
    db.session.delete(item)
    db.session.commit()


def clear_cart_items(user_id: int) -> int:
    """Delete every line in the user's cart. Does NOT commit."""
    cart = _get_cart(user_id)
    if cart is None:
        return 0
    return (
        db.session.query(CartItem)
        .filter(CartItem.cart_id == cart.id)
        .delete(synchronize_session="fetch")
    )


def clear_cart(user_id: int) -> int:
    removed = clear_cart_items(user_id)
    db.session.commit()
    return removed


def validate_cart_items(user_id: int) -> list[dict]:
    """Lines whose quantity exceeds current stock. Read-only."""
    cart = _get_cart(user_id)
    if cart is None:
        return []
    invalid = []
    for item in cart.items:
        result = check_stock(item.product_id, item.quantity)
        if not result.available:
            invalid.append({
                "cartItemId": item.id,
                "productId": item.product_id,
                "productName": item.product.name,
                "requestedQuantity": item.quantity,
                "availableQuantity": result.current_stock,
            })
    return invalid


def get_cart_lines(user_id: int) -> list[dict]:
    """[{product_id, quantity}] for checkout."""
    cart = _get_cart(user_id)
    if cart is None:
        return []
    return [{"product_id": item.product_id, "quantity": item.quantity} for item in cart.items]
