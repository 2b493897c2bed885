# Overview: Flask API routes for the shopping cart; one cart per user, stock-checked on every change.

from flask import Blueprint, request, g

from ..responses import success, failure, validation_failure, server_error
from ..services import cart_service
from ..services.inventory_service import InsufficientStockError
from ..validation import ValidationError, NotFoundError
from ..decorators import require_auth


cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


def _stock_failure(e: InsufficientStockError):
    return failure(str(e), 400, {"quantity": f"only {e.available or 0} available"})


@cart_bp.get("")
@require_auth
def get_cart_route():
    try:
        return success(cart_service.get_cart(g.current_user.id))
    except Exception as e:
        return server_error("Error in get_cart", e)


@cart_bp.post("/items")
@require_auth
def add_item_route():
    """
    Add a product to the cart. Adding a product already in the cart
    merges quantities.

    Request body: {"productId": 7, "quantity": 2}
    """
    data = request.get_json(silent=True) or {}
    try:
        cart_service.add_to_cart(g.current_user.id, data.get("productId"), data.get("quantity", 1))
        return success(cart_service.get_cart(g.current_user.id), message="Item added to cart")
    except ValidationError as e:
        return validation_failure(e)
    except NotFoundError as e:
        return failure(str(e), 404)
    except InsufficientStockError as e:
        return _stock_failure(e)
    except Exception as e:
        return server_error("Error in add_to_cart", e)


@cart_bp.patch("/items/<int:item_id>")
@cart_bp.put("/items/<int:item_id>")
@require_auth
def update_item_route(item_id: int):
    """Request body: {"quantity": 3}"""
    data = request.get_json(silent=True) or {}
    try:
        cart_service.update_cart_item(g.current_user.id, item_id, data.get("quantity"))
        return success(cart_service.get_cart(g.current_user.id), message="Cart updated")
    except ValidationError as e:
        return validation_failure(e)
    except NotFoundError as e:
        return failure(str(e), 404)
    except InsufficientStockError as e:
        return _stock_failure(e)
    except Exception as e:
        return server_error("Error in update_cart_item", e)


@cart_bp.delete("/items/<int:item_id>")
@require_auth
def remove_item_route(item_id: int):
    try:
        cart_service.remove_from_cart(g.current_user.id, item_id)
        return success(cart_service.get_cart(g.current_user.id), message="Item removed from cart")
    except NotFoundError as e:
        return failure(str(e), 404)
    except Exception as e:
        return server_error("Error in remove_from_cart", e)


@cart_bp.delete("")
@cart_bp.delete("/clear")
@require_auth
def clear_cart_route():
    try:
        removed = cart_service.clear_cart(g.current_user.id)
        return success({"removed": removed}, message="Cart cleared")
    except Exception as e:
        return server_error("Error in clear_cart", e)


@cart_bp.get("/validate")
@require_auth
def validate_cart_route():
    """Lines whose quantity exceeds current stock; `valid` is true when there are none."""
    try:
        invalid = cart_service.validate_cart_items(g.current_user.id)
        return success({"valid": not invalid, "invalidItems": invalid})
    except Exception as e:
        return server_error("Error in validate_cart", e)
