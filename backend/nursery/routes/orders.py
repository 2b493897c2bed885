# Overview: Flask API routes for customer orders; checkout, payment hand-off, cancellation and history.

from flask import Blueprint, request, g

from ..responses import success, failure, paginated, validation_failure, server_error
from ..services import order_service, payment_service
from ..services.order_service import OrderAccessError, OrderTransitionError
from ..services.inventory_service import InsufficientStockError
from ..services.payment_service import PaymentError, PaymentGatewayError
from ..validation import ValidationError, NotFoundError, parse_pagination
from ..decorators import require_auth


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _order_failure(e: Exception):
    """Map order/payment domain errors to responses. Returns None for anything else."""
    if isinstance(e, ValidationError):
        return validation_failure(e)
    if isinstance(e, NotFoundError):
        return failure(str(e), 404)
    if isinstance(e, OrderAccessError):
        return failure(str(e), 403)
    if isinstance(e, (InsufficientStockError, OrderTransitionError, PaymentError)):
        return failure(str(e), 400)
    if isinstance(e, PaymentGatewayError):
        return failure(str(e), 502)
    return None


@orders_bp.post("")
@orders_bp.post("/create")
@require_auth
def create_order_route():
    """
    Place an order. Stock is decremented in the same transaction.

    Request body, one of:
    - {"type": "cart"}                          checkout the whole cart
    - {"items": [{"productId": 7, "quantity": 2}, ...]}
    - {"productId": 7, "quantity": 2}           buy-now for one product

    Optional: "shippingAddress", "customerNotes".
    """
    data = request.get_json(silent=True) or {}
    options = {
        "shipping_address": data.get("shippingAddress"),
        "customer_notes": data.get("customerNotes"),
    }
    try:
        if data.get("type") == "cart":
            order = order_service.create_order_from_cart(g.current_user.id, **options)
        elif "items" in data:
            order = order_service.create_order(g.current_user.id, data.get("items"), **options)
        else:
            item = {"product_id": data.get("productId"), "quantity": data.get("quantity", 1)}
            order = order_service.create_order(g.current_user.id, [item], **options)
        return success(order.to_dict(), message="Order created successfully", status=201)
    except Exception as e:
        mapped = _order_failure(e)
        if mapped is not None:
            return mapped
        return server_error("Error in create_order", e)


@orders_bp.get("/<int:order_id>/payment-options")
@require_auth
def payment_options_route(order_id: int):
    try:
        return success(payment_service.payment_options(order_id, g.current_user.id))
    except Exception as e:
        mapped = _order_failure(e)
        if mapped is not None:
            return mapped
        return server_error("Error in payment_options", e)


@orders_bp.post("/<int:order_id>/payment")
@require_auth
def confirm_payment_route(order_id: int):
    """Request body: {"paymentId": "pay_..."}; needs a verified transaction."""
    data = request.get_json(silent=True) or {}
    try:
        order = payment_service.confirm_order_payment(order_id, g.current_user.id, data.get("paymentId"))
        return success(order.to_dict(), message="Payment confirmed")
    except Exception as e:
        mapped = _order_failure(e)
        if mapped is not None:
            return mapped
        return server_error("Error in confirm_payment", e)


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
def cancel_order_route(order_id: int):
    """
    Cancel an order that has not shipped. Paid orders are refunded
    through the gateway.

    Request body: {"reason": "changed_mind", "comments": "..."}
    """
    data = request.get_json(silent=True) or {}
    try:
        order = order_service.cancel_order(order_id, g.current_user.id, data.get("reason"), data.get("comments"))
        return success(order.to_dict(), message="Order cancelled successfully")
    except Exception as e:
        mapped = _order_failure(e)
        if mapped is not None:
            return mapped
        return server_error("Error in cancel_order", e)


@orders_bp.get("/user")
@require_auth
def list_my_orders_route():
    """Query: page, limit, status"""
    try:
        page, limit = parse_pagination(request.args, 10)
        orders, total = order_service.list_user_orders(
            g.current_user.id,
            status=request.args.get("status"),
            page=page,
            limit=limit,
        )
        return paginated([o.to_dict(include_items=True) for o in orders], total, page, limit, key="orders")
    except ValidationError as e:
        return validation_failure(e)
    except Exception as e:
        return server_error("Error in list_my_orders", e)


@orders_bp.get("/user/<int:order_id>")
@orders_bp.get("/<int:order_id>")
@require_auth
def get_my_order_route(order_id: int):
    try:
        order = order_service.get_order_for_user(order_id, g.current_user.id)
        return success(order_service.order_detail(order))
    except Exception as e:
        mapped = _order_failure(e)
        if mapped is not None:
            return mapped
        return server_error("Error in get_my_order", e)
