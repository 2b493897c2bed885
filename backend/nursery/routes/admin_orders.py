# Overview: Flask API routes for order administration; fulfilment status changes, history and notes.

from flask import Blueprint, request, g

from ..responses import success, failure, paginated, validation_failure, server_error
from ..services import order_service, payment_service, activity_service
from ..services.order_service import OrderTransitionError
from ..validation import ValidationError, NotFoundError, parse_pagination, parse_optional_datetime
from ..decorators import require_auth, require_capability
from ..permissions import Capability


admin_orders_bp = Blueprint("admin_orders", __name__, url_prefix="/api/admin/orders")


@admin_orders_bp.get("")
@require_auth
@require_capability(Capability.VIEW_ORDERS)
def list_orders_route():
    """
    Back-office order list, newest first.

    Query: page, limit, status, paymentStatus, search, startDate, endDate
    """
    try:
        page, limit = parse_pagination(request.args)
        orders, total = order_service.list_orders(
            status=request.args.get("status"),
            payment_status=request.args.get("paymentStatus"),
            search=request.args.get("search"),
            start_date=parse_optional_datetime(request.args.get("startDate"), "startDate"),
            end_date=parse_optional_datetime(request.args.get("endDate"), "endDate"),
            page=page,
            limit=limit,
        )
        return paginated([o.to_dict(include_items=False) for o in orders], total, page, limit, key="orders")
    except ValidationError as e:
        return validation_failure(e)
    except Exception as e:
        return server_error("Error in admin list_orders", e)


@admin_orders_bp.get("/<int:order_id>")
@require_auth
@require_capability(Capability.VIEW_ORDERS)
def get_order_route(order_id: int):
    """Order with items, history, allowed next statuses and payment transactions."""
    try:
        order = order_service.get_order(order_id)
        data = order_service.order_detail(order)
        data["transactions"] = [t.to_dict() for t in payment_service.list_transactions(order_id)]
        return success(data)
    except NotFoundError as e:
        return failure(str(e), 404)
    except Exception as e:
        return server_error("Error in admin get_order", e)


@admin_orders_bp.put("/<int:order_id>/status")
@admin_orders_bp.patch("/<int:order_id>/status")
@require_auth
@require_capability(Capability.MANAGE_ORDERS)
def update_status_route(order_id: int):
    """
    Move an order along its lifecycle.

    Request body:
    {
        "status": "shipped",
        "notes": "...",
        "trackingNumber": "AWB123",
        "shippingPartner": "Delhivery"
    }

    Only the forward fulfilment chain is accepted; cancellation goes through
    the customer cancel flow and refunds through the gateway webhook.

    400 for a status outside that chain, an illegal transition or missing
    shipping details.
    """
    data = request.get_json(silent=True) or {}
    try:
        new_status = data.get("status")
        if not new_status:
            raise ValidationError("status is required", {"status": "is required"})
        order = order_service.update_order_status(
            order_id,
            new_status,
            updated_by=g.current_user.id,
            notes=data.get("notes"),
            tracking_number=data.get("trackingNumber"),
            shipping_partner=data.get("shippingPartner"),
            source="admin",
            allowed=order_service.FORWARD_STATUSES,
        )
        activity_service.log_activity(
            g.current_user.id, "ORDER_STATUS_UPDATED", entity_type="order", entity_id=order_id,
            details={"status": new_status}, commit=True,
        )
        return success(order_service.order_detail(order), message="Order status updated successfully")
    except ValidationError as e:
        return validation_failure(e)
    except NotFoundError as e:
        return failure(str(e), 404)
    except OrderTransitionError as e:
        return failure(str(e), 400)
    except Exception as e:
        return server_error("Error in update_order_status", e)


@admin_orders_bp.get("/<int:order_id>/history")
@require_auth
@require_capability(Capability.VIEW_ORDERS)
def history_route(order_id: int):
    try:
        order_service.get_order(order_id)
        history = order_service.get_status_history(order_id)
        return success([h.to_dict() for h in history])
    except NotFoundError as e:
        return failure(str(e), 404)
    except Exception as e:
        return server_error("Error in order_history", e)


@admin_orders_bp.post("/<int:order_id>/notes")
@require_auth
@require_capability(Capability.MANAGE_ORDERS)
def add_note_route(order_id: int):
    """Request body: {"note": "..."}; allowed on closed orders too."""
    data = request.get_json(silent=True) or {}
    try:
        order = order_service.add_admin_note(order_id, data.get("note"), g.current_user.id)
        return success({"admin_notes": order.admin_notes}, message="Note added")
    except ValidationError as e:
        return validation_failure(e)
    except NotFoundError as e:
        return failure(str(e), 404)
    except Exception as e:
        return server_error("Error in add_order_note", e)
