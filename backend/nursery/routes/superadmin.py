# Overview: Flask API routes for platform administration; accounts, roles, analytics, audit log and outbox.

# backend/nursery/routes/superadmin.py
"""
Super admin API routes

SECURITY:
- Account and role changes cannot target the caller
- Role changes never grant super_admin
- Every change is written to the activity log
"""

from flask import Blueprint, request, g

from ..responses import success, failure, paginated, validation_failure, server_error
from ..services import auth_service, user_service, order_service, activity_service, notification_service
from ..services.user_service import UserManagementError
from ..validation import ValidationError, ConflictError, NotFoundError, parse_pagination, parse_optional_datetime
from ..decorators import require_auth, require_capability
from ..permissions import Capability


superadmin_bp = Blueprint("superadmin", __name__, url_prefix="/api/admin/superadmin")
admin_accounts_bp = Blueprint("admin_accounts", __name__, url_prefix="/api/admin")


def _date_range():
    return (
        parse_optional_datetime(request.args.get("startDate"), "startDate"),
        parse_optional_datetime(request.args.get("endDate"), "endDate"),
    )


def _bool_arg(name: str):
    raw = request.args.get(name)
    if raw is None:
        return None
    return raw.lower() in ("1", "true", "yes")


# =============================================================================
# ACCOUNTS
# =============================================================================

@admin_accounts_bp.post("/create-admin")
@require_auth
@require_capability(Capability.MANAGE_ADMINS)
def create_admin_route():
    """
    Create a back-office account.

    Request body:
    {
        "email": "orders@example.com",
        "password": "...",
        "role": "order_admin"
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.create_admin(
            data.get("email"), data.get("password"), data.get("role"),
            created_by=g.current_user.id,
        )
        return success(user.to_dict(), message="Admin created successfully", status=201)
    except ValidationError as e:
        return validation_failure(e)
    except ConflictError as e:
        return failure(str(e), 409)
    except Exception as e:
        return server_error("Error in create_admin", e)


@superadmin_bp.get("/users")
@superadmin_bp.get("/admins/manage")
@require_auth
@require_capability(Capability.MANAGE_USERS)
def list_users_route():
    """Query: page, limit, role, isActive, search"""
    try:
        page, limit = parse_pagination(request.args)
        users, total = user_service.list_users(
            role=request.args.get("role"),
            is_active=_bool_arg("isActive"),
            search=request.args.get("search"),
            page=page,
            limit=limit,
        )
        return paginated([u.to_dict() for u in users], total, page, limit, key="users")
    except ValidationError as e:
        return validation_failure(e)
    except Exception as e:
        return server_error("Error in list_users", e)


@superadmin_bp.get("/users/<int:user_id>")
@require_auth
@require_capability(Capability.MANAGE_USERS)
def get_user_route(user_id: int):
    try:
        return success(user_service.get_user_details(user_id))
    except NotFoundError as e:
        return failure(str(e), 404)
    except Exception as e:
        return server_error("Error in get_user", e)


@superadmin_bp.put("/users/<int:user_id>/status")
@superadmin_bp.patch("/users/<int:user_id>/status")
@require_auth
@require_capability(Capability.MANAGE_USERS)
def set_user_status_route(user_id: int):
    """Request body: {"is_active": false}; deactivation also ends the user's session."""
    data = request.get_json(silent=True) or {}
    try:
        user = user_service.set_user_status(user_id, data.get("is_active"), actor_id=g.current_user.id)
        state = "activated" if user.is_active else "deactivated"
        return success(user.to_dict(), message=f"User {state} successfully")
    except ValidationError as e:
        return validation_failure(e)
    except UserManagementError as e:
        return failure(str(e), 400)
    except NotFoundError as e:
        return failure(str(e), 404)
    except Exception as e:
        return server_error("Error in set_user_status", e)


@superadmin_bp.put("/users/<int:user_id>/role")
@superadmin_bp.patch("/users/<int:user_id>/role")
@require_auth
@require_capability(Capability.MANAGE_ADMINS)
def change_role_route(user_id: int):
    """Request body: {"role": "support_admin"}"""
    data = request.get_json(silent=True) or {}
    try:
        user = user_service.change_role(user_id, data.get("role"), actor_id=g.current_user.id)
        return success(user.to_dict(), message="User role updated successfully")
    except ValidationError as e:
        return validation_failure(e)
    except UserManagementError as e:
        return failure(str(e), 400)
    except NotFoundError as e:
        return failure(str(e), 404)
    except Exception as e:
        return server_error("Error in change_role", e)


# =============================================================================
# ANALYTICS
# =============================================================================

@superadmin_bp.get("/platform/stats")
@require_auth
@require_capability(Capability.VIEW_ANALYTICS)
def platform_stats_route():
    try:
        return success(user_service.platform_stats())
    except Exception as e:
        return server_error("Error in platform_stats", e)


@superadmin_bp.get("/analytics/sales")
@require_auth
@require_capability(Capability.VIEW_ANALYTICS)
def sales_analytics_route():
    """Query: period (day | week | month), startDate, endDate"""
    try:
        start_date, end_date = _date_range()
        return success(user_service.sales_analytics(request.args.get("period", "month"), start_date, end_date))
    except ValidationError as e:
        return validation_failure(e)
    except Exception as e:
        return server_error("Error in sales_analytics", e)


@superadmin_bp.get("/analytics/users")
@require_auth
@require_capability(Capability.VIEW_ANALYTICS)
def user_analytics_route():
    """Query: startDate, endDate"""
    try:
        start_date, end_date = _date_range()
        return success(user_service.user_analytics(start_date, end_date))
    except ValidationError as e:
        return validation_failure(e)
    except Exception as e:
        return server_error("Error in user_analytics", e)


# =============================================================================
# ORDERS / AUDIT / OUTBOX
# =============================================================================

@superadmin_bp.get("/orders")
@require_auth
@require_capability(Capability.VIEW_ORDERS)
def all_orders_route():
    """Query: page, limit, status, paymentStatus, search, startDate, endDate"""
    try:
        page, limit = parse_pagination(request.args)
        start_date, end_date = _date_range()
        orders, total = order_service.list_orders(
            status=request.args.get("status"),
            payment_status=request.args.get("paymentStatus"),
            search=request.args.get("search"),
            start_date=start_date,
            end_date=end_date,
            page=page,
            limit=limit,
        )
        return paginated([o.to_dict(include_items=False) for o in orders], total, page, limit, key="orders")
    except ValidationError as e:
        return validation_failure(e)
    except Exception as e:
        return server_error("Error in superadmin list_orders", e)


@superadmin_bp.get("/orders/<int:order_id>")
@require_auth
@require_capability(Capability.VIEW_ORDERS)
def order_detail_route(order_id: int):
    try:
        return success(order_service.order_detail(order_service.get_order(order_id)))
    except NotFoundError as e:
        return failure(str(e), 404)
    except Exception as e:
        return server_error("Error in superadmin order_detail", e)


@superadmin_bp.get("/activity-logs")
@require_auth
@require_capability(Capability.VIEW_ACTIVITY_LOG)
def activity_logs_route():
    """Query: page, limit, userId, actionType, entityType, startDate, endDate"""
    try:
        page, limit = parse_pagination(request.args, 50)
        start_date, end_date = _date_range()
        rows, total = activity_service.list_activity(
            user_id=request.args.get("userId", type=int),
            action_type=request.args.get("actionType"),
            entity_type=request.args.get("entityType"),
            start_date=start_date,
            end_date=end_date,
            page=page,
            limit=limit,
        )
        return paginated([r.to_dict() for r in rows], total, page, limit, key="logs")
    except ValidationError as e:
        return validation_failure(e)
    except Exception as e:
        return server_error("Error in activity_logs", e)


@superadmin_bp.get("/notifications")
@require_auth
@require_capability(Capability.VIEW_ACTIVITY_LOG)
def notifications_route():
    """Email outbox. Query: page, limit, status (pending | sent | failed)"""
    try:
        page, limit = parse_pagination(request.args, 50)
        rows, total = notification_service.list_outbox(request.args.get("status"), page, limit)
        return paginated([r.to_dict() for r in rows], total, page, limit, key="notifications")
    except ValidationError as e:
        return validation_failure(e)
    except Exception as e:
        return server_error("Error in list_notifications", e)


@superadmin_bp.post("/notifications/retry-failed")
@require_auth
@require_capability(Capability.MANAGE_USERS)
def retry_notifications_route():
    try:
        count = notification_service.retry_failed()
        activity_service.log_activity(
            g.current_user.id, "NOTIFICATIONS_RETRIED", entity_type="notification",
            details={"count": count}, commit=True,
        )
        return success({"requeued": count}, message=f"{count} notification(s) requeued")
    except Exception as e:
        return server_error("Error in retry_notifications", e)
