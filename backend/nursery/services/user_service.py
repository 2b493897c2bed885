# Overview: Service-layer operations for users; profiles, super-admin user management and platform analytics.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import User, Profile, Order, Product
from ..models.catalog import STOCK_LOW, STOCK_OUT
from ..permissions import Role, parse_role
from ..validation import ValidationError, NotFoundError, MOBILE_RE
from . import activity_service, session_service
from .order_service import PAYMENT_COMPLETED
from nursery.time_utils import utcnow


MAX_NAME_LENGTH = 100
ASSIGNABLE_ROLES = tuple(r.value for r in Role if r is not Role.SUPER_ADMIN)
ANALYTICS_PERIODS = ("day", "week", "month")


class UserManagementError(Exception):
    """Raised when a super-admin action is not allowed (400)."""
    pass


# =============================================================================
# PROFILES
# =============================================================================

def _clean(value) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    return value.strip() or None


def validate_profile(payload: dict) -> dict:
    """Normalized profile fields; raises ValidationError listing every bad field."""
    payload = payload or {}
    errors = {}
    data = {
        "first_name": _clean(payload.get("first_name")),
        "middle_name": _clean(payload.get("middle_name")),
        "last_name": _clean(payload.get("last_name")),
        "permanent_address": _clean(payload.get("permanent_address")),
        "mobile_number": _clean(payload.get("mobile_number")),
    }

    if not data["first_name"]:
        errors["first_name"] = "First name is required"
    if not data["last_name"]:
        errors["last_name"] = "Last name is required"
    for field in ("first_name", "middle_name", "last_name"):
        if data[field] and len(data[field]) > MAX_NAME_LENGTH:
            errors[field] = f"must not exceed {MAX_NAME_LENGTH} characters"
    if not data["permanent_address"]:
        errors["permanent_address"] = "Permanent address is required"
    if not data["mobile_number"]:
        errors["mobile_number"] = "Mobile number is required"
    elif not MOBILE_RE.match(data["mobile_number"]):
        errors["mobile_number"] = "Invalid mobile number format"

    addresses = payload.get("delivery_addresses")
    if addresses is not None:
        if not isinstance(addresses, list) or not all(isinstance(a, (dict, str)) for a in addresses):
            errors["delivery_addresses"] = "must be a list of addresses"
        else:
            data["delivery_addresses"] = addresses

    if errors:
        raise ValidationError("Invalid profile", errors)
    return data


def get_profile(user_id: int) -> Profile | None:
    return db.session.query(Profile).filter(Profile.user_id == user_id).first()


def save_profile(user_id: int, payload: dict) -> tuple[Profile, str]:
    """Create or update the user's profile. Returns (profile, "created" | "updated")."""
    data = validate_profile(payload)
    if db.session.get(User, user_id) is None:
        raise NotFoundError("User not found")

    profile = get_profile(user_id)
    if profile is None:
        profile = Profile(user_id=user_id, delivery_addresses=data.pop("delivery_addresses", []))
        for key, value in data.items():
            setattr(profile, key, value)
        db.session.add(profile)
        outcome = "created"
    else:
        for key, value in data.items():
            setattr(profile, key, value)
        outcome = "updated"

    db.session.commit()
    return profile, outcome


# =============================================================================
# SUPER ADMIN: USERS
# =============================================================================

def _get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def list_users(
    *,
    role: str | None = None,
    is_active: bool | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[User], int]:
    q = db.session.query(User)
    if role:
        if parse_role(role) is None:
            raise ValidationError(f"Unknown role: {role}", {"role": "is not a valid role"})
        q = q.filter(User.role == role)
    if is_active is not None:
        q = q.filter(User.is_active.is_(is_active))
    if search:
        q = q.filter(User.email.ilike(f"%{search.strip()}%"))

    total = q.count()
    users = (
        q.order_by(User.created_at.desc(), User.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return users, total


def get_user_details(user_id: int) -> dict:
    user = _get_user(user_id)
    data = user.to_dict()
    data["profile"] = user.profile.to_dict() if user.profile else None
    data["order_count"] = db.session.query(func.count(Order.id)).filter(Order.user_id == user_id).scalar()
    active = session_service.get_active_session(user_id)
    data["active_session"] = active.to_dict() if active else None
    return data


def set_user_status(user_id: int, is_active, *, actor_id: int) -> User:
    """Activate/deactivate an account. Deactivation ends its session."""
    if not isinstance(is_active, bool):
        raise ValidationError("is_active field is required", {"is_active": "must be true or false"})
    if user_id == actor_id:
        raise UserManagementError("You cannot deactivate your own account")

    user = _get_user(user_id)
    try:
        user.is_active = is_active
        if not is_active:
            session_service.end_session(user_id, commit=False)
        activity_service.log_activity(
            actor_id,
            "USER_ACTIVATED" if is_active else "USER_DEACTIVATED",
            entity_type="user",
            entity_id=user_id,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("User %s %s by %s", user_id, "activated" if is_active else "deactivated", actor_id)
    return user


def change_role(user_id: int, role, *, actor_id: int) -> User:
    """
    Change an account's role. super_admin cannot be granted here and a
    super admin cannot change their own role.
    """
    if role not in ASSIGNABLE_ROLES:
        raise ValidationError(
            "Invalid role",
            {"role": f"Role must be one of: {', '.join(ASSIGNABLE_ROLES)}"},
        )
    if user_id == actor_id:
        raise UserManagementError("You cannot change your own role")

    user = _get_user(user_id)
    previous = user.role
    try:
        user.role = role
        activity_service.log_activity(
            actor_id, "ROLE_CHANGED", entity_type="user", entity_id=user_id,
            details={"from": previous, "to": role},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("User %s role %s -> %s by %s", user_id, previous, role, actor_id)
    return user


# =============================================================================
# SUPER ADMIN: ANALYTICS
# =============================================================================

def platform_stats() -> dict:
    role_counts = dict(db.session.query(User.role, func.count(User.id)).group_by(User.role).all())
    active_users = db.session.query(func.count(User.id)).filter(User.is_active.is_(True)).scalar()

    status_counts = dict(db.session.query(Order.status, func.count(Order.id)).group_by(Order.status).all())

    product_total = db.session.query(func.count(Product.id)).scalar()
    product_active = db.session.query(func.count(Product.id)).filter(Product.is_active.is_(True)).scalar()
    low_stock = db.session.query(func.count(Product.id)).filter(Product.stock_status == STOCK_LOW).scalar()
    out_of_stock = db.session.query(func.count(Product.id)).filter(Product.stock_status == STOCK_OUT).scalar()

    revenue = (
        db.session.query(func.coalesce(func.sum(Order.total_cents), 0), func.count(Order.id))
        .filter(Order.payment_status == PAYMENT_COMPLETED)
        .one()
    )
    revenue_cents, paid_orders = int(revenue[0] or 0), int(revenue[1] or 0)

    return {
        "users": {
            "total": sum(role_counts.values()),
            "active": active_users,
            "by_role": role_counts,
        },
        "orders": {
            "total": sum(status_counts.values()),
            "by_status": status_counts,
        },
        "products": {
            "total": product_total,
            "active": product_active,
            "low_stock": low_stock,
            "out_of_stock": out_of_stock,
        },
        "revenue": {
            "total_cents": revenue_cents,
            "paid_orders": paid_orders,
            "average_order_cents": revenue_cents // paid_orders if paid_orders else 0,
            "currency": current_app.config.get("CURRENCY", "INR"),
        },
    }


def _period_expr(column, period: str):
    if period == "day":
        return func.strftime("%Y-%m-%d", column)
    if period == "week":
        return func.strftime("%Y-W%W", column)
    if period == "month":
        return func.strftime("%Y-%m", column)
    raise ValidationError(
        f"period must be one of: {', '.join(ANALYTICS_PERIODS)}",
        {"period": f"must be one of: {', '.join(ANALYTICS_PERIODS)}"},
    )


def sales_analytics(
    period: str = "month",
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> dict:
    """Paid order count and revenue grouped by placement period."""
    period_expr = _period_expr(Order.placed_at, period)
    q = (
        db.session.query(
            period_expr.label("period"),
            func.count(Order.id).label("orders"),
            func.coalesce(func.sum(Order.total_cents), 0).label("revenue_cents"),
        )
        .filter(Order.payment_status == PAYMENT_COMPLETED)
    )
    if start_date:
        q = q.filter(Order.placed_at >= start_date)
    if end_date:
        q = q.filter(Order.placed_at <= end_date)

    rows = q.group_by("period").order_by("period").all()
    return {
        "period": period,
        "rows": [
            {"period": r.period, "orders": int(r.orders), "revenue_cents": int(r.revenue_cents)}
            for r in rows
        ],
    }


def user_analytics(start_date: datetime | None = None, end_date: datetime | None = None) -> dict:
    """Signups per day in the range, plus totals by role."""
    end_date = end_date or utcnow()
    q = db.session.query(
        func.strftime("%Y-%m-%d", User.created_at).label("day"),
        func.count(User.id).label("signups"),
    ).filter(User.created_at <= end_date)
    if start_date:
        q = q.filter(User.created_at >= start_date)
    rows = q.group_by("day").order_by("day").all()

    return {
        "signups": [{"date": r.day, "count": int(r.signups)} for r in rows],
        "total_signups": sum(int(r.signups) for r in rows),
        "by_role": dict(db.session.query(User.role, func.count(User.id)).group_by(User.role).all()),
    }
