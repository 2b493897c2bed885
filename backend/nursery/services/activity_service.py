# Overview: Service-layer operations for the activity log; append-only audit trail of user and admin actions.

from __future__ import annotations

from datetime import datetime

from flask import has_request_context, request

from ..extensions import db
from ..models import ActivityLog
from nursery.time_utils import utcnow


def log_activity(
    user_id: int | None,
    action_type: str,
    *,
    entity_type: str | None = None,
    entity_id=None,
    details: dict | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    commit: bool = False,
) -> ActivityLog:
    """
    Append an activity row.

    WHY: Every privileged action must be attributable after the fact.

    action_type examples:
    - LOGIN / LOGOUT / PASSWORD_RESET
    - ROLE_CHANGED / USER_ACTIVATED / USER_DEACTIVATED / ADMIN_CREATED
    - STOCK_UPDATED / ORDER_STATUS_CHANGED
    - PERMISSION_DENIED

    Client address and user agent default to the current request. By
    default the row rides on the caller's transaction.
    """
    if has_request_context():
        ip_address = ip_address or request.remote_addr
        user_agent = user_agent or request.headers.get("User-Agent")

    entry = ActivityLog(
        user_id=user_id,
        action_type=action_type,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        details=details,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:512] or None,
        created_at=utcnow(),
    )
    db.session.add(entry)
    if commit:
        db.session.commit()
    return entry


def list_activity(
    *,
    user_id: int | None = None,
    action_type: str | None = None,
    entity_type: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[ActivityLog], int]:
    q = db.session.query(ActivityLog)
    if user_id:
        q = q.filter(ActivityLog.user_id == user_id)
    if action_type:
        q = q.filter(ActivityLog.action_type == action_type)
    if entity_type:
        q = q.filter(ActivityLog.entity_type == entity_type)
    if start_date:
        q = q.filter(ActivityLog.created_at >= start_date)
    if end_date:
        q = q.filter(ActivityLog.created_at <= end_date)

    total = q.count()
    rows = (
        q.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total
