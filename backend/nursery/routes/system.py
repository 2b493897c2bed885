# backend/nursery/routes/system.py
"""
Liveness endpoint for load balancers and operators.

The database check decides the status code. The backlog check is
informational: a growing count of idle sessions or undelivered email
means `flask sessions sweep` or `flask notifications dispatch` is not
being scheduled.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import User, ActiveSession, NotificationOutbox
from ..services.session_service import stale_session_count
from nursery.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__, url_prefix="/api")


def _timed(check) -> dict:
    started = time.perf_counter()
    try:
        result = {"status": "healthy", "details": check()}
    except Exception:
        current_app.logger.exception("Health check %s failed", check.__name__)
        db.session.rollback()
        result = {"status": "unhealthy", "error": "Database error"}
    result["latency_ms"] = round((time.perf_counter() - started) * 1000, 2)
    return result


def database_check() -> dict:
    return {
        "users": db.session.query(User).count(),
        "active_sessions": db.session.query(ActiveSession).count(),
    }


def backlog_check() -> dict:
    by_status = dict(
        db.session.query(NotificationOutbox.status, db.func.count(NotificationOutbox.id))
        .group_by(NotificationOutbox.status)
        .all()
    )
    return {
        "stale_sessions": stale_session_count(),
        "pending_notifications": by_status.get("pending", 0),
        "failed_notifications": by_status.get("failed", 0),
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database unreachable
    """
    database = _timed(database_check)
    healthy = database["status"] == "healthy"
    checks = {"database": database}
    if healthy:
        checks["backlog"] = _timed(backlog_check)

    body = {
        "success": healthy,
        "status": "OK" if healthy else "unhealthy",
        "timestamp": to_utc_z(utcnow()),
        "checks": checks,
    }
    return body, 200 if healthy else 503
