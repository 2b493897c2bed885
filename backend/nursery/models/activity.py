from __future__ import annotations

from ..extensions import db
from nursery.time_utils import to_utc_z


class ActivityLog(db.Model):
    """
    Append-only record of who did what.

    action_type examples: LOGIN, LOGOUT, ROLE_CHANGED, USER_DEACTIVATED,
    STOCK_UPDATED, ORDER_STATUS_UPDATED, PERMISSION_DENIED.
    """
    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("ix_activity_logs_user_time", "user_id", "created_at"),
        db.Index("ix_activity_logs_action_time", "action_type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    action_type = db.Column(db.String(64), nullable=False)
    entity_type = db.Column(db.String(64), nullable=True)
    entity_id = db.Column(db.String(64), nullable=True)
    details = db.Column(db.JSON, nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_email": self.user.email if self.user else None,
            "action_type": self.action_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "details": self.details,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": to_utc_z(self.created_at),
        }
