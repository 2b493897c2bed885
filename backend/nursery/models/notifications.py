from __future__ import annotations

from ..extensions import db
from nursery.time_utils import to_utc_z


class NotificationOutbox(db.Model):
    """
    Persisted notification intent (email).

    Rows are added inside the business transaction that caused them, so a
    rolled-back order never emails anyone. Delivery happens afterwards via
    notification_service.dispatch_pending; failures are retried until
    NOTIFICATION_MAX_ATTEMPTS and remain visible in this table.
    """
    __tablename__ = "notification_outbox"
    __table_args__ = (
        db.Index("ix_notification_outbox_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(64), nullable=False)
    recipient = db.Column(db.String(255), nullable=False)
    subject = db.Column(db.String(255), nullable=False)
    body_html = db.Column(db.Text, nullable=False)

    # pending | sent | failed
    status = db.Column(db.String(16), nullable=False, default="pending")
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.String(1000), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "recipient": self.recipient,
            "subject": self.subject,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": to_utc_z(self.created_at),
            "sent_at": to_utc_z(self.sent_at),
        }
