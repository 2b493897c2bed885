# Overview: Service-layer operations for notifications; outbox enqueue, email rendering, and delivery.

"""
Notification Outbox

WHY: Sending email from inside a request couples the primary operation to
an external SMTP server. Instead, services record a NotificationOutbox row
inside their own transaction (so a rolled-back order never emails anyone)
and delivery happens afterwards:

- `flask notifications dispatch` (cron / worker), or
- inline after each request when NOTIFICATIONS_INLINE_DISPATCH is on.

DELIVERY:
- Each attempt increments `attempts`; success marks the row `sent`.
- A failing row stays `pending` for the next run until
  NOTIFICATION_MAX_ATTEMPTS, then becomes `failed` (kept for inspection).
- Delivery errors are logged, never raised into the caller.
"""

from __future__ import annotations

import smtplib
from email.message import EmailMessage

from flask import current_app, render_template

from ..extensions import db
from ..models import NotificationOutbox, User
from nursery.time_utils import utcnow


STATUS_PENDING = "pending"
STATUS_SENT = "sent"
STATUS_FAILED = "failed"


class SMTPMailSender:
    """Delivers one HTML email per call over SMTP (STARTTLS when configured)."""

    def __init__(self, config):
        self.server = config.get("MAIL_SERVER")
        self.port = config.get("MAIL_PORT")
        self.username = config.get("MAIL_USERNAME")
        self.password = config.get("MAIL_PASSWORD")
        self.use_tls = config.get("MAIL_USE_TLS")
        self.sender = config.get("MAIL_DEFAULT_SENDER")
        self.timeout = config.get("MAIL_TIMEOUT_SECONDS", 10)

    def send(self, recipient: str, subject: str, body_html: str) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content("This message requires an HTML-capable email client.")
        message.add_alternative(body_html, subtype="html")

        with smtplib.SMTP(self.server, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.send_message(message)


def get_mail_sender():
    return current_app.extensions["mail_sender"]


# =============================================================================
# ENQUEUE
# =============================================================================

def enqueue(kind: str, recipient: str, subject: str, template: str, **context) -> NotificationOutbox:
    """
    Render `email/<template>.html` and add an outbox row to the current session.

    Does NOT commit: the row belongs to the caller's transaction.
    """
    body_html = render_template(
        f"email/{template}.html",
        store_name=current_app.config.get("STORE_NAME"),
        frontend_url=current_app.config.get("FRONTEND_URL"),
        **context,
    )
    row = NotificationOutbox(
        kind=kind,
        recipient=recipient,
        subject=subject,
        body_html=body_html,
        status=STATUS_PENDING,
        attempts=0,
        created_at=utcnow(),
    )
    db.session.add(row)
    return row


def _customer_name(user: User | None) -> str:
    if user is not None and user.profile is not None:
        return user.profile.first_name
    return "there"


def queue_signup_otp(email: str, code: str, expiry_minutes: int) -> None:
    enqueue("signup_otp", email, "Your verification code", "otp",
            code=code, expiry_minutes=expiry_minutes, purpose="complete your signup")


def queue_email_change_otp(email: str, code: str, expiry_minutes: int) -> None:
    enqueue("email_change_otp", email, "Confirm your new email address", "otp",
            code=code, expiry_minutes=expiry_minutes, purpose="confirm your new email address")


def queue_welcome(user: User) -> None:
    enqueue("welcome", user.email, "Welcome to the nursery", "welcome", email=user.email)


def queue_password_reset(email: str, reset_url: str, expiry_minutes: int) -> None:
    enqueue("password_reset", email, "Reset your password", "password_reset",
            reset_url=reset_url, expiry_minutes=expiry_minutes)


def queue_password_changed(email: str) -> None:
    enqueue("password_changed", email, "Your password was changed", "password_changed")


def queue_order_confirmation(order) -> None:
    enqueue("order_confirmation", order.user.email, f"Order Confirmation - #{order.order_number}",
            "order_confirmation", order=order, name=_customer_name(order.user))


ORDER_STATUS_MESSAGES = {
    "confirmed": "Your order has been confirmed",
    "processing": "Your order is being processed",
    "packed": "Your order has been packed",
    "shipped": "Your order has been shipped",
    "out_for_delivery": "Your order is out for delivery",
    "delivered": "Your order has been delivered",
    "payment_failed": "Payment for your order failed",
    "refunded": "Your refund has been processed",
}


def queue_order_status_update(order) -> None:
    message = ORDER_STATUS_MESSAGES.get(order.status)
    if message is None:
        return
    enqueue("order_status", order.user.email, f"Order #{order.order_number}: {message}",
            "order_status", order=order, message=message, name=_customer_name(order.user))


def queue_order_cancelled(order) -> None:
    enqueue("order_cancelled", order.user.email, f"Order #{order.order_number} cancelled",
            "order_cancelled", order=order, name=_customer_name(order.user))


def queue_stock_alert(product) -> int:
    """One alert per active inventory admin. Returns the number queued."""
    admins = (
        db.session.query(User)
        .filter(User.role == "inventory_admin", User.is_active.is_(True))
        .all()
    )
    if not admins:
        current_app.logger.warning("Low stock on product %s but no active inventory admins", product.id)
        return 0
    for admin in admins:
        enqueue("stock_alert", admin.email, f"Low Stock Alert: {product.name}", "stock_alert", product=product)
    return len(admins)


def queue_ticket_created(ticket) -> None:
    enqueue("ticket_created", ticket.customer_email, f"Support ticket {ticket.ticket_number} received",
            "ticket_created", ticket=ticket)


def queue_ticket_updated(ticket) -> None:
    enqueue("ticket_updated", ticket.customer_email, f"Support ticket {ticket.ticket_number} updated",
            "ticket_updated", ticket=ticket)


# =============================================================================
# DELIVERY
# =============================================================================

def dispatch_pending(limit: int = 100, sender=None) -> dict:
    """
    Deliver pending outbox rows, oldest first.

    Commits after each row so one bad recipient never blocks the rest.
    Returns {"sent": n, "retrying": n, "failed": n}.
    """
    sender = sender or get_mail_sender()
    max_attempts = current_app.config.get("NOTIFICATION_MAX_ATTEMPTS", 5)
    counts = {"sent": 0, "retrying": 0, "failed": 0}

    rows = (
        db.session.query(NotificationOutbox)
        .filter(NotificationOutbox.status == STATUS_PENDING)
        .order_by(NotificationOutbox.created_at.asc(), NotificationOutbox.id.asc())
        .limit(limit)
        .all()
    )

    for row in rows:
        row.attempts += 1
        try:
            sender.send(row.recipient, row.subject, row.body_html)
        except Exception as exc:
            row.last_error = str(exc)[:1000]
            if row.attempts >= max_attempts:
                row.status = STATUS_FAILED
                counts["failed"] += 1
            else:
                counts["retrying"] += 1
            current_app.logger.warning(
                "Notification %s (%s) to %s failed on attempt %s: %s",
                row.id, row.kind, row.recipient, row.attempts, exc,
            )
        else:
            row.status = STATUS_SENT
            row.sent_at = utcnow()
            row.last_error = None
            counts["sent"] += 1
        db.session.commit()

    return counts


def list_outbox(status: str | None = None, page: int = 1, limit: int = 50) -> tuple[list[NotificationOutbox], int]:
    q = db.session.query(NotificationOutbox)
    if status:
        q = q.filter(NotificationOutbox.status == status)
    total = q.count()
    rows = (
        q.order_by(NotificationOutbox.created_at.desc(), NotificationOutbox.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def retry_failed() -> int:
    """Reset failed rows to pending with a fresh attempt budget."""
    count = (
        db.session.query(NotificationOutbox)
        .filter(NotificationOutbox.status == STATUS_FAILED)
        .update({"status": STATUS_PENDING, "attempts": 0}, synchronize_session=False)
    )
    db.session.commit()
    return count
