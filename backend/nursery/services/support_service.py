# Overview: Service-layer operations for support tickets; customer and staff filing, listing and triage.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import SupportTicket, User
from ..permissions import Role, is_allowed, Capability
from ..validation import ValidationError, NotFoundError, EMAIL_RE
from .identifier_service import generate_ticket_number
from . import notification_service
from nursery.time_utils import utcnow


TICKET_CATEGORIES = ("order_issue", "plant_care", "technical", "general", "complaint")
TICKET_PRIORITIES = ("low", "medium", "high", "urgent")
TICKET_STATUSES = ("open", "in_progress", "resolved", "closed")
CLOSED_STATUSES = frozenset({"resolved", "closed"})

MIN_SUBJECT_LENGTH = 3
MIN_DESCRIPTION_LENGTH = 10


def _display_name(user: User) -> str | None:
    if user.profile is None:
        return None
    return f"{user.profile.first_name or ''} {user.profile.last_name or ''}".strip() or None


def _validate_ticket_fields(payload: dict) -> dict:
    errors = {}
    subject = str(payload.get("subject") or "").strip()
    description = str(payload.get("description") or "").strip()
    category = payload.get("category") or "general"
    priority = payload.get("priority") or "medium"

    if len(subject) < MIN_SUBJECT_LENGTH:
        errors["subject"] = f"Subject is required and should be at least {MIN_SUBJECT_LENGTH} characters"
    if len(description) < MIN_DESCRIPTION_LENGTH:
        errors["description"] = f"Description is required and should be at least {MIN_DESCRIPTION_LENGTH} characters"
    if category not in TICKET_CATEGORIES:
        errors["category"] = f"Category must be one of: {', '.join(TICKET_CATEGORIES)}"
    if priority not in TICKET_PRIORITIES:
        errors["priority"] = f"Priority must be one of: {', '.join(TICKET_PRIORITIES)}"
    if errors:
        raise ValidationError("Invalid ticket", errors)

    return {"subject": subject, "description": description, "category": category, "priority": priority}


def _require_assignee(assignee_id) -> User:
    assignee = db.session.get(User, assignee_id) if assignee_id else None
    if assignee is None or not assignee.is_active:
        raise ValidationError("Assignee not found", {"assigned_to": "must be an active staff account"})
    if assignee.role not in (Role.SUPPORT_ADMIN.value, Role.SUPER_ADMIN.value):
        raise ValidationError(
            "Tickets can only be assigned to support staff",
            {"assigned_to": "must be a support_admin or super_admin"},
        )
    return assignee


def create_ticket(actor: User, payload: dict) -> SupportTicket:
    """
    File a ticket.

    Customers file for themselves (identity from their account). Support
    staff file on behalf of an account (`user_id`) or a guest
    (`customer_email` + `customer_name`).
    """
    payload = payload or {}
    fields = _validate_ticket_fields(payload)
    staff = is_allowed(actor.role, Capability.MANAGE_SUPPORT)

    user_id = None
    if staff:
        if payload.get("user_id"):
            customer = db.session.get(User, payload["user_id"])
            if customer is None:
                raise NotFoundError("User not found")
            user_id = customer.id
            email, name = customer.email, _display_name(customer)
        else:
            email = str(payload.get("customer_email") or "").strip().lower()
            name = str(payload.get("customer_name") or "").strip()
            if not email or not name:
                raise ValidationError(
                    "Admin must provide user_id or customer_email & customer_name",
                    {"customer_email": "is required", "customer_name": "is required"},
                )
            if not EMAIL_RE.match(email):
                raise ValidationError("Valid customer email is required", {"customer_email": "must be a valid email"})
    else:
        user_id = actor.id
        email, name = actor.email, _display_name(actor)

    assigned_to = None
    if staff and payload.get("assigned_to"):
        assigned_to = _require_assignee(payload["assigned_to"]).id

    try:
        ticket = SupportTicket(
            ticket_number=generate_ticket_number(),
            user_id=user_id,
            customer_email=email,
            customer_name=name,
            assigned_to=assigned_to,
            created_by=actor.id,
            status="open",
            **fields,
        )
        db.session.add(ticket)
        db.session.flush()
        notification_service.queue_ticket_created(ticket)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("Support ticket %s filed by user %s", ticket.ticket_number, actor.id)
    return ticket


def list_user_tickets(user_id: int) -> list[SupportTicket]:
    return (
        db.session.query(SupportTicket)
        .filter(SupportTicket.user_id == user_id)
        .order_by(SupportTicket.created_at.desc(), SupportTicket.id.desc())
        .all()
    )


def list_tickets(
    *,
    status: str | None = None,
    priority: str | None = None,
    category: str | None = None,
    assigned_to: int | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[SupportTicket], int]:
    """Back-office ticket queue. search matches ticket number, subject or customer email/name."""
    q = db.session.query(SupportTicket)
    if status:
        q = q.filter(SupportTicket.status == status)
    if priority:
        q = q.filter(SupportTicket.priority == priority)
    if category:
        q = q.filter(SupportTicket.category == category)
    if assigned_to:
        q = q.filter(SupportTicket.assigned_to == assigned_to)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(db.or_(
            SupportTicket.ticket_number.ilike(like),
            SupportTicket.subject.ilike(like),
            SupportTicket.customer_email.ilike(like),
            SupportTicket.customer_name.ilike(like),
        ))

    total = q.count()
    tickets = (
        q.order_by(SupportTicket.created_at.desc(), SupportTicket.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return tickets, total


def get_ticket(ticket_id: int) -> SupportTicket:
    ticket = db.session.get(SupportTicket, ticket_id)
    if ticket is None:
        raise NotFoundError("Ticket not found")
    return ticket


def update_ticket(ticket_id: int, payload: dict, *, updated_by: int | None = None) -> SupportTicket:
    """Staff triage: status, priority, assignee, resolution notes. Notifies the customer."""
    payload = payload or {}
    errors = {}
    status = payload.get("status")
    priority = payload.get("priority")
    if status is not None and status not in TICKET_STATUSES:
        errors["status"] = f"Invalid status. Allowed: {', '.join(TICKET_STATUSES)}"
    if priority is not None and priority not in TICKET_PRIORITIES:
        errors["priority"] = f"Invalid priority. Allowed: {', '.join(TICKET_PRIORITIES)}"
    if errors:
        raise ValidationError("Invalid ticket update", errors)

    ticket = get_ticket(ticket_id)
    try:
        if status is not None and status != ticket.status:
            ticket.status = status
            ticket.resolved_at = utcnow() if status in CLOSED_STATUSES else None
        if priority is not None:
            ticket.priority = priority
        if "assigned_to" in payload:
            ticket.assigned_to = _require_assignee(payload["assigned_to"]).id if payload["assigned_to"] else None
        if payload.get("resolution_notes") is not None:
            ticket.resolution_notes = str(payload["resolution_notes"]).strip() or None
        notification_service.queue_ticket_updated(ticket)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("Support ticket %s updated by %s", ticket.ticket_number, updated_by)
    return ticket
