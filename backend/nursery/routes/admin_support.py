# Overview: Flask API routes for the support desk; ticket queue, staff-filed tickets and triage.

from flask import Blueprint, request, g

from ..responses import success, failure, paginated, validation_failure, server_error
from ..services import support_service
from ..validation import ValidationError, NotFoundError, parse_pagination
from ..decorators import require_auth, require_capability
from ..permissions import Capability


admin_support_bp = Blueprint("admin_support", __name__, url_prefix="/api/admin/support")


@admin_support_bp.get("")
@admin_support_bp.get("/all")
@require_auth
@require_capability(Capability.MANAGE_SUPPORT)
def list_tickets_route():
    """Query: page, limit, status, priority, category, assignedTo, search"""
    try:
        page, limit = parse_pagination(request.args)
        tickets, total = support_service.list_tickets(
            status=request.args.get("status"),
            priority=request.args.get("priority"),
            category=request.args.get("category"),
            assigned_to=request.args.get("assignedTo", type=int),
            search=request.args.get("search"),
            page=page,
            limit=limit,
        )
        return paginated([t.to_dict() for t in tickets], total, page, limit, key="tickets")
    except ValidationError as e:
        return validation_failure(e)
    except Exception as e:
        return server_error("Error in list_tickets", e)


@admin_support_bp.post("")
@require_auth
@require_capability(Capability.MANAGE_SUPPORT)
def create_ticket_route():
    """
    File a ticket on behalf of a customer.

    Request body: subject, description, category, priority, plus either
    user_id or customer_email + customer_name; optional assigned_to.
    """
    data = request.get_json(silent=True) or {}
    try:
        ticket = support_service.create_ticket(g.current_user, data)
        return success(ticket.to_dict(), message="Support ticket created successfully", status=201)
    except ValidationError as e:
        return validation_failure(e)
    except NotFoundError as e:
        return failure(str(e), 404)
    except Exception as e:
        return server_error("Error in admin create_ticket", e)


@admin_support_bp.get("/<int:ticket_id>")
@require_auth
@require_capability(Capability.MANAGE_SUPPORT)
def get_ticket_route(ticket_id: int):
    try:
        return success(support_service.get_ticket(ticket_id).to_dict())
    except NotFoundError as e:
        return failure(str(e), 404)
    except Exception as e:
        return server_error("Error in get_ticket", e)


@admin_support_bp.put("/<int:ticket_id>")
@admin_support_bp.patch("/<int:ticket_id>")
@require_auth
@require_capability(Capability.MANAGE_SUPPORT)
def update_ticket_route(ticket_id: int):
    """Request body: {"status", "priority", "assigned_to", "resolution_notes"}"""
    data = request.get_json(silent=True) or {}
    try:
        ticket = support_service.update_ticket(ticket_id, data, updated_by=g.current_user.id)
        return success(ticket.to_dict(), message="Ticket updated successfully")
    except ValidationError as e:
        return validation_failure(e)
    except NotFoundError as e:
        return failure(str(e), 404)
    except Exception as e:
        return server_error("Error in update_ticket", e)
