# Overview: Flask API routes for the signed-in customer's account; profile, email change and support tickets.

from flask import Blueprint, request, g

from ..responses import success, failure, validation_failure, server_error
from ..services import auth_service, user_service, support_service
from ..services.auth_service import OTPError
from ..validation import ValidationError, ConflictError, NotFoundError
from ..decorators import require_auth


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("/profile")
@require_auth
def get_profile_route():
    try:
        profile = user_service.get_profile(g.current_user.id)
        if profile is None:
            return failure("Profile not found", 404)
        return success({**profile.to_dict(), "email": g.current_user.email})
    except Exception as e:
        return server_error("Error in get_profile", e)


@users_bp.post("/profile")
@users_bp.post("/profile/create")
@require_auth
def save_profile_route():
    """
    Create or update the caller's profile.

    Request body:
    {
        "first_name": "Asha",
        "last_name": "Rao",
        "permanent_address": "...",
        "mobile_number": "+919876543210",
        "delivery_addresses": [...]
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        profile, outcome = user_service.save_profile(g.current_user.id, data)
        return success(
            profile.to_dict(),
            message=f"Profile {outcome} successfully",
            status=201 if outcome == "created" else 200,
        )
    except ValidationError as e:
        return validation_failure(e)
    except NotFoundError as e:
        return failure(str(e), 404)
    except Exception as e:
        return server_error("Error in save_profile", e)


@users_bp.post("/request-email-change")
@require_auth
def request_email_change_route():
    """Request body: {"newEmail": "..."}; an OTP is sent to the new address."""
    data = request.get_json(silent=True) or {}
    try:
        expires_in = auth_service.request_email_change(g.current_user.id, data.get("newEmail"))
        return success(message="OTP sent to new email address", expiresIn=expires_in)
    except ValidationError as e:
        return validation_failure(e)
    except ConflictError as e:
        return failure(str(e), 409)
    except Exception as e:
        return server_error("Error in request_email_change", e)


@users_bp.post("/verify-email-otp")
@require_auth
def verify_email_otp_route():
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.verify_email_change(g.current_user.id, data.get("otp"))
        return success({"email": user.email}, message="Email updated successfully")
    except ValidationError as e:
        return validation_failure(e)
    except OTPError as e:
        return failure(str(e), 400)
    except ConflictError as e:
        return failure(str(e), 409)
    except Exception as e:
        return server_error("Error in verify_email_otp", e)


@users_bp.post("/support")
@require_auth
def create_support_ticket_route():
    """
    File a support ticket.

    Request body: {"subject", "description", "category", "priority"}
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
        return server_error("Error in create_support_ticket", e)


@users_bp.get("/support/my-tickets")
@require_auth
def my_tickets_route():
    try:
        tickets = support_service.list_user_tickets(g.current_user.id)
        return success([t.to_dict() for t in tickets], count=len(tickets))
    except Exception as e:
        return server_error("Error in my_tickets", e)
