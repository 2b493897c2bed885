# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/nursery/routes/auth.py
"""
Authentication API routes

SECURITY FEATURES:
- Email ownership proven by OTP before an account exists
- Password strength validation on signup and reset
- One live session per account; a second login is refused until logout
- Access/refresh tokens bound to that session
"""

from flask import Blueprint, request, g

from ..responses import success, failure, validation_failure, server_error
from ..services import auth_service
from ..services.auth_service import AuthError, OTPError, PasswordValidationError
from ..services.session_service import SessionConflictError
from ..validation import ValidationError, ConflictError, NotFoundError
from ..decorators import require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/signup/send-otp")
def send_signup_otp_route():
    """Email a 6-digit signup code (valid 5 minutes)."""
    data = request.get_json(silent=True) or {}
    try:
        expires_in = auth_service.send_signup_otp(data.get("email"))
        return success(message="OTP sent to email successfully", expiresIn=expires_in)
    except ValidationError as e:
        return validation_failure(e)
    except Exception as e:
        return server_error("Error in send_signup_otp", e)


@auth_bp.post("/signup/verify")
@auth_bp.post("/signup/verify-otp")
def verify_signup_route():
    """
    Verify the signup OTP and create the account.

    Request body: {"email", "otp", "password"}
    """
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.verify_signup(data.get("email"), data.get("otp"), data.get("password"))
        return success(
            {"user": {"id": user.id, "email": user.email}},
            message="Account created successfully! Please login.",
            status=201,
        )
    except ValidationError as e:
        return validation_failure(e)
    except PasswordValidationError as e:
        return failure(str(e), 400, {"password": str(e)})
    except OTPError as e:
        return failure(str(e), 400)
    except ConflictError as e:
        return failure(str(e), 409)
    except Exception as e:
        return server_error("Error in verify_signup", e)


@auth_bp.post("/login")
def login_route():
    """
    Authenticate and open the account's session.

    Returns access/refresh tokens. 401 bad credentials, 403 deactivated
    account or already logged in elsewhere.
    """
    data = request.get_json(silent=True) or {}
    try:
        result = auth_service.login(
            data.get("email"),
            data.get("password"),
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        return success(result, message="Login successful")
    except ValidationError as e:
        return validation_failure(e)
    except AuthError as e:
        return failure(str(e), e.status)
    except SessionConflictError as e:
        return failure(str(e), 403)
    except Exception as e:
        return server_error("Error in login", e)


@auth_bp.post("/token/refresh")
@auth_bp.post("/refresh-token")
def refresh_token_route():
    data = request.get_json(silent=True) or {}
    try:
        tokens = auth_service.refresh_tokens(data.get("refreshToken"))
        return success(tokens, message="Token refreshed successfully")
    except ValidationError as e:
        return validation_failure(e)
    except AuthError as e:
        return failure(str(e), e.status)
    except Exception as e:
        return server_error("Error in refresh_token", e)


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        auth_service.logout(g.current_user.id)
        return success(message="Logged out successfully")
    except Exception as e:
        return server_error("Error in logout", e)


@auth_bp.post("/forgot-password")
def forgot_password_route():
    data = request.get_json(silent=True) or {}
    try:
        expires_in = auth_service.forgot_password(data.get("email"))
        return success(message="Password reset link sent to your email!", expiresIn=expires_in)
    except ValidationError as e:
        return validation_failure(e)
    except NotFoundError as e:
        return failure(str(e), 404)
    except Exception as e:
        return server_error("Error in forgot_password", e)


@auth_bp.post("/reset-password")
def reset_password_route():
    """Request body: {"token", "newPassword", "confirmPassword"}"""
    data = request.get_json(silent=True) or {}
    try:
        auth_service.reset_password(data.get("token"), data.get("newPassword"), data.get("confirmPassword"))
        return success(message="Password changed successfully! You can now login with your new password.")
    except ValidationError as e:
        return validation_failure(e)
    except PasswordValidationError as e:
        return failure(str(e), 400, {"newPassword": str(e)})
    except Exception as e:
        return server_error("Error in reset_password", e)
