# Overview: Service-layer operations for auth; signup OTP, login, refresh, password reset, email change and admin accounts.

"""
Authentication Service

WHY: Every action must be attributable. Uses bcrypt for password hashing
and validates password strength on every path that sets a password.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- 8-128 characters; must contain uppercase, lowercase, digit, and special char
- OTP codes and reset tokens are stored as keyed SHA-256 hashes, never plaintext
- Signup OTP: 5 minutes, 3 wrong submissions; the next submission deletes it
- Password reset link: 10 minutes, single use, ends the active session
- Email change OTP: sent to the NEW address, 10 minutes, 3 attempts
- One live session per account (see session_service.py)
"""

from __future__ import annotations

import hashlib
import hmac
import re
import secrets

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import User, SignupOTP, PasswordResetToken, EmailChangeRequest
from ..permissions import Role, ADMIN_ROLES, parse_role
from ..validation import ValidationError, ConflictError, NotFoundError, parse_email
from . import activity_service, notification_service, session_service, token_service
from .identifier_service import generate_otp
from .session_service import SessionConflictError
from .token_service import TokenError
from nursery.time_utils import utcnow, expires_in, has_passed


OTP_EXPIRY_MINUTES = 5
EMAIL_CHANGE_EXPIRY_MINUTES = 10
PASSWORD_RESET_EXPIRY_MINUTES = 10
MAX_OTP_ATTEMPTS = 3
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128
BCRYPT_ROUNDS = 12

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"
SESSION_EXPIRED_MESSAGE = "Session expired. Please login again."


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class AuthError(Exception):
    """Authentication failure; `status` is 401 (who are you) or 403 (not allowed in)."""

    def __init__(self, message: str, status: int = 401):
        super().__init__(message)
        self.status = status


class OTPError(Exception):
    """Wrong, expired or exhausted one-time code (400)."""
    pass


# =============================================================================
# PASSWORDS
# =============================================================================

def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - 8 to 128 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.?":{}|<>)

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str) or not password:
        raise PasswordValidationError("Password is required")

    if len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

    if len(password) > MAX_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must not exceed {MAX_PASSWORD_LENGTH} characters")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r'[!@#$%^&*(),.?":{}|<>]', password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() compares in constant time.
    """
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed stored hash
        return False


def hash_secret(value: str) -> str:
    """Keyed SHA-256 for OTP codes and reset tokens (high-entropy or attempt-limited)."""
    key = current_app.config["SECRET_KEY"].encode("utf-8")
    return hmac.new(key, value.encode("utf-8"), hashlib.sha256).hexdigest()


def _secret_matches(value: str, stored_hash: str) -> bool:
    return hmac.compare_digest(hash_secret(value or ""), stored_hash)


def _find_user_by_email(email: str) -> User | None:
    return db.session.query(User).filter(db.func.lower(User.email) == email.lower()).first()


# =============================================================================
# SIGNUP
# =============================================================================

def send_signup_otp(email) -> int:
    """
    Issue a signup OTP for `email` (replacing any earlier one).

    Returns the validity window in seconds.
    """
    email = parse_email(email)
    if _find_user_by_email(email):
        raise ValidationError(
            "An account with this email already exists. Please login.",
            {"email": "is already registered"},
        )

    code = generate_otp()
    try:
        db.session.query(SignupOTP).filter(SignupOTP.email == email).delete(synchronize_session="fetch")
        db.session.add(SignupOTP(
            email=email,
            code_hash=hash_secret(code),
            attempts=0,
            expires_at=expires_in(minutes=OTP_EXPIRY_MINUTES),
        ))
        notification_service.queue_signup_otp(email, code, OTP_EXPIRY_MINUTES)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("Signup OTP issued for %s", email)
    return OTP_EXPIRY_MINUTES * 60


def _check_code(row, code: str, *, on_exhausted: str, on_expired: str) -> None:
    """
    Shared OTP rules for signup and email change.

    - attempts already at the limit: row deleted, OTPError
    - expired: row deleted, OTPError
    - wrong code: attempts += 1 (committed), OTPError with remaining count
    """
    if row.attempts >= MAX_OTP_ATTEMPTS:
        db.session.delete(row)
        db.session.commit()
        raise OTPError(on_exhausted)

    if has_passed(row.expires_at):
        db.session.delete(row)
        db.session.commit()
        raise OTPError(on_expired)

    if not _secret_matches(str(code).strip(), row.code_hash):
        row.attempts += 1
        db.session.commit()
        remaining = MAX_OTP_ATTEMPTS - row.attempts
        raise OTPError(f"Invalid OTP. {remaining} attempt{'s' if remaining != 1 else ''} remaining.")


def verify_signup(email, otp, password) -> User:
    """Check the OTP and create the (verified, customer) account."""
    errors = {k: "is required" for k, v in (("email", email), ("otp", otp), ("password", password)) if not v}
    if errors:
        raise ValidationError("Email, OTP, and password are required", errors)
    email = parse_email(email)
    validate_password_strength(password)

    row = db.session.query(SignupOTP).filter(SignupOTP.email == email).first()
    if row is None:
        raise OTPError("OTP not found or expired. Please request a new OTP.")

    _check_code(
        row,
        otp,
        on_exhausted="Maximum OTP attempts exceeded. Please request a new OTP.",
        on_expired="OTP expired. Please request a new one.",
    )

    if _find_user_by_email(email):
        db.session.delete(row)
        db.session.commit()
        raise ConflictError("An account with this email already exists. Please login.")

    try:
        user = User(
            email=email,
            password_hash=hash_password(password),
            role=Role.CUSTOMER.value,
            is_active=True,
            is_verified=True,
        )
        db.session.add(user)
        db.session.delete(row)
        db.session.flush()
        notification_service.queue_welcome(user)
        activity_service.log_activity(user.id, "SIGNUP", entity_type="user", entity_id=user.id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("Account created for %s (user %s)", email, user.id)
    return user


# =============================================================================
# LOGIN / TOKENS
# =============================================================================

def login(email, password, *, user_agent: str | None = None, ip_address: str | None = None) -> dict:
    """
    Authenticate and open the account's single session.

    Raises:
        ValidationError: missing fields
        AuthError(401): unknown email or wrong password
        AuthError(403): deactivated account
        SessionConflictError: a live session already exists
    """
    errors = {k: "is required" for k, v in (("email", email), ("password", password)) if not v}
    if errors:
        raise ValidationError("Email and password are required", errors)

    user = _find_user_by_email(str(email).strip())
    if user is None or not verify_password(password, user.password_hash):
        current_app.logger.info("Failed login for %s", email)
        raise AuthError(INVALID_CREDENTIALS_MESSAGE, 401)

    if not user.is_active:
        raise AuthError("Your account has been deactivated. Please contact support.", 403)

    try:
        session_id = session_service.open_session(user.id, user_agent=user_agent, ip_address=ip_address)
        user.last_login = utcnow()
        activity_service.log_activity(user.id, "LOGIN", entity_type="user", entity_id=user.id,
                                      ip_address=ip_address, user_agent=user_agent)
        db.session.commit()
    except SessionConflictError:
        db.session.rollback()
        current_app.logger.info("Rejected second login for user %s", user.id)
        raise
    except Exception:
        db.session.rollback()
        raise

    tokens = token_service.issue_token_pair(user, session_id)
    return {
        **tokens,
        "user": {
            "id": user.id,
            "email": user.email,
            "role": user.role,
            "isVerified": user.is_verified,
        },
    }


def resolve_access_token(token: str) -> tuple[User, str]:
    """
    Bearer token -> (user, session_id).

    The token must verify, its session must be the user's live one (which
    touches last_seen), and the user must still be active.
    """
    try:
        payload = token_service.decode_access_token(token)
    except TokenError as exc:
        raise AuthError("Invalid or expired token", 401) from exc

    user = db.session.get(User, payload["id"])
    if user is None or not user.is_active:
        raise AuthError("Invalid or expired token", 401)
    if not session_service.validate_session(user.id, payload["sid"]):
        raise AuthError(SESSION_EXPIRED_MESSAGE, 401)
    return user, payload["sid"]


def refresh_tokens(refresh_token) -> dict:
    """New access/refresh pair for the same live session."""
    if not refresh_token or not isinstance(refresh_token, str):
        raise ValidationError("Refresh token is required", {"refreshToken": "is required"})
    try:
        payload = token_service.decode_refresh_token(refresh_token)
    except TokenError as exc:
        if exc.expired:
            raise AuthError("Refresh token expired. Please login again.", 401) from exc
        raise AuthError("Invalid refresh token", 401) from exc

    user = db.session.get(User, payload["id"])
    if user is None or not user.is_active:
        raise AuthError("Invalid refresh token", 401)
    if not session_service.validate_session(user.id, payload["sid"]):
        raise AuthError(SESSION_EXPIRED_MESSAGE, 401)
    return token_service.issue_token_pair(user, payload["sid"])


def logout(user_id: int) -> None:
    try:
        session_service.end_session(user_id, commit=False)
        activity_service.log_activity(user_id, "LOGOUT", entity_type="user", entity_id=user_id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


# =============================================================================
# PASSWORD RESET
# =============================================================================

def forgot_password(email) -> int:
    """Email a single-use reset link. Returns its validity window in seconds."""
    email = parse_email(email)
    user = _find_user_by_email(email)
    if user is None:
        raise NotFoundError("No account found with this email address.")

    token = secrets.token_hex(32)
    reset_url = f"{current_app.config['FRONTEND_URL'].rstrip('/')}/reset-password?token={token}"
    try:
        # Only the newest link is valid
        (
            db.session.query(PasswordResetToken)
            .filter(PasswordResetToken.email == user.email, PasswordResetToken.used_at.is_(None))
            .delete(synchronize_session="fetch")
        )
        db.session.add(PasswordResetToken(
            email=user.email,
            token_hash=hash_secret(token),
            expires_at=expires_in(minutes=PASSWORD_RESET_EXPIRY_MINUTES),
        ))
        notification_service.queue_password_reset(user.email, reset_url, PASSWORD_RESET_EXPIRY_MINUTES)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("Password reset link issued for user %s", user.id)
    return PASSWORD_RESET_EXPIRY_MINUTES * 60


def reset_password(token, new_password, confirm_password) -> User:
    """Consume a reset link, set the new password and end the active session."""
    errors = {
        k: "is required"
        for k, v in (("token", token), ("newPassword", new_password), ("confirmPassword", confirm_password))
        if not v
    }
    if errors:
        raise ValidationError("Token, new password, and confirm password are required", errors)
    if new_password != confirm_password:
        raise ValidationError("Passwords do not match", {"confirmPassword": "does not match"})
    validate_password_strength(new_password)

    row = (
        db.session.query(PasswordResetToken)
        .filter(PasswordResetToken.token_hash == hash_secret(str(token)), PasswordResetToken.used_at.is_(None))
        .first()
    )
    if row is None:
        raise ValidationError("Invalid or expired reset link", {"token": "is invalid or expired"})
    if has_passed(row.expires_at):
        db.session.delete(row)
        db.session.commit()
        raise ValidationError("Reset link has expired. Please request a new one.", {"token": "has expired"})

    user = _find_user_by_email(row.email)
    if user is None:
        raise ValidationError("Invalid or expired reset link", {"token": "is invalid or expired"})

    try:
        user.password_hash = hash_password(new_password)
        row.used_at = utcnow()
        session_service.end_session(user.id, commit=False)
        notification_service.queue_password_changed(user.email)
        activity_service.log_activity(user.id, "PASSWORD_RESET", entity_type="user", entity_id=user.id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("Password reset for user %s", user.id)
    return user


# =============================================================================
# EMAIL CHANGE
# =============================================================================

def request_email_change(user_id: int, new_email) -> int:
    """Send an OTP to the new address. Returns the validity window in seconds."""
    new_email = parse_email(new_email, "newEmail")
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    if user.email.lower() == new_email:
        raise ValidationError("New email must be different from the current one", {"newEmail": "is unchanged"})
    if _find_user_by_email(new_email):
        raise ConflictError("Email is already in use")

    code = generate_otp()
    try:
        db.session.query(EmailChangeRequest).filter(EmailChangeRequest.user_id == user_id).delete(
            synchronize_session="fetch"
        )
        db.session.add(EmailChangeRequest(
            user_id=user_id,
            new_email=new_email,
            code_hash=hash_secret(code),
            attempts=0,
            expires_at=expires_in(minutes=EMAIL_CHANGE_EXPIRY_MINUTES),
        ))
        notification_service.queue_email_change_otp(new_email, code, EMAIL_CHANGE_EXPIRY_MINUTES)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return EMAIL_CHANGE_EXPIRY_MINUTES * 60


def verify_email_change(user_id: int, otp) -> User:
    if not otp:
        raise ValidationError("OTP is required", {"otp": "is required"})

    row = db.session.query(EmailChangeRequest).filter(EmailChangeRequest.user_id == user_id).first()
    if row is None:
        raise OTPError("No pending email change. Please request a new OTP.")

    _check_code(
        row,
        otp,
        on_exhausted="Maximum OTP attempts exceeded. Please request a new OTP.",
        on_expired="OTP expired. Please request a new one.",
    )

    if _find_user_by_email(row.new_email):
        db.session.delete(row)
        db.session.commit()
        raise ConflictError("Email is already in use")

    user = db.session.get(User, user_id)
    try:
        previous = user.email
        user.email = row.new_email
        db.session.delete(row)
        activity_service.log_activity(user_id, "EMAIL_CHANGED", entity_type="user", entity_id=user_id,
                                      details={"from": previous, "to": user.email})
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return user


# =============================================================================
# ADMIN ACCOUNTS
# =============================================================================

def create_admin(email, password, role, *, created_by: int | None = None) -> User:
    """
    Create a verified back-office account.

    Only admin roles are accepted here; customers sign up themselves.
    """
    errors = {}
    try:
        email = parse_email(email)
    except ValidationError as exc:
        errors.update(exc.errors)
    try:
        validate_password_strength(password)
    except PasswordValidationError as exc:
        errors["password"] = str(exc)
    parsed_role = parse_role(role)
    if parsed_role not in ADMIN_ROLES:
        errors["role"] = f"must be one of: {', '.join(sorted(r.value for r in ADMIN_ROLES))}"
    if errors:
        raise ValidationError("Invalid admin details", errors)

    if _find_user_by_email(email):
        raise ConflictError("An account with this email already exists")

    try:
        user = User(
            email=email,
            password_hash=hash_password(password),
            role=parsed_role.value,
            is_active=True,
            is_verified=True,
        )
        db.session.add(user)
        db.session.flush()
        activity_service.log_activity(created_by, "ADMIN_CREATED", entity_type="user", entity_id=user.id,
                                      details={"email": email, "role": parsed_role.value})
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("Admin account %s created with role %s", email, parsed_role.value)
    return user
