from __future__ import annotations

from ..extensions import db
from nursery.time_utils import to_utc_z


class User(db.Model):
    """
    Account for both storefront customers and back-office staff.

    ROLE: one of the closed Role enumeration (see permissions.definitions).
    Only a super_admin may change it. Deactivation is a soft flag; accounts
    are never deleted because orders, tickets and reviews reference them.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_role_active", "role", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(32), nullable=False, default="customer")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_verified = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    last_login = db.Column(db.DateTime(timezone=True), nullable=True)

    profile = db.relationship("Profile", back_populates="user", uselist=False)

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
            "is_verified": self.is_verified,
            "created_at": to_utc_z(self.created_at),
            "last_login": to_utc_z(self.last_login),
        }


class Profile(db.Model):
    """Customer-facing personal details, 1:1 with User."""
    __tablename__ = "profiles"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)

    first_name = db.Column(db.String(100), nullable=False)
    middle_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=False)
    permanent_address = db.Column(db.Text, nullable=False)
    mobile_number = db.Column(db.String(20), nullable=False)

    # List of {label, address_line, city, state, postal_code, ...} dicts
    delivery_addresses = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    user = db.relationship("User", back_populates="profile")

    @property
    def full_name(self) -> str:
        parts = [self.first_name, self.middle_name, self.last_name]
        return " ".join(p for p in parts if p)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "first_name": self.first_name,
            "middle_name": self.middle_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "permanent_address": self.permanent_address,
            "mobile_number": self.mobile_number,
            "delivery_addresses": self.delivery_addresses or [],
            "updated_at": to_utc_z(self.updated_at),
        }


class SignupOTP(db.Model):
    """
    One-time passcode for signup email verification.

    Keyed by email (one live OTP per address). The code is stored hashed;
    `attempts` counts wrong submissions and the row is deleted once the
    retry budget is spent or the code expires.
    """
    __tablename__ = "signup_otps"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    code_hash = db.Column(db.String(128), nullable=False)

    attempts = db.Column(db.Integer, nullable=False, default=0)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())


class PasswordResetToken(db.Model):
    """Single-use password reset secret (stored as SHA-256 hash)."""
    __tablename__ = "password_reset_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, index=True)
    token_hash = db.Column(db.String(128), nullable=False, unique=True, index=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())


class EmailChangeRequest(db.Model):
    """Pending email change; the OTP is sent to the new address."""
    __tablename__ = "email_change_requests"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)
    new_email = db.Column(db.String(255), nullable=False)
    code_hash = db.Column(db.String(128), nullable=False)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())


class ActiveSession(db.Model):
    """
    The one live login per account.

    WHY: Stored in the shared database (not process memory) so every worker
    process sees the same session state. `session_id` is embedded in the
    issued tokens; a token whose sid no longer matches is dead even if its
    signature is still valid. `last_seen_at` drives the inactivity reaper.
    """
    __tablename__ = "active_sessions"
    __table_args__ = (
        db.Index("ix_active_sessions_last_seen", "last_seen_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True)
    session_id = db.Column(db.String(64), nullable=False, unique=True)
    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_seen_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "user_agent": self.user_agent,
            "ip_address": self.ip_address,
            "created_at": to_utc_z(self.created_at),
            "last_seen_at": to_utc_z(self.last_seen_at),
        }
