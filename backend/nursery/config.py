# Overview: Application configuration loaded from environment variables with development defaults.

# backend/nursery/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/nursery.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///nursery.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Signed tokens. Access and refresh tokens use separate secrets so that
    # leaking one never lets a client mint the other.
    ACCESS_TOKEN_SECRET = os.environ.get("ACCESS_TOKEN_SECRET", "dev-access-secret")
    REFRESH_TOKEN_SECRET = os.environ.get("REFRESH_TOKEN_SECRET", "dev-refresh-secret")
    ACCESS_TOKEN_TTL_SECONDS = _env_int("ACCESS_TOKEN_TTL_SECONDS", 15 * 60)
    REFRESH_TOKEN_TTL_SECONDS = _env_int("REFRESH_TOKEN_TTL_SECONDS", 7 * 24 * 60 * 60)
    SESSION_INACTIVITY_TIMEOUT_SECONDS = _env_int("SESSION_INACTIVITY_TIMEOUT_SECONDS", 30 * 60)

    # Outbound email (SMTP)
    MAIL_SERVER = os.environ.get("MAIL_SERVER", "localhost")
    MAIL_PORT = _env_int("MAIL_PORT", 587)
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    MAIL_USE_TLS = _env_bool("MAIL_USE_TLS", True)
    MAIL_DEFAULT_SENDER = os.environ.get("MAIL_DEFAULT_SENDER", "no-reply@plantnursery.local")
    MAIL_TIMEOUT_SECONDS = _env_int("MAIL_TIMEOUT_SECONDS", 10)

    # Payment gateway (Razorpay)
    RAZORPAY_KEY_ID = os.environ.get("RAZORPAY_KEY_ID", "rzp_test_key")
    RAZORPAY_KEY_SECRET = os.environ.get("RAZORPAY_KEY_SECRET", "rzp_test_secret")
    RAZORPAY_WEBHOOK_SECRET = os.environ.get("RAZORPAY_WEBHOOK_SECRET", "rzp_webhook_secret")
    RAZORPAY_BASE_URL = os.environ.get("RAZORPAY_BASE_URL", "https://api.razorpay.com/v1")
    PAYMENT_GATEWAY_TIMEOUT_SECONDS = _env_int("PAYMENT_GATEWAY_TIMEOUT_SECONDS", 15)

    # Storefront
    STORE_NAME = os.environ.get("STORE_NAME", "Plant Nursery")
    CURRENCY = os.environ.get("CURRENCY", "INR")
    FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:5173")
    CORS_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
        ).split(",")
        if origin.strip()
    ]

    # Order pricing (basis points / minor units)
    TAX_RATE_BPS = _env_int("TAX_RATE_BPS", 0)
    SHIPPING_FEE_CENTS = _env_int("SHIPPING_FEE_CENTS", 0)
    FREE_SHIPPING_THRESHOLD_CENTS = _env_int("FREE_SHIPPING_THRESHOLD_CENTS", 0)

    # Notification outbox
    NOTIFICATION_MAX_ATTEMPTS = _env_int("NOTIFICATION_MAX_ATTEMPTS", 5)
    NOTIFICATIONS_INLINE_DISPATCH = _env_bool("NOTIFICATIONS_INLINE_DISPATCH", False)

    # Errors / logging
    EXPOSE_ERROR_DETAILS = _env_bool("EXPOSE_ERROR_DETAILS", False)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
