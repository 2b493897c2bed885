# Overview: Service-layer operations for signed bearer tokens (access and refresh).

"""
Bearer Tokens

Access token payload:  {"id", "role", "sid"}   (ACCESS_TOKEN_TTL_SECONDS)
Refresh token payload: {"id", "sid"}           (REFRESH_TOKEN_TTL_SECONDS)

Tokens are itsdangerous timed signatures. Access and refresh tokens use
different secrets AND different salts, so one can never be replayed as the
other. `sid` binds a token to the ActiveSession row that was open when it
was minted; once that session ends the token is dead regardless of TTL.
"""

from __future__ import annotations

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer


ACCESS_SALT = "nursery.access"
REFRESH_SALT = "nursery.refresh"


class TokenError(Exception):
    """Raised when a token is malformed, tampered with or expired."""

    def __init__(self, message: str, expired: bool = False):
        super().__init__(message)
        self.expired = expired


def _serializer(secret_key: str, salt: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key, salt=salt)


def issue_access_token(user, session_id: str) -> str:
    s = _serializer(current_app.config["ACCESS_TOKEN_SECRET"], ACCESS_SALT)
    return s.dumps({"id": user.id, "role": user.role, "sid": session_id})


def issue_refresh_token(user, session_id: str) -> str:
    s = _serializer(current_app.config["REFRESH_TOKEN_SECRET"], REFRESH_SALT)
    return s.dumps({"id": user.id, "sid": session_id})


def issue_token_pair(user, session_id: str) -> dict:
    return {
        "accessToken": issue_access_token(user, session_id),
        "refreshToken": issue_refresh_token(user, session_id),
        "expiresIn": current_app.config["ACCESS_TOKEN_TTL_SECONDS"],
    }


def _decode(token: str, secret_key: str, salt: str, max_age: int) -> dict:
    if not token:
        raise TokenError("Token missing")
    try:
        payload = _serializer(secret_key, salt).loads(token, max_age=max_age)
    except SignatureExpired as exc:
        raise TokenError("Token expired", expired=True) from exc
    except BadSignature as exc:
        raise TokenError("Invalid token") from exc
    if not isinstance(payload, dict) or "id" not in payload or "sid" not in payload:
        raise TokenError("Invalid token")
    return payload


def decode_access_token(token: str) -> dict:
    return _decode(
        token,
        current_app.config["ACCESS_TOKEN_SECRET"],
        ACCESS_SALT,
        current_app.config["ACCESS_TOKEN_TTL_SECONDS"],
    )


def decode_refresh_token(token: str) -> dict:
    return _decode(
        token,
        current_app.config["REFRESH_TOKEN_SECRET"],
        REFRESH_SALT,
        current_app.config["REFRESH_TOKEN_TTL_SECONDS"],
    )
