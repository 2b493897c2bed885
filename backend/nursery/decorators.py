# Overview: Request authentication and capability decorators for API routes.

from functools import wraps
from flask import request, g, current_app

from .permissions import Capability, is_allowed
from .responses import failure
from .services import auth_service, activity_service
from .services.auth_service import AuthError


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user') and hasattr(g, 'session_id')


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None
    if auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1].strip()
    return auth_header.strip()


def require_auth(f):
    """
    Require a valid bearer token bound to the caller's live session.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.session_id: The session id carried in the token

    SECURITY: Returns 401 if:
    - No Authorization header
    - Token signature invalid or expired
    - Token's session is not the account's live session (logged out,
      replaced, reaped for inactivity)
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return failure("Token missing", 401)

        try:
            user, session_id = auth_service.resolve_access_token(token)
        except AuthError as e:
            return failure(str(e), e.status)

        g.current_user = user
        g.session_id = session_id

        return f(*args, **kwargs)

    return decorated_function


def require_capability(capability: Capability):
    """
    Require the authenticated user's role to grant `capability`.

    super_admin satisfies every capability. Denials are written to the
    activity log.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return failure("Authentication required", 401)

            user = g.current_user
            if not is_allowed(user.role, capability):
                current_app.logger.warning(
                    "Permission denied: user %s (%s) lacks %s for %s %s",
                    user.id, user.role, capability.value, request.method, request.path,
                )
                activity_service.log_activity(
                    user.id,
                    "PERMISSION_DENIED",
                    entity_type="route",
                    entity_id=request.path,
                    details={"capability": capability.value, "method": request.method, "role": user.role},
                    commit=True,
                )
                return failure("Access denied. Insufficient permissions.", 403)

            return f(*args, **kwargs)

        return decorated_function
    return decorator
