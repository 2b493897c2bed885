# Overview: Permission system package.
# Re-exports the role/capability enums and the authorization policy.

from .definitions import Role, Capability, ROLE_CAPABILITIES, ADMIN_ROLES
from .helpers import parse_role, is_allowed, is_admin_role, capabilities_for

__all__ = [
    "Role",
    "Capability",
    "ROLE_CAPABILITIES",
    "ADMIN_ROLES",
    "parse_role",
    "is_allowed",
    "is_admin_role",
    "capabilities_for",
]
