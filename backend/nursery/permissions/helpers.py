# Overview: Authorization policy functions for role/capability checks.

from .definitions import Role, Capability, ROLE_CAPABILITIES, ADMIN_ROLES


def parse_role(value) -> Role | None:
    """Return the Role for a stored/submitted string, or None if unknown."""
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        return None


def is_allowed(role, capability: Capability) -> bool:
    """
    Single authorization policy: may `role` exercise `capability`?

    super_admin satisfies every capability. Unknown roles are denied.
    """
    role = parse_role(role)
    if role is None:
        return False
    if role is Role.SUPER_ADMIN:
        return True
    return capability in ROLE_CAPABILITIES.get(role, frozenset())


def is_admin_role(role) -> bool:
    return parse_role(role) in ADMIN_ROLES


def capabilities_for(role) -> list[str]:
    role = parse_role(role)
    if role is None:
        return []
    return sorted(c.value for c in ROLE_CAPABILITIES[role])
