# Overview: Closed role and capability enumerations plus the default role grants.
# Each role maps to the set of capabilities it holds; super_admin holds all.

from enum import Enum


class Role(str, Enum):
    CUSTOMER = "customer"
    INVENTORY_ADMIN = "inventory_admin"
    ORDER_ADMIN = "order_admin"
    SUPPORT_ADMIN = "support_admin"
    CONTENT_ADMIN = "content_admin"
    SUPER_ADMIN = "super_admin"


class Capability(str, Enum):
    # -- INVENTORY --
    VIEW_INVENTORY = "VIEW_INVENTORY"
    MANAGE_INVENTORY = "MANAGE_INVENTORY"
    MANAGE_CATALOG = "MANAGE_CATALOG"

    # -- ORDERS --
    VIEW_ORDERS = "VIEW_ORDERS"
    MANAGE_ORDERS = "MANAGE_ORDERS"

    # -- SUPPORT --
    MANAGE_SUPPORT = "MANAGE_SUPPORT"

    # -- CONTENT --
    MANAGE_CONTENT = "MANAGE_CONTENT"
    MODERATE_REVIEWS = "MODERATE_REVIEWS"

    # -- PLATFORM --
    MANAGE_USERS = "MANAGE_USERS"
    MANAGE_ADMINS = "MANAGE_ADMINS"
    VIEW_ANALYTICS = "VIEW_ANALYTICS"
    VIEW_ACTIVITY_LOG = "VIEW_ACTIVITY_LOG"


ADMIN_ROLES = frozenset({
    Role.INVENTORY_ADMIN,
    Role.ORDER_ADMIN,
    Role.SUPPORT_ADMIN,
    Role.CONTENT_ADMIN,
    Role.SUPER_ADMIN,
})


ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.CUSTOMER: frozenset(),
    Role.INVENTORY_ADMIN: frozenset({
        Capability.VIEW_INVENTORY,
        Capability.MANAGE_INVENTORY,
        Capability.MANAGE_CATALOG,
    }),
    Role.ORDER_ADMIN: frozenset({
        Capability.VIEW_ORDERS,
        Capability.MANAGE_ORDERS,
    }),
    Role.SUPPORT_ADMIN: frozenset({
        Capability.MANAGE_SUPPORT,
        Capability.VIEW_ORDERS,
    }),
    Role.CONTENT_ADMIN: frozenset({
        Capability.MANAGE_CONTENT,
        Capability.MODERATE_REVIEWS,
    }),
    # super_admin is granted everything by is_allowed(); listed for display.
    Role.SUPER_ADMIN: frozenset(Capability),
}
