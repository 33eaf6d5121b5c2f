"""Role definitions, role rights and per-role field allow-lists.

Everything here is built once at import time and exposed through read-only
mappings, so no request can alter another request's view of the rules.
"""

from collections.abc import Mapping
from enum import StrEnum
from types import MappingProxyType


class UserRole(StrEnum):
    """User roles for RBAC."""

    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"


class Right(StrEnum):
    """Named rights granted to roles."""

    GET_USERS = "getUsers"
    MANAGE_USERS = "manageUsers"
    GET_PRODUCTS = "getProducts"
    MANAGE_PRODUCTS = "manageProducts"
    GET_ORDERS = "getOrders"
    MANAGE_ORDERS = "manageOrders"
    MANAGE_OWN_PROFILE = "manageOwnProfile"
    CREATE_ORDER = "createOrder"
    VIEW_OWN_ORDERS = "viewOwnOrders"
    VIEW_ANALYTICS = "viewAnalytics"
    MANAGE_SETTINGS = "manageSettings"


ROLE_RIGHTS: Mapping[UserRole, frozenset[Right]] = MappingProxyType(
    {
        UserRole.USER: frozenset(
            {
                Right.GET_PRODUCTS,
                Right.MANAGE_OWN_PROFILE,
                Right.CREATE_ORDER,
                Right.VIEW_OWN_ORDERS,
            }
        ),
        UserRole.MODERATOR: frozenset(
            {
                Right.GET_USERS,
                Right.GET_PRODUCTS,
                Right.MANAGE_PRODUCTS,
                Right.GET_ORDERS,
                Right.MANAGE_OWN_PROFILE,
                Right.VIEW_OWN_ORDERS,
            }
        ),
        UserRole.ADMIN: frozenset(Right),
    }
)

# Fields a user may change on their own profile
_PROFILE_FIELDS = frozenset({"name", "email", "phone", "avatar"})

PROFILE_FIELDS: Mapping[UserRole, frozenset[str]] = MappingProxyType(
    {role: _PROFILE_FIELDS for role in UserRole}
)

# Fields a role may change on another user's record
MANAGED_FIELDS: Mapping[UserRole, frozenset[str]] = MappingProxyType(
    {
        UserRole.USER: frozenset(),
        UserRole.MODERATOR: frozenset(),
        UserRole.ADMIN: _PROFILE_FIELDS | {"role", "is_active", "password"},
    }
)


def role_has_rights(role: UserRole | str, *rights: Right | str) -> bool:
    """Check that a role holds every one of the given rights."""
    granted = ROLE_RIGHTS.get(UserRole(role), frozenset())
    return all(right in granted for right in rights)
