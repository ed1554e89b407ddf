"""Mapping between IdP realm roles and application user types."""
from __future__ import annotations
from typing import Iterable

from .models import UserType

ADMIN_ROLE = "admin"
CHARACTER_ROLE = "character"

# Realm roles every deployment must have before role assignment is attempted.
DEFAULT_REALM_ROLES = ("ADMIN", "ROLE_ADMIN", "USER", "CHARACTER")
DEFAULT_ROLE_DESCRIPTION = "Auto-created role for SSS application"

_REALM_ROLES_BY_TYPE = {
    UserType.ADMIN: ["ADMIN", "ROLE_ADMIN"],
    UserType.CHARACTER: ["CHARACTER"],
    UserType.REAL_USER: ["USER"],
}


def map_roles_to_user_type(roles: Iterable[str]) -> UserType:
    """Reduce a role set to a single user type.

    Case-insensitive; admin dominates character, anything else is REAL_USER.
    """
    normalized = {role.lower() for role in roles if isinstance(role, str)}
    if ADMIN_ROLE in normalized:
        return UserType.ADMIN
    if CHARACTER_ROLE in normalized:
        return UserType.CHARACTER
    return UserType.REAL_USER


def realm_roles_for_user_type(user_type: UserType) -> list[str]:
    """Realm roles granted when an administrator creates a user of this type."""
    return list(_REALM_ROLES_BY_TYPE[UserType(user_type)])
