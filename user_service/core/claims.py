"""Identity claims extraction from validated Keycloak tokens."""
from __future__ import annotations
from typing import Any, Mapping, Optional

from .errors import MissingIdentityError
from .models import IdentityClaims

DEFAULT_CLIENT_ID = "sss-backend"


def _as_text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _role_list(node: Any) -> Optional[list[str]]:
    """Return node["roles"] when it is a list, None when the path is absent."""
    if not isinstance(node, Mapping):
        return None
    roles = node.get("roles")
    if not isinstance(roles, list):
        return None
    return [role for role in roles if isinstance(role, str) and role]


def extract_roles(claims: Mapping[str, Any], client_id: str = DEFAULT_CLIENT_ID) -> frozenset[str]:
    """Resolve roles through the fallback chain.

    1. realm_access.roles
    2. resource_access.<client_id>.roles
    3. empty set
    """
    realm_roles = _role_list(claims.get("realm_access"))
    if realm_roles is not None:
        return frozenset(realm_roles)

    resource_access = claims.get("resource_access")
    if isinstance(resource_access, Mapping):
        client_roles = _role_list(resource_access.get(client_id))
        if client_roles is not None:
            return frozenset(client_roles)

    return frozenset()


def extract_claims(claims: Mapping[str, Any], client_id: str = DEFAULT_CLIENT_ID) -> IdentityClaims:
    """Parse token claims into IdentityClaims.

    Args:
        claims: Decoded (already signature-checked) token payload
        client_id: Client whose resource_access roles are the fallback source

    Returns:
        IdentityClaims with a guaranteed non-empty username

    Raises:
        MissingIdentityError: preferred_username absent or empty
    """
    if not isinstance(claims, Mapping):
        raise MissingIdentityError("Token claims are not a mapping")

    username = _as_text(claims.get("preferred_username"))
    if not username:
        raise MissingIdentityError("Token has no preferred_username claim")

    return IdentityClaims(
        username=username,
        email=_as_text(claims.get("email")),
        display_name=_as_text(claims.get("name")),
        roles=extract_roles(claims, client_id),
    )
