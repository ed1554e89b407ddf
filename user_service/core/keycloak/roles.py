"""Keycloak realm role management operations."""
from __future__ import annotations
import logging
from typing import Optional, List

from .client import KeycloakClient
from .exceptions import KeycloakAPIError, RoleNotFoundError

logger = logging.getLogger(__name__)


class RoleService:
    """Service for managing Keycloak realm roles and role mappings."""

    def __init__(self, client: KeycloakClient):
        """Initialize role service.

        Args:
            client: Authenticated Keycloak client
        """
        self.client = client

    def list_realm_roles(self, realm: str) -> List[dict]:
        return self.client.get(f"/admin/realms/{realm}/roles").json() or []

    def get_realm_role(self, realm: str, role_name: str) -> Optional[dict]:
        """Return the role representation, or None when the role does not exist."""
        try:
            return self.client.get(f"/admin/realms/{realm}/roles/{role_name}").json()
        except KeycloakAPIError as exc:
            if exc.is_not_found:
                return None
            raise

    def create_realm_role(self, realm: str, role_name: str, description: str = "") -> bool:
        """Create a realm-level role.

        Returns:
            True if created, False if Keycloak reported it already exists (409)
        """
        payload = {"name": role_name, "description": description}
        try:
            self.client.post(f"/admin/realms/{realm}/roles", json=payload)
        except KeycloakAPIError as exc:
            if exc.is_conflict:
                logger.info("[roles] Role '%s' already exists", role_name)
                return False
            raise
        logger.info("[roles] Role '%s' created", role_name)
        return True

    def get_or_create_realm_role(self, realm: str, role_name: str, description: str = "") -> dict:
        """Idempotently fetch a realm role, creating it first when absent."""
        role = self.get_realm_role(realm, role_name)
        if role is not None:
            return role
        self.create_realm_role(realm, role_name, description)
        role = self.get_realm_role(realm, role_name)
        if role is None:
            raise RoleNotFoundError(f"[roles] Role '{role_name}' missing right after creation")
        return role

    def _require_role(self, realm: str, role_name: str) -> dict:
        role = self.get_realm_role(realm, role_name)
        if role is None:
            raise RoleNotFoundError(f"[roles] Role '{role_name}' not found in realm '{realm}'")
        return role

    def assign_realm_role(self, realm: str, user_id: str, role_name: str) -> None:
        """Grant a realm role to a user (no-op if already granted).

        Raises:
            RoleNotFoundError: Role does not exist in realm
        """
        role = self._require_role(realm, role_name)
        self.client.post(
            f"/admin/realms/{realm}/users/{user_id}/role-mappings/realm",
            json=[{"id": role["id"], "name": role["name"]}],
        )
        logger.info("[roles] Assigned realm role '%s' to user id=%s", role_name, user_id)

    def remove_realm_role(self, realm: str, user_id: str, role_name: str) -> None:
        """Revoke a realm role from a user.

        Raises:
            RoleNotFoundError: Role does not exist in realm
        """
        role = self._require_role(realm, role_name)
        self.client.delete(
            f"/admin/realms/{realm}/users/{user_id}/role-mappings/realm",
            json=[{"id": role["id"], "name": role["name"]}],
        )
        logger.info("[roles] Removed realm role '%s' from user id=%s", role_name, user_id)

    def list_user_realm_roles(self, realm: str, user_id: str) -> List[str]:
        """Names of the realm roles effectively held by the user."""
        resp = self.client.get(f"/admin/realms/{realm}/users/{user_id}/role-mappings/realm/composite")
        return [role["name"] for role in resp.json() or [] if role.get("name")]
