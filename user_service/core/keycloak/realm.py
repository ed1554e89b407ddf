"""Keycloak realm-level operations."""
from __future__ import annotations

from .client import KeycloakClient


class RealmService:
    """Service for realm metadata."""

    def __init__(self, client: KeycloakClient):
        self.client = client

    def get_realm(self, realm: str) -> dict:
        """Return the realm representation (raises KeycloakAPIError if unreachable)."""
        return self.client.get(f"/admin/realms/{realm}").json()
