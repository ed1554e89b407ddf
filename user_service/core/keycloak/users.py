"""Keycloak user management operations."""
from __future__ import annotations
import logging
from typing import Any, Optional, List

from .client import KeycloakClient
from .exceptions import KeycloakAPIError, UserAlreadyExistsError

logger = logging.getLogger(__name__)

# Page size used when walking the full user list
LIST_PAGE_SIZE = 100


class UserService:
    """Service for managing Keycloak users."""

    def __init__(self, client: KeycloakClient):
        """Initialize user service.

        Args:
            client: Authenticated Keycloak client
        """
        self.client = client

    def get_user_by_username(self, realm: str, username: str) -> Optional[dict]:
        """Return the user representation that exactly matches the username.

        Args:
            realm: Realm name
            username: Username to search for

        Returns:
            User representation or None if not found
        """
        resp = self.client.get(
            f"/admin/realms/{realm}/users",
            params={"username": username, "exact": "true"},
        )
        for user in resp.json():
            if user.get("username") == username:
                return user
        return None

    def get_user_by_email(self, realm: str, email: str) -> Optional[dict]:
        """Return the user representation whose email matches exactly (case-insensitive)."""
        resp = self.client.get(
            f"/admin/realms/{realm}/users",
            params={"email": email, "exact": "true"},
        )
        for user in resp.json():
            if (user.get("email") or "").lower() == email.lower():
                return user
        return None

    def get_user(self, realm: str, user_id: str) -> dict:
        """Fetch the full representation of a user by Keycloak id."""
        return self.client.get(f"/admin/realms/{realm}/users/{user_id}").json()

    def create_user(self, realm: str, representation: dict[str, Any]) -> str:
        """Create a user and return the id Keycloak assigned.

        The id is taken from the Location header; when it is missing the
        user is looked up by username.

        Raises:
            UserAlreadyExistsError: Username or email already taken (HTTP 409)
        """
        username = representation.get("username", "")
        try:
            resp = self.client.post(f"/admin/realms/{realm}/users", json=representation)
        except KeycloakAPIError as exc:
            if exc.is_conflict:
                raise UserAlreadyExistsError(f"User '{username}' already exists in realm '{realm}'") from exc
            raise

        location = resp.headers.get("Location", "")
        user_id = location.rstrip("/").rsplit("/", 1)[-1] if location else ""
        if not user_id:
            created = self.get_user_by_username(realm, username)
            if not created:
                raise KeycloakAPIError(resp.status_code, "Created user could not be read back", resp.url)
            user_id = created["id"]
        logger.info("[idp] User '%s' created (id=%s)", username, user_id)
        return user_id

    def update_user(self, realm: str, user_id: str, representation: dict[str, Any]) -> None:
        """Replace the user representation."""
        self.client.put(f"/admin/realms/{realm}/users/{user_id}", json=representation)

    def delete_user(self, realm: str, user_id: str) -> None:
        self.client.delete(f"/admin/realms/{realm}/users/{user_id}")
        logger.info("[idp] User id=%s deleted", user_id)

    def set_password(self, realm: str, user_id: str, password: str, temporary: bool = False) -> None:
        """Reset the user's password credential.

        Args:
            realm: Realm name
            user_id: User ID
            password: Plaintext password
            temporary: Force a password change at next login
        """
        self.client.put(
            f"/admin/realms/{realm}/users/{user_id}/reset-password",
            json={"type": "password", "temporary": temporary, "value": password},
        )
        logger.info("[idp] Password set for user id=%s (temporary=%s)", user_id, temporary)

    def list_users(self, realm: str, page_size: int = LIST_PAGE_SIZE) -> List[dict]:
        """Return every user in the realm, following first/max pagination."""
        users: List[dict] = []
        first = 0
        while True:
            resp = self.client.get(
                f"/admin/realms/{realm}/users",
                params={"first": first, "max": page_size, "briefRepresentation": "false"},
            )
            page = resp.json() or []
            users.extend(page)
            if len(page) < page_size:
                return users
            first += page_size
