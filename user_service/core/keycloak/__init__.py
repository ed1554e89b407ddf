"""Keycloak Admin API client library.

Architecture:
- client.py: HTTP client with authentication, auto-refresh and timeouts
- users.py: User lookup and lifecycle (create, update, delete, password)
- roles.py: Realm role provisioning and role mappings
- realm.py: Realm metadata (used for connectivity checks)
- exceptions.py: Typed exceptions for error handling

Usage:
    from user_service.core.keycloak import KeycloakClient, UserService

    client = KeycloakClient("http://keycloak:8080")
    client.authenticate_admin("admin", "password")

    user_service = UserService(client)
    user = user_service.get_user_by_username("sss-realm", "nguyen")
"""
from .client import KeycloakClient, REQUEST_TIMEOUT
from .exceptions import (
    KeycloakError,
    KeycloakAPIError,
    KeycloakAuthenticationError,
    UserAlreadyExistsError,
    RoleNotFoundError,
)
from .realm import RealmService
from .roles import RoleService
from .users import UserService

__all__ = [
    "KeycloakClient",
    "REQUEST_TIMEOUT",
    "KeycloakError",
    "KeycloakAPIError",
    "KeycloakAuthenticationError",
    "UserAlreadyExistsError",
    "RoleNotFoundError",
    "RealmService",
    "RoleService",
    "UserService",
]
