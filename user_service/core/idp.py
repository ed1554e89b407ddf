"""IdP Admin Client consumed by the sync components.

``IdentityProviderAdmin`` is the contract; ``KeycloakIdentityProvider``
implements it on top of the Keycloak Admin REST services. Every transport
failure, unexpected HTTP status or other Keycloak client error is raised as
``IdentityProviderUnavailableError``. Two typed outcomes pass through
unwrapped: ``UserAlreadyExistsError`` from ``create_user`` and
``RoleNotFoundError`` from ``assign_realm_role``.
"""
from __future__ import annotations
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator, Optional

import requests

from .errors import IdentityProviderUnavailableError
from .keycloak import (
    KeycloakAPIError,
    KeycloakClient,
    RealmService,
    RoleNotFoundError,
    RoleService,
    UserAlreadyExistsError,
    UserService,
)
from .keycloak.exceptions import KeycloakError
from .models import IdPUser

logger = logging.getLogger(__name__)


class IdentityProviderAdmin(ABC):
    """Administrative operations on the IdP user directory."""

    @abstractmethod
    def find_user_by_username(self, username: str) -> Optional[IdPUser]:
        ...

    @abstractmethod
    def find_user_by_email(self, email: str) -> Optional[IdPUser]:
        ...

    @abstractmethod
    def create_user(
        self,
        username: str,
        email: str,
        first_name: str,
        last_name: str,
        attributes: Optional[dict[str, str]] = None,
    ) -> str:
        """Create the IdP user and return its IdP-assigned id."""

    @abstractmethod
    def update_user(
        self,
        user_id: str,
        *,
        email: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        attributes: Optional[dict[str, str]] = None,
        replace_keys: Iterable[str] = (),
    ) -> None:
        """Update profile fields and attributes.

        Keys listed in ``replace_keys`` are fully replaced: a tracked key
        missing from ``attributes`` (or mapped to an empty value) is removed.
        Attributes outside ``replace_keys`` are left untouched.
        """

    @abstractmethod
    def delete_user(self, user_id: str) -> None:
        ...

    @abstractmethod
    def set_password(self, user_id: str, password: str, temporary: bool = False) -> None:
        ...

    @abstractmethod
    def list_realm_roles(self) -> list[str]:
        ...

    @abstractmethod
    def get_realm_role(self, role_name: str) -> Optional[dict]:
        ...

    @abstractmethod
    def create_realm_role(self, role_name: str, description: str = "") -> bool:
        """Create a role; False when it already existed."""

    @abstractmethod
    def get_or_create_realm_role(self, role_name: str, description: str = "") -> dict:
        ...

    @abstractmethod
    def assign_realm_role(self, user_id: str, role_name: str) -> None:
        ...

    @abstractmethod
    def remove_realm_role(self, user_id: str, role_name: str) -> None:
        ...

    @abstractmethod
    def list_user_realm_roles(self, user_id: str) -> list[str]:
        ...

    @abstractmethod
    def list_users(self) -> list[IdPUser]:
        ...

    @abstractmethod
    def test_connection(self) -> bool:
        """Never raises; False when the IdP cannot be reached or authenticated."""


def merge_attributes(
    current: dict[str, list[str]],
    attributes: dict[str, str],
    replace_keys: Iterable[str],
) -> dict[str, list[str]]:
    """Merge a flat attribute bag into Keycloak's multi-valued attributes."""
    merged = {key: list(values) for key, values in (current or {}).items()}
    for key in replace_keys:
        merged.pop(key, None)
    for key, value in attributes.items():
        if value:
            merged[key] = [value]
        else:
            merged.pop(key, None)
    return merged


class KeycloakIdentityProvider(IdentityProviderAdmin):
    """IdP Admin Client backed by the Keycloak Admin REST API.

    Args:
        client: Keycloak HTTP client (authenticated lazily)
        realm: Realm holding the application users
        authenticate: Called with the client once before the first request
            when the client has no credentials yet
    """

    def __init__(
        self,
        client: KeycloakClient,
        realm: str,
        authenticate: Optional[Callable[[KeycloakClient], object]] = None,
    ):
        self.client = client
        self.realm = realm
        self._authenticate = authenticate
        self.users = UserService(client)
        self.roles = RoleService(client)
        self.realms = RealmService(client)

    @contextmanager
    def _call(self, operation: str, username: Optional[str] = None) -> Iterator[None]:
        try:
            if not self.client.is_authenticated and self._authenticate is not None:
                self._authenticate(self.client)
            yield
        except KeycloakAPIError as exc:
            raise IdentityProviderUnavailableError(
                operation, exc.message or str(exc), username=username, status_code=exc.status_code
            ) from exc
        except requests.RequestException as exc:
            raise IdentityProviderUnavailableError(operation, str(exc), username=username) from exc
        except (UserAlreadyExistsError, RoleNotFoundError):
            raise
        except KeycloakError as exc:
            raise IdentityProviderUnavailableError(operation, str(exc), username=username) from exc

    def find_user_by_username(self, username: str) -> Optional[IdPUser]:
        with self._call("find_user_by_username", username):
            rep = self.users.get_user_by_username(self.realm, username)
        return IdPUser.from_representation(rep) if rep else None

    def find_user_by_email(self, email: str) -> Optional[IdPUser]:
        with self._call("find_user_by_email"):
            rep = self.users.get_user_by_email(self.realm, email)
        return IdPUser.from_representation(rep) if rep else None

    def create_user(
        self,
        username: str,
        email: str,
        first_name: str,
        last_name: str,
        attributes: Optional[dict[str, str]] = None,
    ) -> str:
        representation = {
            "username": username,
            "email": email or None,
            "firstName": first_name,
            "lastName": last_name,
            "enabled": True,
            "emailVerified": True,
            "attributes": merge_attributes({}, attributes or {}, ()),
        }
        with self._call("create_user", username):
            return self.users.create_user(self.realm, representation)

    def update_user(
        self,
        user_id: str,
        *,
        email: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        attributes: Optional[dict[str, str]] = None,
        replace_keys: Iterable[str] = (),
    ) -> None:
        with self._call("update_user"):
            rep = self.users.get_user(self.realm, user_id)
            if email is not None:
                rep["email"] = email
            if first_name is not None:
                rep["firstName"] = first_name
            if last_name is not None:
                rep["lastName"] = last_name
            rep["attributes"] = merge_attributes(rep.get("attributes") or {}, attributes or {}, replace_keys)
            self.users.update_user(self.realm, user_id, rep)
        logger.info("[idp] Updated user '%s'", rep.get("username", user_id))

    def delete_user(self, user_id: str) -> None:
        with self._call("delete_user"):
            self.users.delete_user(self.realm, user_id)

    def set_password(self, user_id: str, password: str, temporary: bool = False) -> None:
        with self._call("set_password"):
            self.users.set_password(self.realm, user_id, password, temporary)

    def list_realm_roles(self) -> list[str]:
        with self._call("list_realm_roles"):
            return [role["name"] for role in self.roles.list_realm_roles(self.realm)]

    def get_realm_role(self, role_name: str) -> Optional[dict]:
        with self._call("get_realm_role"):
            return self.roles.get_realm_role(self.realm, role_name)

    def create_realm_role(self, role_name: str, description: str = "") -> bool:
        with self._call("create_realm_role"):
            return self.roles.create_realm_role(self.realm, role_name, description)

    def get_or_create_realm_role(self, role_name: str, description: str = "") -> dict:
        try:
            with self._call("get_or_create_realm_role"):
                return self.roles.get_or_create_realm_role(self.realm, role_name, description)
        except RoleNotFoundError as exc:
            # created, yet not readable back
            raise IdentityProviderUnavailableError("get_or_create_realm_role", str(exc)) from exc

    def assign_realm_role(self, user_id: str, role_name: str) -> None:
        with self._call("assign_realm_role"):
            self.roles.assign_realm_role(self.realm, user_id, role_name)

    def remove_realm_role(self, user_id: str, role_name: str) -> None:
        with self._call("remove_realm_role"):
            self.roles.remove_realm_role(self.realm, user_id, role_name)

    def list_user_realm_roles(self, user_id: str) -> list[str]:
        with self._call("list_user_realm_roles"):
            return self.roles.list_user_realm_roles(self.realm, user_id)

    def list_users(self) -> list[IdPUser]:
        with self._call("list_users"):
            reps = self.users.list_users(self.realm)
        return [IdPUser.from_representation(rep) for rep in reps]

    def test_connection(self) -> bool:
        try:
            with self._call("test_connection"):
                self.realms.get_realm(self.realm)
        except (IdentityProviderUnavailableError, KeycloakError) as exc:
            logger.error("Keycloak connection test failed: %s", exc)
            return False
        logger.info("Keycloak connection test successful")
        return True
