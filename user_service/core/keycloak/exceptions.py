"""Errors raised by the Keycloak Admin API layer."""


class KeycloakError(Exception):
    """Base class for Keycloak client errors."""


class KeycloakAPIError(KeycloakError):
    """Keycloak answered with an error status.

    Attributes:
        status_code: HTTP status (401 when no token could be obtained)
        message: Response body or explanation
        endpoint: URL that failed, empty when no request was sent
    """

    def __init__(self, status_code: int, message: str, endpoint: str):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        super().__init__(f"[{status_code}] {endpoint or '-'}: {message}")

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    @property
    def is_conflict(self) -> bool:
        return self.status_code == 409


class KeycloakAuthenticationError(KeycloakAPIError):
    """The token endpoint refused the configured grant."""


class UserAlreadyExistsError(KeycloakError):
    """Username or email already taken in the realm."""


class RoleNotFoundError(KeycloakError):
    """Realm role does not exist."""
