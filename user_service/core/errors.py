"""Error taxonomy for identity reconciliation."""
from __future__ import annotations
from contextlib import contextmanager
from typing import Iterator, Optional


class SyncError(Exception):
    """Base exception for all reconciliation and sync operations."""
    pass


class MissingIdentityError(SyncError):
    """Token carries no usable username (preferred_username absent or empty)."""
    pass


class ReconciliationConflictError(SyncError):
    """First-time creation kept colliding with a concurrent insert.

    Attributes:
        username: Username whose local record could not be resolved
    """

    def __init__(self, username: str, attempts: int):
        self.username = username
        self.attempts = attempts
        super().__init__(
            f"Local user '{username}' could not be created or re-read after {attempts} attempt(s)"
        )


class IdentityProviderUnavailableError(SyncError):
    """A call to the IdP Admin API failed (network, auth, 5xx).

    Attributes:
        operation: Admin operation that failed (e.g. "update_user")
        username: Username concerned, when known
        status_code: HTTP status when the IdP answered, None on transport errors
    """

    def __init__(
        self,
        operation: str,
        detail: str,
        *,
        username: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.operation = operation
        self.detail = detail
        self.username = username
        self.status_code = status_code
        target = f" for '{username}'" if username else ""
        super().__init__(f"Identity provider {operation} failed{target}: {detail}")


class UserNotFoundError(SyncError):
    """Target user does not exist where the caller expected it."""
    pass


class ValidationError(SyncError):
    """Administrative request rejected before touching either system."""
    pass


@contextmanager
def naming_user(username: str) -> Iterator[None]:
    """Attach ``username`` to IdP failures raised in the block without one.

    The Admin Client addresses users by IdP id; administrative callers know
    the username and report failures by it.
    """
    try:
        yield
    except IdentityProviderUnavailableError as exc:
        if exc.username:
            raise
        raise IdentityProviderUnavailableError(
            exc.operation, exc.detail, username=username, status_code=exc.status_code
        ) from exc
