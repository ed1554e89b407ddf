"""Error handlers for the application.

Domain errors are translated to HTTP statuses in one place so the route
handlers can simply let them propagate.
"""
import logging

from werkzeug.exceptions import HTTPException

from ..core.errors import (
    IdentityProviderUnavailableError,
    MissingIdentityError,
    ReconciliationConflictError,
    UserNotFoundError,
    ValidationError,
)
from .responses import fail

logger = logging.getLogger(__name__)


def register_error_handlers(app):
    """Register error handlers with the Flask app."""

    @app.errorhandler(MissingIdentityError)
    def missing_identity(error):
        return fail(str(error), 401)

    @app.errorhandler(UserNotFoundError)
    def user_not_found(error):
        return fail(str(error), 404)

    @app.errorhandler(ValidationError)
    def validation_error(error):
        return fail(str(error), 400)

    @app.errorhandler(ReconciliationConflictError)
    def reconciliation_conflict(error):
        logger.error("Reconciliation conflict for '%s' after %d attempts", error.username, error.attempts)
        return fail("User record is being created concurrently, retry the request", 409)

    @app.errorhandler(IdentityProviderUnavailableError)
    def idp_unavailable(error):
        logger.error("Keycloak %s failed (user=%s): %s", error.operation, error.username, error.detail)
        target = f" for user '{error.username}'" if error.username else ""
        return fail(f"Identity provider unavailable during {error.operation}{target}", 502, {"username": error.username})

    @app.errorhandler(HTTPException)
    def http_error(error):
        return fail(error.description or error.name, error.code or 500)

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle uncaught exceptions."""
        logger.error("Unhandled exception: %s", error, exc_info=True)
        return fail("An unexpected error occurred", 500)
