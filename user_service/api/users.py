"""Endpoints for the authenticated user's own profile."""
import logging

from flask import Blueprint, current_app, g, request

from ..core.admin_users import UpdateUserRequest
from .decorators import require_auth
from .responses import fail, ok

logger = logging.getLogger(__name__)

bp = Blueprint("users", __name__, url_prefix="/api/users")


def _services():
    return current_app.extensions["user_service"]


@bp.route("/me", methods=["GET"])
@require_auth
def get_current_user():
    """The caller's local user, created or refreshed from the token on the way in."""
    return ok(g.current_user.to_dict(), "User retrieved successfully")


@bp.route("/<user_id>", methods=["GET"])
@require_auth
def get_user(user_id):
    user = _services().admin.get_user(user_id)
    return ok(user.to_dict(), "User retrieved successfully")


@bp.route("/<user_id>", methods=["PUT"])
@require_auth
def update_user(user_id):
    """Local profile edit by the owner or an administrator.

    user_type never changes here; account flags are admin-only.
    """
    caller = g.current_user
    if caller.id != user_id and not caller.is_admin:
        logger.warning("User '%s' tried to update user id=%s", caller.username, user_id)
        return fail("Access denied: You can only update your own profile", 403)

    update = UpdateUserRequest.from_dict(request.get_json(silent=True) or {})
    if not caller.is_admin:
        update.is_active = None
        update.is_verified = None

    user, changed = _services().admin.update_profile(user_id, update)
    if changed:
        logger.info("User '%s' updated profile of '%s' (%s)", caller.username, user.username, ", ".join(changed))
    return ok(user.to_dict(), "User updated successfully")
