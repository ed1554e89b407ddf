"""Sync administration endpoints (ADMIN only)."""
import logging

from flask import Blueprint, current_app

from .decorators import current_username, require_admin
from .responses import fail, ok

logger = logging.getLogger(__name__)

bp = Blueprint("sync", __name__, url_prefix="/api/admin/sync")


def _services():
    return current_app.extensions["user_service"]


@bp.route("/test-keycloak", methods=["GET"])
@require_admin
def test_keycloak():
    connected = _services().idp.test_connection()
    if not connected:
        return fail("Keycloak connection failed", 502, {"connected": False})
    return ok({"connected": True}, "Keycloak connection successful")


@bp.route("/status", methods=["GET"])
@require_admin
def sync_status():
    return ok(_services().admin.sync_status(), "Sync status retrieved")


@bp.route("/mongodb-to-keycloak", methods=["POST"])
@require_admin
def push_all_users():
    """Push every local user to Keycloak; per-user failures are reported, not raised."""
    result = _services().bulk.push_all(operator=current_username())
    message = f"Sync completed: {result.succeeded} succeeded, {result.failed} failed"
    return ok(result.to_dict(), message)


@bp.route("/user/<username>/to-keycloak", methods=["POST"])
@require_admin
def push_user(username):
    pushed = _services().admin.push_user(username, operator=current_username())
    if not pushed:
        return fail(f"User '{username}' not found in Keycloak, nothing pushed", 404)
    return ok({"username": username}, f"User '{username}' synced to Keycloak")


@bp.route("/user/<username>/assign-role/<role>", methods=["POST"])
@require_admin
def assign_role(username, role):
    roles = _services().admin.assign_role(username, role, operator=current_username())
    return ok({"username": username, "roles": roles}, f"Role '{role}' assigned to '{username}'")


@bp.route("/user/<username>/roles", methods=["GET"])
@require_admin
def user_roles(username):
    roles = _services().admin.user_roles(username)
    return ok({"username": username, "roles": roles}, "Roles retrieved successfully")


@bp.route("/roles", methods=["POST"])
@require_admin
def ensure_roles():
    created = _services().admin.ensure_roles(operator=current_username())
    return ok({"created": created}, "Realm roles ensured")
