"""Administrative user management endpoints (ADMIN only).

Every mutation here touches both the local store and Keycloak.
"""
from flask import Blueprint, current_app, request

from ..core.admin_users import CreateUserRequest, UpdateUserRequest
from .decorators import current_username, require_admin
from .responses import ok

bp = Blueprint("admin_users", __name__, url_prefix="/api/admin/users")


def _admin():
    return current_app.extensions["user_service"].admin


@bp.route("", methods=["GET"])
@require_admin
def list_users():
    users = _admin().list_users(
        search=request.args.get("search"),
        user_type=request.args.get("userType") or request.args.get("user_type"),
    )
    return ok([u.to_dict() for u in users], "Users retrieved successfully")


@bp.route("", methods=["POST"])
@require_admin
def create_user():
    payload = CreateUserRequest.from_dict(request.get_json(silent=True) or {})
    user, keycloak_id = _admin().create_user(payload, operator=current_username())
    data = user.to_dict()
    data["keycloakUserId"] = keycloak_id
    return ok(data, "User created successfully in both local store and Keycloak", 201)


@bp.route("/<user_id>", methods=["GET"])
@require_admin
def get_user(user_id):
    return ok(_admin().get_user(user_id).to_dict(), "User retrieved successfully")


@bp.route("/<user_id>", methods=["PUT"])
@require_admin
def update_user(user_id):
    payload = UpdateUserRequest.from_dict(request.get_json(silent=True) or {})
    user = _admin().update_user(user_id, payload, operator=current_username())
    return ok(user.to_dict(), "User updated successfully in both local store and Keycloak")


@bp.route("/<user_id>", methods=["DELETE"])
@require_admin
def delete_user(user_id):
    _admin().delete_user(user_id, operator=current_username())
    return ok(message="User deleted successfully from both local store and Keycloak")
