"""Liveness and readiness endpoints."""
from flask import Blueprint, current_app, jsonify

bp = Blueprint("health", __name__)


@bp.route("/health")
def health_check():
    return ("ok", 200, {"Content-Type": "text/plain"})


@bp.route("/ready")
def readiness_check():
    """Ready once the local store answers. Keycloak reachability is reported
    by /api/admin/sync/test-keycloak instead, so an IdP outage does not take
    token-validated reads out of rotation."""
    services = current_app.extensions.get("user_service")
    if services is None:
        return jsonify({"status": "starting"}), 503
    return jsonify({"status": "ready", "local_users": services.store.count()}), 200
