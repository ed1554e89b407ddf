"""Tests for health check endpoints."""
import pytest
from flask import Flask

from user_service.api.health import bp as health_bp


@pytest.fixture()
def bare_client():
    app = Flask(__name__)
    app.register_blueprint(health_bp)
    with app.test_client() as test_client:
        yield test_client


def test_health_check(bare_client):
    response = bare_client.get("/health")
    assert response.status_code == 200
    assert response.data == b"ok"
    assert response.content_type.startswith("text/plain")


def test_readiness_before_services_are_wired(bare_client):
    response = bare_client.get("/ready")
    assert response.status_code == 503
    assert response.get_json() == {"status": "starting"}


def test_readiness_reports_local_user_count(client, auth_header):
    client.get("/api/users/me", headers=auth_header("alice"))
    response = client.get("/ready")
    assert response.status_code == 200
    assert response.get_json() == {"status": "ready", "local_users": 1}
