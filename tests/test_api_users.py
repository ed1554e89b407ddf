"""Bearer-authenticated /api/users endpoints, end to end through reconciliation."""
from user_service.core.errors import ReconciliationConflictError
from user_service.core.models import LocalUser, UserType


def test_health_and_ready(client):
    assert client.get("/health").data == b"ok"
    resp = client.get("/ready")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "ready"


def test_me_requires_bearer_token(client):
    resp = client.get("/api/users/me")
    assert resp.status_code == 401
    assert resp.get_json()["success"] is False


def test_me_rejects_non_bearer_scheme(client):
    resp = client.get("/api/users/me", headers={"Authorization": "Basic YWxpY2U6cHc="})
    assert resp.status_code == 401
    assert "Bearer" in resp.get_json()["message"]


def test_me_rejects_expired_token(client, auth_header):
    resp = client.get("/api/users/me", headers=auth_header(exp_offset=-3600))
    assert resp.status_code == 401
    assert "expired" in resp.get_json()["message"]


def test_me_rejects_token_from_other_realm(client, auth_header):
    resp = client.get("/api/users/me", headers=auth_header(issuer="https://kc.test/realms/other"))
    assert resp.status_code == 401


def test_me_without_username_claim_is_401_and_writes_nothing(client, store, auth_header):
    resp = client.get("/api/users/me", headers=auth_header(username=None, roles=["admin"]))
    assert resp.status_code == 401
    assert store.count() == 0


def test_me_creates_local_user_on_first_call(client, store, auth_header):
    headers = auth_header("nguyen", ["character"], email="n@example.com", name="Nguyen Van A")
    resp = client.get("/api/users/me", headers=headers)

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert body["data"]["username"] == "nguyen"
    assert body["data"]["userType"] == "CHARACTER"
    assert body["data"]["fullName"] == "Nguyen Van A"
    assert "characterName" in body["data"]
    assert store.find_by_username("nguyen").email == "n@example.com"


def test_me_follows_role_changes(client, store, auth_header):
    client.get("/api/users/me", headers=auth_header("nguyen", ["character"]))
    resp = client.get("/api/users/me", headers=auth_header("nguyen", ["character", "admin"]))
    assert resp.get_json()["data"]["userType"] == "ADMIN"
    assert store.count() == 1


def test_get_user_by_id(client, store, auth_header):
    other = store.insert(LocalUser(username="bob", display_name="Bob"))
    resp = client.get(f"/api/users/{other.id}", headers=auth_header())
    assert resp.status_code == 200
    assert resp.get_json()["data"]["username"] == "bob"


def test_get_unknown_user_is_404(client, auth_header):
    resp = client.get("/api/users/does-not-exist", headers=auth_header())
    assert resp.status_code == 404
    assert resp.get_json()["success"] is False


def test_user_updates_own_profile(client, store, auth_header):
    headers = auth_header("alice")
    me = client.get("/api/users/me", headers=headers).get_json()["data"]

    resp = client.put(
        f"/api/users/{me['id']}",
        json={"bio": "Down the rabbit hole", "userType": "ADMIN", "isActive": False},
        headers=headers,
    )

    assert resp.status_code == 200
    stored = store.find_by_username("alice")
    assert stored.bio == "Down the rabbit hole"
    assert stored.user_type == UserType.REAL_USER
    assert stored.is_active is True


def test_user_cannot_update_someone_else(client, store, auth_header):
    victim = store.insert(LocalUser(username="bob"))
    resp = client.put(f"/api/users/{victim.id}", json={"bio": "pwned"}, headers=auth_header("alice"))
    assert resp.status_code == 403
    assert store.find_by_id(victim.id).bio is None


def test_admin_can_update_anyone(client, store, auth_header):
    victim = store.insert(LocalUser(username="bob"))
    resp = client.put(f"/api/users/{victim.id}", json={"isActive": False}, headers=auth_header("root", ["admin"]))
    assert resp.status_code == 200
    assert store.find_by_id(victim.id).is_active is False


def test_unknown_route_is_json_404(client):
    resp = client.get("/api/nope")
    assert resp.status_code == 404
    assert resp.get_json()["success"] is False


def test_token_email_owned_by_another_user_is_ignored(client, store, auth_header):
    store.insert(LocalUser(username="alice", email="shared@example.com"))
    store.insert(LocalUser(username="bob", email="bob@example.com"))

    resp = client.get("/api/users/me", headers=auth_header("bob", email="shared@example.com"))

    assert resp.status_code == 200
    assert resp.get_json()["data"]["email"] == "bob@example.com"
    assert store.find_by_username("alice").email == "shared@example.com"


def test_first_sign_in_with_taken_email_succeeds(client, store, auth_header):
    store.insert(LocalUser(username="alice", email="shared@example.com"))

    resp = client.get("/api/users/me", headers=auth_header("carol", email="shared@example.com"))

    assert resp.status_code == 200
    assert resp.get_json()["data"]["username"] == "carol"
    assert store.find_by_username("carol").email == ""


def test_unresolvable_local_identity_is_401(app, client, auth_header, monkeypatch):
    def conflict(claims):
        raise ReconciliationConflictError("alice", 3)

    monkeypatch.setattr(app.extensions["user_service"].reconciler, "reconcile_token", conflict)

    resp = client.get("/api/users/me", headers=auth_header("alice"))

    assert resp.status_code == 401
    assert resp.get_json()["success"] is False
