"""Pytest shared fixtures."""
import pathlib
import sys
import time
from types import SimpleNamespace
from typing import Iterable, Optional

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import jwt
import pytest
import requests
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from user_service import audit
from user_service.config import AppConfig
from user_service.core.errors import IdentityProviderUnavailableError
from user_service.core.idp import IdentityProviderAdmin
from user_service.core.keycloak import RoleNotFoundError, UserAlreadyExistsError
from user_service.core.models import IdPUser
from user_service.core.store import InMemoryUserStore
from user_service.flask_app import create_app

ISSUER = "https://kc.test/realms/sss-realm"


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_network(monkeypatch):
    """Fail loudly if a unit test reaches for the network without stubbing it."""
    def _blocked(method):
        def _call(url, *args, **kwargs):
            raise RuntimeError(f"Unexpected HTTP {method} in unit test: {url}")
        return _call

    for method in ("get", "post", "put", "delete"):
        monkeypatch.setattr(requests, method, _blocked(method.upper()))


@pytest.fixture(autouse=True)
def temp_audit_dir(monkeypatch, tmp_path):
    """Isolated, signed audit trail for each test."""
    audit_dir = tmp_path / "audit"
    audit_file = audit_dir / "sync-events.jsonl"
    monkeypatch.setattr(audit, "AUDIT_LOG_DIR", audit_dir)
    monkeypatch.setattr(audit, "AUDIT_LOG_FILE", audit_file)
    monkeypatch.setenv("AUDIT_LOG_SIGNING_KEY", "test-signing-key-for-audit-trail")
    return audit_dir, audit_file


# ─────────────────────────────────────────────────────────────────────────────
# In-memory IdP
# ─────────────────────────────────────────────────────────────────────────────
class FakeIdentityProvider(IdentityProviderAdmin):
    """Keycloak stand-in keeping users, roles and role mappings in dicts.

    ``fail_on`` holds operation names that raise
    IdentityProviderUnavailableError; ``fail_usernames`` makes lookups of
    those usernames fail.
    """

    def __init__(self, roles: Iterable[str] = ()):
        self.users: dict[str, IdPUser] = {}
        self.passwords: dict[str, tuple[str, bool]] = {}
        self.roles: dict[str, dict] = {}
        self.role_mappings: dict[str, set[str]] = {}
        self.fail_on: set[str] = set()
        self.fail_usernames: set[str] = set()
        self.connected = True
        self.calls: list[str] = []
        self._next_id = 1
        for name in roles:
            self._add_role(name)

    def _op(self, operation: str, username: Optional[str] = None) -> None:
        self.calls.append(operation)
        if operation in self.fail_on or (username and username in self.fail_usernames):
            raise IdentityProviderUnavailableError(operation, "connection refused", username=username)

    def _add_role(self, name: str, description: str = "") -> None:
        self.roles[name] = {"id": f"role-{name}", "name": name, "description": description}

    def add_user(self, username: str, **kwargs) -> IdPUser:
        user = IdPUser(id=f"kc-{self._next_id}", username=username, **kwargs)
        self._next_id += 1
        self.users[user.id] = user
        self.role_mappings[user.id] = set()
        return user

    def find_user_by_username(self, username):
        self._op("find_user_by_username", username)
        return next((u for u in self.users.values() if u.username == username), None)

    def find_user_by_email(self, email):
        self._op("find_user_by_email")
        return next((u for u in self.users.values() if (u.email or "").lower() == email.lower()), None)

    def create_user(self, username, email, first_name, last_name, attributes=None):
        self._op("create_user", username)
        if any(u.username == username for u in self.users.values()):
            raise UserAlreadyExistsError(f"User '{username}' already exists")
        user = self.add_user(
            username,
            email=email,
            first_name=first_name,
            last_name=last_name,
            attributes={k: v for k, v in (attributes or {}).items() if v},
        )
        return user.id

    def update_user(self, user_id, *, email=None, first_name=None, last_name=None, attributes=None, replace_keys=()):
        self._op("update_user")
        user = self.users[user_id]
        if email is not None:
            user.email = email
        if first_name is not None:
            user.first_name = first_name
        if last_name is not None:
            user.last_name = last_name
        merged = dict(user.attributes)
        for key in replace_keys:
            merged.pop(key, None)
        for key, value in (attributes or {}).items():
            if value:
                merged[key] = value
            else:
                merged.pop(key, None)
        user.attributes = merged

    def delete_user(self, user_id):
        self._op("delete_user")
        self.users.pop(user_id)
        self.role_mappings.pop(user_id, None)

    def set_password(self, user_id, password, temporary=False):
        self._op("set_password")
        self.passwords[user_id] = (password, temporary)

    def list_realm_roles(self):
        self._op("list_realm_roles")
        return list(self.roles)

    def get_realm_role(self, role_name):
        self._op("get_realm_role")
        return self.roles.get(role_name)

    def create_realm_role(self, role_name, description=""):
        self._op("create_realm_role")
        if role_name in self.roles:
            return False
        self._add_role(role_name, description)
        return True

    def get_or_create_realm_role(self, role_name, description=""):
        self.create_realm_role(role_name, description)
        return self.roles[role_name]

    def assign_realm_role(self, user_id, role_name):
        self._op("assign_realm_role")
        if role_name not in self.roles:
            raise RoleNotFoundError(f"Role '{role_name}' not found")
        self.role_mappings[user_id].add(role_name)

    def remove_realm_role(self, user_id, role_name):
        self._op("remove_realm_role")
        self.role_mappings[user_id].discard(role_name)

    def list_user_realm_roles(self, user_id):
        self._op("list_user_realm_roles")
        return sorted(self.role_mappings.get(user_id, set()))

    def list_users(self):
        self._op("list_users")
        return list(self.users.values())

    def test_connection(self):
        self.calls.append("test_connection")
        return self.connected


@pytest.fixture()
def fake_idp():
    return FakeIdentityProvider()


@pytest.fixture()
def store():
    return InMemoryUserStore()


# ─────────────────────────────────────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────────────────────────────────────
def make_config(**overrides) -> AppConfig:
    base = dict(
        demo_mode=False,
        keycloak_url="https://kc.test",
        keycloak_realm="sss-realm",
        keycloak_issuer=ISSUER,
        keycloak_server_url=ISSUER,
        oidc_client_id="sss-backend",
        bulk_sync_max_workers=2,
        reconcile_max_attempts=3,
    )
    base.update(overrides)
    return AppConfig(**base)


# ─────────────────────────────────────────────────────────────────────────────
# RSA Key Pair and JWT helpers
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(scope="session")
def rsa_key_pair():
    """Generate RSA key pair for JWT signing in tests."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return {
        "private_key": private_key,
        "private_pem": private_pem,
        "public_key": private_key.public_key(),
    }


def create_valid_jwt(
    rsa_key_pair: dict,
    username: Optional[str] = "alice",
    roles: Optional[list[str]] = None,
    issuer: str = ISSUER,
    exp_offset: int = 3600,
    **extra_claims,
) -> str:
    """Create an RS256-signed token shaped like a Keycloak access token."""
    now = int(time.time())
    payload = {
        "iss": issuer,
        "aud": "account",
        "sub": f"sub-{username}",
        "exp": now + exp_offset,
        "iat": now,
        "azp": "sss-frontend",
        "realm_access": {"roles": roles if roles is not None else ["user"]},
    }
    if username is not None:
        payload["preferred_username"] = username
    payload.update(extra_claims)
    return jwt.encode(payload, rsa_key_pair["private_pem"], algorithm="RS256", headers={"kid": "test-key"})


class DummyJWKS:
    """PyJWKClient stand-in that always returns the test public key."""

    def __init__(self, public_key):
        self.public_key = public_key

    def get_signing_key_from_jwt(self, token):
        return SimpleNamespace(key=self.public_key)


# ─────────────────────────────────────────────────────────────────────────────
# Flask app
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def app(store, fake_idp, rsa_key_pair):
    flask_app = create_app(config=make_config(), store=store, idp=fake_idp)
    flask_app.config.update(TESTING=True)
    flask_app.extensions["jwks_client"] = DummyJWKS(rsa_key_pair["public_key"])
    return flask_app


@pytest.fixture()
def client(app):
    with app.test_client() as test_client:
        yield test_client


@pytest.fixture()
def auth_header(rsa_key_pair):
    """Build an Authorization header for a user with the given roles."""
    def _make(username="alice", roles=None, **claims):
        token = create_valid_jwt(rsa_key_pair, username=username, roles=roles, **claims)
        return {"Authorization": f"Bearer {token}"}
    return _make
