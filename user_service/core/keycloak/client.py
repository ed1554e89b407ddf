"""Authenticated HTTP access to the Keycloak Admin REST API.

One client holds one grant (admin password or service account). The access
token it yields is treated as short-lived: whatever Keycloak announces, it is
kept for at most a minute and renewed ten seconds before that.
"""
from __future__ import annotations
import os
import time
from typing import Any, Dict, Optional, Tuple

import requests

from .exceptions import KeycloakAPIError, KeycloakAuthenticationError

REQUEST_TIMEOUT = 5
MAX_TOKEN_LIFETIME = 60
REFRESH_MARGIN = 10


class KeycloakClient:
    """Admin API client with lazy token renewal.

    Usage:
        client = KeycloakClient("http://keycloak:8080", timeout=5)
        client.authenticate_admin("admin", "password")
        users = client.get("/admin/realms/sss-realm/users").json()
    """

    def __init__(self, base_url: Optional[str] = None, timeout: float = REQUEST_TIMEOUT):
        self.base_url = (base_url or os.environ.get("KEYCLOAK_URL", "http://localhost:8080")).rstrip("/")
        self.timeout = timeout
        self._token: Optional[str] = None
        self._refresh_at = 0.0
        # (token realm, form fields) of the grant to replay on renewal
        self._grant: Optional[Tuple[str, Dict[str, str]]] = None

    # ------------------------------------------------------------------ #
    # Authentication
    # ------------------------------------------------------------------ #
    def authenticate_admin(
        self,
        username: str,
        password: str,
        realm: str = "master",
        client_id: str = "admin-cli",
    ) -> str:
        """Password grant against ``realm`` (usually master). Returns the token."""
        return self._authenticate(realm, {
            "grant_type": "password",
            "client_id": client_id,
            "username": username,
            "password": password,
        })

    def authenticate_service_account(self, auth_realm: str, client_id: str, client_secret: str) -> str:
        """Client-credentials grant for a confidential client. Returns the token."""
        return self._authenticate(auth_realm, {
            "grant_type": "client_credentials",
            "client_id": client_id,
            "client_secret": client_secret,
        })

    @property
    def is_authenticated(self) -> bool:
        return self._grant is not None

    def _authenticate(self, realm: str, form: Dict[str, str]) -> str:
        token = self._fetch_token(realm, form)
        # Only remember the grant once it has worked
        self._grant = (realm, form)
        return token

    def _fetch_token(self, realm: str, form: Dict[str, str]) -> str:
        url = f"{self.base_url}/realms/{realm}/protocol/openid-connect/token"
        resp = requests.post(url, data=form, timeout=self.timeout)
        if resp.status_code != 200:
            raise KeycloakAuthenticationError(resp.status_code, resp.text, url)
        payload = resp.json()
        lifetime = min(int(payload.get("expires_in") or MAX_TOKEN_LIFETIME), MAX_TOKEN_LIFETIME)
        self._token = payload["access_token"]
        self._refresh_at = time.monotonic() + lifetime - REFRESH_MARGIN
        return self._token

    def _current_token(self) -> str:
        if self._grant is None or not self._token:
            raise KeycloakAuthenticationError(
                401, "Not authenticated: call authenticate_admin or authenticate_service_account first", ""
            )
        if time.monotonic() >= self._refresh_at:
            self._fetch_token(*self._grant)
        return self._token

    # ------------------------------------------------------------------ #
    # HTTP verbs
    # ------------------------------------------------------------------ #
    def get(self, path: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> requests.Response:
        return self._request("get", path, params=params, **kwargs)

    def post(self, path: str, json: Optional[Any] = None, **kwargs) -> requests.Response:
        return self._request("post", path, json=json, **kwargs)

    def put(self, path: str, json: Optional[Any] = None, **kwargs) -> requests.Response:
        return self._request("put", path, json=json, **kwargs)

    def delete(self, path: str, json: Optional[Any] = None, **kwargs) -> requests.Response:
        """DELETE; role-mapping removal carries the roles as a JSON body."""
        return self._request("delete", path, json=json, **kwargs)

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        """Send one authenticated call.

        Raises:
            KeycloakAuthenticationError: no grant, or token renewal refused
            KeycloakAPIError: Keycloak answered with a 4xx/5xx status
            requests.RequestException: transport failure or timeout
        """
        headers = dict(kwargs.pop("headers", None) or {})
        headers["Authorization"] = f"Bearer {self._current_token()}"
        send = getattr(requests, method)
        resp = send(f"{self.base_url}{path}", headers=headers, timeout=self.timeout, **kwargs)
        if resp.status_code >= 400:
            raise KeycloakAPIError(resp.status_code, resp.text, resp.url)
        return resp
