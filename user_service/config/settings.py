"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                print(f"[settings] Loaded {secret_name} from /run/secrets")
                return secret_value
        except OSError as e:
            print(f"[settings] Failed to read /run/secrets/{secret_name}: {e}")

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value

    return None


@dataclass
class AppConfig:
    """Application configuration container."""
    # Mode
    demo_mode: bool

    # Keycloak Admin API
    keycloak_url: str = ""
    keycloak_realm: str = "sss-realm"
    keycloak_request_timeout: float = 5.0

    # Admin API credentials: "admin" (password grant) or "service_account"
    keycloak_auth_mode: str = "admin"
    keycloak_admin: str = "admin"
    keycloak_admin_password: str = "admin"
    keycloak_admin_realm: str = "master"
    keycloak_admin_client_id: str = "admin-cli"
    keycloak_service_client_id: str = ""
    keycloak_service_client_secret: str = ""

    # Bearer token validation
    keycloak_issuer: str = ""
    keycloak_server_url: str = ""
    oidc_client_id: str = "sss-backend"

    # Sync
    bulk_sync_max_workers: int = 4
    reconcile_max_attempts: int = 3

    # Local user store (JSON document file); empty keeps users in memory
    user_store_path: str = ""

    # Audit
    audit_log_signing_key: str = ""

    @property
    def jwks_url(self) -> str:
        """JWKS endpoint derived from the issuer reachable by this service."""
        base = (self.keycloak_server_url or self.keycloak_issuer).rstrip("/")
        return f"{base}/protocol/openid-connect/certs"


def _get_or_generate(var_name: str, demo_default: Optional[str] = None, required: bool = True, demo_mode: bool = False) -> str:
    """Get environment variable or use demo default."""
    value = os.environ.get(var_name)
    if value:
        return value

    if demo_mode and demo_default is not None:
        print(f"[demo-mode] Using default for {var_name}")
        os.environ[var_name] = demo_default
        return demo_default

    if not required:
        return ""

    raise RuntimeError(f"Environment variable {var_name} is required in production mode.")


def _int_env(var_name: str, default: int, minimum: int = 1) -> int:
    raw = os.environ.get(var_name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable {var_name} must be an integer, got {raw!r}")
    return max(minimum, value)


def _float_env(var_name: str, default: float) -> float:
    raw = os.environ.get(var_name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable {var_name} must be a number, got {raw!r}")
    if value <= 0:
        raise RuntimeError(f"Environment variable {var_name} must be positive")
    return value


def load_settings() -> AppConfig:
    """Load application settings from environment and /run/secrets."""
    demo_mode = os.environ.get("DEMO_MODE", "false").lower() == "true"

    # Secrets: /run/secrets first, environment second
    keycloak_admin_password = _load_secret_from_file("keycloak_admin_password", "KEYCLOAK_ADMIN_PASSWORD")
    if keycloak_admin_password:
        os.environ["KEYCLOAK_ADMIN_PASSWORD"] = keycloak_admin_password

    keycloak_service_client_secret = _load_secret_from_file(
        "keycloak_service_client_secret",
        "KEYCLOAK_SERVICE_CLIENT_SECRET",
    ) or ""

    audit_log_signing_key = _load_secret_from_file("audit_log_signing_key", "AUDIT_LOG_SIGNING_KEY")
    if audit_log_signing_key:
        os.environ["AUDIT_LOG_SIGNING_KEY"] = audit_log_signing_key
    elif demo_mode:
        demo_key = os.environ.get("AUDIT_LOG_SIGNING_KEY_DEMO", "demo-audit-signing-key-change-in-production")
        os.environ["AUDIT_LOG_SIGNING_KEY"] = demo_key
        audit_log_signing_key = demo_key
        print("[demo-mode] Using demo AUDIT_LOG_SIGNING_KEY")

    # Keycloak
    keycloak_url = _get_or_generate(
        "KEYCLOAK_URL",
        demo_default="http://localhost:8080" if demo_mode else None,
        demo_mode=demo_mode,
    )
    keycloak_realm = os.environ.get("KEYCLOAK_REALM", "sss-realm")
    keycloak_issuer = _get_or_generate(
        "KEYCLOAK_ISSUER",
        demo_default=f"http://localhost:8080/realms/{keycloak_realm}" if demo_mode else None,
        demo_mode=demo_mode,
    )
    keycloak_server_url = os.environ.get("KEYCLOAK_SERVER_URL", keycloak_issuer)

    keycloak_auth_mode = os.environ.get(
        "KEYCLOAK_AUTH_MODE",
        "service_account" if keycloak_service_client_secret else "admin",
    ).strip().lower()
    if keycloak_auth_mode not in ("admin", "service_account"):
        raise RuntimeError(f"KEYCLOAK_AUTH_MODE must be 'admin' or 'service_account', got {keycloak_auth_mode!r}")

    keycloak_service_client_id = ""
    keycloak_admin = os.environ.get("KEYCLOAK_ADMIN", "admin")
    if keycloak_auth_mode == "service_account":
        keycloak_service_client_id = _get_or_generate("KEYCLOAK_SERVICE_CLIENT_ID", demo_mode=demo_mode)
        if not keycloak_service_client_secret:
            raise RuntimeError("KEYCLOAK_SERVICE_CLIENT_SECRET is required for service_account auth mode.")
    else:
        keycloak_admin = _get_or_generate("KEYCLOAK_ADMIN", demo_default="admin", demo_mode=demo_mode)
        keycloak_admin_password = _get_or_generate(
            "KEYCLOAK_ADMIN_PASSWORD", demo_default="admin", demo_mode=demo_mode
        )

    oidc_client_id = os.environ.get("OIDC_CLIENT_ID", "sss-backend")

    config = AppConfig(
        demo_mode=demo_mode,
        keycloak_url=keycloak_url,
        keycloak_realm=keycloak_realm,
        keycloak_request_timeout=_float_env("KEYCLOAK_REQUEST_TIMEOUT", 5.0),
        keycloak_auth_mode=keycloak_auth_mode,
        keycloak_admin=keycloak_admin,
        keycloak_admin_password=keycloak_admin_password or "",
        keycloak_admin_realm=os.environ.get("KEYCLOAK_ADMIN_REALM", "master"),
        keycloak_admin_client_id=os.environ.get("KEYCLOAK_ADMIN_CLIENT_ID", "admin-cli"),
        keycloak_service_client_id=keycloak_service_client_id,
        keycloak_service_client_secret=keycloak_service_client_secret,
        keycloak_issuer=keycloak_issuer,
        keycloak_server_url=keycloak_server_url,
        oidc_client_id=oidc_client_id,
        bulk_sync_max_workers=_int_env("BULK_SYNC_MAX_WORKERS", 4),
        reconcile_max_attempts=_int_env("RECONCILE_MAX_ATTEMPTS", 3),
        user_store_path=os.environ.get("USER_STORE_PATH", ""),
        audit_log_signing_key=audit_log_signing_key or "",
    )

    mode_label = "DEMO" if demo_mode else "PRODUCTION"
    print(f"[settings] Mode={mode_label}; realm={keycloak_realm}; client_id={oidc_client_id}; auth={keycloak_auth_mode}")
    if demo_mode:
        print("[settings] WARNING: Demo credentials in use. Do not deploy with these defaults.")

    return config
