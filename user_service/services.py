"""Wiring of stores, the IdP client and the sync components from AppConfig."""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

from .config import AppConfig
from .core.admin_users import AdminUserService
from .core.idp import IdentityProviderAdmin, KeycloakIdentityProvider
from .core.keycloak import KeycloakClient
from .core.provisioning import RoleProvisioner
from .core.push import AttributePusher, BulkReconciler
from .core.reconciliation import ReconciliationEngine
from .core.store import InMemoryUserStore, JsonFileUserStore, UserStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the HTTP layer and the CLI need, built once per process."""
    config: AppConfig
    store: UserStore
    idp: IdentityProviderAdmin
    reconciler: ReconciliationEngine
    pusher: AttributePusher
    bulk: BulkReconciler
    provisioner: RoleProvisioner
    admin: AdminUserService


def build_identity_provider(cfg: AppConfig) -> KeycloakIdentityProvider:
    """Keycloak-backed IdP client; authenticates on first use."""
    client = KeycloakClient(cfg.keycloak_url, timeout=cfg.keycloak_request_timeout)

    if cfg.keycloak_auth_mode == "service_account":
        def authenticate(kc: KeycloakClient):
            return kc.authenticate_service_account(
                cfg.keycloak_realm,
                cfg.keycloak_service_client_id,
                cfg.keycloak_service_client_secret,
            )
    else:
        def authenticate(kc: KeycloakClient):
            return kc.authenticate_admin(
                cfg.keycloak_admin,
                cfg.keycloak_admin_password,
                realm=cfg.keycloak_admin_realm,
                client_id=cfg.keycloak_admin_client_id,
            )

    return KeycloakIdentityProvider(client, cfg.keycloak_realm, authenticate=authenticate)


def build_store(cfg: AppConfig) -> UserStore:
    if cfg.user_store_path:
        logger.info("[store] Using JSON user store at %s", cfg.user_store_path)
        return JsonFileUserStore(cfg.user_store_path)
    logger.info("[store] Using in-memory user store")
    return InMemoryUserStore()


def build_services(
    cfg: AppConfig,
    store: Optional[UserStore] = None,
    idp: Optional[IdentityProviderAdmin] = None,
) -> Services:
    store = store if store is not None else build_store(cfg)
    idp = idp if idp is not None else build_identity_provider(cfg)
    pusher = AttributePusher(idp)
    return Services(
        config=cfg,
        store=store,
        idp=idp,
        reconciler=ReconciliationEngine(
            store,
            max_attempts=cfg.reconcile_max_attempts,
            client_id=cfg.oidc_client_id,
        ),
        pusher=pusher,
        bulk=BulkReconciler(store, pusher, max_workers=cfg.bulk_sync_max_workers, realm=cfg.keycloak_realm),
        provisioner=RoleProvisioner(idp),
        admin=AdminUserService(store, idp, realm=cfg.keycloak_realm),
    )
