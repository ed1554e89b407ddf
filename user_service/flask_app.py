"""Flask application factory and bootstrap.

create_app() wires configuration, the user store, the Keycloak client and
the sync components, then registers the API blueprints and error handlers.
"""
from __future__ import annotations
from typing import Optional

from flask import Flask
from werkzeug.middleware.proxy_fix import ProxyFix

from .config import AppConfig, load_settings
from .core.idp import IdentityProviderAdmin
from .core.store import UserStore
from .services import build_services


def create_app(
    config: Optional[AppConfig] = None,
    store: Optional[UserStore] = None,
    idp: Optional[IdentityProviderAdmin] = None,
) -> Flask:
    """Create and configure Flask application.

    Args:
        config: Settings; loaded from the environment when omitted
        store: Local user store override (tests, alternative backends)
        idp: IdP Admin Client override
    """
    cfg = config or load_settings()

    app = Flask(__name__)
    app.config["APP_CONFIG"] = cfg
    app.config["JSON_SORT_KEYS"] = False

    # Trust X-Forwarded-* headers from the reverse proxy
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)  # type: ignore

    app.extensions["user_service"] = build_services(cfg, store=store, idp=idp)

    from .api import admin_users, errors, health, sync, users

    app.register_blueprint(health.bp)
    app.register_blueprint(users.bp)
    app.register_blueprint(admin_users.bp)
    app.register_blueprint(sync.bp)

    errors.register_error_handlers(app)

    mode_label = "DEMO" if cfg.demo_mode else "PRODUCTION"
    app.logger.info("[flask_app] Mode=%s realm=%s", mode_label, cfg.keycloak_realm)
    if cfg.demo_mode:
        app.logger.warning("[flask_app] Demo mode active - do not deploy with demo credentials")

    return app
