"""
Flask decorators for bearer token authentication and authorization.

Every protected request carries a Keycloak-issued JWT. The token is
validated against the realm JWKS, then reconciled into a local user which
is attached to ``g.current_user``. Authorization decisions use that local
user's ``user_type``.

Security:
- RSA-SHA256 signature verification via JWKS (RFC 7517)
- Expiration and issuer validation (RFC 7519)
- JWKS caching (1-hour refresh)
"""

import logging
from functools import wraps
from typing import Any, Dict

import jwt
from jwt import PyJWKClient
from jwt.exceptions import (
    DecodeError,
    ExpiredSignatureError,
    InvalidIssuerError,
    InvalidSignatureError,
    PyJWKClientError,
    InvalidTokenError,
)
from flask import current_app, g, request

from ..core.errors import MissingIdentityError, ReconciliationConflictError
from .responses import fail

logger = logging.getLogger(__name__)


class TokenValidationError(Exception):
    """Exception raised when JWT token validation fails."""
    pass


def get_jwks_client() -> PyJWKClient:
    """
    Get the JWKS client for the current app, creating it on first use.

    The client caches Keycloak's public keys; the ``kid`` in the token
    header selects which key verifies the signature.
    """
    client = current_app.extensions.get("jwks_client")
    if client is None:
        cfg = current_app.config["APP_CONFIG"]
        logger.info("Initializing JWKS client for: %s", cfg.jwks_url)
        client = PyJWKClient(
            cfg.jwks_url,
            cache_keys=True,
            max_cached_keys=16,
            lifespan=3600,
            headers={"User-Agent": "sss-user-service/1.0"},
        )
        current_app.extensions["jwks_client"] = client
    return client


def validate_jwt_token(token: str) -> Dict[str, Any]:
    """
    Validate a JWT bearer token.

    Validations performed:
    1. Signature verification (RS256 via JWKS)
    2. Expiration (exp claim)
    3. Not Before (nbf claim)
    4. Issuer (iss claim)

    Audience is not checked: Keycloak puts "account" in aud for the
    frontend client's tokens.

    Returns:
        dict: Validated token claims

    Raises:
        TokenValidationError: If any validation fails
    """
    cfg = current_app.config["APP_CONFIG"]

    try:
        signing_key = get_jwks_client().get_signing_key_from_jwt(token)
        claims = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            issuer=cfg.keycloak_issuer,
            options={
                "verify_signature": True,
                "verify_exp": True,
                "verify_nbf": True,
                "verify_iss": True,
                "verify_aud": False,
                "require": ["exp", "iat"],
            },
            leeway=5,
        )
    except ExpiredSignatureError:
        raise TokenValidationError("Token expired (exp claim)")
    except InvalidIssuerError as e:
        raise TokenValidationError(f"Invalid issuer (token from wrong Keycloak realm): {e}")
    except InvalidSignatureError:
        raise TokenValidationError("Invalid signature (token tampered or wrong key)")
    except DecodeError as e:
        raise TokenValidationError(f"Token decode error (malformed JWT): {e}")
    except (InvalidTokenError, PyJWKClientError) as e:
        raise TokenValidationError(f"Token validation failed: {e}")

    logger.debug("JWT validated for %s", claims.get("preferred_username") or claims.get("sub"))
    return claims


def _bearer_token() -> str:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header:
        raise TokenValidationError("Authorization header required. Use 'Authorization: Bearer <token>'")
    if not auth_header.startswith("Bearer "):
        raise TokenValidationError("Invalid Authorization header format. Expected 'Bearer <token>'")
    token = auth_header[7:].strip()
    if not token:
        raise TokenValidationError("Bearer token is empty")
    return token


def require_auth(fn):
    """
    Require a valid bearer token and resolve the caller's local user.

    On success ``g.token_claims`` holds the decoded claims and
    ``g.current_user`` the reconciled LocalUser. Missing or invalid tokens,
    tokens without a username and identities that cannot be resolved to a
    local user are answered with 401.
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            claims = validate_jwt_token(_bearer_token())
        except TokenValidationError as e:
            logger.warning("Rejected request to %s: %s", request.path, e)
            return fail(str(e), 401)

        services = current_app.extensions["user_service"]
        try:
            user = services.reconciler.reconcile_token(claims)
        except MissingIdentityError as e:
            logger.warning("Token without usable identity on %s: %s", request.path, e)
            return fail(str(e), 401)
        except ReconciliationConflictError as e:
            logger.error("Could not resolve local user on %s: %s", request.path, e)
            return fail("Local identity could not be resolved, sign in again", 401)

        g.token_claims = claims
        g.current_user = user
        return fn(*args, **kwargs)

    return wrapper


def require_admin(fn):
    """Like require_auth, and additionally require an ADMIN local user (403 otherwise)."""
    @wraps(fn)
    def check_admin(*args, **kwargs):
        if not g.current_user.is_admin:
            logger.warning("User '%s' denied admin access to %s", g.current_user.username, request.path)
            return fail("Admin role required", 403)
        return fn(*args, **kwargs)

    return require_auth(check_admin)


def current_username() -> str:
    """Username of the authenticated caller, for audit operator fields."""
    user = getattr(g, "current_user", None)
    return user.username if user is not None else "anonymous"
