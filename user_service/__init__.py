"""User service: identity reconciliation between a local user store and Keycloak."""
