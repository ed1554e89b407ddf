"""Realm role provisioning."""
from __future__ import annotations
import logging
from typing import Iterable

from .idp import IdentityProviderAdmin
from .roles import DEFAULT_REALM_ROLES, DEFAULT_ROLE_DESCRIPTION

logger = logging.getLogger(__name__)


class RoleProvisioner:
    """Makes sure the realm roles the application assigns actually exist.

    Check-then-create is not atomic: two provisioners may both see a role
    missing and both try to create it. The loser gets a conflict from the
    IdP, which counts as success.
    """

    def __init__(self, idp: IdentityProviderAdmin):
        self.idp = idp

    def ensure_roles_exist(self, required: Iterable[str] = DEFAULT_REALM_ROLES) -> list[str]:
        """Create missing roles.

        Returns:
            Names of the roles this call actually created

        Raises:
            IdentityProviderUnavailableError: lookup or creation failed
        """
        created: list[str] = []
        for role_name in required:
            if self.idp.get_realm_role(role_name) is not None:
                logger.debug("Role '%s' already exists", role_name)
                continue
            if self.idp.create_realm_role(role_name, DEFAULT_ROLE_DESCRIPTION):
                logger.info("Created realm role '%s'", role_name)
                created.append(role_name)
            else:
                logger.info("Role '%s' was created concurrently", role_name)
        return created
