"""Forward sync: make the local user store agree with validated token claims."""
from __future__ import annotations
import logging
from typing import Any, Mapping

from .claims import DEFAULT_CLIENT_ID, extract_claims
from .errors import ReconciliationConflictError
from .models import IdentityClaims, LocalUser, utcnow
from .roles import map_roles_to_user_type
from .store import DuplicateUserError, UserStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


class ReconciliationEngine:
    """Find-or-create-or-update of the local user for an authenticated identity.

    Guarantees at most one store write per call, and none when the local
    record already matches the claims.
    """

    def __init__(
        self,
        store: UserStore,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        client_id: str = DEFAULT_CLIENT_ID,
    ):
        self.store = store
        self.max_attempts = max(1, max_attempts)
        self.client_id = client_id

    def reconcile_token(self, raw_claims: Mapping[str, Any]) -> LocalUser:
        """Extract identity claims from a decoded token and reconcile them."""
        return self.reconcile(extract_claims(raw_claims, self.client_id))

    def reconcile(self, claims: IdentityClaims) -> LocalUser:
        """Return the local user matching the claims, creating or updating it.

        An email claim already held by another local user is not applied.

        Raises:
            ReconciliationConflictError: first-time creation kept colliding
                with a concurrent insert that could not be re-read
        """
        user_type = map_roles_to_user_type(claims.roles)

        for attempt in range(1, self.max_attempts + 1):
            existing = self.store.find_by_username(claims.username)
            if existing is not None:
                return self._update_if_changed(existing, claims, user_type)

            now = utcnow()
            candidate = LocalUser(
                username=claims.username,
                email=claims.email or "",
                display_name=claims.display_name or claims.username,
                user_type=user_type,
                created_at=now,
                updated_at=now,
                is_verified=True,
                is_active=True,
                is_logged_in=True,
            )
            try:
                created = self._insert(candidate)
            except DuplicateUserError as exc:
                logger.warning(
                    "Concurrent creation of '%s' detected (attempt %d/%d): %s",
                    claims.username, attempt, self.max_attempts, exc,
                )
                continue
            logger.info("Created local user '%s' as %s", created.username, created.user_type.value)
            return created

        raise ReconciliationConflictError(claims.username, self.max_attempts)

    def _insert(self, candidate: LocalUser) -> LocalUser:
        """Insert a first-time user; an email owned by someone else is left out.

        Only a username clash propagates, since only that one is resolved by
        re-reading.
        """
        try:
            return self.store.insert(candidate)
        except DuplicateUserError as exc:
            if exc.field != "email" or not candidate.email:
                raise
            logger.warning(
                "Email '%s' of new user '%s' belongs to another local user, creating without it",
                candidate.email, candidate.username,
            )
            candidate.email = ""
            return self.store.insert(candidate)

    def _update_if_changed(self, user: LocalUser, claims: IdentityClaims, user_type) -> LocalUser:
        changes = diff_claims(user, claims, user_type)
        if not changes:
            logger.debug("Local user '%s' already up to date", user.username)
            return user

        original = user.copy()
        for name, value in changes.items():
            setattr(user, name, value)
        user.touch()
        try:
            saved = self.store.save(user)
        except DuplicateUserError as exc:
            if exc.field != "email":
                raise ReconciliationConflictError(user.username, 1) from exc
            logger.warning(
                "Email '%s' from token of '%s' belongs to another local user, keeping '%s'",
                claims.email, user.username, original.email,
            )
            changes.pop("email")
            if not changes:
                return original
            user.email = original.email
            saved = self.store.save(user)
        logger.info("Updated local user '%s' (%s)", saved.username, ", ".join(sorted(changes)))
        return saved


def diff_claims(user: LocalUser, claims: IdentityClaims, user_type) -> dict[str, Any]:
    """Fields of ``user`` that disagree with the claims.

    Email and display name are compared only when the claim carries a value;
    an absent claim never clears what is stored locally. user_type always
    follows the roles.
    """
    changes: dict[str, Any] = {}
    if claims.email and claims.email != user.email:
        changes["email"] = claims.email
    if claims.display_name and claims.display_name != user.display_name:
        changes["display_name"] = claims.display_name
    if user_type != user.user_type:
        changes["user_type"] = user_type
    return changes
