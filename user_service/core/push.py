"""Reverse sync: push local profile state onto the IdP user record."""
from __future__ import annotations
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Optional

from .. import audit
from .errors import naming_user
from .idp import IdentityProviderAdmin
from .models import BulkSyncResult, LocalUser
from .store import UserStore

logger = logging.getLogger(__name__)

# Attribute keys owned by this service. They are replaced on every push;
# any other IdP attribute is left alone.
TRACKED_ATTRIBUTE_KEYS = ("userType", "bio", "location", "characterName", "animeMangaSource")

DEFAULT_MAX_WORKERS = 4


def split_display_name(display_name: Optional[str]) -> tuple[str, str]:
    """First whitespace token is the first name, the rest is the last name."""
    tokens = (display_name or "").split()
    if not tokens:
        return "", ""
    return tokens[0], " ".join(tokens[1:])


@dataclass(frozen=True)
class AttributeUpdate:
    """What a push writes to the IdP for one user."""
    email: str
    first_name: str
    last_name: str
    attributes: dict[str, str] = field(default_factory=dict)


def build_attribute_update(user: LocalUser) -> AttributeUpdate:
    """Derive the IdP update for a local user. Pure function."""
    first_name, last_name = split_display_name(user.display_name)
    attributes = {
        "userType": user.user_type.value,
        "bio": user.bio or "",
        "location": user.location or "",
    }
    if user.is_character:
        attributes["characterName"] = user.character_name or ""
        attributes["animeMangaSource"] = user.anime_manga_source or ""
    return AttributeUpdate(
        email=user.email or "",
        first_name=first_name,
        last_name=last_name,
        attributes=attributes,
    )


class AttributePusher:
    """Writes a local user's profile and tracked attributes to the IdP."""

    def __init__(self, idp: IdentityProviderAdmin):
        self.idp = idp

    def push(self, user: LocalUser) -> bool:
        """Push one user.

        Returns:
            True when the IdP user was updated, False when no IdP user has
            this username (nothing is created)

        Raises:
            IdentityProviderUnavailableError: IdP call failed
        """
        idp_user = self.idp.find_user_by_username(user.username)
        if idp_user is None:
            logger.warning("User '%s' not found in Keycloak, skipping push", user.username)
            return False

        update = build_attribute_update(user)
        with naming_user(user.username):
            self.idp.update_user(
                idp_user.id,
                email=update.email,
                first_name=update.first_name,
                last_name=update.last_name,
                attributes=update.attributes,
                replace_keys=TRACKED_ATTRIBUTE_KEYS,
            )
        logger.info("Pushed user '%s' to Keycloak", user.username)
        return True


class BulkReconciler:
    """Pushes every local user to the IdP, isolating per-user failures."""

    def __init__(
        self,
        store: UserStore,
        pusher: AttributePusher,
        max_workers: int = DEFAULT_MAX_WORKERS,
        realm: str = "sss-realm",
    ):
        self.store = store
        self.pusher = pusher
        self.max_workers = max(1, max_workers)
        self.realm = realm

    def push_all(self, operator: str = "system") -> BulkSyncResult:
        users = self.store.list_all()
        logger.info("Starting bulk push of %d users (workers=%d)", len(users), self.max_workers)
        result = BulkSyncResult()

        if self.max_workers == 1:
            for user in users:
                self._record(result, user, self.pusher.push, user)
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                futures = {pool.submit(self.pusher.push, user): user for user in users}
                for future in as_completed(futures):
                    self._record(result, futures[future], future.result)

        logger.info(
            "Bulk push completed: %d succeeded, %d failed", result.succeeded, result.failed
        )
        audit.safe_log_event(
            "bulk_push",
            "*",
            operator=operator,
            realm=self.realm,
            details=result.to_dict(),
            success=result.failed == 0,
        )
        return result

    @staticmethod
    def _record(result: BulkSyncResult, user: LocalUser, call, *args) -> None:
        try:
            call(*args)
        except Exception as exc:
            logger.error("Failed to push user '%s': %s", user.username, exc)
            result.failed += 1
            result.failures.append((user.username, str(exc)))
        else:
            result.succeeded += 1
