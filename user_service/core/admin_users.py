"""Administrative user lifecycle spanning the local store and the IdP.

Local and IdP writes are not transactional. When the IdP call fails after
the local write, the local record stays and the error is raised; the next
push (single or bulk) brings the IdP back in line.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, fields
from typing import Any, Mapping, Optional

from .. import audit
from .errors import IdentityProviderUnavailableError, UserNotFoundError, ValidationError, naming_user
from .idp import IdentityProviderAdmin
from .keycloak import RoleNotFoundError, UserAlreadyExistsError
from .models import CHARACTER_FIELDS, PROFILE_FIELDS, LocalUser, UserType, utcnow
from .provisioning import RoleProvisioner
from .push import AttributePusher, build_attribute_update
from .roles import realm_roles_for_user_type
from .store import DuplicateUserError, UserStore

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6

_REQUEST_ALIASES = {
    "fullName": "display_name",
    "displayName": "display_name",
    "userType": "user_type",
    "phoneNumber": "phone_number",
    "profilePictureUrl": "profile_picture_url",
    "dateOfBirth": "date_of_birth",
    "characterName": "character_name",
    "animeMangaSource": "anime_manga_source",
    "characterDescription": "character_description",
    "avatarUrl": "avatar_url",
    "coverImageUrl": "cover_image_url",
    "characterStatus": "character_status",
    "isActive": "is_active",
    "isVerified": "is_verified",
}


def _request_kwargs(cls, payload: Mapping[str, Any]) -> dict[str, Any]:
    if not isinstance(payload, Mapping):
        raise ValidationError("Request body must be a JSON object")
    known = {f.name for f in fields(cls)}
    kwargs = {}
    for key, value in payload.items():
        name = _REQUEST_ALIASES.get(key, key)
        if name in known:
            kwargs[name] = value
    return kwargs


@dataclass
class CreateUserRequest:
    username: str = ""
    password: str = ""
    email: str = ""
    display_name: Optional[str] = None
    user_type: UserType = UserType.REAL_USER

    phone_number: Optional[str] = None
    address: Optional[str] = None
    bio: Optional[str] = None
    profile_picture_url: Optional[str] = None
    date_of_birth: Optional[str] = None
    gender: Optional[str] = None
    location: Optional[str] = None

    character_name: Optional[str] = None
    anime_manga_source: Optional[str] = None
    character_description: Optional[str] = None
    avatar_url: Optional[str] = None
    cover_image_url: Optional[str] = None
    character_status: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "CreateUserRequest":
        """Build from a JSON body (camelCase or snake_case keys)."""
        kwargs = _request_kwargs(cls, payload)
        if kwargs.get("user_type") is not None:
            try:
                kwargs["user_type"] = UserType(str(kwargs["user_type"]).upper())
            except ValueError:
                raise ValidationError(f"Unknown user type: {kwargs['user_type']}")
        else:
            kwargs.pop("user_type", None)
        return cls(**kwargs)


@dataclass
class UpdateUserRequest:
    """Partial update; None means "leave unchanged"."""
    email: Optional[str] = None
    display_name: Optional[str] = None

    phone_number: Optional[str] = None
    address: Optional[str] = None
    bio: Optional[str] = None
    profile_picture_url: Optional[str] = None
    date_of_birth: Optional[str] = None
    gender: Optional[str] = None
    location: Optional[str] = None

    character_name: Optional[str] = None
    anime_manga_source: Optional[str] = None
    character_description: Optional[str] = None
    avatar_url: Optional[str] = None
    cover_image_url: Optional[str] = None
    character_status: Optional[str] = None

    is_active: Optional[bool] = None
    is_verified: Optional[bool] = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "UpdateUserRequest":
        return cls(**_request_kwargs(cls, payload))

    def apply_to(self, user: LocalUser) -> list[str]:
        """Copy the set fields onto ``user``; returns the names that changed.

        Character fields are ignored for non-character users and user_type
        is never touched.
        """
        editable = ("email", "display_name", "is_active", "is_verified") + PROFILE_FIELDS
        if user.is_character:
            editable += CHARACTER_FIELDS
        changed = []
        for name in editable:
            value = getattr(self, name)
            if value is not None and getattr(user, name) != value:
                setattr(user, name, value)
                changed.append(name)
        return changed


class AdminUserService:
    """Create, update and delete users in both systems."""

    def __init__(
        self,
        store: UserStore,
        idp: IdentityProviderAdmin,
        realm: str = "sss-realm",
    ):
        self.store = store
        self.idp = idp
        self.realm = realm
        self.pusher = AttributePusher(idp)
        self.provisioner = RoleProvisioner(idp)

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #
    def get_user(self, user_id: str) -> LocalUser:
        user = self.store.find_by_id(user_id)
        if user is None:
            raise UserNotFoundError(f"User not found: {user_id}")
        return user

    def list_users(self, search: Optional[str] = None, user_type: Optional[str] = None) -> list[LocalUser]:
        """Local users, optionally filtered by a search term and a user type."""
        users = self.store.list_all()
        if user_type:
            try:
                wanted = UserType(user_type.upper())
            except ValueError:
                raise ValidationError(f"Unknown user type: {user_type}")
            users = [u for u in users if u.user_type == wanted]
        if search:
            term = search.lower()
            users = [
                u for u in users
                if term in u.username.lower()
                or term in (u.email or "").lower()
                or term in (u.display_name or "").lower()
            ]
        return sorted(users, key=lambda u: u.username)

    def user_roles(self, username: str) -> list[str]:
        idp_user = self.idp.find_user_by_username(username)
        if idp_user is None:
            raise UserNotFoundError(f"User not found in Keycloak: {username}")
        with naming_user(username):
            return self.idp.list_user_realm_roles(idp_user.id)

    def sync_status(self) -> dict[str, Any]:
        connected = self.idp.test_connection()
        idp_count = 0
        if connected:
            try:
                idp_count = len(self.idp.list_users())
            except IdentityProviderUnavailableError as exc:
                logger.warning("Could not count Keycloak users: %s", exc)
        return {
            "keycloak_connected": connected,
            "keycloak_users_count": idp_count,
            "local_users_count": self.store.count(),
        }

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #
    def create_user(self, request: CreateUserRequest, *, operator: str = "system") -> tuple[LocalUser, str]:
        """Create the local user and its IdP counterpart.

        Returns:
            (local user, IdP user id)

        Raises:
            ValidationError: Bad request or username/email already used
            IdentityProviderUnavailableError: IdP creation failed (local user kept)
        """
        username = (request.username or "").strip()
        if not username:
            raise ValidationError("Username is required")
        if len(request.password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        if self.store.find_by_username(username) is not None:
            raise ValidationError(f"Username already exists: {username}")
        if request.email and self.store.find_by_email(request.email) is not None:
            raise ValidationError(f"Email already exists: {request.email}")

        now = utcnow()
        user = LocalUser(
            username=username,
            email=request.email or "",
            display_name=request.display_name or username,
            user_type=request.user_type,
            created_at=now,
            updated_at=now,
            is_verified=True,
            is_active=True,
        )
        for name in PROFILE_FIELDS:
            setattr(user, name, getattr(request, name))
        if user.is_character:
            for name in CHARACTER_FIELDS:
                setattr(user, name, getattr(request, name))

        try:
            user = self.store.insert(user)
        except DuplicateUserError as exc:
            raise ValidationError(str(exc)) from exc
        logger.info("Created local user '%s' as %s", user.username, user.user_type.value)

        try:
            with naming_user(user.username):
                idp_id = self._create_idp_user(user, request.password)
        except (IdentityProviderUnavailableError, ValidationError) as exc:
            audit.safe_log_event(
                "user_create", username, operator=operator, realm=self.realm,
                details={"user_type": user.user_type.value, "error": str(exc)}, success=False,
            )
            raise

        audit.safe_log_event(
            "user_create", username, operator=operator, realm=self.realm,
            details={"user_type": user.user_type.value, "keycloak_id": idp_id},
        )
        return user, idp_id

    def _create_idp_user(self, user: LocalUser, password: str) -> str:
        self.provisioner.ensure_roles_exist()
        update = build_attribute_update(user)
        try:
            idp_id = self.idp.create_user(
                user.username,
                update.email,
                update.first_name,
                update.last_name,
                attributes=update.attributes,
            )
        except UserAlreadyExistsError as exc:
            raise ValidationError(f"User '{user.username}' already exists in Keycloak") from exc
        self.idp.set_password(idp_id, password, temporary=False)

        for role_name in realm_roles_for_user_type(user.user_type):
            try:
                self.idp.assign_realm_role(idp_id, role_name)
            except (IdentityProviderUnavailableError, RoleNotFoundError) as exc:
                logger.error("Failed to assign role '%s' to '%s': %s", role_name, user.username, exc)
        return idp_id

    def update_profile(self, user_id: str, request: UpdateUserRequest) -> tuple[LocalUser, list[str]]:
        """Apply a partial update to the local record only.

        Returns:
            (saved user, names of the fields that changed)
        """
        user = self.get_user(user_id)
        changed = request.apply_to(user)
        if not changed:
            return user, changed
        user.touch()
        try:
            user = self.store.save(user)
        except DuplicateUserError as exc:
            raise ValidationError(str(exc)) from exc
        return user, changed

    def update_user(self, user_id: str, request: UpdateUserRequest, *, operator: str = "system") -> LocalUser:
        """Apply a partial update locally, then push it to the IdP.

        Raises:
            UserNotFoundError: No local user with this id
            ValidationError: Email already owned by another user
            IdentityProviderUnavailableError: Push failed (local update kept)
        """
        user, changed = self.update_profile(user_id, request)

        try:
            self.pusher.push(user)
        except IdentityProviderUnavailableError as exc:
            audit.safe_log_event(
                "user_update", user.username, operator=operator, realm=self.realm,
                details={"fields": changed, "error": str(exc)}, success=False,
            )
            raise

        audit.safe_log_event(
            "user_update", user.username, operator=operator, realm=self.realm,
            details={"fields": changed},
        )
        return user

    def delete_user(self, user_id: str, *, operator: str = "system") -> None:
        """Remove the user from the IdP (when present) and from the local store."""
        user = self.get_user(user_id)

        idp_user = self.idp.find_user_by_username(user.username)
        roles: list[str] = []
        if idp_user is not None:
            with naming_user(user.username):
                roles = self.idp.list_user_realm_roles(idp_user.id)
                logger.info("Deleting Keycloak user '%s' holding roles %s", user.username, roles)
                self.idp.delete_user(idp_user.id)
        else:
            logger.warning("User '%s' not found in Keycloak, deleting locally only", user.username)

        self.store.delete(user.id)
        audit.safe_log_event(
            "user_delete", user.username, operator=operator, realm=self.realm,
            details={"roles": roles, "keycloak": idp_user is not None},
        )

    def push_user(self, username: str, *, operator: str = "system") -> bool:
        """Push one local user to the IdP. False when the IdP has no such user."""
        user = self.store.find_by_username(username)
        if user is None:
            raise UserNotFoundError(f"User not found: {username}")
        pushed = self.pusher.push(user)
        audit.safe_log_event(
            "user_push", username, operator=operator, realm=self.realm,
            details={"found_in_keycloak": pushed},
        )
        return pushed

    def assign_role(self, username: str, role_name: str, *, operator: str = "system") -> list[str]:
        """Grant a realm role and return the user's roles afterwards.

        Raises:
            UserNotFoundError: No IdP user with this username
            ValidationError: Role does not exist in the realm
        """
        idp_user = self.idp.find_user_by_username(username)
        if idp_user is None:
            raise UserNotFoundError(f"User not found in Keycloak: {username}")

        with naming_user(username):
            self.provisioner.ensure_roles_exist()
            try:
                self.idp.assign_realm_role(idp_user.id, role_name)
            except RoleNotFoundError as exc:
                raise ValidationError(f"Role does not exist: {role_name}") from exc
            roles = self.idp.list_user_realm_roles(idp_user.id)
        audit.safe_log_event(
            "role_grant", username, operator=operator, realm=self.realm,
            details={"role": role_name, "roles": roles},
        )
        return roles

    def ensure_roles(self, *, operator: str = "system") -> list[str]:
        created = self.provisioner.ensure_roles_exist()
        audit.safe_log_event(
            "roles_provisioned", "*", operator=operator, realm=self.realm,
            details={"created": created},
        )
        return created
