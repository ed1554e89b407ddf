"""Domain records shared by the reconciliation pipeline."""
from __future__ import annotations
import datetime
import uuid
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Optional


def utcnow() -> datetime.datetime:
    """Timezone-aware current time used for created/updated stamps."""
    return datetime.datetime.now(datetime.timezone.utc)


class UserType(str, Enum):
    """Application user-type tag, derived from IdP roles."""
    REAL_USER = "REAL_USER"
    CHARACTER = "CHARACTER"
    ADMIN = "ADMIN"


@dataclass(frozen=True)
class IdentityClaims:
    """Flat identity extracted from a validated bearer token."""
    username: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    roles: frozenset[str] = field(default_factory=frozenset)


# Profile fields an administrator or the user can edit; never part of the
# forward-sync diff.
PROFILE_FIELDS = (
    "phone_number",
    "address",
    "bio",
    "profile_picture_url",
    "date_of_birth",
    "gender",
    "location",
)

CHARACTER_FIELDS = (
    "character_name",
    "anime_manga_source",
    "character_description",
    "avatar_url",
    "cover_image_url",
    "character_status",
)

_CAMEL_CASE = {
    "display_name": "fullName",
    "user_type": "userType",
    "phone_number": "phoneNumber",
    "profile_picture_url": "profilePictureUrl",
    "date_of_birth": "dateOfBirth",
    "character_name": "characterName",
    "anime_manga_source": "animeMangaSource",
    "character_description": "characterDescription",
    "avatar_url": "avatarUrl",
    "cover_image_url": "coverImageUrl",
    "character_status": "characterStatus",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
    "is_logged_in": "isLoggedIn",
    "is_verified": "isVerified",
    "is_active": "isActive",
}


@dataclass
class LocalUser:
    """User record owned by the local user store."""
    username: str
    email: str = ""
    display_name: str = ""
    user_type: UserType = UserType.REAL_USER
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

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

    created_at: datetime.datetime = field(default_factory=utcnow)
    updated_at: datetime.datetime = field(default_factory=utcnow)
    is_verified: bool = False
    is_active: bool = True
    is_logged_in: bool = False

    @property
    def is_character(self) -> bool:
        return self.user_type == UserType.CHARACTER

    @property
    def is_admin(self) -> bool:
        return self.user_type == UserType.ADMIN

    def touch(self, now: Optional[datetime.datetime] = None) -> None:
        """Advance updated_at without ever moving it backwards."""
        now = now or utcnow()
        self.updated_at = max(now, self.updated_at)

    def copy(self) -> "LocalUser":
        return replace(self)

    def to_dict(self, *, include_all: bool = False) -> dict[str, Any]:
        """API representation (camelCase).

        Character fields are only emitted for characters unless include_all
        is set, which document stores use to persist every field.
        """
        data: dict[str, Any] = {}
        for f in fields(self):
            if f.name in CHARACTER_FIELDS and not (self.is_character or include_all):
                continue
            value = getattr(self, f.name)
            if isinstance(value, datetime.datetime):
                value = value.isoformat()
            elif isinstance(value, UserType):
                value = value.value
            data[_CAMEL_CASE.get(f.name, f.name)] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LocalUser":
        """Inverse of to_dict(); unknown keys are ignored."""
        reverse = {camel: name for name, camel in _CAMEL_CASE.items()}
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            name = reverse.get(key, key)
            if name not in known:
                continue
            if name in ("created_at", "updated_at") and isinstance(value, str):
                value = datetime.datetime.fromisoformat(value)
            elif name == "user_type" and value is not None:
                value = UserType(value)
            kwargs[name] = value
        return cls(**kwargs)


@dataclass
class IdPUser:
    """User record owned by the identity provider."""
    id: str
    username: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    enabled: bool = True
    email_verified: bool = False
    attributes: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_representation(cls, rep: dict[str, Any]) -> "IdPUser":
        """Build from a Keycloak UserRepresentation (first value per attribute)."""
        attributes: dict[str, str] = {}
        for key, values in (rep.get("attributes") or {}).items():
            if isinstance(values, list):
                if values:
                    attributes[key] = values[0]
            elif values is not None:
                attributes[key] = str(values)
        return cls(
            id=rep["id"],
            username=rep.get("username", ""),
            email=rep.get("email"),
            first_name=rep.get("firstName"),
            last_name=rep.get("lastName"),
            enabled=bool(rep.get("enabled", True)),
            email_verified=bool(rep.get("emailVerified", False)),
            attributes=attributes,
        )

    def to_representation(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "enabled": self.enabled,
            "emailVerified": self.email_verified,
            "attributes": {key: [value] for key, value in self.attributes.items()},
        }


@dataclass
class BulkSyncResult:
    """Outcome of a bulk push sweep."""
    succeeded: int = 0
    failed: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "total": self.total,
            "failures": [{"username": u, "error": e} for u, e in self.failures],
        }
