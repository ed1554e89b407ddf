"""Local user store: interface plus in-memory and JSON-document implementations.

The store owns uniqueness of ``username`` (and of non-empty ``email``).
``insert`` is an atomic insert-if-absent, which is what lets the
reconciliation engine close the first-authentication race without a
read-then-write window.
"""
from __future__ import annotations
import json
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from .models import LocalUser


class DuplicateUserError(Exception):
    """Insert or save rejected by a uniqueness constraint.

    Attributes:
        field: Constrained field that clashed ("username" or "email")
        value: Clashing value
    """

    def __init__(self, field: str, value: str):
        self.field = field
        self.value = value
        super().__init__(f"A user with {field} '{value}' already exists")


class UserStore(ABC):
    """Persistence contract consumed by the sync components."""

    @abstractmethod
    def find_by_id(self, user_id: str) -> Optional[LocalUser]:
        ...

    @abstractmethod
    def find_by_username(self, username: str) -> Optional[LocalUser]:
        ...

    @abstractmethod
    def find_by_email(self, email: str) -> Optional[LocalUser]:
        ...

    @abstractmethod
    def insert(self, user: LocalUser) -> LocalUser:
        """Persist a new user; raise DuplicateUserError if username/email is taken."""

    @abstractmethod
    def save(self, user: LocalUser) -> LocalUser:
        """Upsert by id; raise DuplicateUserError if another id owns the username/email."""

    @abstractmethod
    def list_all(self) -> list[LocalUser]:
        ...

    @abstractmethod
    def delete(self, user_id: str) -> bool:
        """Remove by id. Returns False when nothing was stored under that id."""

    def count(self) -> int:
        return len(self.list_all())


class InMemoryUserStore(UserStore):
    """Thread-safe dictionary-backed store with unique username/email indexes.

    Records are copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._users: dict[str, LocalUser] = {}
        self._by_username: dict[str, str] = {}
        self._by_email: dict[str, str] = {}

    def find_by_id(self, user_id: str) -> Optional[LocalUser]:
        with self._lock:
            user = self._users.get(user_id)
            return user.copy() if user else None

    def find_by_username(self, username: str) -> Optional[LocalUser]:
        with self._lock:
            user_id = self._by_username.get(username)
            return self._users[user_id].copy() if user_id else None

    def find_by_email(self, email: str) -> Optional[LocalUser]:
        if not email:
            return None
        with self._lock:
            user_id = self._by_email.get(email.lower())
            return self._users[user_id].copy() if user_id else None

    def insert(self, user: LocalUser) -> LocalUser:
        with self._lock:
            if user.id in self._users or user.username in self._by_username:
                raise DuplicateUserError("username", user.username)
            self._check_email(user)
            self._store(user)
            return user.copy()

    def save(self, user: LocalUser) -> LocalUser:
        with self._lock:
            owner = self._by_username.get(user.username)
            if owner is not None and owner != user.id:
                raise DuplicateUserError("username", user.username)
            self._check_email(user)
            previous = self._users.get(user.id)
            if previous is not None:
                self._unindex(previous)
            self._store(user)
            return user.copy()

    def list_all(self) -> list[LocalUser]:
        with self._lock:
            return [user.copy() for user in self._users.values()]

    def delete(self, user_id: str) -> bool:
        with self._lock:
            user = self._users.pop(user_id, None)
            if user is None:
                return False
            self._unindex(user)
            return True

    def count(self) -> int:
        with self._lock:
            return len(self._users)

    def _check_email(self, user: LocalUser) -> None:
        if not user.email:
            return
        owner = self._by_email.get(user.email.lower())
        if owner is not None and owner != user.id:
            raise DuplicateUserError("email", user.email)

    def _store(self, user: LocalUser) -> None:
        stored = user.copy()
        self._users[stored.id] = stored
        self._by_username[stored.username] = stored.id
        if stored.email:
            self._by_email[stored.email.lower()] = stored.id

    def _unindex(self, user: LocalUser) -> None:
        if self._by_username.get(user.username) == user.id:
            del self._by_username[user.username]
        if user.email and self._by_email.get(user.email.lower()) == user.id:
            del self._by_email[user.email.lower()]


class JsonFileUserStore(InMemoryUserStore):
    """In-memory store mirrored to a JSON document file.

    Every mutation rewrites the file atomically (temp file + rename). The
    file is loaded once at construction; it is not meant to be shared by
    several processes.
    """

    def __init__(self, data_file: str | Path):
        super().__init__()
        self.data_file = Path(data_file)
        self.data_file.parent.mkdir(parents=True, exist_ok=True)
        if self.data_file.exists():
            self._load()
        else:
            self._flush()

    def insert(self, user: LocalUser) -> LocalUser:
        with self._lock:
            snapshot = self._snapshot()
            stored = super().insert(user)
            self._commit(snapshot)
            return stored

    def save(self, user: LocalUser) -> LocalUser:
        with self._lock:
            snapshot = self._snapshot()
            stored = super().save(user)
            self._commit(snapshot)
            return stored

    def delete(self, user_id: str) -> bool:
        with self._lock:
            snapshot = self._snapshot()
            removed = super().delete(user_id)
            if removed:
                self._commit(snapshot)
            return removed

    def _snapshot(self) -> tuple[dict[str, LocalUser], dict[str, str], dict[str, str]]:
        # Stored records are replaced, never mutated, so shallow copies suffice
        return dict(self._users), dict(self._by_username), dict(self._by_email)

    def _commit(self, snapshot) -> None:
        """Write the file; if that fails, put memory back to ``snapshot`` and re-raise."""
        try:
            self._flush()
        except (OSError, TypeError, ValueError):
            self._users, self._by_username, self._by_email = snapshot
            raise

    def _load(self) -> None:
        with open(self.data_file, "r", encoding="utf-8") as f:
            documents = json.load(f)
        for document in documents.values():
            self._store(LocalUser.from_dict(document))

    def _flush(self) -> None:
        documents = {user_id: user.to_dict(include_all=True) for user_id, user in self._users.items()}
        temp_file = self.data_file.with_suffix(".tmp")
        with open(temp_file, "w", encoding="utf-8") as f:
            json.dump(documents, f, indent=2, ensure_ascii=False)
        temp_file.replace(self.data_file)
