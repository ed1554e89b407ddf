import datetime
import threading
from unittest.mock import Mock

import pytest

from user_service.core.errors import MissingIdentityError, ReconciliationConflictError
from user_service.core import models, reconciliation
from user_service.core.models import IdentityClaims, LocalUser, UserType
from user_service.core.reconciliation import ReconciliationEngine, diff_claims
from user_service.core.store import DuplicateUserError, InMemoryUserStore


class CountingStore(InMemoryUserStore):
    """In-memory store that counts writes."""

    def __init__(self):
        super().__init__()
        self.writes = 0

    def insert(self, user):
        self.writes += 1
        return super().insert(user)

    def save(self, user):
        self.writes += 1
        return super().save(user)


@pytest.fixture
def counting_store():
    return CountingStore()


@pytest.fixture
def engine(counting_store):
    return ReconciliationEngine(counting_store)


def test_first_sight_creates_user(engine, counting_store):
    user = engine.reconcile(IdentityClaims("alice", "alice@example.com", "Alice Liddell", frozenset({"user"})))
    assert user.username == "alice"
    assert user.email == "alice@example.com"
    assert user.display_name == "Alice Liddell"
    assert user.user_type == UserType.REAL_USER
    assert user.is_verified and user.is_active and user.is_logged_in
    assert counting_store.writes == 1
    assert counting_store.find_by_username("alice") == user


def test_first_sight_defaults_display_name_to_username(engine):
    user = engine.reconcile(IdentityClaims("bob"))
    assert user.display_name == "bob"
    assert user.email == ""


def test_reconcile_is_idempotent(engine, counting_store):
    claims = IdentityClaims("alice", "alice@example.com", "Alice", frozenset({"character"}))
    first = engine.reconcile(claims)
    second = engine.reconcile(claims)
    assert second == first
    assert counting_store.writes == 1


def test_role_change_updates_user_type_once(engine, counting_store, monkeypatch):
    """nguyen signs in as a character, is promoted to admin, then signs in again."""
    signed_up = datetime.datetime(2026, 3, 1, 9, 0, tzinfo=datetime.timezone.utc)
    promoted_at = signed_up + datetime.timedelta(minutes=5)
    monkeypatch.setattr(reconciliation, "utcnow", lambda: signed_up)
    monkeypatch.setattr(models, "utcnow", lambda: promoted_at)

    character = engine.reconcile(IdentityClaims("nguyen", "n@example.com", "Nguyen", frozenset({"character"})))
    assert character.user_type == UserType.CHARACTER

    promoted = engine.reconcile(IdentityClaims("nguyen", "n@example.com", "Nguyen", frozenset({"character", "admin"})))
    assert promoted.user_type == UserType.ADMIN
    assert promoted.id == character.id
    assert character.updated_at == signed_up
    assert promoted.updated_at == promoted_at
    assert promoted.created_at == character.created_at

    unchanged = engine.reconcile(IdentityClaims("nguyen", "n@example.com", "Nguyen", frozenset({"admin"})))
    assert unchanged == promoted
    assert counting_store.writes == 2


def test_email_and_display_name_follow_claims(engine):
    engine.reconcile(IdentityClaims("alice", "old@example.com", "Old Name"))
    user = engine.reconcile(IdentityClaims("alice", "new@example.com", "New Name"))
    assert user.email == "new@example.com"
    assert user.display_name == "New Name"


def test_absent_claims_never_clear_local_values(engine, counting_store):
    engine.reconcile(IdentityClaims("alice", "alice@example.com", "Alice"))
    user = engine.reconcile(IdentityClaims("alice"))
    assert user.email == "alice@example.com"
    assert user.display_name == "Alice"
    assert counting_store.writes == 1


def test_profile_fields_are_not_touched(engine, counting_store):
    created = engine.reconcile(IdentityClaims("alice", "a@example.com"))
    created.bio = "likes tea"
    counting_store.save(created)

    user = engine.reconcile(IdentityClaims("alice", "b@example.com"))
    assert user.bio == "likes tea"


def test_updated_at_never_decreases(engine, counting_store):
    user = engine.reconcile(IdentityClaims("alice", "a@example.com"))
    user.updated_at = datetime.datetime(2100, 1, 1, tzinfo=datetime.timezone.utc)
    counting_store.save(user)

    updated = engine.reconcile(IdentityClaims("alice", "b@example.com"))
    assert updated.updated_at == datetime.datetime(2100, 1, 1, tzinfo=datetime.timezone.utc)


def test_missing_username_writes_nothing(engine, counting_store):
    with pytest.raises(MissingIdentityError):
        engine.reconcile_token({"email": "ghost@example.com", "realm_access": {"roles": ["admin"]}})
    assert counting_store.writes == 0
    assert counting_store.count() == 0


def test_reconcile_token_uses_client_role_fallback(counting_store):
    engine = ReconciliationEngine(counting_store, client_id="sss-backend")
    user = engine.reconcile_token({
        "preferred_username": "kakashi",
        "resource_access": {"sss-backend": {"roles": ["character"]}},
    })
    assert user.user_type == UserType.CHARACTER


def test_lost_insert_race_rereads_winner():
    winner = LocalUser(username="alice", email="alice@example.com", display_name="Alice")
    store = Mock()
    store.find_by_username.side_effect = [None, winner]
    store.insert.side_effect = DuplicateUserError("username", "alice")

    engine = ReconciliationEngine(store)
    user = engine.reconcile(IdentityClaims("alice", "alice@example.com", "Alice"))

    assert user is winner
    store.insert.assert_called_once()
    store.save.assert_not_called()


def test_persistent_conflict_raises_after_max_attempts():
    store = Mock()
    store.find_by_username.return_value = None
    store.insert.side_effect = DuplicateUserError("username", "alice")

    engine = ReconciliationEngine(store, max_attempts=3)
    with pytest.raises(ReconciliationConflictError) as exc:
        engine.reconcile(IdentityClaims("alice", "alice@example.com"))

    assert exc.value.username == "alice"
    assert exc.value.attempts == 3
    assert store.insert.call_count == 3


def test_concurrent_first_sign_in_creates_one_user():
    store = InMemoryUserStore()
    engine = ReconciliationEngine(store)
    claims = IdentityClaims("race", "race@example.com", "Race Condition")
    results = []
    barrier = threading.Barrier(6)

    def worker():
        barrier.wait()
        results.append(engine.reconcile(claims))

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.count() == 1
    assert len({user.id for user in results}) == 1


def test_diff_claims_only_reports_real_differences():
    user = LocalUser(username="alice", email="a@example.com", display_name="Alice")
    assert diff_claims(user, IdentityClaims("alice", "a@example.com", "Alice"), UserType.REAL_USER) == {}
    assert diff_claims(user, IdentityClaims("alice"), UserType.ADMIN) == {"user_type": UserType.ADMIN}


def test_email_taken_by_another_user_is_not_applied_on_update(engine, counting_store):
    counting_store.insert(LocalUser(username="alice", email="shared@example.com"))
    bob = counting_store.insert(LocalUser(username="bob", email="bob@example.com", display_name="Bob"))

    user = engine.reconcile(IdentityClaims("bob", "shared@example.com", "Robert", frozenset({"character"})))

    assert user.email == "bob@example.com"
    assert user.display_name == "Robert"
    assert user.user_type == UserType.CHARACTER
    assert counting_store.find_by_id(bob.id).display_name == "Robert"
    assert counting_store.find_by_username("alice").email == "shared@example.com"


def test_email_only_change_onto_taken_email_keeps_stored_user(engine, counting_store):
    counting_store.insert(LocalUser(username="alice", email="shared@example.com"))
    bob = counting_store.insert(LocalUser(username="bob", email="bob@example.com", display_name="Bob"))

    user = engine.reconcile(IdentityClaims("bob", "shared@example.com", "Bob"))

    assert user == bob


def test_first_sign_in_with_taken_email_creates_user_without_it(engine, counting_store):
    counting_store.insert(LocalUser(username="alice", email="shared@example.com"))

    carol = engine.reconcile(IdentityClaims("carol", "shared@example.com", "Carol"))

    assert carol.username == "carol"
    assert carol.email == ""
    assert counting_store.find_by_username("carol") is not None
    assert counting_store.find_by_email("shared@example.com").username == "alice"
