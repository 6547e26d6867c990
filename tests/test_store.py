"""Unit tests for auth/store.py -- SQLAlchemy Core persistence.

Covers:
- UNIQUE(username) is the authority for DuplicateUsername
- add_experience() creates the row lazily and re-derives level from the total
- Driver failures surface as StoreUnavailable, never as raw DBAPI errors
- Timestamps serialize to a fixed-width format that sorts chronologically
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from auth.errors import DuplicateUsername, StoreUnavailable
from auth.models import User
from auth.store import AuthStore, from_iso, to_iso
from core.progression import level_for


def _level_of(xp: int) -> int:
    return level_for((0, 100, 500), xp)


class TestUsers:
    def test_duplicate_username(self, store: AuthStore) -> None:
        store.create_user(User(username="alice", password_hash="x"))
        with pytest.raises(DuplicateUsername):
            store.create_user(User(username="alice", password_hash="y"))

    def test_list_users_sorted(self, store: AuthStore) -> None:
        for name in ("carol", "alice", "bob"):
            store.create_user(User(username=name, password_hash="x"))
        assert [u.username for u in store.list_users()] == ["alice", "bob", "carol"]

    def test_update_missing_user(self, store: AuthStore) -> None:
        assert store.update_password_hash(999, "x") is False


class TestProgress:
    def test_add_experience_creates_row(self, store: AuthStore) -> None:
        assert store.get_progress(1, "publishing") is None
        progress = store.add_experience(1, "publishing", 150, _level_of)
        assert (progress.level, progress.experience) == (1, 150)
        assert progress.updated_at

    def test_add_experience_accumulates(self, store: AuthStore) -> None:
        store.add_experience(1, "publishing", 150, _level_of)
        progress = store.add_experience(1, "publishing", 400, _level_of)
        assert (progress.level, progress.experience) == (2, 550)
        assert len(store.list_progress(1)) == 1

    def test_put_progress_upserts(self, store: AuthStore) -> None:
        store.put_progress(1, "publishing", 1, 100)
        progress = store.put_progress(1, "publishing", 2, 500)
        assert (progress.level, progress.experience) == (2, 500)
        assert len(store.list_progress(1)) == 1


class TestFailures:
    def test_driver_error_becomes_store_unavailable(self, store: AuthStore) -> None:
        with store.engine.begin() as conn:
            conn.execute(text("DROP TABLE users"))
        with pytest.raises(StoreUnavailable):
            store.get_by_username("alice")

    def test_ping(self, store: AuthStore) -> None:
        assert store.ping() is True
        with store.engine.begin() as conn:
            conn.execute(text("DROP TABLE users"))
        assert store.ping() is False


class TestTimestamps:
    def test_fixed_width_round_trip(self) -> None:
        moment = datetime(2024, 5, 1, 8, 30, tzinfo=timezone.utc)
        encoded = to_iso(moment)
        assert encoded == "2024-05-01T08:30:00.000000+00:00"
        assert from_iso(encoded) == moment

    def test_string_order_matches_time_order(self) -> None:
        base = datetime(2024, 5, 1, tzinfo=timezone.utc)
        moments = [base + timedelta(microseconds=n) for n in (0, 1, 999_999, 1_000_000)]
        encoded = [to_iso(m) for m in moments]
        assert encoded == sorted(encoded)

    def test_non_utc_input_normalized(self) -> None:
        plus_two = timezone(timedelta(hours=2))
        assert to_iso(datetime(2024, 5, 1, 10, 0, tzinfo=plus_two)).startswith("2024-05-01T08:00:00")
