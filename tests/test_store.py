"""Tests for the SQLite persistence adapter, using a temp DB per test."""

from datetime import date, datetime

import aiosqlite
import pytest

from timeflow.errors import PersistenceError
from timeflow.models import DailyProgress, Session, Streak, UserSettings
from timeflow.store import SqliteStore

OWNER = "user-1"


def make_session(**overrides) -> Session:
    fields = dict(owner_id=OWNER, duration=25, completed=True, created_at=datetime(2026, 2, 11, 10, 0))
    fields.update(overrides)
    return Session(**fields)


class TestSchema:
    async def test_init_creates_tables(self, store, db_path):
        async with aiosqlite.connect(db_path) as db:
            cursor = await db.execute("SELECT name FROM sqlite_master WHERE type='table'")
            tables = {row[0] for row in await cursor.fetchall()}
        assert {"sessions", "daily_progress", "streaks", "user_settings"} <= tables

    async def test_init_is_idempotent(self, store):
        await store.init()
        assert await store.get_streak(OWNER) is None


class TestSessions:
    async def test_insert_and_list(self, store):
        assert await store.insert_session(make_session()) is True
        assert await store.insert_session(make_session(duration=3, completed=False)) is True

        everything = await store.list_sessions(OWNER)
        completed = await store.list_sessions(OWNER, completed_only=True)
        assert [s.duration for s in everything] == [25, 3]
        assert [s.duration for s in completed] == [25]

    async def test_duplicate_commit_id_is_ignored(self, store):
        assert await store.insert_session(make_session(commit_id="abc")) is True
        assert await store.insert_session(make_session(commit_id="abc")) is False
        assert len(await store.list_sessions(OWNER)) == 1

    async def test_sessions_are_per_owner(self, store):
        await store.insert_session(make_session())
        await store.insert_session(make_session(owner_id="someone-else"))
        assert len(await store.list_sessions(OWNER)) == 1


class TestDailyProgress:
    async def test_missing_row_is_none(self, store):
        assert await store.get_daily_progress(OWNER, date(2026, 2, 11)) is None

    async def test_upsert_creates_then_updates_one_row(self, store):
        day = date(2026, 2, 11)
        await store.upsert_daily_progress(DailyProgress(OWNER, day, 30, 60, False))
        await store.upsert_daily_progress(DailyProgress(OWNER, day, 70, 60, True))

        row = await store.get_daily_progress(OWNER, day)
        assert row == DailyProgress(OWNER, day, 70, 60, True)
        rows = await store.list_daily_progress(OWNER, day, day)
        assert len(rows) == 1

    async def test_list_range_is_inclusive_and_ordered(self, store):
        for d in (12, 10, 11, 14):
            await store.upsert_daily_progress(DailyProgress(OWNER, date(2026, 2, d), d))
        rows = await store.list_daily_progress(OWNER, date(2026, 2, 10), date(2026, 2, 12))
        assert [r.date.day for r in rows] == [10, 11, 12]


class TestStreaksAndSettings:
    async def test_streak_roundtrip(self, store):
        await store.upsert_streak(Streak(OWNER, 3, 5, date(2026, 2, 10)))
        assert await store.get_streak(OWNER) == Streak(OWNER, 3, 5, date(2026, 2, 10))
        assert len(await store.list_streaks()) == 1

    async def test_settings_roundtrip(self, store):
        assert await store.get_settings(OWNER) is None
        await store.upsert_settings(UserSettings(OWNER, 90))
        await store.upsert_settings(UserSettings(OWNER, 45))
        assert (await store.get_settings(OWNER)).daily_goal_minutes == 45

    async def test_delete_all_user_data(self, store):
        day = date(2026, 2, 11)
        await store.insert_session(make_session())
        await store.upsert_daily_progress(DailyProgress(OWNER, day, 10))
        await store.upsert_streak(Streak(OWNER, 1, 1, day))
        await store.upsert_settings(UserSettings(OWNER, 90))
        await store.insert_session(make_session(owner_id="other"))

        await store.delete_all_user_data(OWNER)

        assert await store.list_sessions(OWNER) == []
        assert await store.get_daily_progress(OWNER, day) is None
        assert await store.get_streak(OWNER) is None
        assert await store.get_settings(OWNER) is None
        assert len(await store.list_sessions("other")) == 1


class TestFailures:
    async def test_driver_errors_become_persistence_errors(self, tmp_path):
        # A directory where the DB file should be cannot be opened as a database
        bad_path = tmp_path / "not-a-db"
        bad_path.mkdir()
        broken = SqliteStore(bad_path)
        with pytest.raises(PersistenceError) as exc_info:
            await broken.get_streak(OWNER)
        assert exc_info.value.operation == "get_streak"
