"""SQLite persistence adapter for sessions, daily progress, streaks and settings.

Every public method opens its own connection (busy_timeout set) and converts
driver failures into ``PersistenceError`` so callers see one failure type.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from pathlib import Path
from typing import AsyncIterator, Optional

import aiosqlite

from timeflow.errors import PersistenceError
from timeflow.models import DailyProgress, Session, Streak, UserSettings

logger = logging.getLogger("timeflow.store")


def _to_date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


def _progress_from_row(row: aiosqlite.Row) -> DailyProgress:
    return DailyProgress(
        owner_id=row["owner_id"],
        date=date.fromisoformat(row["date"]),
        minutes_completed=row["minutes_completed"],
        goal_minutes=row["goal_minutes"],
        goal_completed=bool(row["goal_completed"]),
    )


def _streak_from_row(row: aiosqlite.Row) -> Streak:
    return Streak(
        owner_id=row["owner_id"],
        current_streak=row["current_streak"],
        max_streak=row["max_streak"],
        last_active_date=_to_date(row["last_active_date"]),
    )


class SqliteStore:
    """Persistence adapter backed by a single SQLite file."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)

    @asynccontextmanager
    async def _connect(self, operation: str) -> AsyncIterator[aiosqlite.Connection]:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("PRAGMA busy_timeout=5000")
                db.row_factory = aiosqlite.Row
                yield db
        except (aiosqlite.Error, OSError) as e:
            logger.error(f"Store {operation} failed: {e}")
            raise PersistenceError(operation, str(e)) from e

    # ── Schema ─────────────────────────────────────────────────

    async def init(self) -> None:
        """Create tables. Safe to call on every startup."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._connect("init") as db:
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    commit_id TEXT UNIQUE,
                    owner_id TEXT NOT NULL,
                    duration INTEGER NOT NULL CHECK (duration >= 1),
                    completed INTEGER NOT NULL DEFAULT 0,
                    category TEXT NOT NULL DEFAULT 'default',
                    notes TEXT DEFAULT '',
                    created_at TEXT NOT NULL
                )
            """)
            await db.execute("CREATE INDEX IF NOT EXISTS idx_sessions_owner ON sessions(owner_id, created_at)")

            await db.execute("""
                CREATE TABLE IF NOT EXISTS daily_progress (
                    owner_id TEXT NOT NULL,
                    date TEXT NOT NULL,
                    minutes_completed INTEGER NOT NULL DEFAULT 0,
                    goal_minutes INTEGER NOT NULL DEFAULT 60,
                    goal_completed INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (owner_id, date)
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS streaks (
                    owner_id TEXT PRIMARY KEY,
                    current_streak INTEGER NOT NULL DEFAULT 0,
                    max_streak INTEGER NOT NULL DEFAULT 0,
                    last_active_date TEXT,
                    updated_at TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS user_settings (
                    owner_id TEXT PRIMARY KEY,
                    daily_goal_minutes INTEGER NOT NULL DEFAULT 60,
                    updated_at TEXT NOT NULL
                )
            """)
            await db.commit()
        logger.info(f"Database initialized at {self.db_path}")

    # ── Sessions ───────────────────────────────────────────────

    async def insert_session(self, session: Session) -> bool:
        """Insert one session. Returns False if its commit_id was already stored."""
        created_at = (session.created_at or datetime.now()).isoformat()
        async with self._connect("insert_session") as db:
            cursor = await db.execute(
                """INSERT OR IGNORE INTO sessions
                   (commit_id, owner_id, duration, completed, category, notes, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    session.commit_id,
                    session.owner_id,
                    session.duration,
                    int(session.completed),
                    session.category,
                    session.notes,
                    created_at,
                ),
            )
            await db.commit()
            return cursor.rowcount > 0

    async def list_sessions(self, owner_id: str, completed_only: bool = False) -> list[Session]:
        query = "SELECT * FROM sessions WHERE owner_id = ?"
        if completed_only:
            query += " AND completed = 1"
        query += " ORDER BY created_at"
        async with self._connect("list_sessions") as db:
            cursor = await db.execute(query, (owner_id,))
            rows = await cursor.fetchall()
        return [
            Session(
                owner_id=row["owner_id"],
                duration=row["duration"],
                completed=bool(row["completed"]),
                category=row["category"],
                notes=row["notes"] or "",
                created_at=datetime.fromisoformat(row["created_at"]),
                commit_id=row["commit_id"],
            )
            for row in rows
        ]

    # ── Daily progress ─────────────────────────────────────────

    async def get_daily_progress(self, owner_id: str, day: date) -> Optional[DailyProgress]:
        async with self._connect("get_daily_progress") as db:
            cursor = await db.execute(
                "SELECT * FROM daily_progress WHERE owner_id = ? AND date = ?",
                (owner_id, day.isoformat()),
            )
            row = await cursor.fetchone()
        return _progress_from_row(row) if row else None

    async def upsert_daily_progress(self, record: DailyProgress) -> DailyProgress:
        async with self._connect("upsert_daily_progress") as db:
            await db.execute(
                """INSERT INTO daily_progress
                   (owner_id, date, minutes_completed, goal_minutes, goal_completed, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(owner_id, date) DO UPDATE SET
                       minutes_completed = excluded.minutes_completed,
                       goal_minutes = excluded.goal_minutes,
                       goal_completed = excluded.goal_completed,
                       updated_at = excluded.updated_at""",
                (
                    record.owner_id,
                    record.date.isoformat(),
                    record.minutes_completed,
                    record.goal_minutes,
                    int(record.goal_completed),
                    datetime.now().isoformat(),
                ),
            )
            await db.commit()
        return record

    async def list_daily_progress(self, owner_id: str, start: date, end: date) -> list[DailyProgress]:
        """Rows with start <= date <= end, oldest first."""
        async with self._connect("list_daily_progress") as db:
            cursor = await db.execute(
                """SELECT * FROM daily_progress
                   WHERE owner_id = ? AND date BETWEEN ? AND ?
                   ORDER BY date""",
                (owner_id, start.isoformat(), end.isoformat()),
            )
            rows = await cursor.fetchall()
        return [_progress_from_row(row) for row in rows]

    # ── Streaks ────────────────────────────────────────────────

    async def get_streak(self, owner_id: str) -> Optional[Streak]:
        async with self._connect("get_streak") as db:
            cursor = await db.execute("SELECT * FROM streaks WHERE owner_id = ?", (owner_id,))
            row = await cursor.fetchone()
        return _streak_from_row(row) if row else None

    async def upsert_streak(self, record: Streak) -> Streak:
        async with self._connect("upsert_streak") as db:
            await db.execute(
                """INSERT INTO streaks (owner_id, current_streak, max_streak, last_active_date, updated_at)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(owner_id) DO UPDATE SET
                       current_streak = excluded.current_streak,
                       max_streak = excluded.max_streak,
                       last_active_date = excluded.last_active_date,
                       updated_at = excluded.updated_at""",
                (
                    record.owner_id,
                    record.current_streak,
                    record.max_streak,
                    record.last_active_date.isoformat() if record.last_active_date else None,
                    datetime.now().isoformat(),
                ),
            )
            await db.commit()
        return record

    async def list_streaks(self) -> list[Streak]:
        async with self._connect("list_streaks") as db:
            cursor = await db.execute("SELECT * FROM streaks")
            rows = await cursor.fetchall()
        return [_streak_from_row(row) for row in rows]

    # ── Settings ───────────────────────────────────────────────

    async def get_settings(self, owner_id: str) -> Optional[UserSettings]:
        async with self._connect("get_settings") as db:
            cursor = await db.execute("SELECT * FROM user_settings WHERE owner_id = ?", (owner_id,))
            row = await cursor.fetchone()
        if not row:
            return None
        return UserSettings(owner_id=row["owner_id"], daily_goal_minutes=row["daily_goal_minutes"])

    async def upsert_settings(self, record: UserSettings) -> UserSettings:
        async with self._connect("upsert_settings") as db:
            await db.execute(
                """INSERT INTO user_settings (owner_id, daily_goal_minutes, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(owner_id) DO UPDATE SET
                       daily_goal_minutes = excluded.daily_goal_minutes,
                       updated_at = excluded.updated_at""",
                (record.owner_id, record.daily_goal_minutes, datetime.now().isoformat()),
            )
            await db.commit()
        return record

    # ── Bulk reset ─────────────────────────────────────────────

    async def delete_all_user_data(self, owner_id: str) -> None:
        async with self._connect("delete_all_user_data") as db:
            for table in ("sessions", "daily_progress", "streaks", "user_settings"):
                await db.execute(f"DELETE FROM {table} WHERE owner_id = ?", (owner_id,))
            await db.commit()
        logger.info(f"Deleted all data for owner {owner_id}")
