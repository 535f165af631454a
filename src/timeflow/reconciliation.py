"""Session reconciliation: turns finished timer intervals into persisted aggregates.

A completion runs three steps in order, each awaiting the previous one:

    1. insert the Session row
    2. fetch-then-upsert today's DailyProgress
    3. bump the Streak if the goal flipped false -> true today

The steps are not atomic as a unit. ``PendingCommit`` records which steps
already landed so a retry resumes where the last attempt stopped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from timeflow.errors import PersistenceError, ReconciliationError, ValidationError
from timeflow.models import (
    DEFAULT_CATEGORY,
    DEFAULT_GOAL_MINUTES,
    DailyProgress,
    PendingCommit,
    Session,
    Streak,
)
from timeflow.store import SqliteStore

logger = logging.getLogger("timeflow.reconciliation")


@dataclass
class ProgressUpdate:
    progress: DailyProgress
    previous_goal_completed: bool

    @property
    def goal_just_completed(self) -> bool:
        return self.progress.goal_completed and not self.previous_goal_completed


@dataclass
class CompletionResult:
    minutes: int
    progress: Optional[DailyProgress] = None
    streak: Optional[Streak] = None

    @property
    def goal_achieved(self) -> bool:
        return self.streak is not None


def effective_streak(streak: Streak, today: date) -> Streak:
    """Streak as it stands today: a day without completion after lastActiveDate breaks it."""
    if streak.last_active_date is not None and streak.last_active_date < today - timedelta(days=1):
        return replace(streak, current_streak=0)
    return streak


class ReconciliationService:
    """Single choke point for Session / DailyProgress / Streak mutations."""

    def __init__(
        self,
        store: SqliteStore,
        clock: Callable[[], datetime] = datetime.now,
        default_goal_minutes: int = DEFAULT_GOAL_MINUTES,
    ):
        self.store = store
        self._clock = clock
        self.default_goal_minutes = default_goal_minutes
        self._owner_locks: dict[str, asyncio.Lock] = {}

    def today(self) -> date:
        return self._clock().date()

    def _lock_for(self, owner_id: str) -> asyncio.Lock:
        lock = self._owner_locks.get(owner_id)
        if lock is None:
            lock = self._owner_locks[owner_id] = asyncio.Lock()
        return lock

    # ---- Primitive steps ----

    async def record_session(
        self,
        owner_id: str,
        minutes: int,
        completed: bool,
        category: str = DEFAULT_CATEGORY,
        notes: str = "",
        commit_id: str | None = None,
    ) -> bool:
        """Insert one Session. Returns False when the commit_id was already recorded."""
        if minutes < 1:
            raise ValidationError(f"session minutes must be >= 1, got {minutes}")
        inserted = await self.store.insert_session(
            Session(
                owner_id=owner_id,
                duration=minutes,
                completed=completed,
                category=category,
                notes=notes,
                created_at=self._clock(),
                commit_id=commit_id,
            )
        )
        kind = "complete" if completed else "partial"
        if inserted:
            logger.info(f"Recorded {kind} session for {owner_id}: {minutes} min")
        else:
            logger.info(f"Skipped duplicate {kind} session for {owner_id} (commit {commit_id})")
        return inserted

    async def update_daily_progress(
        self, owner_id: str, minutes_delta: int, goal_minutes: int | None = None
    ) -> ProgressUpdate:
        if minutes_delta < 0:
            raise ValidationError(f"minutes delta must be >= 0, got {minutes_delta}")
        if goal_minutes is not None and goal_minutes < 1:
            raise ValidationError(f"goal must be >= 1 minute, got {goal_minutes}")

        today = self.today()
        existing = await self.store.get_daily_progress(owner_id, today)
        if existing is None:
            goal = goal_minutes or self.default_goal_minutes
            record = DailyProgress(
                owner_id=owner_id,
                date=today,
                minutes_completed=minutes_delta,
                goal_minutes=goal,
                goal_completed=minutes_delta >= goal,
            )
            previous = False
        else:
            goal = goal_minutes or existing.goal_minutes
            new_minutes = existing.minutes_completed + minutes_delta
            record = replace(
                existing,
                minutes_completed=new_minutes,
                goal_minutes=goal,
                goal_completed=new_minutes >= goal,
            )
            previous = existing.goal_completed

        saved = await self.store.upsert_daily_progress(record)
        logger.info(
            f"Daily progress for {owner_id} on {today}: "
            f"{saved.minutes_completed}/{saved.goal_minutes} min"
        )
        return ProgressUpdate(progress=saved, previous_goal_completed=previous)

    async def update_streak(
        self, owner_id: str, goal_just_completed: bool, was_already_completed_today: bool
    ) -> Optional[Streak]:
        """Bump the streak on the first goal completion of the day. Returns the new streak or None."""
        if not goal_just_completed or was_already_completed_today:
            return None

        today = self.today()
        current = await self.store.get_streak(owner_id) or Streak(owner_id=owner_id)
        if current.last_active_date == today:
            return None

        current = effective_streak(current, today)
        new_value = current.current_streak + 1
        updated = replace(
            current,
            current_streak=new_value,
            max_streak=max(current.max_streak, new_value),
            last_active_date=today,
        )
        saved = await self.store.upsert_streak(updated)
        logger.info(f"Streak for {owner_id} is now {saved.current_streak} (max {saved.max_streak})")
        return saved

    # ---- Composite flows ----

    async def record_partial(self, owner_id: str, minutes: int, commit_id: str | None = None) -> bool:
        """Record a paused/reset interval. Partials only write the Session row."""
        try:
            return await self.record_session(
                owner_id, minutes, completed=False, notes="Partial session", commit_id=commit_id
            )
        except PersistenceError as e:
            raise ReconciliationError("session", e) from e

    async def record_completion(
        self, owner_id: str, commit: PendingCommit, goal_minutes: int | None = None
    ) -> CompletionResult:
        """Apply a natural completion, resuming at the first step not yet landed."""
        result = CompletionResult(minutes=commit.minutes)
        async with self._lock_for(owner_id):
            if not commit.session_recorded:
                try:
                    await self.record_session(
                        owner_id,
                        commit.minutes,
                        completed=True,
                        notes="Completed session",
                        commit_id=commit.commit_id,
                    )
                except PersistenceError as e:
                    raise ReconciliationError("session", e) from e
                commit.session_recorded = True

            if not commit.progress_applied:
                try:
                    update = await self.update_daily_progress(owner_id, commit.minutes, goal_minutes)
                except PersistenceError as e:
                    raise ReconciliationError("daily_progress", e) from e
                commit.progress_applied = True
                commit.goal_completed = update.progress.goal_completed
                commit.was_already_completed = update.previous_goal_completed
                result.progress = update.progress

            try:
                result.streak = await self.update_streak(
                    owner_id, commit.goal_completed, commit.was_already_completed
                )
            except PersistenceError as e:
                raise ReconciliationError("streak", e) from e
        return result

    # ---- Read-time streak handling ----

    async def current_streak(self, owner_id: str) -> Streak:
        """Streak with break detection applied, without writing."""
        stored = await self.store.get_streak(owner_id)
        if stored is None:
            return Streak(owner_id=owner_id)
        return effective_streak(stored, self.today())

    async def sweep_broken_streaks(self) -> int:
        """Persist the reset for every streak whose chain was broken. Returns rows touched."""
        today = self.today()
        touched = 0
        for streak in await self.store.list_streaks():
            if streak.current_streak == 0:
                continue
            effective = effective_streak(streak, today)
            if effective.current_streak != streak.current_streak:
                await self.store.upsert_streak(effective)
                touched += 1
        if touched:
            logger.info(f"Reset {touched} broken streak(s)")
        return touched
