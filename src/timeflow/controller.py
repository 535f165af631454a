"""Timer session controller: the stateful owner of one countdown.

Adds what the pure engine lacks: a 1-second ticker task, partial commits on
pause/reset, the completion path into reconciliation, and reload recovery
from the durable snapshot.

State machine:

    IDLE --start--> RUNNING --pause--> PAUSED --resume--> RUNNING
    RUNNING --tick(remaining == 0)--> COMPLETING --settled--> IDLE
    RUNNING/PAUSED --reset--> IDLE

COMPLETING is not re-entrant: no start is accepted until reconciliation of
the completion settles (successfully or not).
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from timeflow.countdown import (
    SECONDS_PER_MINUTE,
    CountdownEngine,
    CountdownEvent,
    format_countdown,
    validate_duration,
)
from timeflow.errors import PersistenceError, SnapshotError, TimerBusyError, ValidationError
from timeflow.events import EventBus, Notification, NotificationKind
from timeflow.models import PendingCommit, TimerSessionState, new_commit_id
from timeflow.reconciliation import ReconciliationService
from timeflow.snapshot import snapshot_key

logger = logging.getLogger("timeflow.controller")

DEFAULT_DURATION_MINUTES = 25


class TimerPhase(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETING = "completing"


class StartPolicy(str, Enum):
    """What ``start_timer`` does while a session is already active."""

    REJECT = "reject"
    RESET = "reset"


class TimerSessionController:
    """One countdown per owner, durable across reloads.

    ``owner_id=None`` is local-only mode: the timer runs but nothing is
    reconciled. ``autotick=False`` disables the background ticker so callers
    (tests) drive ``tick()`` themselves.
    """

    def __init__(
        self,
        owner_id: str | None,
        service: ReconciliationService | None,
        snapshots,
        *,
        bus: EventBus | None = None,
        clock: Callable[[], datetime] = datetime.now,
        goal_minutes: int | None = None,
        start_policy: StartPolicy | str = StartPolicy.REJECT,
        default_duration: int = DEFAULT_DURATION_MINUTES,
        tick_interval: float = 1.0,
        autotick: bool = True,
    ):
        self.owner_id = owner_id
        self.service = service
        self.snapshots = snapshots
        self.bus = bus or EventBus()
        self.goal_minutes = goal_minutes
        self.start_policy = StartPolicy(start_policy)
        self._clock = clock
        self._tick_interval = tick_interval
        self._autotick = autotick
        self._key = snapshot_key(owner_id)

        self.engine = CountdownEngine(default_duration)
        self.state = TimerSessionState(
            session_duration=default_duration,
            seconds_left=default_duration * SECONDS_PER_MINUTE,
        )
        self._completing = False
        # Bumped by discard() so an in-flight completion does not resurrect wiped state
        self._generation = 0
        # Partial inserts run one at a time
        self._commit_lock = asyncio.Lock()
        self._ticker: Optional[asyncio.Task] = None
        self._inflight: set[asyncio.Task] = set()

    # ---- Read-only views ----

    @property
    def reconciling(self) -> bool:
        return self.owner_id is not None and self.service is not None

    @property
    def phase(self) -> TimerPhase:
        if self._completing:
            return TimerPhase.COMPLETING
        if self.engine.running:
            return TimerPhase.RUNNING
        if self.engine.active:
            return TimerPhase.PAUSED
        return TimerPhase.IDLE

    def progress(self) -> float:
        return self.engine.progress()

    def status(self) -> dict:
        return {
            "owner_id": self.owner_id,
            "phase": self.phase.value,
            "active": self.engine.active,
            "paused": self.engine.paused,
            "session_duration": self.engine.duration_minutes,
            "seconds_left": self.engine.seconds_remaining,
            "display": format_countdown(self.engine.seconds_remaining),
            "progress": round(self.progress(), 2),
            "accumulated_seconds": self.state.accumulated_seconds,
            "pending_completions": len(self.state.pending_completions),
        }

    # ---- Controls ----

    async def start_timer(self, duration: int | None = None) -> None:
        duration = validate_duration(self.state.session_duration if duration is None else duration)
        if self._completing:
            raise TimerBusyError("The previous session is still being saved")
        if self.engine.active:
            if self.start_policy is StartPolicy.REJECT:
                raise TimerBusyError("A session is already active")
            await self.reset_timer()

        if self.state.pending_completions and self.reconciling:
            await self.retry_pending()

        now = self._clock()
        self.engine.start(duration)
        self.state = TimerSessionState(
            active=True,
            paused=False,
            session_duration=duration,
            seconds_left=self.engine.seconds_remaining,
            start_time=now,
            accumulated_seconds=0,
            last_update_time=now,
            window_start_time=now,
            pending_completions=self.state.pending_completions,
        )
        self._save()
        logger.info(f"Timer started for {self._who()}: {duration} min")
        self._emit(NotificationKind.SESSION_STARTED, minutes=duration)
        self._start_ticker()

    async def pause_timer(self) -> bool:
        """Pause a running timer and commit the elapsed window if it reached a minute."""
        if not self.engine.running:
            return False
        now = self._clock()
        elapsed = self._window_elapsed(now)
        self.engine.pause()
        self._stop_ticker()
        self.state.paused = True
        self.state.seconds_left = self.engine.seconds_remaining
        self.state.last_update_time = now
        self._save()

        await self._commit_window(now, elapsed)
        logger.info(f"Timer paused for {self._who()} at {format_countdown(self.engine.seconds_remaining)}")
        self._emit(NotificationKind.SESSION_PAUSED)
        return True

    async def resume_timer(self) -> bool:
        if not self.engine.resume():
            return False
        now = self._clock()
        self.state.paused = False
        self.state.last_update_time = now
        self.state.window_start_time = now
        self._save()
        logger.info(f"Timer resumed for {self._who()}")
        self._emit(NotificationKind.SESSION_RESUMED)
        self._start_ticker()
        return True

    async def reset_timer(self) -> bool:
        """Commit what has elapsed, then return to IDLE and drop the snapshot."""
        if not self.engine.active or self._completing:
            return False
        now = self._clock()
        elapsed = self._window_elapsed(now) if self.engine.running else 0
        self._stop_ticker()
        await self._commit_window(now, elapsed)

        self.engine.reset()
        self.state = TimerSessionState(
            session_duration=self.engine.duration_minutes,
            seconds_left=self.engine.seconds_remaining,
            pending_completions=self.state.pending_completions,
        )
        self._save()
        logger.info(f"Timer reset for {self._who()}")
        self._emit(NotificationKind.SESSION_RESET)
        return True

    def update_session_duration(self, duration: int) -> bool:
        """Reconfigure the next session's duration. Ignored while a session is active."""
        if not self.engine.set_duration(duration):
            return False
        self.state.session_duration = duration
        self.state.seconds_left = self.engine.seconds_remaining
        return True

    async def tick(self) -> list[CountdownEvent]:
        """Advance one second; runs the completion path when the countdown hits zero."""
        if not self.engine.running:
            return []
        events = self.engine.tick()
        self.state.seconds_left = self.engine.seconds_remaining
        self.state.last_update_time = self._clock()
        if CountdownEvent.COMPLETED in events:
            await self._complete(self.state.session_duration)
        else:
            self._save()
        return events

    async def discard(self) -> None:
        """Drop all timer state without committing anything (bulk data reset)."""
        self._generation += 1
        self._stop_ticker()
        self.engine.reset()
        self.state = TimerSessionState(
            session_duration=self.engine.duration_minutes,
            seconds_left=self.engine.seconds_remaining,
        )
        self.snapshots.erase(self._key)

    # ---- Completion ----

    async def _complete(self, duration: int) -> bool:
        """Run the completion path. Returns True when the completion was settled."""
        # A natural completion credits the full configured duration
        self._completing = True
        self._stop_ticker()
        generation = self._generation
        state = self.state
        commit = PendingCommit(commit_id=state.commit_id, minutes=duration)
        state.active = False
        state.paused = False
        state.seconds_left = 0
        state.pending_completions.append(commit)
        self._save()

        settled = False
        try:
            if self.reconciling:
                settled = await self._apply_completion(state, commit)
            else:
                state.pending_completions.remove(commit)
                self._emit(NotificationKind.SESSION_COMPLETED, minutes=duration)
                settled = True
        finally:
            self._completing = False
            # discard() ran meanwhile: its fresh state wins and nothing is carried over
            if generation == self._generation:
                self.engine.reset()
                self.state = TimerSessionState(
                    session_duration=duration,
                    seconds_left=duration * SECONDS_PER_MINUTE,
                    pending_completions=state.pending_completions,
                )
                self._save()
        return settled

    async def _apply_completion(self, state: TimerSessionState, commit: PendingCommit) -> bool:
        try:
            result = await self.service.record_completion(self.owner_id, commit, self.goal_minutes)
        except PersistenceError as e:
            logger.error(f"Completion of {commit.minutes} min for {self._who()} not saved: {e}")
            self._emit(NotificationKind.RECONCILIATION_FAILED, minutes=commit.minutes, reason=str(e))
            return False

        if commit in state.pending_completions:
            state.pending_completions.remove(commit)
        logger.info(f"Session complete for {self._who()}: {commit.minutes} min")
        self._emit(NotificationKind.SESSION_COMPLETED, minutes=commit.minutes)
        if result.streak is not None:
            self._emit(NotificationKind.GOAL_ACHIEVED, new_streak=result.streak.current_streak)
        return True

    async def retry_pending(self) -> int:
        """Re-attempt completions whose reconciliation failed. Returns how many landed."""
        if not self.reconciling:
            return 0
        state = self.state
        landed = 0
        for commit in list(state.pending_completions):
            if not await self._apply_completion(state, commit):
                break
            landed += 1
        self._save()
        return landed

    # ---- Partial commits ----

    def _window_elapsed(self, now: datetime) -> int:
        start = self.state.window_start_time
        if start is None:
            return 0
        return max(0, int((now - start).total_seconds()))

    async def _commit_window(self, now: datetime, elapsed: int) -> bool:
        """Fold the closed window into the carried seconds and commit whole minutes.

        Sub-minute totals are carried, never written. On failure the carried
        seconds and the window's commit_id are kept so the next pause/reset
        re-attempts the same uncommitted time. Folding happens immediately;
        the insert and the credit that follows it run one at a time, reading
        the carried total and commit_id as they stand once the lock is held.
        """
        state = self.state
        state.accumulated_seconds += elapsed
        state.window_start_time = now
        if not self.reconciling:
            self._save()
            return False

        async with self._commit_lock:
            minutes = state.accumulated_seconds // SECONDS_PER_MINUTE
            if minutes < 1:
                self._save()
                return False
            try:
                await self.service.record_partial(self.owner_id, minutes, commit_id=state.commit_id)
            except PersistenceError as e:
                logger.warning(f"Partial commit of {minutes} min for {self._who()} failed: {e}")
                self._emit(NotificationKind.RECONCILIATION_FAILED, minutes=minutes, reason=str(e))
                self._save()
                return False

            # A duplicate (already recorded) window counts as credited too
            state.accumulated_seconds -= minutes * SECONDS_PER_MINUTE
            state.commit_id = new_commit_id()
            self._save()
            return True

    # ---- Reload recovery ----

    async def restore(self) -> TimerPhase:
        """Rebuild state from the durable snapshot, replaying time spent away."""
        try:
            data = self.snapshots.read(self._key)
            if data is None:
                return self.phase
            state = TimerSessionState.from_snapshot(data)
            validate_duration(state.session_duration)
        except (SnapshotError, ValidationError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding unreadable timer snapshot for {self._who()}: {e}")
            self.snapshots.erase(self._key)
            return self.phase

        self.state = state
        if state.active and not state.paused and state.last_update_time is not None:
            now = self._clock()
            away = max(0, int((now - state.last_update_time).total_seconds()))
            state.seconds_left = max(0, state.seconds_left - away)
            state.last_update_time = now
            if state.seconds_left == 0:
                logger.info(f"Timer for {self._who()} finished while away")
                self.engine.restore(state.session_duration, 0, active=False, paused=False)
                if await self._complete(state.session_duration):
                    await self.retry_pending()
                return self.phase

        self.engine.restore(state.session_duration, state.seconds_left, state.active, state.paused)
        if state.pending_completions:
            await self.retry_pending()
        self._save()
        logger.info(f"Timer restored for {self._who()}: {self.phase.value}, {state.seconds_left}s left")
        self._start_ticker()
        return self.phase

    def save_on_unload(self) -> Optional[asyncio.Task]:
        """Best-effort teardown: write the snapshot and fire one last partial commit.

        The commit is not awaited; the returned task may be given a short grace
        period by the caller but is allowed to fail or be cut off.
        """
        self._stop_ticker()
        self._save()
        if not (self.engine.running and self.reconciling):
            return None
        now = self._clock()
        task = asyncio.get_running_loop().create_task(self._commit_window(now, self._window_elapsed(now)))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    # ---- Internal ----

    def _who(self) -> str:
        return self.owner_id or "local"

    def _save(self) -> None:
        """Mirror state to the snapshot while active (or while completions are pending)."""
        if self.state.active or self.state.pending_completions:
            self.snapshots.write(self._key, self.state.to_snapshot())
        else:
            self.snapshots.erase(self._key)

    def _emit(self, kind: NotificationKind, **fields) -> None:
        self.bus.emit(Notification(kind=kind, owner_id=self.owner_id, at=self._clock(), **fields))

    def _start_ticker(self) -> None:
        if not self._autotick or not self.engine.running:
            return
        if self._ticker is not None and not self._ticker.done():
            return
        self._ticker = asyncio.get_running_loop().create_task(self._tick_loop())

    def _stop_ticker(self) -> None:
        task, self._ticker = self._ticker, None
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()

    async def _tick_loop(self) -> None:
        while self.engine.running:
            await asyncio.sleep(self._tick_interval)
            try:
                await self.tick()
            except Exception:
                logger.exception(f"Timer tick failed for {self._who()}")
