"""Records persisted by the store and the transient timer state.

Dates are ``datetime.date`` in the owner's local time zone; timestamps are
naive local ``datetime`` values. Serialisation helpers produce the snake_case
rows used by the store and the camelCase snapshot used for reload recovery.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime

DEFAULT_GOAL_MINUTES = 60
DEFAULT_CATEGORY = "default"


def new_commit_id() -> str:
    return uuid.uuid4().hex


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class Session:
    """One immutable focus interval, written once when the interval ends."""

    owner_id: str
    duration: int
    completed: bool
    category: str = DEFAULT_CATEGORY
    notes: str = ""
    created_at: datetime | None = None
    commit_id: str | None = None


@dataclass
class DailyProgress:
    owner_id: str
    date: date
    minutes_completed: int = 0
    goal_minutes: int = DEFAULT_GOAL_MINUTES
    goal_completed: bool = False

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "minutes_completed": self.minutes_completed,
            "goal_minutes": self.goal_minutes,
            "goal_completed": self.goal_completed,
        }


@dataclass
class Streak:
    owner_id: str
    current_streak: int = 0
    max_streak: int = 0
    last_active_date: date | None = None

    def to_dict(self) -> dict:
        return {
            "current_streak": self.current_streak,
            "max_streak": self.max_streak,
            "last_active_date": self.last_active_date.isoformat() if self.last_active_date else None,
        }


@dataclass
class UserSettings:
    owner_id: str
    daily_goal_minutes: int = DEFAULT_GOAL_MINUTES


@dataclass
class PendingCommit:
    """A completion whose reconciliation has not fully landed yet.

    Each flag flips only after its step succeeded, so a retry resumes at the
    first step that did not land instead of replaying the whole sequence.
    """

    commit_id: str
    minutes: int
    session_recorded: bool = False
    progress_applied: bool = False
    goal_completed: bool = False
    was_already_completed: bool = False

    def to_dict(self) -> dict:
        return {
            "commitId": self.commit_id,
            "minutes": self.minutes,
            "sessionRecorded": self.session_recorded,
            "progressApplied": self.progress_applied,
            "goalCompleted": self.goal_completed,
            "wasAlreadyCompleted": self.was_already_completed,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PendingCommit":
        return cls(
            commit_id=data["commitId"],
            minutes=int(data["minutes"]),
            session_recorded=bool(data.get("sessionRecorded", False)),
            progress_applied=bool(data.get("progressApplied", False)),
            goal_completed=bool(data.get("goalCompleted", False)),
            was_already_completed=bool(data.get("wasAlreadyCompleted", False)),
        )


@dataclass
class TimerSessionState:
    """Live state of one countdown, mirrored to the durable snapshot while active.

    ``last_update_time`` is the moment ``seconds_left`` was last known to be
    exact (start, tick, pause, restore). ``window_start_time`` opens the
    uncommitted elapsed-time window that pause/reset turn into a partial
    session; ``accumulated_seconds`` carries sub-minute leftovers of earlier
    windows. ``commit_id`` identifies the open window so a retried insert is
    deduplicated by the store. ``pending_completions`` holds completions whose
    reconciliation failed and must be re-attempted.
    """

    active: bool = False
    paused: bool = False
    session_duration: int = 25
    seconds_left: int = 25 * 60
    start_time: datetime | None = None
    accumulated_seconds: int = 0
    last_update_time: datetime | None = None
    window_start_time: datetime | None = None
    commit_id: str = field(default_factory=new_commit_id)
    pending_completions: list[PendingCommit] = field(default_factory=list)

    def to_snapshot(self) -> dict:
        return {
            "active": self.active,
            "paused": self.paused,
            "sessionDuration": self.session_duration,
            "secondsLeft": self.seconds_left,
            "startTime": _iso(self.start_time),
            "accumulatedTime": self.accumulated_seconds,
            "lastUpdateTime": _iso(self.last_update_time),
            "windowStartTime": _iso(self.window_start_time),
            "commitId": self.commit_id,
            "pendingCompletions": [p.to_dict() for p in self.pending_completions],
        }

    @classmethod
    def from_snapshot(cls, data: dict) -> "TimerSessionState":
        last_update = _parse_dt(data.get("lastUpdateTime"))
        return cls(
            active=bool(data.get("active", False)),
            paused=bool(data.get("paused", False)),
            session_duration=int(data["sessionDuration"]),
            seconds_left=int(data["secondsLeft"]),
            start_time=_parse_dt(data.get("startTime")),
            accumulated_seconds=int(data.get("accumulatedTime", 0)),
            last_update_time=last_update,
            window_start_time=_parse_dt(data.get("windowStartTime")) or last_update,
            commit_id=data.get("commitId") or new_commit_id(),
            pending_completions=[PendingCommit.from_dict(p) for p in data.get("pendingCompletions") or []],
        )
