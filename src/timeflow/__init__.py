"""Timeflow: focus sessions with daily goals, streaks and reload-safe timers."""

from .controller import StartPolicy, TimerPhase, TimerSessionController
from .countdown import CountdownEngine, CountdownEvent
from .errors import (
    PersistenceError,
    ReconciliationError,
    SnapshotError,
    TimeflowError,
    TimerBusyError,
    ValidationError,
)
from .events import EventBus, Notification, NotificationKind
from .reconciliation import ReconciliationService
from .snapshot import FileSnapshotStore, MemorySnapshotStore
from .store import SqliteStore

__all__ = [
    "CountdownEngine",
    "CountdownEvent",
    "EventBus",
    "FileSnapshotStore",
    "MemorySnapshotStore",
    "Notification",
    "NotificationKind",
    "PersistenceError",
    "ReconciliationError",
    "ReconciliationService",
    "SnapshotError",
    "SqliteStore",
    "StartPolicy",
    "TimeflowError",
    "TimerBusyError",
    "TimerPhase",
    "TimerSessionController",
    "ValidationError",
]
