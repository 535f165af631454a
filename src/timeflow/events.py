"""Notification boundary between the timer core and whatever presents it.

The core emits typed notifications; subscribers (HTTP event feed, terminal
client, sounds) decide how to render them.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Deque

logger = logging.getLogger("timeflow.events")


class NotificationKind(str, Enum):
    SESSION_STARTED = "session_started"
    SESSION_PAUSED = "session_paused"
    SESSION_RESUMED = "session_resumed"
    SESSION_RESET = "session_reset"
    SESSION_COMPLETED = "session_completed"
    GOAL_ACHIEVED = "goal_achieved"
    RECONCILIATION_FAILED = "reconciliation_failed"


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    owner_id: str | None = None
    minutes: int | None = None
    new_streak: int | None = None
    reason: str | None = None
    at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "owner_id": self.owner_id,
            "minutes": self.minutes,
            "new_streak": self.new_streak,
            "reason": self.reason,
            "at": self.at.isoformat(),
        }


Subscriber = Callable[[Notification], None]


class EventBus:
    """Fan-out of notifications to subscribers, keeping the most recent ones."""

    def __init__(self, history: int = 50):
        self._subscribers: list[Subscriber] = []
        self._recent: Deque[Notification] = deque(maxlen=history)

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a subscriber. Returns a callable that unsubscribes it."""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def emit(self, notification: Notification) -> None:
        self._recent.append(notification)
        for subscriber in list(self._subscribers):
            try:
                subscriber(notification)
            except Exception:
                # A broken renderer must not stop the timer
                logger.exception(f"Subscriber failed on {notification.kind.value}")

    def recent(self, owner_id: str | None, limit: int = 20) -> list[Notification]:
        """Latest notifications for one owner (``None`` is the local-only owner)."""
        items = [n for n in self._recent if n.owner_id == owner_id]
        return items[-limit:]
