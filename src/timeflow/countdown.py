"""Countdown engine — pure logic, no I/O.

All time values are integer seconds. The engine never reads a clock: one call
to ``tick()`` is one elapsed second, so tests drive it deterministically.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable

from timeflow.errors import ValidationError

SECONDS_PER_MINUTE = 60


class CountdownEvent(Enum):
    COMPLETED = "completed"


def format_countdown(seconds: int) -> str:
    """Format seconds as 'MM:SS' (minutes may exceed 59)."""
    seconds = max(0, seconds)
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


def validate_duration(duration_minutes: int) -> int:
    if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
        raise ValidationError(f"duration must be an integer number of minutes, got {duration_minutes!r}")
    if duration_minutes < 1:
        raise ValidationError(f"duration must be at least 1 minute, got {duration_minutes}")
    return duration_minutes


class CountdownEngine:
    """Second-by-second countdown with pause/resume and a one-shot completion.

    ``on_complete`` is invoked exactly once per ``start()``, on the tick that
    takes the remaining time from 1 to 0.
    """

    def __init__(self, duration_minutes: int = 25, on_complete: Callable[[], None] | None = None):
        self._duration_minutes: int = validate_duration(duration_minutes)
        self._seconds_remaining: int = duration_minutes * SECONDS_PER_MINUTE
        self._active: bool = False
        self._paused: bool = False
        self._completion_fired: bool = False
        self._on_complete = on_complete

    # ---- Read-only properties ----

    @property
    def duration_minutes(self) -> int:
        return self._duration_minutes

    @property
    def total_seconds(self) -> int:
        return self._duration_minutes * SECONDS_PER_MINUTE

    @property
    def seconds_remaining(self) -> int:
        return self._seconds_remaining

    @property
    def active(self) -> bool:
        return self._active

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def running(self) -> bool:
        return self._active and not self._paused

    # ---- Controls ----

    def start(self, duration_minutes: int) -> None:
        validate_duration(duration_minutes)
        self._duration_minutes = duration_minutes
        self._seconds_remaining = duration_minutes * SECONDS_PER_MINUTE
        self._active = True
        self._paused = False
        self._completion_fired = False

    def pause(self) -> bool:
        """Returns True if the engine transitioned to paused."""
        if not self._active or self._paused:
            return False
        self._paused = True
        return True

    def resume(self) -> bool:
        if not self._active or not self._paused:
            return False
        self._paused = False
        return True

    def reset(self) -> None:
        self._active = False
        self._paused = False
        self._seconds_remaining = self.total_seconds

    def set_duration(self, duration_minutes: int) -> bool:
        """Reconfigure the duration. Ignored while a countdown is active."""
        validate_duration(duration_minutes)
        if self._active:
            return False
        self._duration_minutes = duration_minutes
        self._seconds_remaining = duration_minutes * SECONDS_PER_MINUTE
        return True

    def restore(self, duration_minutes: int, seconds_remaining: int, active: bool, paused: bool) -> None:
        """Load externally persisted state (reload recovery). No completion is fired here."""
        validate_duration(duration_minutes)
        self._duration_minutes = duration_minutes
        self._seconds_remaining = min(max(0, seconds_remaining), self.total_seconds)
        self._active = active and self._seconds_remaining > 0
        self._paused = paused and self._active
        self._completion_fired = active and self._seconds_remaining == 0

    def tick(self) -> list[CountdownEvent]:
        """Advance one second. Returns the events raised by this tick."""
        if not self.running or self._seconds_remaining <= 0:
            return []

        self._seconds_remaining -= 1
        if self._seconds_remaining > 0:
            return []

        self._active = False
        self._paused = False
        if self._completion_fired:
            return []
        self._completion_fired = True
        if self._on_complete is not None:
            self._on_complete()
        return [CountdownEvent.COMPLETED]

    def progress(self) -> float:
        """Percent of the configured duration already elapsed, in [0, 100]."""
        total = self.total_seconds
        if total <= 0:
            return 0.0
        pct = (total - self._seconds_remaining) / total * 100
        return min(100.0, max(0.0, pct))
