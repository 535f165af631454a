"""Error taxonomy shared by the timer core, the store and the HTTP layer."""

from __future__ import annotations


class TimeflowError(Exception):
    """Base class for all timeflow errors."""


class ValidationError(TimeflowError, ValueError):
    """Rejected input (bad duration, negative minutes, bad goal). Never retryable."""


class TimerBusyError(TimeflowError):
    """A start was requested while another session is active or completing."""


class SnapshotError(TimeflowError):
    """The durable timer snapshot could not be read or decoded."""


class PersistenceError(TimeflowError):
    """A store operation failed (I/O, locked database, constraint)."""

    def __init__(self, operation: str, reason: str):
        super().__init__(f"{operation} failed: {reason}")
        self.operation = operation
        self.reason = reason


class ReconciliationError(PersistenceError):
    """A reconciliation step failed; ``stage`` names the step that did not land."""

    def __init__(self, stage: str, cause: PersistenceError):
        super().__init__(cause.operation, cause.reason)
        self.stage = stage
        self.cause = cause

    def __str__(self) -> str:
        return f"{self.stage}: {self.operation} failed: {self.reason}"
