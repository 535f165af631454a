"""Shared fixtures: temp SQLite store, controllable clock, in-memory snapshots."""

from datetime import datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio

from timeflow.controller import TimerSessionController
from timeflow.events import EventBus
from timeflow.reconciliation import ReconciliationService
from timeflow.snapshot import MemorySnapshotStore
from timeflow.store import SqliteStore


class FakeClock:
    """Injectable wall clock; tests move it forward explicitly."""

    def __init__(self, start: datetime = datetime(2026, 2, 11, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int = 0, days: int = 0) -> None:
        self.now += timedelta(seconds=seconds, days=days)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test_timeflow.db"


@pytest_asyncio.fixture
async def store(db_path: Path) -> SqliteStore:
    s = SqliteStore(db_path)
    await s.init()
    return s


@pytest.fixture
def service(store: SqliteStore, clock: FakeClock) -> ReconciliationService:
    return ReconciliationService(store, clock)


@pytest.fixture
def snapshots() -> MemorySnapshotStore:
    return MemorySnapshotStore()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def make_controller(service, snapshots, bus, clock):
    """Build a controller with the ticker disabled so tests drive tick() themselves."""

    def _make(owner_id="user-1", **overrides) -> TimerSessionController:
        kwargs = dict(bus=bus, clock=clock, autotick=False)
        kwargs.update(overrides)
        return TimerSessionController(owner_id, service if owner_id else None, snapshots, **kwargs)

    return _make


async def run_seconds(controller: TimerSessionController, clock: FakeClock, seconds: int) -> None:
    """Advance the clock and tick once per second."""
    for _ in range(seconds):
        clock.advance(seconds=1)
        await controller.tick()
