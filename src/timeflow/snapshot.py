"""Durable key-value slots holding a serialised TimerSessionState.

The controller only needs ``read``/``write``/``erase`` on one key, so the
file-backed store used in production and the in-memory one used by tests
are interchangeable.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Optional

from timeflow.errors import SnapshotError

logger = logging.getLogger("timeflow.snapshot")

TIMER_STATE_KEY = "timerState"


def snapshot_key(owner_id: str | None) -> str:
    return f"{TIMER_STATE_KEY}:{owner_id}" if owner_id else TIMER_STATE_KEY


class MemorySnapshotStore:
    def __init__(self):
        self._slots: dict[str, str] = {}

    def read(self, key: str) -> Optional[dict]:
        raw = self._slots.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise SnapshotError(f"Corrupt snapshot {key}: {e}") from e

    def write(self, key: str, data: dict) -> None:
        self._slots[key] = json.dumps(data)

    def erase(self, key: str) -> None:
        self._slots.pop(key, None)

    def put_raw(self, key: str, raw: str) -> None:
        self._slots[key] = raw


class FileSnapshotStore:
    """One JSON file per key under ``directory``; writes are atomic renames."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", key)
        return self.directory / f"{safe}.json"

    def read(self, key: str) -> Optional[dict]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SnapshotError(f"Unreadable snapshot {path}: {e}") from e

    def write(self, key: str, data: dict) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp, path)

    def erase(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
