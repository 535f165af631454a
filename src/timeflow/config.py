"""Configuration loaded from environment variables (and a local .env file)."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from timeflow.controller import StartPolicy
from timeflow.errors import ValidationError

DATA_DIR = Path.home() / ".timeflow"
DEFAULT_PORT = 7878


@dataclass
class Settings:
    db_path: Path = DATA_DIR / "timeflow.db"
    snapshot_dir: Path = DATA_DIR / "snapshots"
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    default_goal_minutes: int = 60
    default_duration: int = 25
    start_policy: StartPolicy = StartPolicy.REJECT
    log_level: str = "INFO"
    api_url: str = f"http://127.0.0.1:{DEFAULT_PORT}"

    def validate(self) -> None:
        if self.default_goal_minutes < 1:
            raise ValidationError(f"TIMEFLOW_DEFAULT_GOAL must be >= 1, got {self.default_goal_minutes}")
        if self.default_duration < 1:
            raise ValidationError(f"TIMEFLOW_DEFAULT_DURATION must be >= 1, got {self.default_duration}")


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer, got {raw!r}")


def load_settings(env_file: Path | None = None) -> Settings:
    """Build settings from the environment. A .env file never overrides real env vars."""
    load_dotenv(env_file or Path.cwd() / ".env")

    port = _int_env("TIMEFLOW_PORT", DEFAULT_PORT)
    policy = os.environ.get("TIMEFLOW_START_POLICY", StartPolicy.REJECT.value).lower()
    try:
        start_policy = StartPolicy(policy)
    except ValueError:
        valid = ", ".join(p.value for p in StartPolicy)
        raise ValidationError(f"TIMEFLOW_START_POLICY must be one of {valid}, got {policy!r}")

    settings = Settings(
        db_path=Path(os.environ.get("TIMEFLOW_DB", str(DATA_DIR / "timeflow.db"))).expanduser(),
        snapshot_dir=Path(os.environ.get("TIMEFLOW_SNAPSHOT_DIR", str(DATA_DIR / "snapshots"))).expanduser(),
        host=os.environ.get("TIMEFLOW_HOST", "127.0.0.1"),
        port=port,
        default_goal_minutes=_int_env("TIMEFLOW_DEFAULT_GOAL", 60),
        default_duration=_int_env("TIMEFLOW_DEFAULT_DURATION", 25),
        start_policy=start_policy,
        log_level=os.environ.get("TIMEFLOW_LOG_LEVEL", "INFO").upper(),
        api_url=os.environ.get("TIMEFLOW_URL", f"http://127.0.0.1:{port}"),
    )
    settings.validate()
    return settings
