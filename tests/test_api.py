"""HTTP tests for the FastAPI app, with the ticker disabled and a fake clock."""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from timeflow.api import create_app
from timeflow.config import Settings
from timeflow.errors import PersistenceError
from timeflow.models import TimerSessionState
from timeflow.snapshot import FileSnapshotStore, snapshot_key

OWNER = "user-1"
HEADERS = {"X-Owner-Id": OWNER}


@pytest.fixture
def settings(tmp_path):
    return Settings(db_path=tmp_path / "api.db", snapshot_dir=tmp_path / "snapshots")


@pytest.fixture
def app(settings, clock):
    return create_app(settings, clock=clock, autotick=False)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_logs_endpoint(self, client):
        client.put("/api/settings", json={"daily_goal_minutes": 45}, headers=HEADERS)
        logs = client.get("/api/logs").json()["logs"]
        assert any("Daily goal for user-1" in entry["message"] for entry in logs)


class TestTimer:
    def test_idle_status(self, client):
        body = client.get("/api/timer", headers=HEADERS).json()
        assert body["phase"] == "idle"
        assert body["seconds_left"] == 1500
        assert body["display"] == "25:00"

    def test_start_pause_reset(self, client, clock, settings):
        started = client.post("/api/timer/start", json={"duration": 25}, headers=HEADERS)
        assert started.status_code == 200
        assert started.json()["phase"] == "running"
        assert FileSnapshotStore(settings.snapshot_dir).read(snapshot_key(OWNER))["active"] is True

        clock.advance(seconds=90)
        paused = client.post("/api/timer/pause", headers=HEADERS).json()
        assert paused["changed"] is True
        assert paused["phase"] == "paused"
        # 60s went into a partial session, 30s are carried
        assert paused["accumulated_seconds"] == 30

        assert client.post("/api/timer/pause", headers=HEADERS).json()["changed"] is False

        reset = client.post("/api/timer/reset", headers=HEADERS).json()
        assert reset["phase"] == "idle"
        assert FileSnapshotStore(settings.snapshot_dir).read(snapshot_key(OWNER)) is None

    def test_start_without_body_uses_configured_duration(self, client):
        updated = client.put("/api/timer/duration", json={"duration": 10}, headers=HEADERS).json()
        assert updated["changed"] is True
        started = client.post("/api/timer/start", headers=HEADERS).json()
        assert started["seconds_left"] == 600

    def test_second_start_is_conflict(self, client):
        client.post("/api/timer/start", json={"duration": 25}, headers=HEADERS)
        response = client.post("/api/timer/start", json={"duration": 5}, headers=HEADERS)
        assert response.status_code == 409

    def test_invalid_duration_is_422(self, client):
        response = client.post("/api/timer/start", json={"duration": 0}, headers=HEADERS)
        assert response.status_code == 422
        assert client.get("/api/timer", headers=HEADERS).json()["phase"] == "idle"

    def test_owners_have_separate_timers(self, client):
        client.post("/api/timer/start", json={"duration": 25}, headers=HEADERS)
        other = client.get("/api/timer", headers={"X-Owner-Id": "user-2"}).json()
        assert other["phase"] == "idle"

    def test_local_only_timer(self, client):
        body = client.post("/api/timer/start", json={"duration": 5}).json()
        assert body["owner_id"] is None
        assert body["phase"] == "running"

    def test_events_feed(self, client):
        client.post("/api/timer/start", json={"duration": 25}, headers=HEADERS)
        client.post("/api/timer/pause", headers=HEADERS)
        events = client.get("/api/timer/events", headers=HEADERS).json()["events"]
        assert [e["kind"] for e in events] == ["session_started", "session_paused"]

    def test_restore_completes_session_finished_while_away(self, settings, clock):
        state = TimerSessionState(
            active=True,
            session_duration=25,
            seconds_left=100,
            start_time=clock(),
            last_update_time=clock(),
            window_start_time=clock(),
        )
        FileSnapshotStore(settings.snapshot_dir).write(snapshot_key(OWNER), state.to_snapshot())
        clock.advance(seconds=200)

        with TestClient(create_app(settings, clock=clock, autotick=False)) as client:
            assert client.get("/api/timer", headers=HEADERS).json()["phase"] == "idle"
            dashboard = client.get("/api/dashboard", headers=HEADERS).json()
        assert dashboard["today"]["minutes_completed"] == 25
        assert dashboard["completed_sessions"] == 1


class TestViews:
    def test_dashboard_requires_owner(self, client):
        assert client.get("/api/dashboard").status_code == 401

    def test_empty_dashboard(self, client):
        dashboard = client.get("/api/dashboard", headers=HEADERS).json()
        assert dashboard["goal_percent"] == 0.0
        assert dashboard["today"]["goal_minutes"] == 60
        assert dashboard["streak"]["current_streak"] == 0
        assert dashboard["total_time"] == "0h 0m"

    def test_stats_shape(self, client):
        stats = client.get("/api/stats", headers=HEADERS).json()
        assert len(stats["weekly"]) == 7
        assert len(stats["calendar"]) == 11
        assert len(stats["achievements"]) == 6

    def test_persistence_failure_is_503(self, client, app):
        store = app.state.timeflow.store
        failing = AsyncMock(side_effect=PersistenceError("list_sessions", "disk I/O error"))
        with patch.object(store, "list_sessions", failing):
            response = client.get("/api/dashboard", headers=HEADERS)
        assert response.status_code == 503
        assert response.json()["operation"] == "list_sessions"


class TestSettingsAndData:
    def test_default_goal(self, client):
        assert client.get("/api/settings", headers=HEADERS).json()["daily_goal_minutes"] == 60

    def test_update_goal(self, client):
        response = client.put("/api/settings", json={"daily_goal_minutes": 90}, headers=HEADERS)
        assert response.status_code == 200
        assert client.get("/api/settings", headers=HEADERS).json()["daily_goal_minutes"] == 90
        assert client.get("/api/dashboard", headers=HEADERS).json()["today"]["goal_minutes"] == 90

    @pytest.mark.parametrize("goal", [4, 1441])
    def test_goal_bounds(self, client, goal):
        response = client.put("/api/settings", json={"daily_goal_minutes": goal}, headers=HEADERS)
        assert response.status_code == 422

    def test_delete_data(self, client, settings):
        client.put("/api/settings", json={"daily_goal_minutes": 90}, headers=HEADERS)
        client.post("/api/timer/start", json={"duration": 25}, headers=HEADERS)

        response = client.delete("/api/data", headers=HEADERS)
        assert response.json() == {"success": True, "owner_id": OWNER}
        assert client.get("/api/settings", headers=HEADERS).json()["daily_goal_minutes"] == 60
        assert client.get("/api/timer", headers=HEADERS).json()["phase"] == "idle"
        assert FileSnapshotStore(settings.snapshot_dir).read(snapshot_key(OWNER)) is None
