"""Tests for the terminal client with HTTP mocked out."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from timeflow.cli import ApiClient, build_parser, main

STATUS = {
    "owner_id": "user-1",
    "phase": "running",
    "active": True,
    "paused": False,
    "session_duration": 25,
    "seconds_left": 1500,
    "display": "25:00",
    "progress": 0.0,
    "accumulated_seconds": 0,
    "pending_completions": 0,
    "changed": True,
}


def response(status_code: int = 200, body: dict | None = None) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = body if body is not None else {}
    resp.text = str(body)
    return resp


class TestParser:
    def test_start_minutes_optional(self):
        parser = build_parser()
        assert parser.parse_args(["start"]).minutes is None
        assert parser.parse_args(["start", "50"]).minutes == 50

    def test_goal_requires_minutes(self):
        args = build_parser().parse_args(["--owner", "me", "goal", "90"])
        assert args.owner == "me"
        assert args.minutes == 90


class TestApiClient:
    def test_owner_header(self):
        assert ApiClient("http://x/", "user-1").headers == {"X-Owner-Id": "user-1"}
        assert ApiClient("http://x", None).headers == {}

    def test_error_status_raises_runtime_error(self):
        client = ApiClient("http://x", "user-1")
        with patch("timeflow.cli.requests.request", return_value=response(409, {"detail": "busy"})):
            with pytest.raises(RuntimeError, match="409: busy"):
                client.call("POST", "/api/timer/start")


class TestMain:
    def test_start_posts_duration(self):
        with patch("timeflow.cli.requests.request", return_value=response(200, STATUS)) as request:
            assert main(["--url", "http://localhost:7878", "--owner", "user-1", "start", "25"]) == 0
        method, url = request.call_args.args
        assert method == "POST"
        assert url == "http://localhost:7878/api/timer/start"
        assert request.call_args.kwargs["json"] == {"duration": 25}
        assert request.call_args.kwargs["headers"] == {"X-Owner-Id": "user-1"}

    def test_unreachable_server_returns_1(self):
        with patch("timeflow.cli.requests.request", side_effect=requests.ConnectionError("refused")):
            assert main(["--url", "http://localhost:1", "status"]) == 1

    def test_server_error_returns_1(self):
        with patch("timeflow.cli.requests.request", return_value=response(503, {"detail": "db down"})):
            assert main(["--url", "http://localhost:7878", "--owner", "u", "dashboard"]) == 1
