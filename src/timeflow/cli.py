#!/usr/bin/env python3
"""Timeflow terminal client.

Talks to a running Timeflow server over HTTP.

Usage:
    timeflow serve
    timeflow start 25
    timeflow pause | resume | reset | status
    timeflow dashboard
    timeflow goal 90
"""

from __future__ import annotations

import argparse
import os
import sys
from typing import Any

import requests
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from timeflow.config import load_settings

console = Console()
REQUEST_TIMEOUT = 5


class ApiClient:
    def __init__(self, base_url: str, owner_id: str | None):
        self.base_url = base_url.rstrip("/")
        self.headers = {"X-Owner-Id": owner_id} if owner_id else {}

    def call(self, method: str, path: str, payload: dict | None = None) -> dict[str, Any]:
        resp = requests.request(
            method,
            f"{self.base_url}{path}",
            json=payload,
            headers=self.headers,
            timeout=REQUEST_TIMEOUT,
        )
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail", resp.text)
            except ValueError:
                detail = resp.text
            raise RuntimeError(f"{resp.status_code}: {detail}")
        return resp.json()


def _render_timer(status: dict) -> None:
    phase = status["phase"]
    color = {"running": "green", "paused": "yellow", "completing": "cyan"}.get(phase, "white")
    body = (
        f"[bold {color}]{status['display']}[/]  {phase}\n"
        f"{status['progress']:.0f}% of {status['session_duration']} min"
    )
    if status.get("pending_completions"):
        body += f"\n[red]{status['pending_completions']} completion(s) not saved yet[/]"
    console.print(Panel(body, title="Focus timer", expand=False))


def _render_dashboard(data: dict) -> None:
    table = Table(title="Today", show_header=False)
    today = data["today"]
    table.add_row("Time today", data["time_today"])
    table.add_row("Daily goal", f"{today['minutes_completed']}/{today['goal_minutes']} min ({data['goal_percent']:.0f}%)")
    table.add_row("Goal reached", "yes" if data["goal_reached"] else "no")
    table.add_row("Current streak", f"{data['streak']['current_streak']} days")
    table.add_row("Max streak", f"{data['streak']['max_streak']} days")
    table.add_row("Total focus", data["total_time"])
    table.add_row("Completed sessions", str(data["completed_sessions"]))
    console.print(table)


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    settings = load_settings()
    uvicorn.run(
        "timeflow.api:create_app",
        factory=True,
        host=args.host or settings.host,
        port=args.port or settings.port,
    )
    return 0


def cmd_timer(args: argparse.Namespace, client: ApiClient) -> int:
    if args.command == "status":
        status = client.call("GET", "/api/timer")
    elif args.command == "start":
        status = client.call("POST", "/api/timer/start", {"duration": args.minutes})
    else:
        status = client.call("POST", f"/api/timer/{args.command}")
        if status.get("changed") is False:
            console.print(f"[yellow]Nothing to {args.command}[/]")
    _render_timer(status)
    return 0


def cmd_dashboard(args: argparse.Namespace, client: ApiClient) -> int:
    _render_dashboard(client.call("GET", "/api/dashboard"))
    return 0


def cmd_goal(args: argparse.Namespace, client: ApiClient) -> int:
    data = client.call("PUT", "/api/settings", {"daily_goal_minutes": args.minutes})
    console.print(f"Daily goal set to [bold]{data['daily_goal_minutes']}[/] minutes")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="timeflow", description="Focus timer client")
    parser.add_argument("--url", help="Server URL (default: TIMEFLOW_URL)")
    parser.add_argument("--owner", help="Owner id (default: TIMEFLOW_OWNER)")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the API server")
    serve.add_argument("--host")
    serve.add_argument("--port", type=int)

    start = sub.add_parser("start", help="Start a focus session")
    start.add_argument("minutes", type=int, nargs="?")

    for name in ("pause", "resume", "reset", "status"):
        sub.add_parser(name, help=f"{name.capitalize()} the timer")

    sub.add_parser("dashboard", help="Show today's progress and streak")

    goal = sub.add_parser("goal", help="Set the daily goal in minutes")
    goal.add_argument("minutes", type=int)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "serve":
        return cmd_serve(args)

    settings = load_settings()
    client = ApiClient(args.url or settings.api_url, args.owner or os.environ.get("TIMEFLOW_OWNER"))
    handlers = {"dashboard": cmd_dashboard, "goal": cmd_goal}
    handler = handlers.get(args.command, cmd_timer)
    try:
        return handler(args, client)
    except requests.RequestException as e:
        console.print(f"[red]Cannot reach Timeflow at {client.base_url}: {e}[/]")
        return 1
    except RuntimeError as e:
        console.print(f"[red]Error: {e}[/]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
