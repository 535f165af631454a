"""Read-only projections for dashboards and statistics pages.

Pure functions over already-fetched records; nothing here touches the store.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Optional

from timeflow.models import DEFAULT_GOAL_MINUTES, DailyProgress, Session, Streak


@dataclass(frozen=True)
class Totals:
    total_minutes: int
    completed_sessions: int


@dataclass(frozen=True)
class Achievement:
    id: str
    title: str
    description: str
    icon: str
    target: int
    metric: str


ACHIEVEMENTS: tuple[Achievement, ...] = (
    Achievement("first_session", "First Steps", "Complete your first focus session", "star", 1, "completed_sessions"),
    Achievement("ten_sessions", "Getting Serious", "Complete 10 focus sessions", "award", 10, "completed_sessions"),
    Achievement("first_hour", "Hour of Power", "Focus for 60 minutes in total", "clock", 60, "total_minutes"),
    Achievement("ten_hours", "Deep Worker", "Focus for 10 hours in total", "clock", 600, "total_minutes"),
    Achievement("streak_3", "On a Roll", "Reach a 3 day streak", "trophy", 3, "max_streak"),
    Achievement("streak_7", "Week Warrior", "Reach a 7 day streak", "trophy", 7, "max_streak"),
)


def format_minutes(minutes: int) -> str:
    """Format minutes as 'Xh Ym'."""
    return f"{minutes // 60}h {minutes % 60}m"


def compute_totals(sessions: Iterable[Session]) -> Totals:
    """Totals over completed sessions only; partial sessions are not counted."""
    completed = [s for s in sessions if s.completed]
    return Totals(
        total_minutes=sum(s.duration for s in completed),
        completed_sessions=len(completed),
    )


def goal_percent(progress: Optional[DailyProgress], default_goal: int = DEFAULT_GOAL_MINUTES) -> float:
    """Share of the daily goal reached, capped at 100 (drives the energy tree)."""
    if progress is None:
        return 0.0
    goal = progress.goal_minutes or default_goal
    return min(100.0, progress.minutes_completed / goal * 100)


def today_progress(
    progress: Optional[DailyProgress], owner_id: str, today: date, default_goal: int = DEFAULT_GOAL_MINUTES
) -> DailyProgress:
    if progress is not None:
        return progress
    return DailyProgress(owner_id=owner_id, date=today, goal_minutes=default_goal)


def week_start(today: date) -> date:
    """Sunday on or before ``today``."""
    return today - timedelta(days=(today.weekday() + 1) % 7)


def weekly_series(rows: Iterable[DailyProgress], today: date) -> list[dict]:
    """Minutes per day for the current Sunday-start week; future days are 0."""
    by_date = {row.date: row.minutes_completed for row in rows}
    start = week_start(today)
    series = []
    for offset in range(7):
        day = start + timedelta(days=offset)
        series.append({
            "day": day.strftime("%a"),
            "date": day.isoformat(),
            "minutes": by_date.get(day, 0) if day <= today else 0,
        })
    return series


def calendar_month(rows: Iterable[DailyProgress], today: date) -> list[dict]:
    """Completion map for the current month up to today."""
    by_date = {row.date: row for row in rows}
    day = today.replace(day=1)
    days = []
    while day <= today:
        row = by_date.get(day)
        days.append({
            "date": day.isoformat(),
            "completed": bool(row and row.goal_completed),
            "progress": round(goal_percent(row), 1),
        })
        day += timedelta(days=1)
    return days


def achievements(totals: Totals, streak: Streak) -> list[dict]:
    metrics = {
        "completed_sessions": totals.completed_sessions,
        "total_minutes": totals.total_minutes,
        "max_streak": streak.max_streak,
    }
    result = []
    for a in ACHIEVEMENTS:
        value = metrics[a.metric]
        result.append({
            "id": a.id,
            "title": a.title,
            "description": a.description,
            "icon": a.icon,
            "unlocked": value >= a.target,
            "progress": min(100, round(value / a.target * 100)),
        })
    return result


def build_dashboard(
    progress: DailyProgress, streak: Streak, totals: Totals
) -> dict:
    percent = goal_percent(progress)
    return {
        "today": progress.to_dict(),
        "goal_percent": round(percent, 1),
        "goal_reached": percent >= 100,
        "time_today": format_minutes(progress.minutes_completed),
        "streak": streak.to_dict(),
        "total_minutes": totals.total_minutes,
        "total_time": format_minutes(totals.total_minutes),
        "completed_sessions": totals.completed_sessions,
    }


def build_statistics(
    rows: list[DailyProgress], streak: Streak, totals: Totals, today: date
) -> dict:
    return {
        "total_minutes": totals.total_minutes,
        "completed_sessions": totals.completed_sessions,
        "current_streak": streak.current_streak,
        "max_streak": streak.max_streak,
        "weekly": weekly_series(rows, today),
        "calendar": calendar_month(rows, today),
        "achievements": achievements(totals, streak),
    }
