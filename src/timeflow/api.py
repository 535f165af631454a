"""
Timeflow API: local FastAPI server for focus sessions.

This server provides:
- One timer controller per owner (X-Owner-Id header), restored from its snapshot
- Dashboard and statistics views over persisted progress
- Per-owner daily goal settings and bulk data reset
- A nightly job that persists broken streaks
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from timeflow.config import Settings, load_settings
from timeflow.controller import TimerSessionController
from timeflow.errors import PersistenceError, TimerBusyError, ValidationError
from timeflow.events import EventBus
from timeflow.log_buffer import recent_logs, setup_logging
from timeflow.models import UserSettings
from timeflow.reconciliation import ReconciliationService
from timeflow.snapshot import FileSnapshotStore, snapshot_key
from timeflow.store import SqliteStore
from timeflow.views import (
    build_dashboard,
    build_statistics,
    compute_totals,
    today_progress,
    week_start,
)

logger = logging.getLogger("timeflow.api")

UNLOAD_GRACE_SECONDS = 2.0


# Pydantic Models
class StartRequest(BaseModel):
    duration: Optional[int] = None


class DurationRequest(BaseModel):
    duration: int


class SettingsRequest(BaseModel):
    daily_goal_minutes: int = Field(..., ge=5, le=1440)


class SettingsResponse(BaseModel):
    owner_id: str
    daily_goal_minutes: int


class TimerStatusResponse(BaseModel):
    owner_id: Optional[str]
    phase: str
    active: bool
    paused: bool
    session_duration: int
    seconds_left: int
    display: str
    progress: float
    accumulated_seconds: int
    pending_completions: int
    changed: Optional[bool] = None


class AppState:
    """Everything the routes share: store, reconciliation, controllers, scheduler."""

    def __init__(self, settings: Settings, clock: Callable[[], datetime], autotick: bool):
        self.settings = settings
        self.clock = clock
        self.autotick = autotick
        self.store = SqliteStore(settings.db_path)
        self.service = ReconciliationService(self.store, clock, settings.default_goal_minutes)
        self.snapshots = FileSnapshotStore(settings.snapshot_dir)
        self.bus = EventBus()
        self.scheduler = AsyncIOScheduler()
        self.controllers: dict[Optional[str], TimerSessionController] = {}
        self._controllers_lock = asyncio.Lock()

    async def goal_for(self, owner_id: str) -> int:
        stored = await self.store.get_settings(owner_id)
        return stored.daily_goal_minutes if stored else self.settings.default_goal_minutes

    async def controller_for(self, owner_id: Optional[str]) -> TimerSessionController:
        async with self._controllers_lock:
            controller = self.controllers.get(owner_id)
            if controller is None:
                goal = await self.goal_for(owner_id) if owner_id else None
                controller = TimerSessionController(
                    owner_id,
                    self.service if owner_id else None,
                    self.snapshots,
                    bus=self.bus,
                    clock=self.clock,
                    goal_minutes=goal,
                    start_policy=self.settings.start_policy,
                    default_duration=self.settings.default_duration,
                    autotick=self.autotick,
                )
                self.controllers[owner_id] = controller
                await controller.restore()
            return controller


def _require_owner(owner_id: Optional[str]) -> str:
    if not owner_id:
        raise HTTPException(status_code=401, detail="X-Owner-Id header required")
    return owner_id


def create_app(
    settings: Optional[Settings] = None,
    clock: Callable[[], datetime] = datetime.now,
    autotick: bool = True,
) -> FastAPI:
    settings = settings or load_settings()
    setup_logging(settings.log_level)
    state = AppState(settings, clock, autotick)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        await state.store.init()
        state.scheduler.add_job(
            state.service.sweep_broken_streaks,
            CronTrigger(hour=0, minute=5),
            id="sweep_broken_streaks",
            replace_existing=True,
        )
        state.scheduler.start()
        logger.info("Scheduler started")
        yield

        # Shutdown: last snapshot + fire-and-forget partial commits
        tasks = [t for t in (c.save_on_unload() for c in state.controllers.values()) if t is not None]
        if tasks:
            done, pending = await asyncio.wait(tasks, timeout=UNLOAD_GRACE_SECONDS)
            if pending:
                logger.warning(f"{len(pending)} unload commit(s) still in flight at shutdown")
        state.scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")

    app = FastAPI(
        title="Timeflow",
        description="Local focus timer server: sessions, daily goals and streaks",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.timeflow = state

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---- Error mapping ----

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(TimerBusyError)
    async def _busy_error(request: Request, exc: TimerBusyError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(PersistenceError)
    async def _persistence_error(request: Request, exc: PersistenceError):
        logger.error(f"Request {request.url.path} failed: {exc}")
        return JSONResponse(status_code=503, content={"detail": str(exc), "operation": exc.operation})

    # ---- Health / logs ----

    @app.get("/health")
    async def health():
        return {"status": "ok", "controllers": len(state.controllers)}

    @app.get("/api/logs")
    async def get_logs(limit: int = 50):
        return {"logs": recent_logs(limit)}

    # ---- Timer ----

    @app.get("/api/timer", response_model=TimerStatusResponse)
    async def get_timer(x_owner_id: Optional[str] = Header(default=None)):
        controller = await state.controller_for(x_owner_id)
        return controller.status()

    @app.post("/api/timer/start", response_model=TimerStatusResponse)
    async def start_timer(request: Optional[StartRequest] = None, x_owner_id: Optional[str] = Header(default=None)):
        controller = await state.controller_for(x_owner_id)
        await controller.start_timer(request.duration if request else None)
        return {**controller.status(), "changed": True}

    @app.post("/api/timer/pause", response_model=TimerStatusResponse)
    async def pause_timer(x_owner_id: Optional[str] = Header(default=None)):
        controller = await state.controller_for(x_owner_id)
        changed = await controller.pause_timer()
        return {**controller.status(), "changed": changed}

    @app.post("/api/timer/resume", response_model=TimerStatusResponse)
    async def resume_timer(x_owner_id: Optional[str] = Header(default=None)):
        controller = await state.controller_for(x_owner_id)
        changed = await controller.resume_timer()
        return {**controller.status(), "changed": changed}

    @app.post("/api/timer/reset", response_model=TimerStatusResponse)
    async def reset_timer(x_owner_id: Optional[str] = Header(default=None)):
        controller = await state.controller_for(x_owner_id)
        changed = await controller.reset_timer()
        return {**controller.status(), "changed": changed}

    @app.put("/api/timer/duration", response_model=TimerStatusResponse)
    async def update_duration(request: DurationRequest, x_owner_id: Optional[str] = Header(default=None)):
        controller = await state.controller_for(x_owner_id)
        changed = controller.update_session_duration(request.duration)
        return {**controller.status(), "changed": changed}

    @app.get("/api/timer/events")
    async def timer_events(limit: int = 20, x_owner_id: Optional[str] = Header(default=None)):
        return {"events": [n.to_dict() for n in state.bus.recent(x_owner_id, limit)]}

    # ---- Views ----

    @app.get("/api/dashboard")
    async def get_dashboard(x_owner_id: Optional[str] = Header(default=None)):
        owner_id = _require_owner(x_owner_id)
        today = state.service.today()
        goal = await state.goal_for(owner_id)
        progress = today_progress(await state.store.get_daily_progress(owner_id, today), owner_id, today, goal)
        streak = await state.service.current_streak(owner_id)
        totals = compute_totals(await state.store.list_sessions(owner_id, completed_only=True))
        return build_dashboard(progress, streak, totals)

    @app.get("/api/stats")
    async def get_stats(x_owner_id: Optional[str] = Header(default=None)):
        owner_id = _require_owner(x_owner_id)
        today = state.service.today()
        start = min(week_start(today), today.replace(day=1))
        rows = await state.store.list_daily_progress(owner_id, start, today)
        streak = await state.service.current_streak(owner_id)
        totals = compute_totals(await state.store.list_sessions(owner_id, completed_only=True))
        return build_statistics(rows, streak, totals, today)

    # ---- Settings / data ----

    @app.get("/api/settings", response_model=SettingsResponse)
    async def get_settings(x_owner_id: Optional[str] = Header(default=None)):
        owner_id = _require_owner(x_owner_id)
        return SettingsResponse(owner_id=owner_id, daily_goal_minutes=await state.goal_for(owner_id))

    @app.put("/api/settings", response_model=SettingsResponse)
    async def update_settings(request: SettingsRequest, x_owner_id: Optional[str] = Header(default=None)):
        owner_id = _require_owner(x_owner_id)
        await state.store.upsert_settings(UserSettings(owner_id, request.daily_goal_minutes))
        controller = state.controllers.get(owner_id)
        if controller is not None:
            controller.goal_minutes = request.daily_goal_minutes
        logger.info(f"Daily goal for {owner_id} set to {request.daily_goal_minutes} min")
        return SettingsResponse(owner_id=owner_id, daily_goal_minutes=request.daily_goal_minutes)

    @app.delete("/api/data")
    async def delete_data(x_owner_id: Optional[str] = Header(default=None)):
        owner_id = _require_owner(x_owner_id)
        await state.store.delete_all_user_data(owner_id)
        controller = state.controllers.get(owner_id)
        if controller is not None:
            await controller.discard()
        else:
            state.snapshots.erase(snapshot_key(owner_id))
        return {"success": True, "owner_id": owner_id}

    return app
