"""
Timewise - FastAPI Backend
Task management API with AI-assisted scheduling and calendar/LMS imports
"""

from datetime import date, datetime, timedelta, timezone
from contextlib import asynccontextmanager
from enum import Enum
from typing import Optional, List
from uuid import UUID

import httpx
from fastapi import FastAPI, HTTPException, Header, Query, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import get_ai_config, get_server_config, get_config_summary
from database import (
    db, ensure_schema, get_profile, upsert_profile, get_calendar_events, log_system,
)
from integrations import SyncError
from logger import get_logger
from models import (
    Profile, ProfileUpdate, Task, TaskCreate, TaskUpdate, TaskStatus, DeleteScope,
    RestoreRequest, DeletedTaskGroup, CalendarEvent, SuggestionFeedback,
    ScheduleResult, SyncResult, DayGaps, HealthStatus,
)
from scheduler import Preferences, busy_intervals, split_tasks, analyze_day_gaps
from suggestions import (
    generate_suggestions, list_pending_suggestions, record_feedback,
    SchedulingError, SuggestionNotFound,
)
from tasks import (
    create_task, get_task_or_404, list_tasks, tasks_for_date, update_task, delete_task,
    list_deleted_groups, restore_tasks, delete_permanently, purge_deleted_tasks,
    TaskNotFound, InvalidTask, DowntimeConflict,
)
from calendar_sync import sync_google_calendar
from canvas_sync import sync_canvas

logger = get_logger("main")
server_config = get_server_config()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    await db.connect()
    await ensure_schema()
    await log_system("info", "Server started", {"version": server_config.version})
    yield
    # Shutdown
    await log_system("info", "Server shutting down")
    await db.disconnect()


app = FastAPI(
    title="Timewise",
    description="Task management with AI-assisted scheduling",
    version=server_config.version,
    lifespan=lifespan
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=server_config.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================
# ERROR MAPPING
# ============================================

@app.exception_handler(TaskNotFound)
@app.exception_handler(SuggestionNotFound)
async def not_found_handler(request: Request, exc: Exception):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidTask)
async def invalid_task_handler(request: Request, exc: InvalidTask):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(DowntimeConflict)
async def downtime_handler(request: Request, exc: DowntimeConflict):
    return JSONResponse(status_code=409, content={"detail": str(exc), "warning": exc.warning})


@app.exception_handler(SyncError)
async def sync_error_handler(request: Request, exc: SyncError):
    await log_system("warning", f"Sync failed: {exc}", {"path": request.url.path})
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    await log_system("error", f"Unhandled error on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": str(exc)})


# ============================================
# USER IDENTITY
# ============================================

async def current_user(x_user_id: Optional[str] = Header(default=None)) -> UUID:
    """Caller identity from the X-User-Id header."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    try:
        return UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="X-User-Id must be a UUID")


def _db_values(updates: dict) -> dict:
    return {k: v.value if isinstance(v, Enum) else v for k, v in updates.items()}


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================
# HEALTH & STATUS
# ============================================

@app.get("/health", response_model=HealthStatus)
@app.get("/api/health", response_model=HealthStatus)
async def health_check():
    """Check API and dependencies health."""
    ai_status = "unknown"
    ai = get_ai_config()

    try:
        async with httpx.AsyncClient() as client:
            resp = await client.get(
                f"{ai.api_base_url.rstrip('/')}/models",
                headers={"Authorization": f"Bearer {ai.api_key}"} if ai.api_key else None,
                timeout=5,
            )
            ai_status = "connected" if resp.status_code == 200 else "error"
    except httpx.HTTPError:
        ai_status = "disconnected"

    database_status = "connected" if db.connected and await db.ping() else "disconnected"
    return HealthStatus(
        status="healthy" if database_status == "connected" else "degraded",
        version=server_config.version,
        database=database_status,
        ai_gateway=ai_status
    )


@app.get("/api/config")
async def config_summary():
    """Current configuration (secrets omitted)."""
    return get_config_summary()


# ============================================
# PROFILE
# ============================================

@app.get("/api/profile", response_model=Profile)
async def read_profile(user_id: UUID = Depends(current_user)):
    profile = await get_profile(user_id)
    return profile or Profile(id=user_id)


@app.put("/api/profile", response_model=Profile)
async def save_profile(data: ProfileUpdate, user_id: UUID = Depends(current_user)):
    updates = _db_values(data.model_dump(exclude_unset=True))
    profile = await upsert_profile(user_id, **updates)
    logger.info(f"Profile updated for {user_id}: {sorted(updates)}")
    return profile


# ============================================
# TASKS
# ============================================

@app.get("/api/tasks", response_model=List[Task])
async def get_tasks(status: Optional[TaskStatus] = Query(None), user_id: UUID = Depends(current_user)):
    return await list_tasks(user_id, status.value if status else None)


@app.post("/api/tasks", status_code=201)
async def add_task(
    data: TaskCreate,
    force: bool = Query(default=False),
    auto_schedule: bool = Query(default=False),
    user_id: UUID = Depends(current_user)
):
    """Create a task (one row per occurrence when recurring)."""
    created = await create_task(user_id, data, force=force)
    result = {"tasks": [Task(**row) for row in created], "count": len(created)}

    unscheduled, _ = split_tasks(created)
    if auto_schedule and unscheduled:
        result["schedule"] = await generate_suggestions(user_id)
    return result


@app.get("/api/tasks/deleted", response_model=List[DeletedTaskGroup])
async def get_deleted_tasks(user_id: UUID = Depends(current_user)):
    """Trash, grouped by recurring series."""
    return await list_deleted_groups(user_id)


@app.post("/api/tasks/restore")
async def restore_deleted_tasks(data: RestoreRequest, user_id: UUID = Depends(current_user)):
    restored = await restore_tasks(user_id, data.task_ids)
    return {"success": True, "restored": restored}


@app.post("/api/tasks/permanent-delete")
async def permanently_delete_tasks(data: RestoreRequest, user_id: UUID = Depends(current_user)):
    removed = await delete_permanently(user_id, data.task_ids)
    return {"success": True, "deleted": removed}


@app.post("/api/tasks/purge")
async def purge_old_tasks(
    older_than_days: Optional[int] = Query(default=None, ge=0),
    user_id: UUID = Depends(current_user)
):
    """Hard delete the caller's tasks that have been in the trash past the retention window."""
    purged = await purge_deleted_tasks(user_id, older_than_days)
    return {"success": True, "purged": purged}


@app.get("/api/tasks/{task_id}", response_model=Task)
async def get_task(task_id: UUID, user_id: UUID = Depends(current_user)):
    return await get_task_or_404(user_id, task_id)


@app.patch("/api/tasks/{task_id}", response_model=Task)
async def patch_task(
    task_id: UUID,
    data: TaskUpdate,
    force: bool = Query(default=False),
    user_id: UUID = Depends(current_user)
):
    return await update_task(user_id, task_id, data, force=force)


@app.delete("/api/tasks/{task_id}")
async def remove_task(
    task_id: UUID,
    scope: DeleteScope = Query(default=DeleteScope.SINGLE),
    user_id: UUID = Depends(current_user)
):
    """Soft delete; restorable from the trash until purged."""
    deleted = await delete_task(user_id, task_id, scope)
    return {"success": True, "deleted": deleted}


# ============================================
# SCHEDULING
# ============================================

@app.post("/api/schedule/generate", response_model=ScheduleResult)
async def generate_schedule(user_id: UUID = Depends(current_user)):
    """Place every unscheduled task using the AI scheduler."""
    return await generate_suggestions(user_id)


async def _day_view(user_id: UUID, day: date):
    prefs = Preferences.from_profile(await get_profile(user_id))
    day_start = prefs.at(day, datetime.min.time())
    events = await get_calendar_events(user_id, day_start, day_start + timedelta(days=1))
    tasks = await tasks_for_date(user_id, day)
    return prefs, tasks, events


@app.get("/api/schedule/{day}")
async def get_day_schedule(day: date, user_id: UUID = Depends(current_user)):
    """Tasks and calendar events of one day."""
    _, tasks, events = await _day_view(user_id, day)
    return {
        "date": day,
        "tasks": [Task(**t) for t in tasks],
        "events": [CalendarEvent(**e) for e in events],
    }


@app.get("/api/schedule/{day}/gaps", response_model=DayGaps)
async def get_day_gaps(
    day: date,
    min_gap: int = Query(default=15, ge=5, le=240),
    user_id: UUID = Depends(current_user)
):
    """Free time between commitments inside the waking window."""
    prefs, tasks, events = await _day_view(user_id, day)
    live = [t for t in tasks if t.get("status") != TaskStatus.CANCELLED.value]
    busy = busy_intervals(live, events, prefs)
    return analyze_day_gaps(day, prefs, busy, min_gap)


# ============================================
# SUGGESTIONS
# ============================================

@app.get("/api/suggestions")
async def get_suggestions(
    limit: Optional[int] = Query(default=None, ge=1, le=50),
    user_id: UUID = Depends(current_user)
):
    """Pending suggestions, best score first."""
    return await list_pending_suggestions(user_id, limit)


@app.post("/api/suggestions/{suggestion_id}/feedback")
async def suggestion_feedback(
    suggestion_id: UUID,
    data: SuggestionFeedback,
    user_id: UUID = Depends(current_user)
):
    return await record_feedback(user_id, suggestion_id, data.outcome)


# ============================================
# CALENDAR & SYNC
# ============================================

@app.get("/api/calendar/events", response_model=List[CalendarEvent])
async def list_calendar_events(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    user_id: UUID = Depends(current_user)
):
    # naive query values are read as UTC
    start = _as_utc(start) if start else datetime.now(timezone.utc)
    end = _as_utc(end) if end else start + timedelta(days=7)
    if end <= start:
        raise HTTPException(status_code=400, detail="end must be after start")
    return await get_calendar_events(user_id, start, end)


@app.post("/api/sync/google-calendar", response_model=SyncResult)
async def sync_google(user_id: UUID = Depends(current_user)):
    """Import events from the connected Google calendar."""
    return await sync_google_calendar(user_id)


@app.post("/api/sync/canvas", response_model=SyncResult)
async def sync_canvas_assignments(user_id: UUID = Depends(current_user)):
    """Import upcoming Canvas assignments as tasks."""
    return await sync_canvas(user_id)


# ============================================
# RUN SERVER
# ============================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
