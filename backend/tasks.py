"""
Timewise - Task Lifecycle
Create (with recurrence expansion), update, soft delete, trash and restore.
"""

import math
from datetime import datetime, date, timezone, timedelta
from typing import Optional, List, Dict, Any
from uuid import UUID, uuid4

from config import get_task_config
from database import (
    get_profile, get_task, get_active_tasks, get_tasks_for_date, create_tasks,
    update_task as update_task_row, soft_delete_tasks, get_series_task_ids,
    get_deleted_tasks, restore_tasks as restore_task_rows, hard_delete_tasks,
    purge_user_trash, purge_all_trash, log_system,
)
from logger import get_logger
from models import (
    TaskCreate, TaskUpdate, TaskStatus, RecurrencePattern, DeleteScope, DeletedTaskGroup,
)
from recurrence import expand_occurrences
from scheduler import Preferences, is_time_in_downtime, format_time

logger = get_logger("tasks")

DEFAULT_TASK_COLOR = "#3b82f6"
_OPEN_STATUSES = (TaskStatus.PENDING.value, TaskStatus.SCHEDULED.value)
_REQUIRED_ON_UPDATE = ("title", "duration_minutes", "priority", "tags", "commute_minutes")


# ============================================
# ERRORS
# ============================================

class TaskError(Exception):
    """Base error for task operations."""


class TaskNotFound(TaskError):
    def __init__(self, task_id):
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class InvalidTask(TaskError):
    pass


class DowntimeConflict(TaskError):
    """The requested time falls inside the user's downtime; resend with force to keep it."""

    def __init__(self, scheduled_time, downtime_start, downtime_end):
        super().__init__(
            f"{format_time(scheduled_time)} is inside your downtime "
            f"({format_time(downtime_start)} - {format_time(downtime_end)})"
        )
        self.warning = {
            "scheduled_time": format_time(scheduled_time),
            "downtime_start": format_time(downtime_start),
            "downtime_end": format_time(downtime_end),
        }


# ============================================
# HELPERS
# ============================================

def status_for(scheduled_date, scheduled_time) -> str:
    if scheduled_date and scheduled_time:
        return TaskStatus.SCHEDULED.value
    return TaskStatus.PENDING.value


async def _check_downtime(user_id: UUID, scheduled_time, force: bool) -> Preferences:
    prefs = Preferences.from_profile(await get_profile(user_id))
    if (scheduled_time is not None and not force
            and is_time_in_downtime(scheduled_time, prefs.downtime_start, prefs.downtime_end)):
        raise DowntimeConflict(scheduled_time, prefs.downtime_start, prefs.downtime_end)
    return prefs


async def _require_task(user_id: UUID, task_id: UUID) -> dict:
    task = await get_task(user_id, task_id)
    if not task or task.get("deleted_at") is not None:
        raise TaskNotFound(task_id)
    return task


# ============================================
# CREATE / READ / UPDATE
# ============================================

async def create_task(user_id: UUID, data: TaskCreate, force: bool = False) -> List[dict]:
    """
    Create a task, or one row per occurrence for a recurring task.

    Raises:
        DowntimeConflict: scheduled_time is inside downtime and force is False
        InvalidTask: the recurrence produces no occurrences
    """
    prefs = await _check_downtime(user_id, data.scheduled_time, force)

    base = {
        "user_id": user_id,
        "title": data.title,
        "description": data.description,
        "duration_minutes": data.duration_minutes,
        "priority": data.priority.value,
        "tags": data.tags,
        "scheduled_time": data.scheduled_time,
        "commute_minutes": data.commute_minutes,
        "recurrence_pattern": data.recurrence_pattern.value,
        "recurrence_days": data.recurrence_days,
        "recurrence_end_date": data.recurrence_end_date,
        "color": data.color or DEFAULT_TASK_COLOR,
    }

    if data.recurrence_pattern == RecurrencePattern.ONCE:
        rows = [dict(base, scheduled_date=data.scheduled_date, recurrence_group_id=None,
                     status=status_for(data.scheduled_date, data.scheduled_time))]
    else:
        anchor = data.scheduled_date or datetime.now(prefs.tzinfo).date()
        dates = expand_occurrences(data.recurrence_pattern.value, anchor,
                                   data.recurrence_days, data.recurrence_end_date)
        if not dates:
            raise InvalidTask("Recurrence does not produce any occurrences")
        group_id = uuid4()
        rows = [
            dict(base, scheduled_date=day, recurrence_group_id=group_id,
                 status=status_for(day, data.scheduled_time))
            for day in dates
        ]

    created = await create_tasks(rows)
    logger.info(f"Created {len(created)} task row(s) '{data.title}' for user {user_id}")
    return created


async def get_task_or_404(user_id: UUID, task_id: UUID) -> dict:
    return await _require_task(user_id, task_id)


async def list_tasks(user_id: UUID, status: Optional[str] = None) -> List[dict]:
    return await get_active_tasks(user_id, [status] if status else None)


async def tasks_for_date(user_id: UUID, day: date) -> List[dict]:
    return await get_tasks_for_date(user_id, day)


async def update_task(user_id: UUID, task_id: UUID, data: TaskUpdate, force: bool = False) -> dict:
    """
    Apply a partial update.

    Moving the date or time of an open task also moves its status between
    pending and scheduled unless the caller sets status explicitly.
    """
    task = await _require_task(user_id, task_id)
    updates: Dict[str, Any] = data.model_dump(exclude_unset=True, mode="python")
    for key in _REQUIRED_ON_UPDATE:
        if key in updates and updates[key] is None:
            del updates[key]
    for key, value in list(updates.items()):
        if hasattr(value, "value"):
            updates[key] = value.value

    new_date = updates.get("scheduled_date", task.get("scheduled_date"))
    new_time = updates.get("scheduled_time", task.get("scheduled_time"))
    if new_time is not None and new_date is None:
        raise InvalidTask("Please select a date before setting a time")

    if "scheduled_time" in updates:
        await _check_downtime(user_id, updates["scheduled_time"], force)

    schedule_touched = "scheduled_date" in updates or "scheduled_time" in updates
    if schedule_touched and "status" not in updates and task.get("status") in _OPEN_STATUSES:
        updates["status"] = status_for(new_date, new_time)

    updated = await update_task_row(user_id, task_id, **updates)
    if updated is None:
        raise TaskNotFound(task_id)
    return updated


async def set_status(user_id: UUID, task_id: UUID, status: TaskStatus) -> dict:
    await _require_task(user_id, task_id)
    return await update_task_row(user_id, task_id, status=TaskStatus(status).value)


# ============================================
# DELETE / TRASH
# ============================================

async def delete_task(user_id: UUID, task_id: UUID, scope: DeleteScope = DeleteScope.SINGLE) -> int:
    """Soft delete one task, or every live task in its recurrence series."""
    task = await _require_task(user_id, task_id)
    task_ids = [task["id"]]
    group_id = task.get("recurrence_group_id")
    if DeleteScope(scope) == DeleteScope.SERIES and group_id:
        task_ids = await get_series_task_ids(user_id, group_id) or task_ids

    deleted = await soft_delete_tasks(user_id, task_ids)
    logger.info(f"Soft deleted {deleted} task(s) for user {user_id} (scope={DeleteScope(scope).value})")
    return deleted


def group_deleted_tasks(rows: List[dict], now: Optional[datetime] = None,
                        purge_after_days: Optional[int] = None) -> List[DeletedTaskGroup]:
    """Group trash rows by recurrence series (or by task), keeping newest-first order."""
    now = now or datetime.now(timezone.utc)
    if purge_after_days is None:
        purge_after_days = get_task_config().purge_after_days

    groups: Dict[Any, dict] = {}
    for row in rows:
        key = row.get("recurrence_group_id") or row["id"]
        group = groups.get(key)
        if group is None:
            groups[key] = {
                "id": key,
                "title": row["title"],
                "description": row.get("description"),
                "deleted_at": row["deleted_at"],
                "task_ids": [row["id"]],
                "is_recurring": row.get("recurrence_group_id") is not None,
                "recurrence_pattern": row.get("recurrence_pattern"),
            }
        else:
            group["task_ids"].append(row["id"])

    result = []
    for group in groups.values():
        purge_at = group["deleted_at"] + timedelta(days=purge_after_days)
        days_left = math.ceil((purge_at - now).total_seconds() / 86400)
        result.append(DeletedTaskGroup(
            count=len(group["task_ids"]),
            days_until_purge=max(days_left, 0),
            **group,
        ))
    return result


async def list_deleted_groups(user_id: UUID, now: Optional[datetime] = None) -> List[DeletedTaskGroup]:
    return group_deleted_tasks(await get_deleted_tasks(user_id), now)


async def restore_tasks(user_id: UUID, task_ids: List[UUID]) -> int:
    restored = await restore_task_rows(user_id, task_ids)
    logger.info(f"Restored {restored} task(s) for user {user_id}")
    return restored


async def delete_permanently(user_id: UUID, task_ids: List[UUID]) -> int:
    removed = await hard_delete_tasks(user_id, task_ids)
    logger.info(f"Permanently deleted {removed} task(s) for user {user_id}")
    return removed


async def purge_deleted_tasks(user_id: UUID, older_than_days: Optional[int] = None) -> int:
    """Hard delete the user's tasks that have been in the trash longer than the retention window."""
    days = get_task_config().purge_after_days if older_than_days is None else older_than_days
    purged = await purge_user_trash(user_id, days)
    await log_system("info", f"Purged {purged} deleted task(s) older than {days} days",
                     {"user_id": str(user_id), "purged": purged, "older_than_days": days})
    return purged


async def purge_expired_trash() -> int:
    """Retention sweep over every user's trash, run from check_db.py --purge."""
    days = get_task_config().purge_after_days
    purged = await purge_all_trash(days)
    await log_system("info", f"Retention purge removed {purged} task(s) older than {days} days",
                     {"purged": purged, "older_than_days": days})
    return purged
