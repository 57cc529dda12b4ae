"""
Timewise - Scheduling Suggestions
Asks the model where unscheduled tasks should go, checks its answer, and writes the plan.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, List, Dict, Any
from uuid import UUID

from fastapi.concurrency import run_in_threadpool
from openai import OpenAIError

from ai_client import AIClient, get_ai_client
from config import get_ai_config, get_schedule_config, ScheduleConfig
from database import (
    get_profile, get_active_tasks, get_task, get_calendar_events,
    replace_schedule, set_task_schedule,
    get_pending_suggestions, get_suggestion, set_suggestion_outcome,
    update_task as update_task_row, log_system,
)
from json_parser import parse_json_from_response
from logger import get_logger
from models import ScheduleResult, SuggestionOutcome, SuggestionSource, TaskStatus
from scheduler import (
    Preferences, split_tasks, busy_intervals, plan_schedule, find_conflicts,
)
from tools import SCHEDULE_TASKS_TOOL, SCHEDULE_TOOL_NAME, FORCED_TOOL_CHOICE, build_scheduling_messages

logger = get_logger("suggestions")


class SchedulingError(Exception):
    """The model could not be reached and fallback placement is disabled."""


class SuggestionNotFound(Exception):
    def __init__(self, suggestion_id):
        super().__init__(f"Suggestion {suggestion_id} not found")


# ============================================
# RESPONSE PARSING
# ============================================

def _extract_schedules(parsed: Any) -> List[Dict[str, Any]]:
    if isinstance(parsed, dict):
        items = parsed.get("schedules") or parsed.get("suggestions") or []
    elif isinstance(parsed, list):
        items = parsed
    else:
        return []
    if not isinstance(items, list):
        logger.error(f"Expected a list of schedules, got {type(items).__name__}")
        return []
    return [item for item in items if isinstance(item, dict)]


def parse_proposals(response: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Pull schedule entries out of a chat response.

    Prefers the schedule_tasks tool call (arguments as a JSON string or dict) and
    falls back to JSON embedded in the message text.
    """
    for call in response.get("tool_calls") or []:
        function = call.get("function") or {}
        if function.get("name") != SCHEDULE_TOOL_NAME:
            continue
        arguments = function.get("arguments")
        parsed = parse_json_from_response(arguments) if isinstance(arguments, str) else arguments
        proposals = _extract_schedules(parsed)
        if not proposals:
            logger.error("schedule_tasks call carried no usable schedules")
        return proposals

    content = response.get("content")
    if content:
        logger.warning("No tool call in AI response, parsing message content")
        proposals = _extract_schedules(parse_json_from_response(content))
        if not proposals:
            logger.error("Could not find schedules in AI message content")
        return proposals

    logger.error("AI response had neither a tool call nor content")
    return []


# ============================================
# GENERATE
# ============================================

def _in_window(task: dict, first_day, last_day) -> bool:
    return first_day <= task["scheduled_date"] <= last_day


async def generate_suggestions(user_id: UUID, ai_client: Optional[AIClient] = None,
                               now: Optional[datetime] = None,
                               config: Optional[ScheduleConfig] = None) -> ScheduleResult:
    """
    Schedule every pending task that lacks a date or a time.

    Steps:
        1. Load profile, open tasks and calendar events
        2. Ask the model through the forced schedule_tasks tool
        3. Check proposals and place anything missed (scheduler.plan_schedule)
        4. Replace pending suggestions and write date/time onto the tasks

    Raises:
        SchedulingError: The AI call failed and fallback_on_ai_error is off
    """
    config = config or get_schedule_config()
    ai_config = get_ai_config()
    now = now or datetime.now(timezone.utc)

    profile = await get_profile(user_id)
    if profile is None:
        logger.info(f"No profile for user {user_id}, using default preferences")
    prefs = Preferences.from_profile(profile, config)

    tasks = await get_active_tasks(user_id, [TaskStatus.PENDING.value, TaskStatus.SCHEDULED.value])
    if not tasks:
        return ScheduleResult(message="No tasks to schedule", suggestions=[])

    unscheduled, scheduled = split_tasks(tasks)
    if not unscheduled:
        return ScheduleResult(message="No unscheduled tasks to place", suggestions=[])

    horizon_end = now + timedelta(days=config.horizon_days)
    search_end = now + timedelta(days=max(config.horizon_days, config.fallback_search_days) + 2)
    events = await get_calendar_events(user_id, now - timedelta(days=1), search_end)

    today = prefs.local(now).date()
    context = {
        "profile": prefs,
        "unscheduled_tasks": unscheduled,
        "scheduled_tasks": [t for t in scheduled if _in_window(t, today, prefs.local(horizon_end).date())],
        "calendar_events": [e for e in events if e["start_time"] < horizon_end and e["end_time"] > now],
        "now": prefs.local(now),
        "horizon_days": config.horizon_days,
        "buffer_minutes": config.buffer_minutes,
    }
    logger.info(f"Scheduling for user {user_id}: {len(unscheduled)} unscheduled, "
                f"{len(scheduled)} scheduled, {len(context['calendar_events'])} events in horizon")

    ai_available = True
    proposals: List[Dict[str, Any]] = []
    try:
        client = ai_client or get_ai_client()
        response = await run_in_threadpool(
            client.chat,
            build_scheduling_messages(context),
            tools=[SCHEDULE_TASKS_TOOL],
            tool_choice=FORCED_TOOL_CHOICE,
            temperature=ai_config.temperature,
        )
        proposals = parse_proposals(response)
    except OpenAIError as e:
        await log_system("error", f"AI scheduling request failed: {e}", {"user_id": str(user_id)})
        if not ai_config.fallback_on_ai_error:
            raise SchedulingError(f"AI gateway error: {e}") from e
        ai_available = False

    logger.info(f"Model returned {len(proposals)} proposal(s) for {len(unscheduled)} task(s)")

    busy = busy_intervals(scheduled, events, prefs)
    plan = plan_schedule(unscheduled, proposals, busy, prefs, now, config)

    conflicts = find_conflicts(plan, busy)
    if conflicts:
        logger.warning(f"Plan still overlaps existing commitments: {conflicts}")

    tasks_by_id = {str(t["id"]): t for t in unscheduled}
    rows = []
    for placement in plan:
        row = placement.to_suggestion_row(user_id)
        row["task_id"] = tasks_by_id[placement.task_id]["id"]
        rows.append(row)

    schedules = [
        (tasks_by_id[p.task_id]["id"], p.scheduled_date, p.scheduled_time, TaskStatus.SCHEDULED.value)
        for p in plan
    ]
    await replace_schedule(user_id, rows, schedules)

    fallback_count = sum(1 for p in plan if p.source == SuggestionSource.FALLBACK)
    message = f"Scheduled {len(plan)} unscheduled tasks"
    if not ai_available:
        message += " (AI unavailable, used fallback placement)"
    await log_system("info", message, {
        "user_id": str(user_id),
        "proposals": len(proposals),
        "fallback": fallback_count,
    })

    return ScheduleResult(
        message=message,
        suggestions=[p.to_response() for p in plan],
        ai_available=ai_available,
    )


# ============================================
# PENDING SUGGESTIONS & FEEDBACK
# ============================================

def _plain(row: dict) -> dict:
    if isinstance(row.get("score"), Decimal):
        row["score"] = float(row["score"])
    return row


async def list_pending_suggestions(user_id: UUID, limit: Optional[int] = None) -> List[dict]:
    limit = limit or get_schedule_config().suggestions_limit
    return [_plain(r) for r in await get_pending_suggestions(user_id, limit)]


async def record_feedback(user_id: UUID, suggestion_id: UUID, outcome: SuggestionOutcome) -> dict:
    """
    Store the user's answer to a suggestion and apply it to the task.

    accepted confirms the suggested slot, completed closes the task, and dismissed
    clears the slot only while the task still holds it.
    """
    suggestion = await get_suggestion(user_id, suggestion_id)
    if suggestion is None:
        raise SuggestionNotFound(suggestion_id)

    outcome = SuggestionOutcome(outcome)
    updated = await set_suggestion_outcome(user_id, suggestion_id, outcome.value)

    task = await get_task(user_id, suggestion["task_id"])
    if task is None or task.get("deleted_at") is not None:
        logger.info(f"Suggestion {suggestion_id} points at a missing task, outcome stored only")
        return _plain(updated)

    prefs = Preferences.from_profile(await get_profile(user_id))
    start = prefs.local(suggestion["suggested_start"])
    slot_date, slot_time = start.date(), start.time().replace(second=0, microsecond=0)

    if outcome == SuggestionOutcome.ACCEPTED:
        await set_task_schedule(user_id, task["id"], slot_date, slot_time, TaskStatus.SCHEDULED.value)
    elif outcome == SuggestionOutcome.COMPLETED:
        await update_task_row(user_id, task["id"], status=TaskStatus.COMPLETED.value)
    elif outcome == SuggestionOutcome.DISMISSED:
        if task.get("scheduled_date") == slot_date and task.get("scheduled_time") == slot_time:
            await set_task_schedule(user_id, task["id"], None, None, TaskStatus.PENDING.value)

    logger.info(f"Suggestion {suggestion_id} marked {outcome.value}")
    return _plain(updated)
