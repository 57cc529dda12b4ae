"""
Timewise - AI Tools
Function definition and prompts for the scheduling request
"""

import json
from datetime import datetime
from typing import Dict, Any, List, Optional


SCHEDULE_TOOL_NAME = "schedule_tasks"


# ============================================
# TOOL DEFINITIONS (for AI to call)
# ============================================

SCHEDULE_TASKS_TOOL = {
    "type": "function",
    "function": {
        "name": SCHEDULE_TOOL_NAME,
        "description": "Schedule tasks into optimal time slots with human-like reasoning",
        "parameters": {
            "type": "object",
            "properties": {
                "schedules": {
                    "type": "array",
                    "description": "One entry per task with the chosen slot and why",
                    "items": {
                        "type": "object",
                        "properties": {
                            "task_id": {
                                "type": "string",
                                "description": "UUID of the task to schedule"
                            },
                            "suggested_start": {
                                "type": "string",
                                "description": "Full ISO 8601 datetime with timezone offset "
                                               "(e.g. 2025-11-22T14:00:00-05:00). Must include time and offset."
                            },
                            "duration_minutes": {
                                "type": "number",
                                "description": "Duration of the task in minutes"
                            },
                            "score": {
                                "type": "number",
                                "description": "Placement quality 0-1 from the scoring rubric"
                            },
                            "reason": {
                                "type": "string",
                                "description": "1-2 sentences on why this slot benefits the user"
                            }
                        },
                        "required": ["task_id", "suggested_start", "duration_minutes", "score", "reason"],
                        "additionalProperties": False
                    }
                }
            },
            "required": ["schedules"],
            "additionalProperties": False
        }
    }
}

FORCED_TOOL_CHOICE = {"type": "function", "function": {"name": SCHEDULE_TOOL_NAME}}


# ============================================
# PROMPTS
# ============================================

SCHEDULING_SYSTEM_PROMPT = """You are an expert human planner. Schedule tasks where users benefit most.

SCORING RUBRIC (use to evaluate each placement):
+0.4 if slot matches user focus preference and is during prime focus time
+0.25 if slot is on a day with spare time (less than average load)
+0.2 if slot avoids travel/conflict (no calendar events nearby)
-0.3 if slot is late-night or inside downtime
Final score normalized to 0-1

PLACEMENT LOGIC (must follow):
1. NEVER schedule inside downtime or outside wake_time-bed_time
2. Respect all calendar events and already scheduled tasks: no overlaps, keep a {buffer} minute buffer
3. Prefer the user's focus preference for high priority tasks (score >= 0.8 for high priority)
4. Tasks with a requested date but no time: place on that day at the BEST slot (not a noon default)
5. Tasks without date/time: use the next available day within {horizon} days and balance load \
(avoid exceeding ideal_focus_duration * 2 per day)
6. A task with commute minutes needs that much free time before it starts
7. Return the highest benefit score and a 1-2 sentence reason for each placement

EDGE CASES: If no conflict-free slot exists within {horizon} days, return a best-effort slot \
with score < 0.5 and explain the trade-off."""


def build_system_prompt(horizon_days: int, buffer_minutes: int) -> str:
    return SCHEDULING_SYSTEM_PROMPT.format(horizon=horizon_days, buffer=buffer_minutes)


def _fmt_clock(value) -> Optional[str]:
    if value is None:
        return None
    return value.strftime("%H:%M") if hasattr(value, "strftime") else str(value)


def build_scheduling_messages(context: Dict[str, Any]) -> List[Dict[str, str]]:
    """
    Render the chat messages for one scheduling request.

    Args:
        context: Dict with profile (Preferences), unscheduled_tasks, scheduled_tasks,
                 calendar_events, now (aware datetime), horizon_days, buffer_minutes

    Returns:
        System and user messages
    """
    prefs = context["profile"]
    unscheduled = context["unscheduled_tasks"]
    scheduled = context["scheduled_tasks"]
    events = context["calendar_events"]
    now: datetime = context["now"]
    horizon = context["horizon_days"]

    if prefs.downtime_start and prefs.downtime_end:
        downtime_line = f"- Downtime: {_fmt_clock(prefs.downtime_start)} to {_fmt_clock(prefs.downtime_end)}"
    else:
        downtime_line = "- No downtime configured"

    tasks_payload = [
        {
            "id": str(t["id"]),
            "title": t["title"],
            "duration_minutes": t.get("duration_minutes") or 60,
            "commute_minutes": t.get("commute_minutes") or 0,
            "priority": t.get("priority") or "medium",
            "description": t.get("description"),
            "requested_date": t["scheduled_date"].isoformat() if t.get("scheduled_date") else None,
        }
        for t in unscheduled
    ]
    scheduled_payload = [
        {
            "date": t["scheduled_date"].isoformat(),
            "time": _fmt_clock(t["scheduled_time"]),
            "duration_minutes": t.get("duration_minutes") or 60,
            "title": t["title"],
        }
        for t in scheduled
    ]
    events_payload = [
        {
            "start": e["start_time"].isoformat(),
            "end": e["end_time"].isoformat(),
            "title": e["title"],
        }
        for e in events
    ]

    user_prompt = f"""Schedule these {len(unscheduled)} unscheduled tasks over the next {horizon} days starting {now.isoformat()}.

USER PROFILE:
- Focus preference: {prefs.focus_preference}
- Ideal focus duration: {prefs.ideal_focus_duration} minutes
- Timezone: {prefs.timezone_name}
- Wake time: {_fmt_clock(prefs.wake_time)}
- Bed time: {_fmt_clock(prefs.bed_time)}
{downtime_line}

TASKS TO SCHEDULE:
{json.dumps(tasks_payload, indent=2)}

ALREADY SCHEDULED TASKS (avoid conflicts, times are local):
{json.dumps(scheduled_payload, indent=2)}

CALENDAR EVENTS (avoid conflicts):
{json.dumps(events_payload, indent=2)}

Schedule ALL {len(unscheduled)} tasks. Return one suggestion per task with a full ISO 8601 datetime \
(with timezone offset), score, and reason."""

    return [
        {"role": "system", "content": build_system_prompt(horizon, context["buffer_minutes"])},
        {"role": "user", "content": user_prompt},
    ]
