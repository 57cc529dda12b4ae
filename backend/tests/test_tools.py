import json
from datetime import date, datetime, time

from dateutil import tz

from scheduler import Preferences
from tools import SCHEDULE_TASKS_TOOL, FORCED_TOOL_CHOICE, build_scheduling_messages


def _context(prefs, make_task, now):
    pending = make_task("Essay", description="Intro + outline", priority="high", scheduled_date=date(2025, 1, 8))
    booked = make_task("Gym", scheduled_date=date(2025, 1, 7), scheduled_time=time(18), duration_minutes=45)
    event = {"title": "Dentist", "start_time": datetime(2025, 1, 7, 14, tzinfo=tz.UTC),
             "end_time": datetime(2025, 1, 7, 15, tzinfo=tz.UTC)}
    return pending, {
        "profile": prefs,
        "unscheduled_tasks": [pending],
        "scheduled_tasks": [booked],
        "calendar_events": [event],
        "now": now,
        "horizon_days": 7,
        "buffer_minutes": 10,
    }


def test_tool_schema_is_forced():
    assert FORCED_TOOL_CHOICE["function"]["name"] == SCHEDULE_TASKS_TOOL["function"]["name"] == "schedule_tasks"
    item = SCHEDULE_TASKS_TOOL["function"]["parameters"]["properties"]["schedules"]["items"]
    assert set(item["required"]) == {"task_id", "suggested_start", "duration_minutes", "score", "reason"}


def test_messages_describe_profile_tasks_and_conflicts(prefs, make_task, now):
    pending, context = _context(prefs, make_task, now)

    system, user = build_scheduling_messages(context)

    assert system["role"] == "system"
    assert "10 minute buffer" in system["content"]
    assert "within 7 days" in system["content"]
    assert str(pending["id"]) in user["content"]
    assert '"requested_date": "2025-01-08"' in user["content"]
    assert "Dentist" in user["content"]
    assert '"time": "18:00"' in user["content"]
    assert "Wake time: 08:00" in user["content"]
    assert "No downtime configured" in user["content"]


def test_messages_include_downtime(make_task, now):
    prefs = Preferences(tzinfo=tz.UTC, timezone_name="UTC", wake_time=time(7), bed_time=time(23),
                        downtime_start=time(21), downtime_end=time(22, 30))
    _, context = _context(prefs, make_task, now)

    _, user = build_scheduling_messages(context)

    assert "Downtime: 21:00 to 22:30" in user["content"]


def test_task_payload_is_valid_json(prefs, make_task, now):
    pending, context = _context(prefs, make_task, now)
    _, user = build_scheduling_messages(context)

    start = user["content"].index("TASKS TO SCHEDULE:") + len("TASKS TO SCHEDULE:")
    end = user["content"].index("ALREADY SCHEDULED TASKS")
    payload = json.loads(user["content"][start:end])

    assert payload[0]["title"] == "Essay"
    assert payload[0]["priority"] == "high"
    assert payload[0]["duration_minutes"] == 60
