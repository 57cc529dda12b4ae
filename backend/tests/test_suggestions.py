import json
from datetime import date, datetime, time
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

import httpx
import pytest
from dateutil import tz
from openai import APIConnectionError

import suggestions
from config import AIConfig
from models import SuggestionOutcome
from tools import FORCED_TOOL_CHOICE


class FakeAI:
    """Stands in for AIClient.chat and records every call."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def chat(self, messages, tools=None, temperature=None, max_tokens=None, tool_choice="auto"):
        self.calls.append({"messages": messages, "tools": tools, "temperature": temperature,
                           "tool_choice": tool_choice})
        if self.error:
            raise self.error
        return self.response


def tool_response(schedules):
    return {
        "content": None,
        "tool_calls": [{
            "id": "call_1",
            "type": "function",
            "function": {"name": "schedule_tasks", "arguments": json.dumps({"schedules": schedules})},
        }],
        "finish_reason": "tool_calls",
        "usage": {},
    }


@pytest.fixture
def store(monkeypatch):
    state = SimpleNamespace(profile=None, tasks=[], events=[], suggestions=[], schedule_updates=[],
                            task_updates=[], deleted_pending=0, logs=[], suggestion=None, task=None,
                            pending=[])

    async def get_profile(user_id):
        return state.profile

    async def get_active_tasks(user_id, statuses=None):
        return [t for t in state.tasks if not statuses or t["status"] in statuses]

    async def get_calendar_events(user_id, start, end):
        return state.events

    async def replace_schedule(user_id, rows, schedules):
        state.deleted_pending += 1
        state.suggestions.extend(rows)
        state.schedule_updates.extend(schedules)

    async def set_task_schedule(user_id, task_id, scheduled_date, scheduled_time, status):
        state.schedule_updates.append((task_id, scheduled_date, scheduled_time, status))

    async def update_task_row(user_id, task_id, **updates):
        state.task_updates.append((task_id, updates))

    async def get_suggestion(user_id, suggestion_id):
        return state.suggestion

    async def set_suggestion_outcome(user_id, suggestion_id, outcome):
        return dict(state.suggestion, outcome=outcome)

    async def get_task(user_id, task_id):
        return state.task

    async def get_pending_suggestions(user_id, limit):
        return state.pending[:limit]

    async def log_system(level, message, context=None):
        state.logs.append((level, message))

    for fn in (get_profile, get_active_tasks, get_calendar_events, replace_schedule,
               set_task_schedule, update_task_row, get_suggestion,
               set_suggestion_outcome, get_task, get_pending_suggestions, log_system):
        monkeypatch.setattr(suggestions, fn.__name__, fn)
    return state


# ============================================
# RESPONSE PARSING
# ============================================

def test_parse_proposals_from_tool_call():
    proposals = suggestions.parse_proposals(tool_response([{"task_id": "a", "suggested_start": "2025-01-07"}]))
    assert proposals == [{"task_id": "a", "suggested_start": "2025-01-07"}]


def test_parse_proposals_accepts_dict_arguments():
    response = {"tool_calls": [{"function": {"name": "schedule_tasks",
                                             "arguments": {"schedules": [{"task_id": "a"}]}}}]}
    assert suggestions.parse_proposals(response) == [{"task_id": "a"}]


def test_parse_proposals_from_content():
    response = {"tool_calls": [], "content": 'Plan:\n```json\n{"schedules": [{"task_id": "b"}]}\n```'}
    assert suggestions.parse_proposals(response) == [{"task_id": "b"}]


def test_parse_proposals_ignores_other_tools_and_garbage():
    response = {"tool_calls": [{"function": {"name": "other", "arguments": "{}"}}], "content": None}
    assert suggestions.parse_proposals(response) == []
    assert suggestions.parse_proposals({"content": "I cannot help with that."}) == []


@pytest.mark.parametrize("arguments", ['{"schedules": 5}', '{"schedules": "soon"}', '{"suggestions": {"a": 1}}'])
def test_parse_proposals_rejects_non_list_schedules(arguments):
    response = {"tool_calls": [{"function": {"name": "schedule_tasks", "arguments": arguments}}]}
    assert suggestions.parse_proposals(response) == []


async def test_generate_survives_odd_field_types(store, user_id, now, schedule_config, make_task):
    essay = make_task("Essay")
    store.tasks = [essay]
    ai = FakeAI(tool_response([{"task_id": str(essay["id"]), "suggested_start": "2025-01-07T10:30:00Z",
                                "score": "high", "reason": 123}]))

    result = await suggestions.generate_suggestions(user_id, ai, now, schedule_config)

    (placed,) = result.suggestions
    assert placed["source"] == "model"
    assert placed["reason"] == "123"
    assert placed["score"] == 0.8


async def test_generate_writes_plan_in_one_call(store, monkeypatch, user_id, now, schedule_config, make_task):
    calls = []

    async def replace_schedule(uid, rows, schedules):
        calls.append((uid, rows, schedules))
    monkeypatch.setattr(suggestions, "replace_schedule", replace_schedule)
    essay, reading = make_task("Essay"), make_task("Reading")
    store.tasks = [essay, reading]

    await suggestions.generate_suggestions(user_id, FakeAI(tool_response([])), now, schedule_config)

    (call,) = calls
    assert call[0] == user_id
    assert {row["task_id"] for row in call[1]} == {essay["id"], reading["id"]}
    assert {s[0] for s in call[2]} == {essay["id"], reading["id"]}
    assert store.schedule_updates == []


# ============================================
# GENERATE
# ============================================

async def test_no_tasks(store, user_id, now, schedule_config):
    ai = FakeAI()
    result = await suggestions.generate_suggestions(user_id, ai, now, schedule_config)
    assert result.message == "No tasks to schedule"
    assert result.suggestions == []
    assert ai.calls == []


async def test_nothing_unscheduled(store, user_id, now, schedule_config, make_task):
    store.tasks = [make_task("Gym", status="scheduled", scheduled_date=date(2025, 1, 7), scheduled_time=time(18))]
    ai = FakeAI()

    result = await suggestions.generate_suggestions(user_id, ai, now, schedule_config)

    assert result.message == "No unscheduled tasks to place"
    assert ai.calls == []
    assert store.deleted_pending == 0


async def test_generate_places_every_unscheduled_task(store, user_id, now, schedule_config, make_task):
    essay = make_task("Essay", priority="high")
    reading = make_task("Reading", duration_minutes=30)
    gym = make_task("Gym", status="scheduled", scheduled_date=date(2025, 1, 7), scheduled_time=time(18))
    store.tasks = [essay, reading, gym]
    store.events = [{"title": "Standup", "start_time": datetime(2025, 1, 7, 9, tzinfo=tz.UTC),
                     "end_time": datetime(2025, 1, 7, 10, tzinfo=tz.UTC)}]
    ai = FakeAI(tool_response([
        {"task_id": str(essay["id"]), "suggested_start": "2025-01-07T10:30:00Z", "duration_minutes": 60,
         "score": 0.9, "reason": "Morning focus block"},
        {"task_id": str(gym["id"]), "suggested_start": "2025-01-07T12:00:00Z", "duration_minutes": 60,
         "score": 0.5, "reason": "Already booked"},
    ]))

    result = await suggestions.generate_suggestions(user_id, ai, now, schedule_config)

    assert result.message == "Scheduled 2 unscheduled tasks"
    assert result.ai_available is True
    assert ai.calls[0]["tool_choice"] == FORCED_TOOL_CHOICE
    assert ai.calls[0]["tools"][0]["function"]["name"] == "schedule_tasks"

    by_title = {s["title"]: s for s in result.suggestions}
    assert by_title["Essay"]["source"] == "model"
    assert by_title["Essay"]["scheduled_time"] == "10:30"
    assert by_title["Reading"]["source"] == "fallback"
    assert by_title["Reading"]["scheduled_date"] == "2025-01-07"
    assert by_title["Reading"]["scheduled_time"] == "08:00"

    assert store.deleted_pending == 1
    assert {row["task_id"] for row in store.suggestions} == {essay["id"], reading["id"]}
    updated_ids = {update[0] for update in store.schedule_updates}
    assert updated_ids == {essay["id"], reading["id"]}
    assert all(update[3] == "scheduled" for update in store.schedule_updates)
    assert (essay["id"], date(2025, 1, 7), time(10, 30), "scheduled") in store.schedule_updates


async def test_generate_falls_back_when_ai_is_down(store, user_id, now, schedule_config, make_task):
    store.tasks = [make_task("Essay"), make_task("Reading")]
    error = APIConnectionError(request=httpx.Request("POST", "https://ai.test/v1/chat/completions"))

    result = await suggestions.generate_suggestions(user_id, FakeAI(error=error), now, schedule_config)

    assert result.ai_available is False
    assert "AI unavailable" in result.message
    assert [s["source"] for s in result.suggestions] == ["fallback", "fallback"]
    assert len(store.schedule_updates) == 2
    assert any(level == "error" for level, _ in store.logs)


async def test_generate_raises_when_fallback_disabled(store, monkeypatch, user_id, now, schedule_config, make_task):
    store.tasks = [make_task("Essay")]
    monkeypatch.setattr(suggestions, "get_ai_config", lambda: AIConfig(fallback_on_ai_error=False))
    error = APIConnectionError(request=httpx.Request("POST", "https://ai.test/v1/chat/completions"))

    with pytest.raises(suggestions.SchedulingError):
        await suggestions.generate_suggestions(user_id, FakeAI(error=error), now, schedule_config)

    assert store.schedule_updates == []
    assert store.deleted_pending == 0


async def test_generate_uses_profile_timezone(store, user_id, now, schedule_config, make_task):
    store.profile = {"timezone": "America/New_York", "wake_time": time(7), "bed_time": time(23)}
    essay = make_task("Essay")
    store.tasks = [essay]
    ai = FakeAI(tool_response([{"task_id": str(essay["id"]), "suggested_start": "2025-01-07T20:00:00",
                                "score": 0.7, "reason": "Evening"}]))

    result = await suggestions.generate_suggestions(user_id, ai, now, schedule_config)

    assert result.suggestions[0]["source"] == "model"
    assert result.suggestions[0]["suggested_start"] == "2025-01-07T20:00:00-05:00"
    assert store.schedule_updates == [(essay["id"], date(2025, 1, 7), time(20), "scheduled")]
    assert "Timezone: America/New_York" in ai.calls[0]["messages"][1]["content"]


# ============================================
# FEEDBACK
# ============================================

def _suggestion(task_id):
    return {"id": uuid4(), "task_id": task_id, "suggested_start": datetime(2025, 1, 7, 14, tzinfo=tz.UTC),
            "duration_minutes": 60, "score": Decimal("0.85"), "outcome": None}


async def test_accept_confirms_slot(store, user_id, make_task):
    task = make_task("Essay")
    store.task = task
    store.suggestion = _suggestion(task["id"])

    result = await suggestions.record_feedback(user_id, store.suggestion["id"], SuggestionOutcome.ACCEPTED)

    assert result["outcome"] == "accepted"
    assert result["score"] == 0.85
    assert store.schedule_updates == [(task["id"], date(2025, 1, 7), time(14), "scheduled")]


async def test_dismiss_clears_slot_still_held(store, user_id, make_task):
    task = make_task("Essay", status="scheduled", scheduled_date=date(2025, 1, 7), scheduled_time=time(14))
    store.task = task
    store.suggestion = _suggestion(task["id"])

    await suggestions.record_feedback(user_id, store.suggestion["id"], "dismissed")

    assert store.schedule_updates == [(task["id"], None, None, "pending")]


async def test_dismiss_leaves_moved_task_alone(store, user_id, make_task):
    task = make_task("Essay", status="scheduled", scheduled_date=date(2025, 1, 8), scheduled_time=time(9))
    store.task = task
    store.suggestion = _suggestion(task["id"])

    await suggestions.record_feedback(user_id, store.suggestion["id"], "dismissed")

    assert store.schedule_updates == []


async def test_completed_closes_task(store, user_id, make_task):
    task = make_task("Essay")
    store.task = task
    store.suggestion = _suggestion(task["id"])

    await suggestions.record_feedback(user_id, store.suggestion["id"], "completed")

    assert store.task_updates == [(task["id"], {"status": "completed"})]


async def test_feedback_on_missing_suggestion(store, user_id):
    with pytest.raises(suggestions.SuggestionNotFound):
        await suggestions.record_feedback(user_id, uuid4(), "accepted")


async def test_pending_suggestions_are_limited_and_plain(store, user_id):
    store.pending = [{"id": uuid4(), "score": Decimal("0.9")} for _ in range(7)]

    rows = await suggestions.list_pending_suggestions(user_id)

    assert len(rows) == 5
    assert rows[0]["score"] == 0.9
