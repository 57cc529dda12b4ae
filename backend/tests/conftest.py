import os
import tempfile
from datetime import datetime, time
from uuid import uuid4

# keep test runs out of backend/logs
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "timewise-test-logs"))

import pytest
from dateutil import tz

from config import ScheduleConfig, TaskConfig
from scheduler import Preferences


NOW = datetime(2025, 1, 6, 10, 0, tzinfo=tz.UTC)  # a Monday


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def schedule_config():
    return ScheduleConfig(
        horizon_days=7,
        buffer_minutes=10,
        fallback_search_days=30,
        fallback_score=0.3,
        date_only_default_time=time(9, 0),
        suggestions_limit=5,
    )


@pytest.fixture
def task_config():
    return TaskConfig(purge_after_days=30, recurrence_default_weeks=12, max_occurrences=366)


@pytest.fixture
def prefs():
    return Preferences(tzinfo=tz.UTC, timezone_name="UTC", wake_time=time(8), bed_time=time(22))


@pytest.fixture
def make_task():
    def _make(title="Task", **overrides):
        task = {
            "id": uuid4(),
            "title": title,
            "description": None,
            "duration_minutes": 60,
            "commute_minutes": 0,
            "priority": "medium",
            "status": "pending",
            "scheduled_date": None,
            "scheduled_time": None,
            "recurrence_group_id": None,
            "deleted_at": None,
        }
        task.update(overrides)
        return task
    return _make
