"""
Timewise - Pydantic Models (v2 syntax)
"""

import re
from datetime import date, datetime, time
from enum import Enum
from typing import Optional, List, Any, Union
from uuid import UUID

from dateutil import tz
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator


WEEKDAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]

_TIME_RE = re.compile(r"^\d{2}:\d{2}(:\d{2})?$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


# ============================================
# ENUMS
# ============================================

class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


PRIORITY_RANK = {Priority.HIGH.value: 0, Priority.MEDIUM.value: 1, Priority.LOW.value: 2}


class TaskStatus(str, Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RecurrencePattern(str, Enum):
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    CUSTOM = "custom"


class FocusPreference(str, Enum):
    MORNING = "morning"
    EVENING = "evening"
    FLEXIBLE = "flexible"


class SuggestionOutcome(str, Enum):
    ACCEPTED = "accepted"
    SNOOZED = "snoozed"
    DISMISSED = "dismissed"
    COMPLETED = "completed"


class SuggestionSource(str, Enum):
    MODEL = "model"
    FALLBACK = "fallback"


class DeleteScope(str, Enum):
    SINGLE = "single"
    SERIES = "series"


# ============================================
# FIELD HELPERS
# ============================================

def _parse_clock(value: Any) -> Any:
    """Accept HH:MM or HH:MM:SS strings; leave time objects alone."""
    if value is None or isinstance(value, time):
        return value
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        if not _TIME_RE.match(value):
            raise ValueError("Invalid time format")
        return time.fromisoformat(value)
    return value


def _parse_day(value: Any) -> Any:
    if value is None or isinstance(value, date):
        return value
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        if not _DATE_RE.match(value):
            raise ValueError("Invalid date format")
        return date.fromisoformat(value)
    return value


def _as_list(value: Any, what: str) -> list:
    """Accept a list or a comma-separated string."""
    if isinstance(value, str):
        return value.split(",")
    if isinstance(value, (list, tuple)):
        return list(value)
    raise ValueError(f"{what} must be a list or a comma-separated string")


def _split_tags(value: Any) -> Any:
    return [str(t).strip() for t in _as_list(value, "Tags") if t and str(t).strip()]


# ============================================
# PROFILE MODELS
# ============================================

class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    email: Optional[EmailStr] = None
    timezone: Optional[str] = None
    focus_preference: Optional[FocusPreference] = None
    ideal_focus_duration: Optional[int] = Field(default=None, ge=5, le=240)
    wake_time: Optional[time] = None
    bed_time: Optional[time] = None
    downtime_start: Optional[time] = None
    downtime_end: Optional[time] = None
    canvas_url: Optional[str] = Field(default=None, max_length=500)

    @field_validator("first_name", "last_name", "canvas_url", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("email", mode="before")
    @classmethod
    def _email(cls, v):
        # format is checked by EmailStr
        if isinstance(v, str):
            v = v.strip()
            if len(v) > 255:
                raise ValueError("Email must be less than 255 characters")
        return v

    @field_validator("wake_time", "bed_time", "downtime_start", "downtime_end", mode="before")
    @classmethod
    def _clock(cls, v):
        return _parse_clock(v)

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, v):
        if v is not None and tz.gettz(v) is None:
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @model_validator(mode="after")
    def _downtime_pair(self):
        if (self.downtime_start is None) != (self.downtime_end is None):
            raise ValueError("downtime_start and downtime_end must be set together")
        return self


class Profile(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    timezone: str = "UTC"
    focus_preference: Optional[FocusPreference] = None
    ideal_focus_duration: int = 60
    wake_time: Optional[time] = None
    bed_time: Optional[time] = None
    downtime_start: Optional[time] = None
    downtime_end: Optional[time] = None
    canvas_url: Optional[str] = None
    canvas_connected: bool = False
    canvas_last_sync: Optional[datetime] = None
    google_calendar_connected: bool = False
    google_calendar_last_sync: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ============================================
# TASK MODELS
# ============================================

class TaskFields(BaseModel):
    """Validation shared by create and update."""

    @field_validator("title", mode="before", check_fields=False)
    @classmethod
    def _strip_title(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("tags", mode="before", check_fields=False)
    @classmethod
    def _tags(cls, v):
        # None means "leave unchanged" on update
        if v is None:
            return None
        tags = _split_tags(v)
        if len(",".join(tags)) > 500:
            raise ValueError("Tags must be less than 500 characters")
        return tags

    @field_validator("scheduled_date", "recurrence_end_date", mode="before", check_fields=False)
    @classmethod
    def _day(cls, v):
        return _parse_day(v)

    @field_validator("scheduled_time", mode="before", check_fields=False)
    @classmethod
    def _clock(cls, v):
        return _parse_clock(v)

    @field_validator("recurrence_days", mode="before", check_fields=False)
    @classmethod
    def _weekdays(cls, v):
        if v is None:
            return []
        days = []
        for day in _as_list(v, "recurrence_days"):
            name = str(day).strip()[:3].title()
            if name not in WEEKDAYS:
                raise ValueError(f"Unknown weekday: {day}")
            if name not in days:
                days.append(name)
        return days


class TaskCreate(TaskFields):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    duration_minutes: int = Field(default=60, gt=0, le=1440)
    priority: Priority = Priority.MEDIUM
    tags: List[str] = Field(default_factory=list)
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[time] = None
    commute_minutes: int = Field(default=0, ge=0, le=240)
    recurrence_pattern: RecurrencePattern = RecurrencePattern.ONCE
    recurrence_days: List[str] = Field(default_factory=list)
    recurrence_end_date: Optional[date] = None
    color: Optional[str] = Field(default=None, max_length=20)

    @model_validator(mode="after")
    def _consistent_schedule(self):
        if self.scheduled_time is not None and self.scheduled_date is None:
            raise ValueError("Please select a date before setting a time")
        if (self.recurrence_end_date and self.scheduled_date
                and self.recurrence_end_date < self.scheduled_date):
            raise ValueError("recurrence_end_date cannot precede scheduled_date")
        return self


class TaskUpdate(TaskFields):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    duration_minutes: Optional[int] = Field(default=None, gt=0, le=1440)
    priority: Optional[Priority] = None
    tags: Optional[List[str]] = None
    status: Optional[TaskStatus] = None
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[time] = None
    commute_minutes: Optional[int] = Field(default=None, ge=0, le=240)
    color: Optional[str] = Field(default=None, max_length=20)


class Task(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    title: str
    description: Optional[str] = None
    duration_minutes: int = 60
    priority: Priority = Priority.MEDIUM
    tags: List[str] = Field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[time] = None
    commute_minutes: int = 0
    recurrence_pattern: Optional[RecurrencePattern] = None
    recurrence_days: List[str] = Field(default_factory=list)
    recurrence_end_date: Optional[date] = None
    recurrence_group_id: Optional[UUID] = None
    color: Optional[str] = None
    deleted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RestoreRequest(BaseModel):
    task_ids: List[UUID] = Field(min_length=1)


class DeletedTaskGroup(BaseModel):
    id: UUID
    title: str
    description: Optional[str] = None
    deleted_at: datetime
    task_ids: List[UUID]
    count: int
    is_recurring: bool
    recurrence_pattern: Optional[str] = None
    days_until_purge: int


# ============================================
# CALENDAR MODELS
# ============================================

class CalendarEvent(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    provider_event_id: str
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    start_time: datetime
    end_time: datetime
    metadata: Optional[Union[dict, str]] = None


# ============================================
# SUGGESTION MODELS
# ============================================

class Suggestion(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[UUID] = None
    task_id: UUID
    suggested_start: datetime
    duration_minutes: int
    score: float
    reason: Optional[str] = None
    source: SuggestionSource = SuggestionSource.MODEL
    outcome: Optional[SuggestionOutcome] = None


class SuggestionFeedback(BaseModel):
    outcome: SuggestionOutcome


class ScheduleResult(BaseModel):
    message: str
    suggestions: List[dict] = Field(default_factory=list)
    ai_available: bool = True


class SyncResult(BaseModel):
    success: bool = True
    synced: int
    message: str


# ============================================
# API RESPONSE MODELS
# ============================================

class DayGaps(BaseModel):
    date: date
    gaps: List[dict]
    total_gaps: int
    total_available_mins: int
    busy_blocks: List[dict]


class HealthStatus(BaseModel):
    status: str = "healthy"
    version: str = "1.0.0"
    database: str = "connected"
    ai_gateway: str = "unknown"
