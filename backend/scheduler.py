"""
Timewise - Placement Engine
Checks model proposals against the user's day, and places whatever the model missed.
Pure functions only; persistence lives in suggestions.py.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, date, time, timedelta, tzinfo
from typing import Optional, List, Dict, Any, Iterable, Tuple

from dateutil import tz
from dateutil.parser import isoparse

from config import ScheduleConfig, get_schedule_config
from logger import get_logger
from models import PRIORITY_RANK, SuggestionSource

logger = get_logger("scheduler")

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
SLOT_GRANULARITY_MINUTES = 5


# ============================================
# UTILITY FUNCTIONS
# ============================================

def time_to_minutes(t: time) -> int:
    """Convert time to minutes since midnight."""
    return t.hour * 60 + t.minute


def parse_time(time_str: str) -> time:
    """Parse time string (HH:MM or HH:MM:SS) to time object."""
    parts = time_str.split(":")
    return time(int(parts[0]), int(parts[1]))


def format_time(t: time) -> str:
    """Format time to HH:MM string."""
    return t.strftime("%H:%M")


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """IANA name to tzinfo; unknown or empty names fall back to UTC."""
    if not name:
        return tz.UTC
    zone = tz.gettz(name)
    if zone is None:
        logger.warning(f"Unknown timezone {name!r}, using UTC")
        return tz.UTC
    return zone


def is_time_in_downtime(t: time, start: Optional[time], end: Optional[time]) -> bool:
    """True when t falls in [start, end); windows with end <= start wrap past midnight."""
    if start is None or end is None:
        return False
    minutes = time_to_minutes(t)
    s, e = time_to_minutes(start), time_to_minutes(end)
    if s < e:
        return s <= minutes < e
    return minutes >= s or minutes < e


def _as_aware(value: datetime, default_tz: tzinfo) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=default_tz)


def _ceil_to_granularity(value: datetime) -> datetime:
    step = SLOT_GRANULARITY_MINUTES
    value = value.replace(second=0, microsecond=0) + (
        timedelta(minutes=1) if value.second or value.microsecond else timedelta(0)
    )
    remainder = value.minute % step
    return value + timedelta(minutes=(step - remainder) % step)


# ============================================
# PREFERENCES & INTERVALS
# ============================================

@dataclass(frozen=True)
class Interval:
    start: datetime
    end: datetime
    label: str = ""

    def overlaps(self, other: "Interval", buffer: timedelta = timedelta(0)) -> bool:
        return self.start < other.end + buffer and other.start < self.end + buffer


@dataclass
class Preferences:
    """A profile row resolved into concrete scheduling rules."""

    tzinfo: tzinfo
    timezone_name: str
    wake_time: time
    bed_time: time
    downtime_start: Optional[time] = None
    downtime_end: Optional[time] = None
    focus_preference: str = "morning"
    ideal_focus_duration: int = 60

    @classmethod
    def from_profile(cls, profile: Optional[Dict[str, Any]],
                     config: Optional[ScheduleConfig] = None) -> "Preferences":
        config = config or get_schedule_config()
        profile = profile or {}
        name = profile.get("timezone") or "UTC"
        downtime_start = profile.get("downtime_start")
        downtime_end = profile.get("downtime_end")
        if downtime_start is None or downtime_end is None:
            downtime_start = downtime_end = None
        return cls(
            tzinfo=resolve_timezone(name),
            timezone_name=name,
            wake_time=profile.get("wake_time") or config.default_wake_time,
            bed_time=profile.get("bed_time") or config.default_bed_time,
            downtime_start=downtime_start,
            downtime_end=downtime_end,
            focus_preference=profile.get("focus_preference") or "morning",
            ideal_focus_duration=profile.get("ideal_focus_duration") or config.default_focus_duration,
        )

    def local(self, value: datetime) -> datetime:
        return _as_aware(value, tz.UTC).astimezone(self.tzinfo)

    def at(self, day: date, clock: time) -> datetime:
        return datetime.combine(day, clock, tzinfo=self.tzinfo)

    def day_window(self, day: date) -> Tuple[datetime, datetime]:
        """Waking window that opens on `day`; runs past midnight when bed <= wake."""
        start = self.at(day, self.wake_time)
        end = self.at(day, self.bed_time)
        if end <= start:
            end += timedelta(days=1)
        return start, end

    def downtime_intervals(self, day: date) -> List[Interval]:
        """Downtime blocks touching `day`, including one spilling over from the day before."""
        if self.downtime_start is None or self.downtime_end is None:
            return []
        blocks = []
        for d in (day - timedelta(days=1), day):
            start = self.at(d, self.downtime_start)
            end = self.at(d, self.downtime_end)
            if end <= start:
                end += timedelta(days=1)
            blocks.append(Interval(start, end, "downtime"))
        return blocks


# ============================================
# TASK CLASSIFICATION
# ============================================

def split_tasks(tasks: Iterable[Dict[str, Any]]) -> Tuple[List[dict], List[dict]]:
    """(unscheduled, scheduled); a task needs both a date and a time to count as scheduled."""
    unscheduled, scheduled = [], []
    for task in tasks:
        if task.get("scheduled_date") and task.get("scheduled_time"):
            scheduled.append(task)
        else:
            unscheduled.append(task)
    return unscheduled, scheduled


def task_block_minutes(task: Dict[str, Any]) -> Tuple[int, int]:
    """(duration, commute) in minutes with defaults applied."""
    return int(task.get("duration_minutes") or 60), int(task.get("commute_minutes") or 0)


def busy_intervals(scheduled_tasks: Iterable[Dict[str, Any]],
                   events: Iterable[Dict[str, Any]],
                   prefs: Preferences) -> List[Interval]:
    """Sorted commitments: timed tasks (commute included) and calendar events."""
    busy = []
    for task in scheduled_tasks:
        if not (task.get("scheduled_date") and task.get("scheduled_time")):
            continue
        duration, commute = task_block_minutes(task)
        start = prefs.at(task["scheduled_date"], task["scheduled_time"])
        busy.append(Interval(
            start - timedelta(minutes=commute),
            start + timedelta(minutes=duration),
            task.get("title", "task"),
        ))
    for event in events:
        start = _as_aware(event["start_time"], tz.UTC)
        end = _as_aware(event["end_time"], tz.UTC)
        if end <= start:
            continue
        busy.append(Interval(start, end, event.get("title", "event")))
    busy.sort(key=lambda b: b.start)
    return busy


# ============================================
# MODEL OUTPUT NORMALIZATION
# ============================================

def normalize_suggested_start(value: Any, tzinfo_: tzinfo, default_time: time) -> datetime:
    """
    Turn a model-provided start into an aware datetime.

    - "2025-11-22" gets default_time in the user's timezone
    - a naive datetime is read as the user's local time
    - an aware datetime is kept as-is

    Raises:
        ValueError: If the value is missing or unparseable
    """
    if isinstance(value, datetime):
        return _as_aware(value, tzinfo_)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Missing suggested_start: {value!r}")

    text = value.strip()
    if _DATE_ONLY_RE.match(text):
        day = date.fromisoformat(text)
        logger.debug(f"Date-only suggestion {text}, using {format_time(default_time)}")
        return datetime.combine(day, default_time, tzinfo=tzinfo_)

    try:
        parsed = isoparse(text)
    except (ValueError, OverflowError) as e:
        raise ValueError(f"Unparseable suggested_start {text!r}: {e}")
    return _as_aware(parsed, tzinfo_)


# ============================================
# SLOT SEARCH
# ============================================

def check_placement(start: datetime, duration: int, commute: int, prefs: Preferences,
                    busy: List[Interval], buffer_minutes: int, now: datetime) -> Optional[str]:
    """Reason the slot is unusable, or None when it is fine."""
    block = Interval(start - timedelta(minutes=commute), start + timedelta(minutes=duration))
    if block.start < now:
        return "starts in the past"

    local_day = prefs.local(block.start).date()
    inside_window = False
    for day in (local_day - timedelta(days=1), local_day):
        win_start, win_end = prefs.day_window(day)
        if win_start <= block.start and block.end <= win_end:
            inside_window = True
            break
    if not inside_window:
        return "outside waking hours"

    for day in (local_day, local_day + timedelta(days=1)):
        for downtime in prefs.downtime_intervals(day):
            if block.overlaps(downtime):
                return "inside downtime"

    buffer = timedelta(minutes=buffer_minutes)
    for other in busy:
        if block.overlaps(other, buffer):
            return f"conflicts with {other.label or 'an existing commitment'}"
    return None


def find_slot(duration: int, not_before: datetime, prefs: Preferences, busy: List[Interval],
              buffer_minutes: int, max_days: int, commute: int = 0) -> Optional[datetime]:
    """
    First-fit search for a task start.

    Walks forward day by day from not_before, inside each waking window, stepping over
    downtime and over busy intervals padded by the buffer.

    Returns:
        The task start (commute already reserved before it), or None if nothing fits
    """
    need = timedelta(minutes=duration + commute)
    buffer = timedelta(minutes=buffer_minutes)
    first_day = prefs.local(not_before).date()

    # Start one day early: yesterday's window may still be open after midnight
    for offset in range(-1, max_days + 1):
        day = first_day + timedelta(days=offset)
        win_start, win_end = prefs.day_window(day)
        cursor = _ceil_to_granularity(max(win_start, not_before))
        if cursor + need > win_end:
            continue

        blockers = [(b.start - buffer, b.end + buffer) for b in busy
                    if b.end + buffer > win_start and b.start - buffer < win_end]
        blockers += [(d.start, d.end) for d in prefs.downtime_intervals(day)]
        blockers += [(d.start, d.end) for d in prefs.downtime_intervals(day + timedelta(days=1))]
        blockers.sort()

        for block_start, block_end in blockers:
            if block_end <= cursor:
                continue
            if cursor + need <= block_start:
                break
            cursor = _ceil_to_granularity(max(cursor, block_end))

        if cursor + need <= win_end:
            return cursor + timedelta(minutes=commute)
    return None


# ============================================
# PLANNING
# ============================================

@dataclass
class PlannedPlacement:
    task_id: str
    title: str
    start: datetime
    duration_minutes: int
    score: float
    reason: str
    source: SuggestionSource = SuggestionSource.MODEL
    commute_minutes: int = 0
    tzinfo: tzinfo = field(default_factory=lambda: tz.UTC, repr=False)

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)

    @property
    def interval(self) -> Interval:
        return Interval(self.start - timedelta(minutes=self.commute_minutes), self.end, self.title)

    @property
    def scheduled_date(self) -> date:
        return self.start.astimezone(self.tzinfo).date()

    @property
    def scheduled_time(self) -> time:
        return self.start.astimezone(self.tzinfo).time().replace(second=0, microsecond=0)

    def to_suggestion_row(self, user_id) -> Dict[str, Any]:
        return {
            "user_id": user_id,
            "task_id": self.task_id,
            "suggested_start": self.start,
            "duration_minutes": self.duration_minutes,
            "score": round(self.score, 2),
            "reason": self.reason,
            "source": self.source.value,
        }

    def to_response(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "title": self.title,
            "suggested_start": self.start.isoformat(),
            "scheduled_date": self.scheduled_date.isoformat(),
            "scheduled_time": format_time(self.scheduled_time),
            "duration_minutes": self.duration_minutes,
            "score": round(self.score, 2),
            "reason": self.reason,
            "source": self.source.value,
        }


def _coerce_score(value: Any, default: float = 0.8) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(score):
        return default
    return min(max(score, 0.0), 1.0)


def _proposal_reason(value: Any) -> str:
    reason = str(value).strip() if value is not None else ""
    return reason or "Suggested by the scheduling model."


def plan_schedule(unscheduled: List[Dict[str, Any]], proposals: List[Dict[str, Any]],
                  busy: List[Interval], prefs: Preferences, now: datetime,
                  config: Optional[ScheduleConfig] = None) -> List[PlannedPlacement]:
    """
    Merge model proposals with fallback placement.

    Proposals are accepted in the order given when they name an unscheduled task, parse,
    and fit the user's day without touching anything already placed. Every task left
    over is placed first-fit from tomorrow's wake time (or its requested date), in
    priority order, so fallback tasks queue up one after another with the buffer.

    Returns:
        One placement per unscheduled task, in the input order
    """
    config = config or get_schedule_config()
    busy = list(busy)
    by_id = {str(t["id"]): t for t in unscheduled}
    placed: Dict[str, PlannedPlacement] = {}

    for proposal in proposals:
        task_id = str(proposal.get("task_id", ""))
        task = by_id.get(task_id)
        if task is None:
            logger.warning(f"Skipping proposal for task {task_id}: not in unscheduled list")
            continue
        if task_id in placed:
            logger.debug(f"Ignoring duplicate proposal for task {task_id}")
            continue

        try:
            start = normalize_suggested_start(
                proposal.get("suggested_start"), prefs.tzinfo, config.date_only_default_time
            )
        except ValueError as e:
            logger.warning(f"Rejected proposal for {task_id}: {e}")
            continue

        duration, commute = task_block_minutes(task)
        requested = task.get("scheduled_date")
        if requested and prefs.local(start).date() != requested:
            logger.warning(f"Rejected proposal for {task_id}: not on requested date {requested}")
            continue

        problem = check_placement(start, duration, commute, prefs, busy, config.buffer_minutes, now)
        if problem:
            logger.warning(f"Rejected proposal for {task_id} at {start.isoformat()}: {problem}")
            continue

        placement = PlannedPlacement(
            task_id=task_id,
            title=task["title"],
            start=start,
            duration_minutes=duration,
            score=_coerce_score(proposal.get("score")),
            reason=_proposal_reason(proposal.get("reason")),
            source=SuggestionSource.MODEL,
            commute_minutes=commute,
            tzinfo=prefs.tzinfo,
        )
        placed[task_id] = placement
        busy.append(placement.interval)

    leftovers = [t for t in unscheduled if str(t["id"]) not in placed]
    leftovers.sort(key=lambda t: PRIORITY_RANK.get(t.get("priority") or "medium", 1))

    tomorrow_wake = prefs.day_window(prefs.local(now).date() + timedelta(days=1))[0]
    for task in leftovers:
        task_id = str(task["id"])
        duration, commute = task_block_minutes(task)
        not_before = tomorrow_wake
        requested = task.get("scheduled_date")
        if requested:
            requested_wake = prefs.day_window(requested)[0]
            if requested_wake > not_before:
                not_before = requested_wake

        start = find_slot(duration, not_before, prefs, busy, config.buffer_minutes,
                          config.fallback_search_days, commute)
        if start is None:
            start = not_before + timedelta(minutes=commute)
            score = 0.0
            reason = (f"No free slot within {config.fallback_search_days} days; "
                      f"placed at wake time as a best effort.")
        else:
            score = config.fallback_score
            reason = "Not placed by the scheduling model; assigned the next free slot after existing commitments."
        logger.info(f"Fallback placement for {task_id} at {start.isoformat()}")

        placement = PlannedPlacement(
            task_id=task_id,
            title=task["title"],
            start=start,
            duration_minutes=duration,
            score=score,
            reason=reason,
            source=SuggestionSource.FALLBACK,
            commute_minutes=commute,
            tzinfo=prefs.tzinfo,
        )
        placed[task_id] = placement
        busy.append(placement.interval)

    return [placed[str(t["id"])] for t in unscheduled]


def find_conflicts(placements: List[PlannedPlacement], busy: List[Interval],
                   buffer_minutes: int = 0) -> List[Tuple[str, str]]:
    """Pairs of labels whose intervals overlap (placements vs busy and vs each other)."""
    buffer = timedelta(minutes=buffer_minutes)
    conflicts = []
    for i, placement in enumerate(placements):
        block = placement.interval
        for other in busy:
            if block.overlaps(other, buffer):
                conflicts.append((placement.title, other.label))
        for later in placements[i + 1:]:
            if block.overlaps(later.interval, buffer):
                conflicts.append((placement.title, later.title))
    return conflicts


# ============================================
# GAP ANALYSIS
# ============================================

def analyze_day_gaps(target_date: date, prefs: Preferences, busy: List[Interval],
                     min_gap_minutes: int = 15) -> Dict[str, Any]:
    """
    Free gaps inside one day's waking window.

    Returns:
        Dictionary with gaps, busy blocks and total available minutes
    """
    win_start, win_end = prefs.day_window(target_date)
    blocks = [b for b in busy if b.end > win_start and b.start < win_end]
    blocks += [d for d in prefs.downtime_intervals(target_date) if d.end > win_start and d.start < win_end]
    blocks.sort(key=lambda b: b.start)

    gaps = []
    current = win_start
    for block in blocks:
        if block.start > current:
            gap_mins = int((block.start - current).total_seconds() // 60)
            if gap_mins >= min_gap_minutes:
                gaps.append({
                    "start": format_time(prefs.local(current).time()),
                    "end": format_time(prefs.local(block.start).time()),
                    "duration_mins": gap_mins,
                })
        current = max(current, block.end)

    if current < win_end:
        gap_mins = int((win_end - current).total_seconds() // 60)
        if gap_mins >= min_gap_minutes:
            gaps.append({
                "start": format_time(prefs.local(current).time()),
                "end": format_time(prefs.local(win_end).time()),
                "duration_mins": gap_mins,
            })

    return {
        "date": target_date,
        "gaps": gaps,
        "total_gaps": len(gaps),
        "total_available_mins": sum(g["duration_mins"] for g in gaps),
        "busy_blocks": [
            {
                "start": format_time(prefs.local(b.start).time()),
                "end": format_time(prefs.local(b.end).time()),
                "label": b.label,
            }
            for b in blocks
        ],
    }
