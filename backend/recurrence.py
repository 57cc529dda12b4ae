"""
Timewise - Recurrence Expansion
Turns a recurring task definition into concrete occurrence dates.
"""

from datetime import date, datetime, timedelta
from typing import List, Optional, Sequence

from dateutil.rrule import rrule, DAILY, WEEKLY, MO, TU, WE, TH, FR, SA, SU

from config import TaskConfig, get_task_config
from models import RecurrencePattern, WEEKDAYS

_RRULE_WEEKDAYS = dict(zip(WEEKDAYS, (MO, TU, WE, TH, FR, SA, SU)))


def expand_occurrences(pattern: str, start_date: date, days: Optional[Sequence[str]] = None,
                       end_date: Optional[date] = None,
                       config: Optional[TaskConfig] = None) -> List[date]:
    """
    Occurrence dates for a task series, inclusive of start and end.

    Weekly and custom patterns repeat on the listed weekdays (Mon..Sun); with no days
    given they repeat on the start date's weekday. Without an end date the series runs
    for the configured number of weeks.
    """
    config = config or get_task_config()
    pattern = RecurrencePattern(pattern)
    if pattern == RecurrencePattern.ONCE:
        return [start_date]

    if end_date is None:
        end_date = start_date + timedelta(weeks=config.recurrence_default_weeks) - timedelta(days=1)
    if end_date < start_date:
        return []

    dtstart = datetime.combine(start_date, datetime.min.time())
    until = datetime.combine(end_date, datetime.min.time())

    if pattern == RecurrencePattern.DAILY:
        rule = rrule(DAILY, dtstart=dtstart, until=until)
    else:
        weekdays = [_RRULE_WEEKDAYS[d] for d in (days or []) if d in _RRULE_WEEKDAYS]
        if not weekdays:
            weekdays = [_RRULE_WEEKDAYS[WEEKDAYS[start_date.weekday()]]]
        rule = rrule(WEEKLY, dtstart=dtstart, until=until, byweekday=weekdays)

    occurrences = []
    for occurrence in rule:
        if len(occurrences) >= config.max_occurrences:
            break
        occurrences.append(occurrence.date())
    return occurrences
