"""
Recurring irrigation schedule expansion.

A schedule runs a daily time window on selected weekdays between a start
date and an optional end date. Expanding it yields one unsaved irrigation
event per matching calendar day. With times_per_day > 1 the window is run
that many times, so the day's event carries the combined duration and
volume rather than being split into sub-events.
"""

import logging
from datetime import datetime

from date_utils import format_date, iter_dates, parse_local_date
from unit_converter import event_total_gallons

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# 0 = Sunday ... 6 = Saturday
VALID_DAYS_OF_WEEK = [0, 1, 2, 3, 4, 5, 6]
VALID_METHODS = ['drip', 'micro-sprinkler', 'sprinkler', 'furrow', 'other']
DEFAULT_METHOD = 'drip'

SOURCE_SCHEDULE = 'schedule'

TIME_FORMAT = '%H:%M'


def sunday_weekday(value):
    """Weekday number with Sunday = 0 (Python's weekday() has Monday = 0)."""
    return (parse_local_date(value).weekday() + 1) % 7


def parse_time(value):
    """Parse 'HH:MM' (or 'HH:MM:SS') into fractional hours."""
    if not isinstance(value, str):
        raise ValueError(f"Invalid time {value!r}; expected HH:MM")
    try:
        parsed = datetime.strptime(value.strip()[:5], TIME_FORMAT)
    except ValueError:
        raise ValueError(f"Invalid time {value!r}; expected HH:MM")
    return parsed.hour + parsed.minute / 60.0


def schedule_duration_hours(schedule):
    """Length of one run of the schedule's daily window, in hours."""
    return parse_time(schedule['stop_time']) - parse_time(schedule['start_time'])


def validate_schedule(data):
    """Raise ValueError if a schedule definition is unusable."""
    for field in ('block_id', 'start_date', 'start_time', 'stop_time', 'flow_rate_gpm'):
        if data.get(field) in (None, ''):
            raise ValueError(f"{field} is required")

    start = parse_local_date(data['start_date'])
    if data.get('end_date'):
        end = parse_local_date(data['end_date'])
        if end < start:
            raise ValueError("end_date must be on or after start_date")

    if schedule_duration_hours(data) <= 0:
        raise ValueError("stop_time must be after start_time")

    if float(data['flow_rate_gpm']) <= 0:
        raise ValueError("flow_rate_gpm must be greater than zero")

    days = data.get('days_of_week')
    if not days:
        raise ValueError("days_of_week must include at least one day")
    invalid = [d for d in days if d not in VALID_DAYS_OF_WEEK]
    if invalid:
        raise ValueError(f"Invalid days_of_week {invalid}. Must be within {VALID_DAYS_OF_WEEK}")

    times_per_day = data.get('times_per_day', 1)
    if not isinstance(times_per_day, int) or times_per_day < 1:
        raise ValueError("times_per_day must be a positive integer")

    method = data.get('irrigation_method')
    if method and method not in VALID_METHODS:
        raise ValueError(f"Invalid irrigation_method '{method}'. Must be one of {VALID_METHODS}")


def expansion_end_date(schedule, until_date):
    """Last date to generate: the earlier of end_date and until_date."""
    until = parse_local_date(until_date)
    if schedule.get('end_date'):
        return min(parse_local_date(schedule['end_date']), until)
    return until


def build_schedule_event(schedule, event_date):
    """One day's event for a schedule (not yet persisted, no id)."""
    times_per_day = schedule.get('times_per_day') or 1
    duration_hours = schedule_duration_hours(schedule) * times_per_day
    flow_rate = float(schedule['flow_rate_gpm'])
    notes = schedule.get('notes') or (
        f"Scheduled irrigation ({times_per_day} run{'s' if times_per_day > 1 else ''})"
    )
    return {
        'block_id': schedule['block_id'],
        'event_date': format_date(event_date),
        'duration_hours': duration_hours,
        'flow_rate_gpm': flow_rate,
        'total_water_gallons': event_total_gallons(duration_hours, flow_rate),
        'irrigation_method': schedule.get('irrigation_method') or DEFAULT_METHOD,
        'notes': notes,
        'source': SOURCE_SCHEDULE,
        'schedule_id': schedule.get('id'),
        'zone_number': schedule.get('zone_number'),
    }


def expand_schedule(schedule, until_date, from_date=None):
    """Expand a schedule into dated events up to *until_date* inclusive.

    Args:
        schedule: Schedule dict (start_date, end_date, start_time, stop_time,
                  flow_rate_gpm, days_of_week, times_per_day, ...).
        until_date: Last date to consider.
        from_date: Optional lower bound; dates before it are skipped.

    Returns:
        List of event dicts ordered by date. Same inputs always give the
        same output.
    """
    start = parse_local_date(schedule['start_date'])
    if from_date is not None:
        start = max(start, parse_local_date(from_date))
    end = expansion_end_date(schedule, until_date)
    if end < start:
        return []

    days = set(schedule.get('days_of_week') or [])
    events = [
        build_schedule_event(schedule, day)
        for day in iter_dates(start, end)
        if sunday_weekday(day) in days
    ]
    logger.debug(
        f"Expanded schedule {schedule.get('id')} {start}..{end}: {len(events)} events"
    )
    return events
