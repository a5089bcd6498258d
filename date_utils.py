"""
Local-calendar date helpers.

Event dates are calendar days in the vineyard's local time. A bare
"YYYY-MM-DD" string is always read as that calendar day, never as UTC
midnight, so an evening event never slides to the previous day.
"""

import logging
from datetime import date, datetime, timedelta

logger = logging.getLogger(__name__)

DATE_FORMAT = '%Y-%m-%d'

VALID_PERIODS = ['7days', 'week', '30days', 'month', 'season', 'year']

# Growing season starts April 1
SEASON_START_MONTH = 4


def local_today():
    """Today's local calendar date. The default clock for callers at the edge."""
    return date.today()


def parse_local_date(value):
    """Coerce a date, datetime or ISO string into a calendar ``date``.

    Raises ValueError for anything else (including None).
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("Empty date string")
        # Timestamps keep their wall-clock calendar day
        return datetime.strptime(text[:10], DATE_FORMAT).date()
    raise ValueError(f"Cannot parse date from {value!r}")


def format_date(value):
    return parse_local_date(value).strftime(DATE_FORMAT)


def add_days(value, days):
    return parse_local_date(value) + timedelta(days=days)


def iter_dates(start, end):
    """Yield every calendar date from *start* to *end*, inclusive."""
    current = parse_local_date(start)
    last = parse_local_date(end)
    while current <= last:
        yield current
        current += timedelta(days=1)


def days_between(start, end):
    return (parse_local_date(end) - parse_local_date(start)).days


def get_date_range(period='7days', today=None):
    """Return {'start_date', 'end_date'} strings for a named lookback period."""
    end = parse_local_date(today) if today is not None else local_today()

    if period in ('7days', 'week'):
        start = end - timedelta(days=7)
    elif period in ('30days', 'month'):
        start = end - timedelta(days=30)
    elif period == 'season':
        year = end.year if end.month >= SEASON_START_MONTH else end.year - 1
        start = date(year, SEASON_START_MONTH, 1)
    elif period == 'year':
        try:
            start = end.replace(year=end.year - 1)
        except ValueError:
            # Feb 29 -> Feb 28
            start = end.replace(year=end.year - 1, day=28)
    else:
        logger.debug(f"Unknown period '{period}', defaulting to 7 days")
        start = end - timedelta(days=7)

    return {
        'start_date': format_date(start),
        'end_date': format_date(end),
    }
