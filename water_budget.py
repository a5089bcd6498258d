"""
Water budget for a vineyard block.

Deficit = ETc - (irrigation applied + rainfall) over a fixed lookback window
ending today. Positive deficit means the block is under-watered.
"""

import logging
from typing import Dict, List, Optional

from date_utils import add_days, format_date, parse_local_date
from unit_converter import gallons_to_inches, inches_to_mm, mm_to_inches
from weather_service import rainfall_in_window

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 14

# Balance status thresholds (mm)
CRITICAL_DEFICIT_MM = 25
MODERATE_DEFICIT_MM = 12
EXCESS_MM = -12

STATUS_CRITICAL = 'critical_deficit'
STATUS_MODERATE = 'moderate_deficit'
STATUS_EXCESS = 'excess'
STATUS_OPTIMAL = 'optimal'


def unavailable_budget(reason: str, today=None, window_days: int = DEFAULT_WINDOW_DAYS) -> Dict:
    """Explicit 'unknown' result; callers must not read it as a zero deficit."""
    result = {
        'available': False,
        'reason': reason,
        'deficit_inches': None,
        'deficit_mm': None,
        'percentage_met': None,
    }
    if today is not None:
        today = parse_local_date(today)
        result['date_range'] = {
            'start_date': format_date(add_days(today, -window_days)),
            'end_date': format_date(today),
        }
    return result


def classify_water_balance(deficit_mm: float) -> str:
    if deficit_mm > CRITICAL_DEFICIT_MM:
        return STATUS_CRITICAL
    if deficit_mm > MODERATE_DEFICIT_MM:
        return STATUS_MODERATE
    if deficit_mm < EXCESS_MM:
        return STATUS_EXCESS
    return STATUS_OPTIMAL


def _events_bracket_window(events: List[Dict], window_start, window_end) -> bool:
    dates = [parse_local_date(e['event_date']) for e in events if e.get('event_date')]
    if not dates:
        return False
    return min(dates) <= window_start and max(dates) >= window_end


def calculate_water_budget(
    acres: float,
    et_series: List[Dict],
    events: List[Dict],
    rainfall: Optional[Dict] = None,
    today=None,
    window_days: int = DEFAULT_WINDOW_DAYS,
) -> Dict:
    """Compute the water budget for one block.

    Args:
        acres: Block area.
        et_series: Kc-applied ET records ({date, et, etc}).
        events: Irrigation events for the block (any date range).
        rainfall: Rainfall summary ({total_mm, daily_rainfall}) or None.
        today: Local calendar date the window ends on.
        window_days: Lookback length W; window is [today - W, today].

    Returns:
        Budget dict with available=True, or the unavailable result when
        there is no ET data or no acreage.
    """
    if today is None:
        raise ValueError("today is required")
    today = parse_local_date(today)
    window_start = add_days(today, -window_days)

    if not acres or acres <= 0:
        logger.warning("Water budget requested for block without acreage")
        return unavailable_budget('no_acreage', today, window_days)

    recent_et = [
        r for r in et_series
        if window_start <= parse_local_date(r['date']) <= today
    ]
    if not recent_et:
        logger.info(f"No ET data between {window_start} and {today}; budget unavailable")
        return unavailable_budget('no_et_data', today, window_days)

    etc_mm = sum(r.get('etc') or 0.0 for r in recent_et)
    etc_inches = mm_to_inches(etc_mm)

    window_events = [
        e for e in events
        if e.get('event_date') and window_start <= parse_local_date(e['event_date']) <= today
    ]
    applied_gallons = sum(float(e.get('total_water_gallons') or 0.0) for e in window_events)
    applied_inches = gallons_to_inches(applied_gallons, acres)

    rainfall_mm = rainfall_in_window(rainfall, window_start, today)
    rainfall_inches = mm_to_inches(rainfall_mm)

    supplied_inches = applied_inches + rainfall_inches
    deficit_inches = etc_inches - supplied_inches
    percentage_met = (100.0 * supplied_inches / etc_inches) if etc_inches > 0 else 0.0

    coverage_warning = (
        not _events_bracket_window(events, window_start, today)
        and len(window_events) < len(recent_et)
    )
    if coverage_warning:
        logger.debug(
            f"Partial irrigation coverage: {len(window_events)} events for {len(recent_et)} ET days"
        )

    deficit_mm = inches_to_mm(deficit_inches)
    return {
        'available': True,
        'applied_inches': applied_inches,
        'rainfall_inches': rainfall_inches,
        'rainfall_mm': rainfall_mm,
        'etc_inches': etc_inches,
        'etc_mm': etc_mm,
        'total_water_inches': supplied_inches,
        'deficit_inches': deficit_inches,
        'deficit_mm': deficit_mm,
        'percentage_met': percentage_met,
        'coverage_warning': coverage_warning,
        'status': classify_water_balance(deficit_mm),
        'events_count': len(window_events),
        'total_events_count': len(events),
        'et_days': len(recent_et),
        'window_days': window_days,
        'date_range': {
            'start_date': format_date(window_start),
            'end_date': format_date(today),
        },
    }
