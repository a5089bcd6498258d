"""
Irrigation recommendation from a block's water deficit.

Urgency is tiered on the current deficit alone; the short-term ET forecast
only adds to the volume once a deficit already exists. A zero deficit with
a positive forecast therefore still reports that no irrigation is needed.
"""

import logging
from typing import Dict, Optional

from unit_converter import hours_to_apply, mm_to_gallons, mm_to_inches

logger = logging.getLogger(__name__)

URGENCY_NONE = 'none'
URGENCY_LOW = 'low'
URGENCY_MODERATE = 'moderate'
URGENCY_HIGH = 'high'
URGENCY_CRITICAL = 'critical'

URGENCY_ORDER = [URGENCY_NONE, URGENCY_LOW, URGENCY_MODERATE, URGENCY_HIGH, URGENCY_CRITICAL]

# (threshold mm, tier, message), checked top-down with strict '>'
URGENCY_TIERS = [
    (30, URGENCY_CRITICAL, 'Irrigate immediately - critical water stress'),
    (15, URGENCY_HIGH, 'Irrigate within 24-48 hours'),
    (8, URGENCY_MODERATE, 'Irrigation recommended within 3-5 days'),
]
LOW_MESSAGE = 'Irrigation can wait - moisture adequate for now'
NO_IRRIGATION_MESSAGE = 'No irrigation needed - soil moisture is adequate'


def classify_urgency(deficit_mm: float):
    """Return (tier, message) for a positive deficit."""
    for threshold, tier, message in URGENCY_TIERS:
        if deficit_mm > threshold:
            return tier, message
    return URGENCY_LOW, LOW_MESSAGE


def recommend_irrigation(
    deficit_mm: float,
    acres: float,
    flow_rate_gpm: Optional[float],
    forecast_et_mm: float = 0.0,
) -> Dict:
    """Turn a deficit into urgency, water volume and run time.

    Args:
        deficit_mm: Current deficit (mm); <= 0 means adequate moisture.
        acres: Block area.
        flow_rate_gpm: System flow rate; hours are None when unknown.
        forecast_et_mm: Expected crop ET over the next few days.

    Returns:
        dict with needs_irrigation, urgency, message, amount_mm,
        amount_inches, gallons, hours.
    """
    if deficit_mm is None or deficit_mm <= 0:
        return {
            'needs_irrigation': False,
            'urgency': URGENCY_NONE,
            'message': NO_IRRIGATION_MESSAGE,
            'deficit_mm': max(0.0, deficit_mm or 0.0),
            'forecast_et_mm': forecast_et_mm or 0.0,
            'amount_mm': 0.0,
            'amount_inches': 0.0,
            'gallons': 0.0,
            'hours': 0.0,
        }

    total_need_mm = deficit_mm + max(0.0, forecast_et_mm or 0.0)
    total_need_inches = mm_to_inches(total_need_mm)
    gallons_needed = mm_to_gallons(total_need_mm, acres)

    hours_needed = None
    if flow_rate_gpm and flow_rate_gpm > 0:
        hours_needed = hours_to_apply(gallons_needed, flow_rate_gpm)
    else:
        logger.warning("No flow rate configured; cannot compute irrigation run time")

    urgency, message = classify_urgency(deficit_mm)
    return {
        'needs_irrigation': True,
        'urgency': urgency,
        'message': message,
        'deficit_mm': deficit_mm,
        'forecast_et_mm': forecast_et_mm or 0.0,
        'amount_mm': total_need_mm,
        'amount_inches': total_need_inches,
        'gallons': gallons_needed,
        'hours': hours_needed,
    }
