"""
Layered soil moisture estimate from the water balance.

This is a heuristic, not a calibrated soil model: the root zone is treated
as a single 150 mm bucket and three layers are offset from it by how fast
they drain (surface fastest, deep slowest).
"""

import logging
from typing import Dict, List

from unit_converter import gallons_to_mm

logger = logging.getLogger(__name__)

ROOT_ZONE_CAPACITY_MM = 150
FIELD_CAPACITY = 100
WILTING_POINT = 30

STATUS_GOOD = 'Good'
STATUS_MODERATE = 'Moderate'
STATUS_LOW = 'Low'

LAYERS = ('surface', 'mid', 'deep')


def _clamp(value: float) -> float:
    return max(WILTING_POINT, min(FIELD_CAPACITY, value))


def moisture_status(moisture: float) -> str:
    if moisture >= 70:
        return STATUS_GOOD
    if moisture >= 50:
        return STATUS_MODERATE
    return STATUS_LOW


def estimate_soil_moisture(
    deficit_mm: float,
    events: List[Dict],
    acres: float,
    rainfall_mm: float = 0.0,
) -> Dict[str, Dict]:
    """Estimate surface/mid/deep moisture as % of field capacity.

    Args:
        deficit_mm: Current deficit; negative values are treated as 0.
        events: Irrigation events inside the budget window.
        acres: Block area used to turn gallons into depth.
        rainfall_mm: Rainfall over the same window.

    Returns:
        {'surface': {'moisture', 'status'}, 'mid': {...}, 'deep': {...}}
    """
    deficit_mm = max(0.0, deficit_mm or 0.0)
    depletion_percent = min(100.0, 100.0 * deficit_mm / ROOT_ZONE_CAPACITY_MM)

    total_gallons = sum(float(e.get('total_water_gallons') or 0.0) for e in events)
    irrigation_mm = gallons_to_mm(total_gallons, acres) if acres else 0.0
    total_water_mm = irrigation_mm + max(0.0, rainfall_mm or 0.0)

    base_moisture = _clamp(
        FIELD_CAPACITY - depletion_percent
        + 100.0 * (total_water_mm - deficit_mm) / ROOT_ZONE_CAPACITY_MM
    )

    offsets = {
        'surface': -15 - 0.3 * depletion_percent,
        'mid': -0.2 * depletion_percent,
        'deep': 10 - 0.1 * depletion_percent,
    }

    estimate = {}
    for layer in LAYERS:
        moisture = _clamp(round(base_moisture + offsets[layer]))
        estimate[layer] = {'moisture': moisture, 'status': moisture_status(moisture)}
    return estimate
