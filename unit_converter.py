"""
Water unit conversions for vineyard irrigation math.

Gallons, acre-inches, inches and millimetres of water depth, and the
flow-rate arithmetic used to turn a run time into an applied volume.

No database tables required -- pure calculation logic.
"""

import logging
import math
from typing import Dict

logger = logging.getLogger(__name__)
# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Fixed at the boundary; every budget and recommendation depends on these.
GALLONS_PER_ACRE_INCH = 27_154
MM_PER_INCH = 25.4
MINUTES_PER_HOUR = 60


# ---------------------------------------------------------------------------
# Error Helpers
# ---------------------------------------------------------------------------

class ConversionError(ValueError):
    """Raised when a unit conversion cannot be performed."""
    pass


def _validate_positive(value: float, name: str = "value") -> None:
    """Raise ConversionError if *value* is not a non-negative finite number."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConversionError(f"{name} must be a number, got {type(value).__name__}")
    if math.isnan(value) or math.isinf(value):
        raise ConversionError(f"{name} must be finite, got {value}")
    if value < 0:
        raise ConversionError(f"{name} must be non-negative, got {value}")


def _validate_strictly_positive(value: float, name: str = "value") -> None:
    """Raise ConversionError if *value* is not strictly > 0."""
    _validate_positive(value, name)
    if value == 0:
        raise ConversionError(f"{name} must be greater than zero")


# ---------------------------------------------------------------------------
# Depth / Volume
# ---------------------------------------------------------------------------

def mm_to_inches(mm: float) -> float:
    return mm / MM_PER_INCH


def inches_to_mm(inches: float) -> float:
    return inches * MM_PER_INCH


def gallons_to_inches(gallons: float, acres: float) -> float:
    """Depth in inches that *gallons* spread over *acres* would cover."""
    _validate_positive(gallons, "gallons")
    _validate_strictly_positive(acres, "acres")
    return gallons / (acres * GALLONS_PER_ACRE_INCH)


def inches_to_gallons(inches: float, acres: float) -> float:
    """Gallons needed to cover *acres* to a depth of *inches*."""
    _validate_positive(inches, "inches")
    _validate_strictly_positive(acres, "acres")
    return inches * acres * GALLONS_PER_ACRE_INCH


def gallons_to_mm(gallons: float, acres: float) -> float:
    return inches_to_mm(gallons_to_inches(gallons, acres))


def mm_to_gallons(mm: float, acres: float) -> float:
    return inches_to_gallons(mm_to_inches(mm), acres)


# ---------------------------------------------------------------------------
# Flow Rate
# ---------------------------------------------------------------------------

def gallons_per_hour(flow_rate_gpm: float) -> float:
    _validate_positive(flow_rate_gpm, "flow_rate_gpm")
    return flow_rate_gpm * MINUTES_PER_HOUR


def event_total_gallons(duration_hours: float, flow_rate_gpm: float) -> float:
    """Water delivered by a run: duration (h) x flow (gal/min) x 60."""
    _validate_positive(duration_hours, "duration_hours")
    return duration_hours * gallons_per_hour(flow_rate_gpm)


def hours_to_apply(gallons: float, flow_rate_gpm: float) -> float:
    """Run time in hours to deliver *gallons* at *flow_rate_gpm*."""
    _validate_positive(gallons, "gallons")
    _validate_strictly_positive(flow_rate_gpm, "flow_rate_gpm")
    return gallons / gallons_per_hour(flow_rate_gpm)


# ---------------------------------------------------------------------------
# Calculator Endpoint Helper
# ---------------------------------------------------------------------------

_DEPTH_UNITS = {"mm", "inches", "gallons"}


def convert_water(value: float, from_unit: str, to_unit: str, acres: float = None) -> Dict:
    """
    Convert a water amount between mm, inches and gallons.

    Gallon conversions need the block acreage. Returns dict with 'value',
    'unit' and 'formula'.
    """
    _validate_positive(value, "value")
    fu = from_unit.strip().lower()
    tu = to_unit.strip().lower()
    for unit in (fu, tu):
        if unit not in _DEPTH_UNITS:
            raise ConversionError(
                f"Unknown water unit '{unit}'. Supported: {', '.join(sorted(_DEPTH_UNITS))}"
            )
    if "gallons" in (fu, tu) and fu != tu and acres is None:
        raise ConversionError("acres is required to convert to or from gallons")

    # Normalize to inches first
    if fu == "mm":
        inches = mm_to_inches(value)
    elif fu == "gallons":
        inches = gallons_to_inches(value, acres) if tu != "gallons" else None
    else:
        inches = value

    if fu == tu:
        result = value
    elif tu == "mm":
        result = inches_to_mm(inches)
    elif tu == "gallons":
        result = inches_to_gallons(inches, acres)
    else:
        result = inches

    formula = f"{value} {from_unit} = {round(result, 4)} {to_unit}"
    if "gallons" in (fu, tu) and fu != tu:
        formula += f" ({GALLONS_PER_ACRE_INCH} gal per acre-inch x {acres} ac)"
    elif {"mm", "inches"} == {fu, tu}:
        formula += f" ({MM_PER_INCH} mm per inch)"

    return {
        "value": round(result, 4),
        "unit": to_unit,
        "formula": formula,
    }
