"""
Field-level rainfall and forecast for vineyard blocks.
Uses the National Weather Service API (api.weather.gov, no key required)
to total recent rainfall at the nearest station and estimate upcoming rain.
"""
import logging
from typing import Dict, Any
from datetime import datetime, time, timedelta, timezone

import requests

from config import Config
from date_utils import add_days, days_between, parse_local_date
from unit_converter import mm_to_inches

logger = logging.getLogger(__name__)

# Hourly readings above this are sensor glitches
MAX_HOURLY_PRECIP_MM = 100

# Forecast confidence applied when discounting irrigation for predicted rain
FORECAST_CONFIDENCE = 0.7

DEFAULT_FIELD_CAPACITY_MM = 150


def _nws_get(url: str) -> Dict:
    response = requests.get(
        url,
        headers={
            'User-Agent': Config.NWS_USER_AGENT,
            'Accept': 'application/geo+json',
        },
        timeout=Config.WEATHER_TIMEOUT,
    )
    response.raise_for_status()
    return response.json()


def _get_point(lat: float, lng: float) -> Dict:
    return _nws_get(f"{Config.NWS_API_URL}/points/{lat},{lng}")


def fetch_field_rainfall(lat: float, lng: float, days: int = 7, now: datetime = None) -> Dict[str, Any]:
    """
    Total rainfall over the past *days* at the station nearest a field.

    Returns:
        dict with total_mm, total_inches, daily_rainfall {date: mm},
        last_rain_event, station_name, source. On failure the totals are 0
        and an 'error' key carries the reason.
    """
    now = now or datetime.now(timezone.utc)
    try:
        point = _get_point(lat, lng)
        stations = _nws_get(point['properties']['observationStations'])
        features = stations.get('features') or []
        if not features:
            raise LookupError('No NWS observation station found for this location')
        station = features[0]
        station_id = station['id']

        start = now - timedelta(days=days)
        observations = requests.get(
            f"{station_id}/observations",
            params={'start': start.isoformat(), 'end': now.isoformat()},
            headers={'User-Agent': Config.NWS_USER_AGENT, 'Accept': 'application/geo+json'},
            timeout=Config.WEATHER_TIMEOUT,
        )
        observations.raise_for_status()
        obs_data = observations.json()
    except (requests.RequestException, KeyError, LookupError, ValueError) as e:
        logger.error(f"Rainfall fetch failed for ({lat}, {lng}): {e}")
        return {'total_mm': 0.0, 'total_inches': 0.0, 'daily_rainfall': {}, 'error': str(e)}

    result = aggregate_observations(obs_data.get('features') or [])
    result.update({
        'station_name': (station.get('properties') or {}).get('name', 'Unknown Station'),
        'source': 'NWS',
        'days': days,
    })
    logger.info(
        f"Rainfall for ({lat}, {lng}): {result['total_mm']:.1f}mm over {days} days "
        f"from {result['station_name']}"
    )
    return result


def fetch_window_rainfall(lat: float, lng: float, start_date, end_date) -> Dict[str, Any]:
    """Rainfall over the calendar days start_date..end_date inclusive.

    Observations are requested from 00:00 UTC on start_date up to the end of
    end_date, so the first day of the window is covered in full.
    """
    end = datetime.combine(add_days(end_date, 1), time.min, tzinfo=timezone.utc)
    days = days_between(start_date, end_date) + 1
    return fetch_field_rainfall(lat, lng, days=days, now=end)


def aggregate_observations(observations: list) -> Dict[str, Any]:
    """Sum hourly precipitation, counting each clock hour once."""
    hourly = {}
    last_rain_event = {'date': None, 'amount': 0.0}

    for obs in observations:
        props = obs.get('properties') or {}
        precip = (props.get('precipitationLastHour') or {}).get('value')
        timestamp = props.get('timestamp')
        if precip is None or not timestamp:
            continue
        precip_mm = precip * 1000  # NWS reports metres
        if precip_mm <= 0 or precip_mm > MAX_HOURLY_PRECIP_MM:
            continue

        hour_key = timestamp[:13]  # YYYY-MM-DDTHH
        hourly[hour_key] = precip_mm
        if last_rain_event['date'] is None or timestamp > last_rain_event['date']:
            last_rain_event = {'date': timestamp, 'amount': precip_mm}

    daily_rainfall = {}
    for hour_key, amount in hourly.items():
        day = hour_key[:10]
        daily_rainfall[day] = daily_rainfall.get(day, 0.0) + amount

    total_mm = sum(hourly.values())
    return {
        'total_mm': total_mm,
        'total_inches': mm_to_inches(total_mm),
        'daily_rainfall': daily_rainfall,
        'last_rain_event': last_rain_event,
    }


def fetch_field_forecast(lat: float, lng: float) -> Dict[str, Any]:
    """
    Seven-day forecast with a rough predicted rainfall total.

    NWS gives only probability of precipitation, so each period's amount is
    estimated from its probability band.
    """
    try:
        point = _get_point(lat, lng)
        forecast = _nws_get(point['properties']['forecast'])
    except (requests.RequestException, KeyError, ValueError) as e:
        logger.error(f"Forecast fetch failed for ({lat}, {lng}): {e}")
        return {'predicted_rainfall_mm': 0.0, 'predicted_rainfall_inches': 0.0, 'periods': [], 'error': str(e)}

    predicted_mm = 0.0
    periods = []
    for period in (forecast.get('properties') or {}).get('periods') or []:
        precip_prob = (period.get('probabilityOfPrecipitation') or {}).get('value') or 0
        estimated_mm = estimate_period_rainfall(precip_prob)
        predicted_mm += estimated_mm
        periods.append({
            'name': period.get('name'),
            'start_time': period.get('startTime'),
            'temperature': period.get('temperature'),
            'precipitation_probability': precip_prob,
            'short_forecast': period.get('shortForecast'),
            'estimated_rainfall_mm': estimated_mm,
            'wind_speed': period.get('windSpeed'),
        })

    return {
        'predicted_rainfall_mm': predicted_mm,
        'predicted_rainfall_inches': mm_to_inches(predicted_mm),
        'periods': periods[:14],  # 7 days of day + night periods
        'source': 'NWS Forecast',
    }


def estimate_period_rainfall(precip_probability: float) -> float:
    if precip_probability > 70:
        return 10.0
    if precip_probability > 40:
        return 5.0
    if precip_probability > 20:
        return 2.0
    return 0.0


def rainfall_in_window(rainfall: Dict, start, end) -> float:
    """Rainfall (mm) from a rainfall summary that fell within [start, end].

    Uses the daily breakdown when present; otherwise the summary total is
    assumed to cover the window already. None -> 0.
    """
    if not rainfall:
        return 0.0
    daily = rainfall.get('daily_rainfall')
    if daily:
        start_d = parse_local_date(start)
        end_d = parse_local_date(end)
        return sum(
            amount for day, amount in daily.items()
            if start_d <= parse_local_date(day) <= end_d
        )
    return float(rainfall.get('total_mm') or 0.0)


def calculate_adjusted_irrigation(
    base_need_mm: float,
    rainfall_received_mm: float = 0.0,
    predicted_rainfall_mm: float = 0.0,
    field_capacity_mm: float = DEFAULT_FIELD_CAPACITY_MM,
) -> Dict[str, float]:
    """Irrigation need after crediting received and forecast rain."""
    net_need = base_need_mm - rainfall_received_mm
    if predicted_rainfall_mm > 0:
        net_need -= predicted_rainfall_mm * FORECAST_CONFIDENCE
    net_need = max(0.0, min(net_need, field_capacity_mm))

    savings = base_need_mm - net_need
    return {
        'base_need_mm': base_need_mm,
        'rainfall_received_mm': rainfall_received_mm,
        'predicted_rainfall_mm': predicted_rainfall_mm,
        'adjusted_need_mm': net_need,
        'adjusted_need_inches': mm_to_inches(net_need),
        'savings_mm': savings,
        'savings_percent': (savings / base_need_mm * 100) if base_need_mm > 0 else 0.0,
    }
