"""
Evapotranspiration data for vineyard blocks.

Fetches satellite reference ET from OpenET for a block's centroid and turns
it into crop water use (ETc) with the grapevine crop coefficient.
"""
import logging
import math
from datetime import datetime
from typing import Callable, Dict, List, Optional, Union

import requests

from config import Config
from crop_coefficients import get_grape_kc
from date_utils import format_date, iter_dates, parse_local_date

logger = logging.getLogger(__name__)

SOURCE_OPENET = 'openet-api'
SOURCE_MOCK = 'mock-data'

VALID_MODELS = ['ensemble', 'eemetric', 'ssebop', 'sims', 'disalexi', 'ptjpl', 'geesebal']
VALID_INTERVALS = ['daily', 'monthly']


# ---------------------------------------------------------------------------
# ET Source
# ---------------------------------------------------------------------------

def fetch_openet_data(
    lat: float,
    lng: float,
    start_date,
    end_date,
    model: str = 'ensemble',
    interval: str = 'daily'
) -> Dict:
    """
    Fetch reference ET for a point and date range.

    Returns {'timeseries': [{date, et, etc}], 'summary', 'source', 'fetched_at'}.
    When the API is unreachable or errors, a demo series tagged
    source='mock-data' is returned instead so the dashboard keeps working.
    """
    start = format_date(start_date)
    end = format_date(end_date)
    if model not in VALID_MODELS:
        raise ValueError(f"Invalid model '{model}'. Must be one of {VALID_MODELS}")
    if interval not in VALID_INTERVALS:
        raise ValueError(f"Invalid interval '{interval}'. Must be one of {VALID_INTERVALS}")

    request_body = {
        'date_range': [start, end],
        'interval': interval,
        'geometry': [lng, lat],
        'model': model.capitalize(),
        'variable': 'ET',
        'reference_et': 'gridMET',
        'units': 'mm',
        'file_format': 'JSON',
    }
    headers = {'Content-Type': 'application/json'}
    if Config.OPENET_API_KEY:
        headers['Authorization'] = Config.OPENET_API_KEY

    logger.info(f"Fetching OpenET data for ({lat}, {lng}) {start}..{end} model={model}")
    try:
        response = requests.post(
            Config.OPENET_API_URL,
            json=request_body,
            headers=headers,
            timeout=Config.OPENET_TIMEOUT,
        )
        response.raise_for_status()
        data = response.json()
    except requests.Timeout:
        logger.error(f"OpenET request timed out after {Config.OPENET_TIMEOUT}s, using mock data")
        return generate_mock_et_data(start, end)
    except (requests.RequestException, ValueError) as e:
        logger.error(f"OpenET request failed: {e}. Falling back to mock data")
        return generate_mock_et_data(start, end)

    return _transform_openet_response(data)


def _transform_openet_response(api_response) -> Dict:
    """Point timeseries arrive as [{time: 'YYYY-MM-DD', et: X.XX}]."""
    values = api_response if isinstance(api_response, list) else []
    timeseries = []
    for item in values:
        et = item.get('et') or 0.0
        timeseries.append({
            'date': str(item.get('time', ''))[:10],
            'et': float(et),
            'etc': float(et),  # Kc applied separately
        })
    return {
        'timeseries': timeseries,
        'summary': summarize_et(timeseries),
        'source': SOURCE_OPENET,
        'fetched_at': datetime.now().isoformat(),
    }


def generate_mock_et_data(start_date, end_date) -> Dict:
    """Deterministic demo ET series (3-5 mm/day, higher in summer)."""
    timeseries = []
    for day in iter_dates(start_date, end_date):
        base_et = 4.5 if 6 <= day.month <= 9 else 3.5
        variation = 0.5 * math.sin(day.toordinal())
        et = round(max(2.0, base_et + variation), 2)
        timeseries.append({
            'date': format_date(day),
            'et': et,
            'etc': round(et * 0.9, 2),
        })
    return {
        'timeseries': timeseries,
        'summary': summarize_et(timeseries),
        'source': SOURCE_MOCK,
        'fetched_at': datetime.now().isoformat(),
    }


# ---------------------------------------------------------------------------
# Crop Water Use Aggregation
# ---------------------------------------------------------------------------

def apply_kc(series: List[Dict], kc: Union[float, Callable] = get_grape_kc) -> List[Dict]:
    """Return a new series with etc = et * Kc(date) for every record.

    *kc* may be a constant or a callable taking the record date. Order and
    length are preserved; gaps are left as gaps.
    """
    result = []
    for record in series:
        kc_value = kc(record['date']) if callable(kc) else kc
        result.append({
            **record,
            'etc': record['et'] * kc_value,
            'kc': kc_value,
        })
    return result


def window_sum(series: List[Dict], start, end) -> float:
    """Sum etc over the half-open interval [start, end)."""
    start_d = parse_local_date(start)
    end_d = parse_local_date(end)
    return sum(
        record['etc'] for record in series
        if start_d <= parse_local_date(record['date']) < end_d
    )


def summarize_et(series: List[Dict]) -> Dict:
    et_values = [r['et'] for r in series if r.get('et', 0) > 0]
    total_et = sum(et_values)
    return {
        'avg_et': round(total_et / len(et_values), 2) if et_values else 0.0,
        'total_et': round(total_et, 2),
        'total_etc': round(sum(r.get('etc', 0) or 0 for r in series), 2),
        'days': len(series),
    }


def estimate_forecast_et(series: List[Dict], days: int = 3, lookback: int = 7) -> Optional[float]:
    """Short-term ETc forecast (mm): recent mean daily ETc times *days*.

    Returns None when there is no ET history to extrapolate from.
    """
    if not series:
        return None
    ordered = sorted(series, key=lambda r: parse_local_date(r['date']))
    recent = ordered[-lookback:]
    mean_etc = sum(r['etc'] for r in recent) / len(recent)
    return mean_etc * days
