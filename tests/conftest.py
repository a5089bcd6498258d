"""
Pytest configuration and shared fixtures for the vineyard irrigation tests.
"""

import os
import sys
from datetime import date

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment variables before importing app modules
os.environ.pop("DATABASE_URL", None)
os.environ.setdefault("FLASK_SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATA_DIR", "data")
os.environ.setdefault("LOG_DIR", os.path.join(os.path.dirname(os.path.abspath(__file__)), "logs"))


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch):
    """Every test gets its own SQLite file with fresh irrigation tables."""
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    from irrigation_store import init_irrigation_tables
    init_irrigation_tables()
    yield tmp_path


@pytest.fixture
def today():
    return date(2024, 6, 15)


@pytest.fixture
def block_id():
    from irrigation_store import add_block
    return add_block({
        'name': 'North Cabernet',
        'acres': 10,
        'center_lat': 38.5,
        'center_lng': -122.4,
        'flow_rate_gpm': 100,
        'soil_type': 'loam',
    })


@pytest.fixture
def mwf_schedule():
    """Mon/Wed/Fri 06:00-08:00 at 50 gpm (0 = Sunday)."""
    return {
        'name': 'MWF drip',
        'start_date': '2024-06-03',
        'start_time': '06:00',
        'stop_time': '08:00',
        'flow_rate_gpm': 50,
        'days_of_week': [1, 3, 5],
        'times_per_day': 1,
        'irrigation_method': 'drip',
    }


@pytest.fixture
def et_series():
    """Fifteen days of Kc-applied ET ending 2024-06-15, 50 mm ETc in total."""
    from date_utils import iter_dates, format_date
    days = list(iter_dates('2024-06-01', '2024-06-15'))
    per_day = 50.0 / len(days)
    return [{'date': format_date(d), 'et': per_day / 0.7, 'etc': per_day, 'kc': 0.7} for d in days]


@pytest.fixture
def fake_openet():
    """Stand-in for fetch_openet_data: 5 mm/day reference ET for the requested range."""
    from date_utils import iter_dates, format_date

    def _fetch(lat, lng, start, end, model='ensemble', interval='daily'):
        return {
            'timeseries': [{'date': format_date(d), 'et': 5.0, 'etc': 5.0} for d in iter_dates(start, end)],
            'source': 'openet-api',
            'fetched_at': '2024-06-15T08:00:00',
        }
    return _fetch
