"""
Persistence for vineyard blocks, irrigation events, irrigation schedules
and controller webhook devices.

Works with both SQLite and PostgreSQL via the db.py conversion layer.
The reconciliation engine uses this module as its event and schedule
store; any object exposing the same functions can stand in for it.
"""

import json
import logging
import secrets

from db import get_db, get_integrity_error
from date_utils import format_date
from schedule_expansion import (
    VALID_METHODS, DEFAULT_METHOD, SOURCE_SCHEDULE, validate_schedule,
)
from unit_converter import event_total_gallons

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SOURCE_MANUAL = 'manual'
SOURCE_WEBHOOK = 'webhook'
VALID_SOURCES = [SOURCE_MANUAL, SOURCE_SCHEDULE, SOURCE_WEBHOOK]
VALID_SOIL_TYPES = ['sand', 'sandy_loam', 'loam', 'clay_loam', 'clay', 'gravelly_loam']

# Schedule-sourced events are unique per (block, schedule, date), so
# insert_if_missing is a real upsert rather than check-then-insert.
SUPPORTS_UPSERT = True

_EVENT_COLUMNS = [
    'block_id', 'event_date', 'duration_hours', 'flow_rate_gpm',
    'total_water_gallons', 'irrigation_method', 'notes', 'source',
    'schedule_id', 'zone_number', 'device_id',
]


# ---------------------------------------------------------------------------
# Database Initialization
# ---------------------------------------------------------------------------

def init_irrigation_tables():
    """Initialize all irrigation-related database tables."""
    with get_db() as conn:
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS blocks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                acres REAL NOT NULL,
                center_lat REAL,
                center_lng REAL,
                flow_rate_gpm REAL,
                soil_type TEXT,
                notes TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS irrigation_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                block_id INTEGER NOT NULL,
                event_date TEXT NOT NULL,
                duration_hours REAL,
                flow_rate_gpm REAL,
                total_water_gallons REAL,
                irrigation_method TEXT,
                notes TEXT,
                source TEXT NOT NULL DEFAULT 'manual',
                schedule_id INTEGER,
                zone_number INTEGER,
                device_id INTEGER,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (block_id) REFERENCES blocks(id)
            )
        ''')
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS irrigation_schedules (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                block_id INTEGER NOT NULL,
                name TEXT,
                start_date TEXT NOT NULL,
                end_date TEXT,
                start_time TEXT NOT NULL,
                stop_time TEXT NOT NULL,
                flow_rate_gpm REAL NOT NULL,
                irrigation_method TEXT DEFAULT 'drip',
                days_of_week TEXT NOT NULL,
                times_per_day INTEGER DEFAULT 1,
                zone_number INTEGER,
                is_active INTEGER DEFAULT 1,
                notes TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (block_id) REFERENCES blocks(id)
            )
        ''')
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS irrigation_devices (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                device_name TEXT NOT NULL,
                webhook_token TEXT NOT NULL UNIQUE,
                is_active INTEGER DEFAULT 1,
                last_sync_at TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS device_zone_mappings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                device_id INTEGER NOT NULL,
                zone_number INTEGER NOT NULL,
                block_id INTEGER NOT NULL,
                flow_rate_gpm REAL,
                irrigation_method TEXT,
                FOREIGN KEY (device_id) REFERENCES irrigation_devices(id),
                FOREIGN KEY (block_id) REFERENCES blocks(id)
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_irr_events_block_date ON irrigation_events(block_id, event_date)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_irr_events_schedule ON irrigation_events(schedule_id)')
        cursor.execute(
            'CREATE UNIQUE INDEX IF NOT EXISTS idx_irr_events_schedule_date '
            'ON irrigation_events(block_id, schedule_id, event_date) WHERE schedule_id IS NOT NULL'
        )
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_irr_schedules_block ON irrigation_schedules(block_id)')
        cursor.execute(
            'CREATE UNIQUE INDEX IF NOT EXISTS idx_zone_mapping_device_zone '
            'ON device_zone_mappings(device_id, zone_number)'
        )

    logger.info("Irrigation tables initialized")


# ---------------------------------------------------------------------------
# Row Helpers
# ---------------------------------------------------------------------------

def _schedule_row_to_dict(row):
    """Decode JSON days_of_week and coerce the active flag."""
    if row is None:
        return None
    d = dict(row)
    if isinstance(d.get('days_of_week'), str):
        try:
            d['days_of_week'] = json.loads(d['days_of_week'])
        except (json.JSONDecodeError, TypeError):
            logger.warning(f"Schedule {d.get('id')} has unreadable days_of_week")
            d['days_of_week'] = []
    d['is_active'] = bool(d.get('is_active'))
    return d


def _with_total_water(data):
    """Fill total_water_gallons from duration x flow when it is missing."""
    total = data.get('total_water_gallons')
    if total is None and data.get('duration_hours') and data.get('flow_rate_gpm'):
        data['total_water_gallons'] = event_total_gallons(
            float(data['duration_hours']), float(data['flow_rate_gpm'])
        )
    return data


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------

def add_block(data):
    """Add a vineyard block. Returns the new block ID."""
    acres = data.get('acres')
    if acres is None or float(acres) <= 0:
        raise ValueError("acres must be greater than zero")
    soil_type = data.get('soil_type')
    if soil_type and soil_type not in VALID_SOIL_TYPES:
        raise ValueError(f"Invalid soil_type '{soil_type}'. Must be one of {VALID_SOIL_TYPES}")
    flow_rate = data.get('flow_rate_gpm')
    if flow_rate is not None and float(flow_rate) <= 0:
        raise ValueError("flow_rate_gpm must be greater than zero")

    with get_db() as conn:
        cursor = conn.execute('''
            INSERT INTO blocks (name, acres, center_lat, center_lng, flow_rate_gpm, soil_type, notes)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        ''', (
            data.get('name', 'Unnamed Block'),
            float(acres),
            data.get('center_lat'),
            data.get('center_lng'),
            flow_rate,
            soil_type,
            data.get('notes'),
        ))
        block_id = cursor.lastrowid

    logger.info(f"Block created: {block_id} ('{data.get('name')}')")
    return block_id


def update_block(block_id, data):
    """Update flow rate, geometry or descriptors of a block.

    Returns True if updated, False if not found or nothing to update.
    """
    allowed_fields = ['name', 'acres', 'center_lat', 'center_lng', 'flow_rate_gpm', 'soil_type', 'notes']
    if 'acres' in data and (data['acres'] is None or float(data['acres']) <= 0):
        raise ValueError("acres must be greater than zero")
    if data.get('soil_type') and data['soil_type'] not in VALID_SOIL_TYPES:
        raise ValueError(f"Invalid soil_type. Must be one of {VALID_SOIL_TYPES}")

    updates = []
    params = []
    for field in allowed_fields:
        if field in data:
            updates.append(f'{field} = ?')
            params.append(data[field])
    if not updates:
        return False

    updates.append('updated_at = CURRENT_TIMESTAMP')
    params.append(block_id)
    with get_db() as conn:
        cursor = conn.execute(f"UPDATE blocks SET {', '.join(updates)} WHERE id = ?", params)
        updated = cursor.rowcount > 0

    if updated:
        logger.info(f"Block {block_id} updated")
    return updated


def delete_block(block_id):
    """Delete a block together with its schedules and events."""
    with get_db() as conn:
        conn.execute('DELETE FROM irrigation_events WHERE block_id = ?', (block_id,))
        conn.execute('DELETE FROM irrigation_schedules WHERE block_id = ?', (block_id,))
        cursor = conn.execute('DELETE FROM blocks WHERE id = ?', (block_id,))
        deleted = cursor.rowcount > 0

    if deleted:
        logger.info(f"Block {block_id} deleted")
    return deleted


def get_blocks():
    with get_db() as conn:
        rows = conn.execute('SELECT * FROM blocks ORDER BY name').fetchall()
    return [dict(row) for row in rows]


def get_block(block_id):
    with get_db() as conn:
        row = conn.execute('SELECT * FROM blocks WHERE id = ?', (block_id,)).fetchone()
    return dict(row) if row else None


# ---------------------------------------------------------------------------
# Irrigation Events
# ---------------------------------------------------------------------------

def list_events(block_id, start_date=None, end_date=None, schedule_id=None):
    """List a block's irrigation events, newest first.

    Dates are inclusive 'YYYY-MM-DD' bounds.
    """
    query = 'SELECT * FROM irrigation_events WHERE block_id = ?'
    params = [block_id]

    if start_date:
        query += ' AND event_date >= ?'
        params.append(format_date(start_date))
    if end_date:
        query += ' AND event_date <= ?'
        params.append(format_date(end_date))
    if schedule_id is not None:
        query += ' AND schedule_id = ?'
        params.append(schedule_id)

    query += ' ORDER BY event_date DESC, id DESC'

    with get_db() as conn:
        rows = conn.execute(query, params).fetchall()
    return [dict(row) for row in rows]


def get_event(event_id):
    with get_db() as conn:
        row = conn.execute('SELECT * FROM irrigation_events WHERE id = ?', (event_id,)).fetchone()
    return dict(row) if row else None


def _validate_event(data):
    if not data.get('block_id'):
        raise ValueError("block_id is required")
    if not data.get('event_date'):
        raise ValueError("event_date is required")
    source = data.get('source', SOURCE_MANUAL)
    if source not in VALID_SOURCES:
        raise ValueError(f"Invalid source '{source}'. Must be one of {VALID_SOURCES}")
    method = data.get('irrigation_method')
    if method and method not in VALID_METHODS:
        raise ValueError(f"Invalid irrigation_method '{method}'. Must be one of {VALID_METHODS}")
    for field in ('duration_hours', 'flow_rate_gpm', 'total_water_gallons'):
        value = data.get(field)
        if value is not None and float(value) < 0:
            raise ValueError(f"{field} must be non-negative")


def _event_params(data):
    data = _with_total_water(dict(data))
    data['event_date'] = format_date(data['event_date'])
    data.setdefault('source', SOURCE_MANUAL)
    data.setdefault('irrigation_method', DEFAULT_METHOD)
    return tuple(data.get(col) for col in _EVENT_COLUMNS)


def create_event(data):
    """Create an irrigation event. Returns the new event ID."""
    _validate_event(data)
    placeholders = ', '.join('?' for _ in _EVENT_COLUMNS)
    with get_db() as conn:
        cursor = conn.execute(
            f"INSERT INTO irrigation_events ({', '.join(_EVENT_COLUMNS)}) VALUES ({placeholders})",
            _event_params(data),
        )
        event_id = cursor.lastrowid

    logger.info(f"Irrigation event created: {event_id} for block {data['block_id']} on {data['event_date']}")
    return event_id


def insert_if_missing(data):
    """Insert a schedule-generated event unless (block, schedule, date) exists.

    Returns the new event ID, or None when an event was already there.
    """
    if data.get('schedule_id') is None:
        return create_event(data)

    _validate_event(data)
    placeholders = ', '.join('?' for _ in _EVENT_COLUMNS)
    with get_db() as conn:
        cursor = conn.execute(
            f"INSERT INTO irrigation_events ({', '.join(_EVENT_COLUMNS)}) VALUES ({placeholders}) "
            "ON CONFLICT (block_id, schedule_id, event_date) WHERE schedule_id IS NOT NULL DO NOTHING",
            _event_params(data),
        )
        if cursor.rowcount <= 0:
            return None
        return cursor.lastrowid


def update_event(event_id, updates):
    """Update an irrigation event, recomputing total water when needed.

    Returns True if updated, False if not found.
    """
    allowed_fields = [
        'event_date', 'duration_hours', 'flow_rate_gpm', 'total_water_gallons',
        'irrigation_method', 'notes', 'zone_number', 'schedule_id',
    ]
    updates = {k: v for k, v in updates.items() if k in allowed_fields}
    if not updates:
        return False
    if updates.get('irrigation_method') and updates['irrigation_method'] not in VALID_METHODS:
        raise ValueError(f"Invalid irrigation_method. Must be one of {VALID_METHODS}")

    if ('duration_hours' in updates or 'flow_rate_gpm' in updates) and 'total_water_gallons' not in updates:
        existing = get_event(event_id)
        if existing is None:
            return False
        duration = updates.get('duration_hours', existing.get('duration_hours'))
        flow_rate = updates.get('flow_rate_gpm', existing.get('flow_rate_gpm'))
        if duration is not None and flow_rate is not None:
            updates['total_water_gallons'] = event_total_gallons(float(duration), float(flow_rate))
    if 'event_date' in updates:
        updates['event_date'] = format_date(updates['event_date'])

    assignments = ', '.join(f'{field} = ?' for field in updates)
    params = list(updates.values()) + [event_id]
    with get_db() as conn:
        cursor = conn.execute(f"UPDATE irrigation_events SET {assignments} WHERE id = ?", params)
        updated = cursor.rowcount > 0

    if updated:
        logger.info(f"Irrigation event {event_id} updated")
    return updated


def delete_event(event_id):
    with get_db() as conn:
        cursor = conn.execute('DELETE FROM irrigation_events WHERE id = ?', (event_id,))
        deleted = cursor.rowcount > 0
    if deleted:
        logger.debug(f"Irrigation event {event_id} deleted")
    return deleted


# ---------------------------------------------------------------------------
# Irrigation Schedules
# ---------------------------------------------------------------------------

def list_schedules(block_id, active_only=False):
    query = 'SELECT * FROM irrigation_schedules WHERE block_id = ?'
    params = [block_id]
    if active_only:
        query += ' AND is_active = 1'
    query += ' ORDER BY created_at DESC, id DESC'

    with get_db() as conn:
        rows = conn.execute(query, params).fetchall()
    return [_schedule_row_to_dict(row) for row in rows]


def get_schedule(schedule_id):
    with get_db() as conn:
        row = conn.execute('SELECT * FROM irrigation_schedules WHERE id = ?', (schedule_id,)).fetchone()
    return _schedule_row_to_dict(row)


def create_schedule(data):
    """Create an irrigation schedule. Returns the new schedule ID."""
    data = dict(data)
    data.setdefault('times_per_day', 1)
    validate_schedule(data)

    with get_db() as conn:
        cursor = conn.execute('''
            INSERT INTO irrigation_schedules (
                block_id, name, start_date, end_date, start_time, stop_time,
                flow_rate_gpm, irrigation_method, days_of_week, times_per_day,
                zone_number, is_active, notes
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ''', (
            data['block_id'],
            data.get('name'),
            format_date(data['start_date']),
            format_date(data['end_date']) if data.get('end_date') else None,
            data['start_time'],
            data['stop_time'],
            float(data['flow_rate_gpm']),
            data.get('irrigation_method') or DEFAULT_METHOD,
            json.dumps(sorted(set(data['days_of_week']))),
            data['times_per_day'],
            data.get('zone_number'),
            1 if data.get('is_active', True) else 0,
            data.get('notes'),
        ))
        schedule_id = cursor.lastrowid

    logger.info(f"Irrigation schedule created: {schedule_id} for block {data['block_id']}")
    return schedule_id


def update_schedule(schedule_id, updates):
    """Update a schedule definition. Returns True if updated."""
    allowed_fields = [
        'name', 'start_date', 'end_date', 'start_time', 'stop_time', 'flow_rate_gpm',
        'irrigation_method', 'days_of_week', 'times_per_day', 'zone_number', 'is_active', 'notes',
    ]
    updates = {k: v for k, v in updates.items() if k in allowed_fields}
    if not updates:
        return False

    existing = get_schedule(schedule_id)
    if existing is None:
        return False
    validate_schedule({**existing, **updates})

    if 'days_of_week' in updates:
        updates['days_of_week'] = json.dumps(sorted(set(updates['days_of_week'])))
    if 'is_active' in updates:
        updates['is_active'] = 1 if updates['is_active'] else 0
    for field in ('start_date', 'end_date'):
        if updates.get(field):
            updates[field] = format_date(updates[field])

    assignments = ', '.join(f'{field} = ?' for field in updates)
    params = list(updates.values()) + [schedule_id]
    with get_db() as conn:
        cursor = conn.execute(
            f"UPDATE irrigation_schedules SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            params,
        )
        updated = cursor.rowcount > 0

    if updated:
        logger.info(f"Irrigation schedule {schedule_id} updated")
    return updated


def delete_schedule(schedule_id):
    """Delete a schedule row. Its events are left to the caller."""
    with get_db() as conn:
        cursor = conn.execute('DELETE FROM irrigation_schedules WHERE id = ?', (schedule_id,))
        deleted = cursor.rowcount > 0
    if deleted:
        logger.info(f"Irrigation schedule {schedule_id} deleted")
    return deleted


def toggle_active(schedule_id, is_active):
    """Pause (False) or resume (True) a schedule."""
    with get_db() as conn:
        cursor = conn.execute(
            'UPDATE irrigation_schedules SET is_active = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?',
            (1 if is_active else 0, schedule_id),
        )
        updated = cursor.rowcount > 0
    if updated:
        logger.info(f"Irrigation schedule {schedule_id} {'resumed' if is_active else 'paused'}")
    return updated


# ---------------------------------------------------------------------------
# Controller Devices (webhook ingestion)
# ---------------------------------------------------------------------------

def add_device(device_name):
    """Register a controller. Returns (device_id, webhook_token)."""
    if not device_name:
        raise ValueError("device_name is required")
    token = secrets.token_urlsafe(24)
    with get_db() as conn:
        cursor = conn.execute(
            'INSERT INTO irrigation_devices (device_name, webhook_token) VALUES (?, ?)',
            (device_name, token),
        )
        device_id = cursor.lastrowid
    logger.info(f"Irrigation device registered: {device_id} ('{device_name}')")
    return device_id, token


def get_device_by_token(token):
    """Active device for a webhook token, or None."""
    with get_db() as conn:
        row = conn.execute(
            'SELECT * FROM irrigation_devices WHERE webhook_token = ? AND is_active = 1',
            (token,),
        ).fetchone()
    return dict(row) if row else None


def mark_device_synced(device_id, synced_at):
    with get_db() as conn:
        conn.execute(
            'UPDATE irrigation_devices SET last_sync_at = ? WHERE id = ?',
            (synced_at, device_id),
        )


def add_zone_mapping(device_id, zone_number, block_id, flow_rate_gpm=None, irrigation_method=None):
    """Route a controller zone to a block. A zone maps to at most one block."""
    if irrigation_method and irrigation_method not in VALID_METHODS:
        raise ValueError(f"Invalid irrigation_method. Must be one of {VALID_METHODS}")
    try:
        with get_db() as conn:
            cursor = conn.execute('''
                INSERT INTO device_zone_mappings (device_id, zone_number, block_id, flow_rate_gpm, irrigation_method)
                VALUES (?, ?, ?, ?, ?)
            ''', (device_id, zone_number, block_id, flow_rate_gpm, irrigation_method))
            mapping_id = cursor.lastrowid
    except get_integrity_error():
        raise ValueError(f"Zone {zone_number} of device {device_id} is already mapped")
    logger.info(f"Device {device_id} zone {zone_number} mapped to block {block_id}")
    return mapping_id


def get_zone_mapping(device_id, zone_number):
    with get_db() as conn:
        row = conn.execute(
            'SELECT * FROM device_zone_mappings WHERE device_id = ? AND zone_number = ?',
            (device_id, zone_number),
        ).fetchone()
    return dict(row) if row else None
