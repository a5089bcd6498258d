"""
Irrigation management for vineyard blocks.

Ties the pieces together per block: schedule sync, ET and weather fetch,
water budget, soil moisture estimate and irrigation recommendation. Also
owns the schedule lifecycle flows (create with backfill, edit with
regenerate, pause and delete) and controller webhook ingestion.
"""

import logging
from datetime import datetime

import irrigation_store
import reconciliation
from config import Config
from crop_coefficients import check_etc_in_target, get_growth_stage
from date_utils import add_days, format_date, local_today, parse_local_date
from db import get_db
from et_service import apply_kc, estimate_forecast_et, fetch_openet_data, summarize_et
from irrigation_recommendation import recommend_irrigation
from schedule_expansion import DEFAULT_METHOD
from soil_moisture import estimate_soil_moisture
from unit_converter import event_total_gallons, gallons_to_inches
from water_budget import calculate_water_budget, unavailable_budget
from weather_service import calculate_adjusted_irrigation, fetch_field_forecast, fetch_window_rainfall

logger = logging.getLogger(__name__)

WEBHOOK_REQUIRED_FIELDS = ['zone_number', 'start_time', 'end_time']


class WebhookError(ValueError):
    """Rejected controller webhook; status_code is the HTTP status to return."""

    def __init__(self, message, status_code=400):
        super().__init__(message)
        self.status_code = status_code


def _today(today):
    return parse_local_date(today) if today is not None else local_today()


# ---------------------------------------------------------------------------
# Block water status
# ---------------------------------------------------------------------------

def sync_block(block_id, today=None):
    """Run the view-load reconciliation pass for one block."""
    return reconciliation.sync_block_schedules(
        block_id,
        irrigation_store,
        irrigation_store,
        _today(today),
        horizon_days=Config.SCHEDULE_HORIZON_DAYS,
    )


def get_block_water_status(block_id, today=None, include_weather=True):
    """Full water picture for a block.

    Syncs the block's schedules first so scheduled events up to today count
    as applied water, then builds the budget from OpenET data, irrigation
    events and NWS rainfall.

    Args:
        block_id: Block ID.
        today: Local date the budget window ends on (defaults to today).
        include_weather: Fetch NWS rainfall and forecast. When False rainfall
            is treated as unavailable (0).

    Returns:
        dict with block, budget, soil_moisture, recommendation,
        adjusted_need, growth_stage, et, sync; or None if the block is missing.
    """
    block = irrigation_store.get_block(block_id)
    if not block:
        return None

    today = _today(today)
    window_days = Config.WATER_BUDGET_WINDOW_DAYS
    sync = sync_block(block_id, today)
    stage = get_growth_stage(today)

    status = {
        'block': block,
        'sync': sync,
        'growth_stage': stage,
        'budget': None,
        'soil_moisture': None,
        'recommendation': None,
        'adjusted_need': None,
        'et': None,
        'rainfall': None,
        'generated_at': datetime.now().isoformat(),
    }

    lat, lng = block.get('center_lat'), block.get('center_lng')
    if lat is None or lng is None:
        logger.info(f"Block {block_id} has no coordinates; water status unavailable")
        status['budget'] = unavailable_budget('no_coordinates', today, window_days)
        return status

    window_start = add_days(today, -window_days)
    et_data = fetch_openet_data(lat, lng, window_start, today, model=Config.OPENET_MODEL)
    series = apply_kc(et_data['timeseries'])
    status['et'] = {
        'source': et_data['source'],
        'fetched_at': et_data.get('fetched_at'),
        'summary': summarize_et(series),
        'timeseries': series,
    }
    if series:
        latest = max(series, key=lambda r: parse_local_date(r['date']))
        status['growth_stage'] = {**stage, 'target_check': check_etc_in_target(latest['etc'], today)}

    rainfall = fetch_window_rainfall(lat, lng, window_start, today) if include_weather else None
    status['rainfall'] = rainfall

    events = irrigation_store.list_events(block_id)
    budget = calculate_water_budget(
        block.get('acres'), series, events, rainfall, today=today, window_days=window_days
    )
    status['budget'] = budget
    if not budget['available']:
        return status

    window_events = [
        e for e in events
        if window_start <= parse_local_date(e['event_date']) <= today
    ]
    status['soil_moisture'] = estimate_soil_moisture(
        budget['deficit_mm'], window_events, block['acres'], budget['rainfall_mm']
    )

    forecast_et = estimate_forecast_et(series, days=Config.FORECAST_ET_DAYS) or 0.0
    recommendation = recommend_irrigation(
        max(0.0, budget['deficit_mm']), block['acres'], block.get('flow_rate_gpm'), forecast_et
    )
    status['recommendation'] = recommendation

    if include_weather and recommendation['needs_irrigation']:
        forecast = fetch_field_forecast(lat, lng)
        # Received rain is already inside the deficit; only credit the forecast.
        status['adjusted_need'] = calculate_adjusted_irrigation(
            recommendation['amount_mm'], 0.0, forecast.get('predicted_rainfall_mm') or 0.0
        )

    logger.info(
        f"Water status for block {block_id}: deficit {budget['deficit_mm']:.1f}mm, "
        f"urgency {recommendation['urgency']}"
    )
    return status


# ---------------------------------------------------------------------------
# Irrigation events
# ---------------------------------------------------------------------------

def log_manual_event(block_id, data):
    """Log a manual irrigation event for a block. Returns the new event ID."""
    block = irrigation_store.get_block(block_id)
    if not block:
        raise ValueError(f"Block {block_id} not found")

    event = dict(data)
    event['block_id'] = block_id
    event['source'] = irrigation_store.SOURCE_MANUAL
    event.pop('schedule_id', None)
    if event.get('flow_rate_gpm') is None and block.get('flow_rate_gpm'):
        event['flow_rate_gpm'] = block['flow_rate_gpm']
    return irrigation_store.create_event(event)


def get_block_events(block_id, start_date=None, end_date=None, today=None):
    """Block events with their derived state ('scheduled', 'completed', 'paused')."""
    events = irrigation_store.list_events(block_id, start_date=start_date, end_date=end_date)
    schedules = irrigation_store.list_schedules(block_id)
    return reconciliation.annotate_event_states(events, _today(today), schedules)


def get_irrigation_summary(block_id, start_date=None, end_date=None):
    """Totals for a block's irrigation over a date range, with a per-method breakdown."""
    block = irrigation_store.get_block(block_id)
    if not block:
        return None

    where = 'WHERE block_id = ?'
    params = [block_id]
    if start_date:
        where += ' AND event_date >= ?'
        params.append(format_date(start_date))
    if end_date:
        where += ' AND event_date <= ?'
        params.append(format_date(end_date))

    with get_db() as conn:
        totals = conn.execute(
            'SELECT COUNT(*) as event_count, '
            'COALESCE(SUM(total_water_gallons), 0) as total_gallons, '
            'COALESCE(SUM(duration_hours), 0) as total_hours, '
            'AVG(flow_rate_gpm) as avg_flow_rate '
            f'FROM irrigation_events {where}',
            params
        ).fetchone()
        method_rows = conn.execute(
            'SELECT irrigation_method, COUNT(*) as event_count, '
            'COALESCE(SUM(total_water_gallons), 0) as total_gallons '
            f'FROM irrigation_events {where} GROUP BY irrigation_method',
            params
        ).fetchall()

    total_gallons = float(totals['total_gallons']) if totals else 0.0
    acres = block.get('acres') or 0
    by_method = {
        (row['irrigation_method'] or DEFAULT_METHOD): {
            'count': int(row['event_count']),
            'gallons': round(float(row['total_gallons']), 1),
        }
        for row in method_rows
    }

    return {
        'block_id': block_id,
        'start_date': format_date(start_date) if start_date else None,
        'end_date': format_date(end_date) if end_date else None,
        'event_count': int(totals['event_count']) if totals else 0,
        'total_gallons': round(total_gallons, 1),
        'total_hours': round(float(totals['total_hours']), 2) if totals else 0.0,
        'avg_flow_rate': round(float(totals['avg_flow_rate']), 1) if totals and totals['avg_flow_rate'] else 0.0,
        'total_inches': round(gallons_to_inches(total_gallons, acres), 3) if acres else None,
        'by_method': by_method,
        'generated_at': datetime.now().isoformat(),
    }


# ---------------------------------------------------------------------------
# Schedule lifecycle
# ---------------------------------------------------------------------------

def create_schedule_with_backfill(block_id, data, today=None):
    """Create a schedule, then fill its past events and the next horizon."""
    if not irrigation_store.get_block(block_id):
        raise ValueError(f"Block {block_id} not found")

    today = _today(today)
    schedule_id = irrigation_store.create_schedule({**data, 'block_id': block_id})
    schedule = irrigation_store.get_schedule(schedule_id)

    backfill = reconciliation.backfill_schedule(schedule, irrigation_store, today)
    extend = reconciliation.extend_schedule(
        schedule, irrigation_store, today, horizon_days=Config.SCHEDULE_HORIZON_DAYS
    )
    return {
        'schedule': schedule,
        'backfill': backfill,
        'extend': extend,
        'events_created': backfill['inserted'] + extend['inserted'],
    }


def update_schedule_and_regenerate(schedule_id, updates, scope=reconciliation.SCOPE_FUTURE, today=None):
    """Apply schedule edits and rebuild its events for the chosen scope.

    Returns None if the schedule does not exist.
    """
    if scope not in reconciliation.VALID_SCOPES:
        raise ValueError(f"Invalid regenerate_scope '{scope}'. Must be one of {reconciliation.VALID_SCOPES}")
    if not irrigation_store.get_schedule(schedule_id):
        return None

    irrigation_store.update_schedule(schedule_id, updates)
    schedule = irrigation_store.get_schedule(schedule_id)
    result = reconciliation.regenerate_schedule(
        schedule, irrigation_store, _today(today), scope=scope,
        horizon_days=Config.SCHEDULE_HORIZON_DAYS,
    )
    return {'schedule': schedule, 'regenerate': result}


def regenerate_schedule(schedule_id, scope=reconciliation.SCOPE_FUTURE, today=None):
    schedule = irrigation_store.get_schedule(schedule_id)
    if not schedule:
        return None
    return reconciliation.regenerate_schedule(
        schedule, irrigation_store, _today(today), scope=scope,
        horizon_days=Config.SCHEDULE_HORIZON_DAYS,
    )


def pause_schedule(schedule_id, clear_future=False, today=None):
    """Pause a schedule; optionally also remove its future events.

    Returns None if the schedule does not exist.
    """
    schedule = irrigation_store.get_schedule(schedule_id)
    if not schedule:
        return None

    reconciliation.pause_schedule(schedule_id, irrigation_store)
    result = {'schedule_id': schedule_id, 'state': reconciliation.SCHEDULE_STATE_PAUSED, 'deleted': 0}
    if clear_future:
        removed = reconciliation.delete_future_events(
            schedule_id, schedule['block_id'], irrigation_store, _today(today)
        )
        result['deleted'] = removed['deleted']
        result['failed'] = removed['failed']
    return result


def resume_schedule(schedule_id, today=None):
    """Resume a schedule and immediately extend it over the horizon."""
    schedule = irrigation_store.get_schedule(schedule_id)
    if not schedule:
        return None

    reconciliation.resume_schedule(schedule_id, irrigation_store)
    schedule = irrigation_store.get_schedule(schedule_id)
    extend = reconciliation.extend_schedule(
        schedule, irrigation_store, _today(today), horizon_days=Config.SCHEDULE_HORIZON_DAYS
    )
    return {'schedule_id': schedule_id, 'state': reconciliation.get_schedule_state(schedule), 'extend': extend}


def delete_schedule_and_future_events(schedule_id, today=None):
    """Delete a schedule and its future events; past events are kept as history.

    Returns None if the schedule does not exist.
    """
    schedule = irrigation_store.get_schedule(schedule_id)
    if not schedule:
        return None

    today = _today(today)
    removed = reconciliation.delete_future_events(schedule_id, schedule['block_id'], irrigation_store, today)
    detached = reconciliation.detach_past_events(schedule_id, schedule['block_id'], irrigation_store, today)
    irrigation_store.delete_schedule(schedule_id)
    return {
        'schedule_id': schedule_id,
        'future_events_deleted': removed['deleted'],
        'past_events_kept': detached['detached'],
        'failed': removed['failed'] + detached['failed'],
    }


# ---------------------------------------------------------------------------
# Controller webhook
# ---------------------------------------------------------------------------

def _parse_timestamp(value, field):
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        raise WebhookError(f"Invalid {field} '{value}'; expected ISO 8601 timestamp")


def record_webhook_event(token, payload):
    """Log an irrigation run reported by a registered controller.

    The token identifies the device, and the device's zone mapping says
    which block the zone waters. Total gallons come from the payload, else
    the average flow, else the mapping's flow rate.

    Returns:
        dict with event_id and message.

    Raises:
        WebhookError: with status 401 (no token), 403 (unknown token),
            404 (unmapped zone) or 400 (bad payload).
    """
    if not token:
        raise WebhookError('Missing webhook token', 401)
    payload = payload or {}
    missing = [f for f in WEBHOOK_REQUIRED_FIELDS if payload.get(f) in (None, '')]
    if missing:
        raise WebhookError(f"Missing required fields: {', '.join(missing)}", 400)

    device = irrigation_store.get_device_by_token(token)
    if not device:
        raise WebhookError('Invalid webhook token or device not found', 403)

    zone_number = payload['zone_number']
    mapping = irrigation_store.get_zone_mapping(device['id'], zone_number)
    if not mapping:
        raise WebhookError(f"Zone mapping not found for device {device['id']} zone {zone_number}", 404)

    start = _parse_timestamp(payload['start_time'], 'start_time')
    end = _parse_timestamp(payload['end_time'], 'end_time')
    duration_hours = (end - start).total_seconds() / 3600.0
    if duration_hours <= 0:
        raise WebhookError('end_time must be after start_time', 400)

    flow_rate = payload.get('flow_rate_avg') or mapping.get('flow_rate_gpm') or Config.DEFAULT_FLOW_RATE_GPM
    total_gallons = payload.get('total_gallons')
    if not total_gallons:
        try:
            total_gallons = event_total_gallons(duration_hours, float(flow_rate))
        except (TypeError, ValueError) as e:
            raise WebhookError(f"Invalid flow rate '{flow_rate}': {e}", 400)

    event_id = irrigation_store.create_event({
        'block_id': mapping['block_id'],
        'event_date': format_date(start),
        'duration_hours': duration_hours,
        'flow_rate_gpm': flow_rate,
        'total_water_gallons': float(total_gallons),
        'irrigation_method': mapping.get('irrigation_method') or DEFAULT_METHOD,
        'source': irrigation_store.SOURCE_WEBHOOK,
        'device_id': device['id'],
        'zone_number': zone_number,
        'notes': payload.get('notes') or f"Auto-logged from {device['device_name']} (Zone {zone_number})",
    })
    irrigation_store.mark_device_synced(device['id'], datetime.now().isoformat())

    logger.info(f"Webhook event {event_id} logged from device {device['id']} zone {zone_number}")
    return {
        'success': True,
        'event_id': event_id,
        'message': f"Irrigation event logged for {device['device_name']} zone {zone_number}",
    }
