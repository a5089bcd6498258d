"""
Irrigation Routes Blueprint for the vineyard planner.

JSON API for:
- Blocks
- Block water status (budget, soil moisture, recommendation)
- Irrigation events and summaries
- Irrigation schedules (create, edit/regenerate, pause/resume, delete)
- Controller devices and the irrigation webhook
- Water unit calculator
"""

from flask import Blueprint, jsonify, request
import logging

logger = logging.getLogger(__name__)

irrigation_bp = Blueprint('irrigation_bp', __name__)


def _today_arg():
    """Optional ?today=YYYY-MM-DD override; None means the local date."""
    return request.args.get('today')


def _not_found(what, item_id):
    return jsonify({'error': f'{what} {item_id} not found'}), 404


# ====================================================================
# Blocks
# ====================================================================

@irrigation_bp.route('/api/blocks', methods=['GET'])
def list_blocks():
    try:
        from irrigation_store import get_blocks as _get_blocks
        return jsonify(_get_blocks())
    except Exception as e:
        logger.error(f"Error listing blocks: {e}")
        return jsonify({'error': str(e)}), 500


@irrigation_bp.route('/api/blocks', methods=['POST'])
def create_block():
    data = request.get_json(force=True) or {}
    try:
        from irrigation_store import add_block as _add_block, get_block as _get_block
        block_id = _add_block(data)
        return jsonify(_get_block(block_id)), 201
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error creating block: {e}")
        return jsonify({'error': str(e)}), 500


@irrigation_bp.route('/api/blocks/<int:block_id>', methods=['GET'])
def get_block(block_id):
    try:
        from irrigation_store import get_block as _get_block
        block = _get_block(block_id)
        if not block:
            return _not_found('Block', block_id)
        return jsonify(block)
    except Exception as e:
        logger.error(f"Error getting block {block_id}: {e}")
        return jsonify({'error': str(e)}), 500


@irrigation_bp.route('/api/blocks/<int:block_id>', methods=['PUT'])
def update_block(block_id):
    data = request.get_json(force=True) or {}
    try:
        from irrigation_store import update_block as _update_block, get_block as _get_block
        if not _update_block(block_id, data):
            if not _get_block(block_id):
                return _not_found('Block', block_id)
            return jsonify({'error': 'No valid fields to update'}), 400
        return jsonify(_get_block(block_id))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error updating block {block_id}: {e}")
        return jsonify({'error': str(e)}), 500


@irrigation_bp.route('/api/blocks/<int:block_id>', methods=['DELETE'])
def delete_block(block_id):
    try:
        from irrigation_store import delete_block as _delete_block
        if not _delete_block(block_id):
            return _not_found('Block', block_id)
        return jsonify({'success': True})
    except Exception as e:
        logger.error(f"Error deleting block {block_id}: {e}")
        return jsonify({'error': str(e)}), 500


@irrigation_bp.route('/api/blocks/<int:block_id>/water-status', methods=['GET'])
def get_water_status(block_id):
    include_weather = request.args.get('weather', 'true').lower() != 'false'
    try:
        from irrigation_manager import get_block_water_status as _get_status
        status = _get_status(block_id, today=_today_arg(), include_weather=include_weather)
        if status is None:
            return _not_found('Block', block_id)
        return jsonify(status)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error getting water status for block {block_id}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500


# ====================================================================
# Irrigation events
# ====================================================================

@irrigation_bp.route('/api/blocks/<int:block_id>/events', methods=['GET'])
def list_block_events(block_id):
    start_date = request.args.get('start_date')
    end_date = request.args.get('end_date')
    try:
        from irrigation_manager import get_block_events as _get_events
        return jsonify(_get_events(block_id, start_date=start_date, end_date=end_date, today=_today_arg()))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error listing events for block {block_id}: {e}")
        return jsonify({'error': str(e)}), 500


@irrigation_bp.route('/api/blocks/<int:block_id>/events', methods=['POST'])
def create_block_event(block_id):
    data = request.get_json(force=True) or {}
    try:
        from irrigation_manager import log_manual_event as _log_event
        from irrigation_store import get_event as _get_event
        event_id = _log_event(block_id, data)
        return jsonify(_get_event(event_id)), 201
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error creating event for block {block_id}: {e}")
        return jsonify({'error': str(e)}), 500


@irrigation_bp.route('/api/blocks/<int:block_id>/events/summary', methods=['GET'])
def get_event_summary(block_id):
    start_date = request.args.get('start_date')
    end_date = request.args.get('end_date')
    period = request.args.get('period')
    try:
        from irrigation_manager import get_irrigation_summary as _get_summary
        if period and not (start_date or end_date):
            from date_utils import get_date_range
            date_range = get_date_range(period, today=_today_arg())
            start_date, end_date = date_range['start_date'], date_range['end_date']
        summary = _get_summary(block_id, start_date=start_date, end_date=end_date)
        if summary is None:
            return _not_found('Block', block_id)
        return jsonify(summary)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error getting irrigation summary for block {block_id}: {e}")
        return jsonify({'error': str(e)}), 500


@irrigation_bp.route('/api/events/<int:event_id>', methods=['PUT'])
def update_event(event_id):
    data = request.get_json(force=True) or {}
    try:
        from irrigation_store import update_event as _update_event, get_event as _get_event
        if not _update_event(event_id, data):
            if not _get_event(event_id):
                return _not_found('Event', event_id)
            return jsonify({'error': 'No valid fields to update'}), 400
        return jsonify(_get_event(event_id))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error updating event {event_id}: {e}")
        return jsonify({'error': str(e)}), 500


@irrigation_bp.route('/api/events/<int:event_id>', methods=['DELETE'])
def delete_event(event_id):
    try:
        from irrigation_store import delete_event as _delete_event
        if not _delete_event(event_id):
            return _not_found('Event', event_id)
        return jsonify({'success': True})
    except Exception as e:
        logger.error(f"Error deleting event {event_id}: {e}")
        return jsonify({'error': str(e)}), 500


# ====================================================================
# Irrigation schedules
# ====================================================================

@irrigation_bp.route('/api/blocks/<int:block_id>/schedules', methods=['GET'])
def list_block_schedules(block_id):
    active_only = request.args.get('active_only', 'false').lower() == 'true'
    try:
        from irrigation_store import list_schedules as _list_schedules
        from reconciliation import get_schedule_state
        schedules = _list_schedules(block_id, active_only=active_only)
        for schedule in schedules:
            schedule['state'] = get_schedule_state(schedule)
        return jsonify(schedules)
    except Exception as e:
        logger.error(f"Error listing schedules for block {block_id}: {e}")
        return jsonify({'error': str(e)}), 500


@irrigation_bp.route('/api/blocks/<int:block_id>/schedules', methods=['POST'])
def create_block_schedule(block_id):
    data = request.get_json(force=True) or {}
    try:
        from irrigation_manager import create_schedule_with_backfill as _create
        result = _create(block_id, data, today=_today_arg())
        return jsonify(result), 201
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error creating schedule for block {block_id}: {e}")
        return jsonify({'error': str(e)}), 500


@irrigation_bp.route('/api/schedules/<int:schedule_id>', methods=['PUT'])
def update_schedule(schedule_id):
    data = request.get_json(force=True) or {}
    scope = data.pop('regenerate_scope', 'future')
    try:
        from irrigation_manager import update_schedule_and_regenerate as _update
        result = _update(schedule_id, data, scope=scope, today=_today_arg())
        if result is None:
            return _not_found('Schedule', schedule_id)
        return jsonify(result)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error updating schedule {schedule_id}: {e}")
        return jsonify({'error': str(e)}), 500


@irrigation_bp.route('/api/schedules/<int:schedule_id>', methods=['DELETE'])
def delete_schedule(schedule_id):
    try:
        from irrigation_manager import delete_schedule_and_future_events as _delete
        result = _delete(schedule_id, today=_today_arg())
        if result is None:
            return _not_found('Schedule', schedule_id)
        return jsonify(result)
    except Exception as e:
        logger.error(f"Error deleting schedule {schedule_id}: {e}")
        return jsonify({'error': str(e)}), 500


@irrigation_bp.route('/api/schedules/<int:schedule_id>/pause', methods=['POST'])
def pause_schedule(schedule_id):
    data = request.get_json(silent=True) or {}
    try:
        from irrigation_manager import pause_schedule as _pause
        result = _pause(schedule_id, clear_future=bool(data.get('clear_future')), today=_today_arg())
        if result is None:
            return _not_found('Schedule', schedule_id)
        return jsonify(result)
    except Exception as e:
        logger.error(f"Error pausing schedule {schedule_id}: {e}")
        return jsonify({'error': str(e)}), 500


@irrigation_bp.route('/api/schedules/<int:schedule_id>/resume', methods=['POST'])
def resume_schedule(schedule_id):
    try:
        from irrigation_manager import resume_schedule as _resume
        result = _resume(schedule_id, today=_today_arg())
        if result is None:
            return _not_found('Schedule', schedule_id)
        return jsonify(result)
    except Exception as e:
        logger.error(f"Error resuming schedule {schedule_id}: {e}")
        return jsonify({'error': str(e)}), 500


@irrigation_bp.route('/api/schedules/<int:schedule_id>/regenerate', methods=['POST'])
def regenerate_schedule(schedule_id):
    data = request.get_json(silent=True) or {}
    try:
        from irrigation_manager import regenerate_schedule as _regenerate
        result = _regenerate(schedule_id, scope=data.get('scope', 'future'), today=_today_arg())
        if result is None:
            return _not_found('Schedule', schedule_id)
        return jsonify(result)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error regenerating schedule {schedule_id}: {e}")
        return jsonify({'error': str(e)}), 500


# ====================================================================
# Controller devices & webhook
# ====================================================================

@irrigation_bp.route('/api/devices', methods=['POST'])
def register_device():
    data = request.get_json(force=True) or {}
    try:
        from irrigation_store import add_device as _add_device
        device_id, token = _add_device(data.get('device_name'))
        return jsonify({'id': device_id, 'webhook_token': token}), 201
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error registering device: {e}")
        return jsonify({'error': str(e)}), 500


@irrigation_bp.route('/api/devices/<int:device_id>/zones', methods=['POST'])
def map_device_zone(device_id):
    data = request.get_json(force=True) or {}
    try:
        from irrigation_store import add_zone_mapping as _add_mapping, get_block as _get_block
        if data.get('zone_number') is None or not data.get('block_id'):
            return jsonify({'error': 'zone_number and block_id are required'}), 400
        if not _get_block(data['block_id']):
            return _not_found('Block', data['block_id'])
        mapping_id = _add_mapping(
            device_id,
            data['zone_number'],
            data['block_id'],
            flow_rate_gpm=data.get('flow_rate_gpm'),
            irrigation_method=data.get('irrigation_method'),
        )
        return jsonify({'id': mapping_id}), 201
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error mapping zone for device {device_id}: {e}")
        return jsonify({'error': str(e)}), 500


@irrigation_bp.route('/api/webhooks/irrigation', methods=['POST'])
def irrigation_webhook():
    token = request.args.get('token')
    if not token:
        auth = request.headers.get('Authorization', '')
        token = auth.replace('Bearer ', '', 1).strip() or None
    payload = request.get_json(silent=True) or {}
    try:
        from irrigation_manager import record_webhook_event, WebhookError
        result = record_webhook_event(token, payload)
        return jsonify(result)
    except WebhookError as e:
        logger.warning(f"Webhook rejected ({e.status_code}): {e}")
        return jsonify({'error': str(e)}), e.status_code
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Webhook error: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500


# ====================================================================
# Calculator API
# Signature:
#   convert_water(value, from_unit, to_unit, acres=None)
# ====================================================================

@irrigation_bp.route('/api/calculator/convert-water', methods=['POST'])
def convert_water():
    data = request.get_json(force=True) or {}
    value = data.get('value')
    from_unit = data.get('from_unit') or ''
    to_unit = data.get('to_unit') or ''
    acres = data.get('acres')
    try:
        from unit_converter import convert_water as _convert
        if acres is None and data.get('block_id'):
            from irrigation_store import get_block as _get_block
            block = _get_block(data['block_id'])
            if not block:
                return _not_found('Block', data['block_id'])
            acres = block['acres']
        result = _convert(value, from_unit, to_unit, acres=acres)
        return jsonify(result)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error converting water amount: {e}")
        return jsonify({'error': str(e)}), 500
