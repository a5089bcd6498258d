"""
Reconciliation of schedule-generated irrigation events with the event store.

Schedules are expanded into dated events and merged into the persisted
store so that repeated runs never duplicate an event and never leave an
event behind whose schedule is gone. Generation only ever writes through
``event_store.insert_if_missing``; every insert and delete is attempted on
its own so one bad record does not abort the batch.

Stores are duck-typed. The ``irrigation_store`` module is the SQL
implementation used by the app.
"""

import logging
from typing import Dict, Iterable, List, Optional

from date_utils import add_days, format_date, parse_local_date
from schedule_expansion import SOURCE_SCHEDULE, expand_schedule

logger = logging.getLogger(__name__)

DEFAULT_HORIZON_DAYS = 30

SCOPE_FUTURE = 'future'
SCOPE_ALL = 'all'
VALID_SCOPES = [SCOPE_FUTURE, SCOPE_ALL]

SCHEDULE_STATE_ACTIVE = 'active'
SCHEDULE_STATE_PAUSED = 'paused'

EVENT_STATE_SCHEDULED = 'scheduled'
EVENT_STATE_COMPLETED = 'completed'
EVENT_DISPLAY_PAUSED = 'paused'


# ---------------------------------------------------------------------------
# Derived states
# ---------------------------------------------------------------------------

def get_schedule_state(schedule: Dict) -> str:
    return SCHEDULE_STATE_ACTIVE if schedule.get('is_active', True) else SCHEDULE_STATE_PAUSED


def get_event_state(event: Dict, today) -> str:
    """'completed' once the event's local date has arrived, else 'scheduled'."""
    if parse_local_date(event['event_date']) <= parse_local_date(today):
        return EVENT_STATE_COMPLETED
    return EVENT_STATE_SCHEDULED


def get_event_display_state(event: Dict, today, schedule: Optional[Dict] = None) -> str:
    """Event state for display; future events of a paused schedule show as paused."""
    state = get_event_state(event, today)
    if (
        state == EVENT_STATE_SCHEDULED
        and event.get('source') == SOURCE_SCHEDULE
        and schedule is not None
        and get_schedule_state(schedule) == SCHEDULE_STATE_PAUSED
    ):
        return EVENT_DISPLAY_PAUSED
    return state


def annotate_event_states(events: List[Dict], today, schedules: Iterable[Dict] = ()) -> List[Dict]:
    """Copies of *events* with 'state' and 'display_state' filled in."""
    by_id = {s['id']: s for s in schedules}
    annotated = []
    for event in events:
        item = dict(event)
        item['state'] = get_event_state(event, today)
        item['display_state'] = get_event_display_state(event, today, by_id.get(event.get('schedule_id')))
        annotated.append(item)
    return annotated


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _persisted_dates(event_store, schedule, start, end) -> set:
    events = event_store.list_events(
        schedule['block_id'],
        start_date=format_date(start),
        end_date=format_date(end),
        schedule_id=schedule['id'],
    )
    return {format_date(e['event_date']) for e in events}


def _insert_missing(schedule, generated, existing_dates, event_store, action) -> Dict:
    result = {'inserted': 0, 'skipped': 0, 'failed': 0}
    for event in generated:
        if event['event_date'] in existing_dates:
            result['skipped'] += 1
            continue
        try:
            new_id = event_store.insert_if_missing(event)
        except Exception as e:
            logger.error(
                f"{action}: failed to insert event {event['event_date']} "
                f"for schedule {schedule['id']}: {e}"
            )
            result['failed'] += 1
            continue
        if new_id is None:
            result['skipped'] += 1
        else:
            result['inserted'] += 1
            existing_dates.add(event['event_date'])

    if result['inserted'] or result['failed']:
        logger.info(
            f"{action} schedule {schedule['id']}: {result['inserted']} inserted, "
            f"{result['skipped']} existing, {result['failed']} failed"
        )
    return result


def _delete_events(events, event_store, action) -> Dict:
    result = {'deleted': 0, 'failed': 0}
    for event in events:
        try:
            if event_store.delete_event(event['id']):
                result['deleted'] += 1
        except Exception as e:
            logger.error(f"{action}: failed to delete event {event.get('id')}: {e}")
            result['failed'] += 1
    if result['deleted'] or result['failed']:
        logger.info(f"{action}: {result['deleted']} deleted, {result['failed']} failed")
    return result


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

def extend_schedule(schedule, event_store, today, horizon_days: int = DEFAULT_HORIZON_DAYS) -> Dict:
    """Materialize an active schedule's events from today to today + horizon.

    A paused schedule generates nothing. Running twice in a row inserts
    nothing the second time.
    """
    if get_schedule_state(schedule) == SCHEDULE_STATE_PAUSED:
        return {'inserted': 0, 'skipped': 0, 'failed': 0, 'paused': True}

    today = parse_local_date(today)
    until = add_days(today, horizon_days)
    generated = expand_schedule(schedule, until, from_date=today)
    if not generated:
        return {'inserted': 0, 'skipped': 0, 'failed': 0}
    existing = _persisted_dates(event_store, schedule, today, until)
    return _insert_missing(schedule, generated, existing, event_store, 'Extend')


def backfill_schedule(schedule, event_store, today) -> Dict:
    """Insert any missing events between the schedule's start date and today."""
    today = parse_local_date(today)
    start = parse_local_date(schedule['start_date'])
    if start > today:
        return {'inserted': 0, 'skipped': 0, 'failed': 0}
    generated = expand_schedule(schedule, today)
    if not generated:
        return {'inserted': 0, 'skipped': 0, 'failed': 0}
    existing = _persisted_dates(event_store, schedule, start, today)
    return _insert_missing(schedule, generated, existing, event_store, 'Backfill')


# ---------------------------------------------------------------------------
# Removal
# ---------------------------------------------------------------------------

def delete_future_events(schedule_id, block_id, event_store, today) -> Dict:
    """Delete a schedule's events dated after today; past events are kept."""
    today = parse_local_date(today)
    events = event_store.list_events(
        block_id,
        start_date=format_date(add_days(today, 1)),
        schedule_id=schedule_id,
    )
    future = [e for e in events if parse_local_date(e['event_date']) > today]
    return _delete_events(future, event_store, f"Delete future events of schedule {schedule_id}")


def detach_past_events(schedule_id, block_id, event_store, today) -> Dict:
    """Clear schedule_id on a schedule's past events so they outlive it.

    Detached events keep source='schedule' as history but are no longer
    seen as orphans once the schedule row is deleted.
    """
    today = parse_local_date(today)
    events = event_store.list_events(block_id, end_date=format_date(today), schedule_id=schedule_id)
    result = {'detached': 0, 'failed': 0}
    for event in events:
        try:
            if event_store.update_event(event['id'], {'schedule_id': None}):
                result['detached'] += 1
        except Exception as e:
            logger.error(f"Failed to detach event {event.get('id')} from schedule {schedule_id}: {e}")
            result['failed'] += 1
    if result['detached'] or result['failed']:
        logger.info(
            f"Detached {result['detached']} past events from schedule {schedule_id} "
            f"({result['failed']} failed)"
        )
    return result


def delete_all_schedule_events(schedule_id, block_id, event_store) -> Dict:
    events = event_store.list_events(block_id, schedule_id=schedule_id)
    return _delete_events(events, event_store, f"Delete all events of schedule {schedule_id}")


def regenerate_schedule(
    schedule,
    event_store,
    today,
    scope: str = SCOPE_FUTURE,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> Dict:
    """Rebuild a schedule's events after its parameters changed.

    scope='future' replaces only events after today and leaves history
    untouched; scope='all' also rewrites past events from start_date.
    """
    if scope not in VALID_SCOPES:
        raise ValueError(f"Invalid scope '{scope}'. Must be one of {VALID_SCOPES}")

    if scope == SCOPE_ALL:
        removed = delete_all_schedule_events(schedule['id'], schedule['block_id'], event_store)
        backfilled = backfill_schedule(schedule, event_store, today)
    else:
        removed = delete_future_events(schedule['id'], schedule['block_id'], event_store, today)
        backfilled = {'inserted': 0, 'failed': 0}
    extended = extend_schedule(schedule, event_store, today, horizon_days)

    result = {
        'scope': scope,
        'deleted': removed['deleted'],
        'inserted': backfilled['inserted'] + extended['inserted'],
        'failed': removed['failed'] + backfilled['failed'] + extended['failed'],
    }
    logger.info(
        f"Regenerated schedule {schedule['id']} ({scope}): "
        f"{result['deleted']} deleted, {result['inserted']} inserted, {result['failed']} failed"
    )
    return result


def deduplicate_schedule_events(block_id, event_store) -> Dict:
    """Keep the earliest-created event per (date, schedule); delete the rest."""
    groups = {}
    for event in event_store.list_events(block_id):
        if event.get('schedule_id') is None:
            continue
        key = (format_date(event['event_date']), event['schedule_id'])
        groups.setdefault(key, []).append(event)

    duplicates = []
    for events in groups.values():
        if len(events) < 2:
            continue
        events.sort(key=lambda e: (str(e.get('created_at') or ''), e.get('id') or 0))
        duplicates.extend(events[1:])

    if not duplicates:
        return {'deleted': 0, 'failed': 0}
    logger.warning(f"Block {block_id}: found {len(duplicates)} duplicate schedule events")
    return _delete_events(duplicates, event_store, f"Deduplicate block {block_id}")


def cleanup_orphaned_events(block_id, event_store, schedule_ids) -> Dict:
    """Delete events that point at a schedule id not in *schedule_ids*."""
    known = set(schedule_ids)
    orphans = [
        e for e in event_store.list_events(block_id)
        if e.get('schedule_id') is not None and e['schedule_id'] not in known
    ]
    if not orphans:
        return {'deleted': 0, 'failed': 0}
    logger.warning(f"Block {block_id}: found {len(orphans)} orphaned schedule events")
    return _delete_events(orphans, event_store, f"Orphan cleanup block {block_id}")


# ---------------------------------------------------------------------------
# Block-level pass
# ---------------------------------------------------------------------------

def sync_block_schedules(
    block_id,
    event_store,
    schedule_store,
    today,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> Dict:
    """Bring a block's persisted events in line with its schedules.

    Run on every view-load: orphan cleanup, dedupe, then backfill and
    extend for each active schedule. Paused schedules are left alone and
    their existing events stay in place.
    """
    schedules = schedule_store.list_schedules(block_id)
    orphans = cleanup_orphaned_events(block_id, event_store, [s['id'] for s in schedules])
    duplicates = deduplicate_schedule_events(block_id, event_store)

    result = {
        'orphans_deleted': orphans['deleted'],
        'duplicates_deleted': duplicates['deleted'],
        'inserted': 0,
        'failed': orphans['failed'] + duplicates['failed'],
        'schedules_synced': 0,
        'schedules_paused': 0,
    }

    for schedule in schedules:
        if get_schedule_state(schedule) == SCHEDULE_STATE_PAUSED:
            result['schedules_paused'] += 1
            continue
        for step in (backfill_schedule(schedule, event_store, today),
                     extend_schedule(schedule, event_store, today, horizon_days)):
            result['inserted'] += step['inserted']
            result['failed'] += step['failed']
        result['schedules_synced'] += 1

    logger.debug(f"Synced block {block_id}: {result}")
    return result


def pause_schedule(schedule_id, schedule_store) -> bool:
    """Mark a schedule paused. Its already-generated events are not touched."""
    return schedule_store.toggle_active(schedule_id, False)


def resume_schedule(schedule_id, schedule_store) -> bool:
    return schedule_store.toggle_active(schedule_id, True)
