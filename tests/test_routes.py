"""
Integration tests for the irrigation blueprint.
Runs the Flask app against a temporary SQLite database with OpenET and NWS mocked.
"""

from unittest.mock import patch

import pytest

from app import create_app


@pytest.fixture
def client():
    app = create_app()
    app.config['TESTING'] = True
    with app.test_client() as client:
        yield client


@pytest.fixture
def block(client):
    resp = client.post('/api/blocks', json={
        'name': 'South Pinot', 'acres': 5, 'center_lat': 38.3, 'center_lng': -122.3, 'flow_rate_gpm': 60,
    })
    assert resp.status_code == 201
    return resp.get_json()


SCHEDULE = {
    'start_date': '2024-06-03',
    'start_time': '05:00',
    'stop_time': '07:00',
    'flow_rate_gpm': 60,
    'days_of_week': [2, 4],
}


class TestBlockRoutes:
    def test_health(self, client):
        assert client.get('/health').get_json() == {'status': 'ok'}

    def test_create_and_list(self, client, block):
        assert block['name'] == 'South Pinot'
        assert [b['id'] for b in client.get('/api/blocks').get_json()] == [block['id']]

    def test_create_invalid(self, client):
        resp = client.post('/api/blocks', json={'name': 'No acres'})
        assert resp.status_code == 400
        assert 'acres' in resp.get_json()['error']

    def test_update(self, client, block):
        resp = client.put(f"/api/blocks/{block['id']}", json={'flow_rate_gpm': 90})
        assert resp.get_json()['flow_rate_gpm'] == 90

    def test_missing_block(self, client):
        assert client.get('/api/blocks/999').status_code == 404
        assert client.put('/api/blocks/999', json={'name': 'x'}).status_code == 404
        assert client.delete('/api/blocks/999').status_code == 404

    def test_delete(self, client, block):
        assert client.delete(f"/api/blocks/{block['id']}").get_json() == {'success': True}


class TestWaterStatusRoute:
    def test_water_status(self, client, block, fake_openet):
        with patch('irrigation_manager.fetch_openet_data', side_effect=fake_openet):
            resp = client.get(f"/api/blocks/{block['id']}/water-status?today=2024-06-15&weather=false")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data['budget']['available'] is True
        assert data['recommendation']['needs_irrigation'] is True

    def test_bad_today(self, client, block):
        resp = client.get(f"/api/blocks/{block['id']}/water-status?today=soon&weather=false")
        assert resp.status_code == 400

    def test_missing_block(self, client):
        assert client.get('/api/blocks/999/water-status?weather=false').status_code == 404


class TestEventRoutes:
    def test_create_update_delete(self, client, block):
        resp = client.post(f"/api/blocks/{block['id']}/events",
                           json={'event_date': '2024-06-10', 'duration_hours': 2})
        assert resp.status_code == 201
        event = resp.get_json()
        assert event['total_water_gallons'] == 2 * 60 * 60

        resp = client.put(f"/api/events/{event['id']}", json={'duration_hours': 1})
        assert resp.get_json()['total_water_gallons'] == 3600

        assert client.delete(f"/api/events/{event['id']}").status_code == 200
        assert client.delete(f"/api/events/{event['id']}").status_code == 404

    def test_invalid_event(self, client, block):
        resp = client.post(f"/api/blocks/{block['id']}/events", json={'duration_hours': 2})
        assert resp.status_code == 400

    def test_list_with_state(self, client, block):
        client.post(f"/api/blocks/{block['id']}/events", json={'event_date': '2024-06-10', 'duration_hours': 1})
        events = client.get(f"/api/blocks/{block['id']}/events?today=2024-06-15").get_json()
        assert events[0]['state'] == 'completed'

    def test_summary_by_period(self, client, block):
        client.post(f"/api/blocks/{block['id']}/events", json={'event_date': '2024-06-10', 'duration_hours': 1})
        summary = client.get(
            f"/api/blocks/{block['id']}/events/summary?period=7days&today=2024-06-15"
        ).get_json()
        assert summary['event_count'] == 1
        assert summary['start_date'] == '2024-06-08'


class TestScheduleRoutes:
    def _create(self, client, block):
        resp = client.post(f"/api/blocks/{block['id']}/schedules?today=2024-06-15", json=SCHEDULE)
        assert resp.status_code == 201
        return resp.get_json()

    def test_update_with_null_body(self, client, block):
        schedule = self._create(client, block)['schedule']
        resp = client.put(f"/api/schedules/{schedule['id']}?today=2024-06-15",
                          data='null', content_type='application/json')
        assert resp.status_code == 200
        assert resp.get_json()['regenerate']['scope'] == 'future'

    def test_create_backfills(self, client, block):
        result = self._create(client, block)
        # Tue/Thu from 06-03 to 06-15
        assert result['backfill']['inserted'] == 4
        schedules = client.get(f"/api/blocks/{block['id']}/schedules").get_json()
        assert schedules[0]['state'] == 'active'

    def test_create_invalid(self, client, block):
        resp = client.post(f"/api/blocks/{block['id']}/schedules", json={**SCHEDULE, 'days_of_week': []})
        assert resp.status_code == 400

    def test_update_with_scope(self, client, block):
        schedule = self._create(client, block)['schedule']
        resp = client.put(f"/api/schedules/{schedule['id']}?today=2024-06-15",
                          json={'flow_rate_gpm': 70, 'regenerate_scope': 'all'})
        assert resp.status_code == 200
        assert resp.get_json()['regenerate']['scope'] == 'all'
        events = client.get(f"/api/blocks/{block['id']}/events").get_json()
        assert all(e['flow_rate_gpm'] == 70 for e in events)

    def test_pause_resume(self, client, block):
        schedule = self._create(client, block)['schedule']
        resp = client.post(f"/api/schedules/{schedule['id']}/pause?today=2024-06-15", json={'clear_future': True})
        assert resp.get_json()['state'] == 'paused'
        resp = client.post(f"/api/schedules/{schedule['id']}/resume?today=2024-06-15")
        assert resp.get_json()['extend']['inserted'] > 0

    def test_regenerate_bad_scope(self, client, block):
        schedule = self._create(client, block)['schedule']
        resp = client.post(f"/api/schedules/{schedule['id']}/regenerate", json={'scope': 'everything'})
        assert resp.status_code == 400

    def test_delete(self, client, block):
        schedule = self._create(client, block)['schedule']
        resp = client.delete(f"/api/schedules/{schedule['id']}?today=2024-06-15")
        assert resp.get_json()['past_events_kept'] == 4
        assert client.delete(f"/api/schedules/{schedule['id']}").status_code == 404


class TestWebhookRoute:
    def test_token_in_header(self, client, block):
        device = client.post('/api/devices', json={'device_name': 'Hydrawise'}).get_json()
        client.post(f"/api/devices/{device['id']}/zones", json={'zone_number': 3, 'block_id': block['id']})

        resp = client.post(
            '/api/webhooks/irrigation',
            json={'zone_number': 3, 'start_time': '2024-06-14T04:00:00', 'end_time': '2024-06-14T05:00:00'},
            headers={'Authorization': f"Bearer {device['webhook_token']}"},
        )
        assert resp.status_code == 200
        assert resp.get_json()['success'] is True

    def test_missing_token(self, client):
        resp = client.post('/api/webhooks/irrigation', json={'zone_number': 1})
        assert resp.status_code == 401

    def test_unknown_token(self, client):
        resp = client.post(
            '/api/webhooks/irrigation?token=bogus',
            json={'zone_number': 1, 'start_time': '2024-06-14T04:00', 'end_time': '2024-06-14T05:00'},
        )
        assert resp.status_code == 403

    def test_duplicate_zone_mapping(self, client, block):
        device = client.post('/api/devices', json={'device_name': 'Hydrawise'}).get_json()
        url = f"/api/devices/{device['id']}/zones"
        assert client.post(url, json={'zone_number': 3, 'block_id': block['id']}).status_code == 201
        assert client.post(url, json={'zone_number': 3, 'block_id': block['id']}).status_code == 400

    def test_zone_zero_mapping(self, client, block):
        device = client.post('/api/devices', json={'device_name': 'Orbit B-hyve'}).get_json()
        resp = client.post(f"/api/devices/{device['id']}/zones", json={'zone_number': 0, 'block_id': block['id']})
        assert resp.status_code == 201


class TestCalculatorRoute:
    def test_mm_to_inches(self, client):
        resp = client.post('/api/calculator/convert-water', json={'value': 25.4, 'from_unit': 'mm', 'to_unit': 'inches'})
        assert resp.get_json()['value'] == 1.0

    def test_gallons_use_block_acreage(self, client, block):
        resp = client.post('/api/calculator/convert-water', json={
            'value': 1, 'from_unit': 'inches', 'to_unit': 'gallons', 'block_id': block['id'],
        })
        assert resp.get_json()['value'] == 5 * 27154

    def test_gallons_without_acreage(self, client):
        resp = client.post('/api/calculator/convert-water', json={'value': 1, 'from_unit': 'inches', 'to_unit': 'gallons'})
        assert resp.status_code == 400

    def test_non_numeric_value(self, client):
        resp = client.post('/api/calculator/convert-water', json={'value': 'lots', 'from_unit': 'mm', 'to_unit': 'inches'})
        assert resp.status_code == 400
