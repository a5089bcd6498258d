"""Tests for weather_service.py — NWS rainfall, forecast and adjusted need."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests

from weather_service import (
    aggregate_observations, calculate_adjusted_irrigation, estimate_period_rainfall,
    fetch_field_forecast, fetch_field_rainfall, fetch_window_rainfall, rainfall_in_window,
)


def _obs(timestamp, metres):
    return {'properties': {'timestamp': timestamp, 'precipitationLastHour': {'value': metres}}}


def _response(payload):
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


class TestAggregateObservations:
    def test_sums_hours_into_days(self):
        result = aggregate_observations([
            _obs('2024-06-10T05:00:00+00:00', 0.002),
            _obs('2024-06-10T06:00:00+00:00', 0.003),
            _obs('2024-06-11T01:00:00+00:00', 0.001),
        ])
        assert result['total_mm'] == pytest.approx(6.0)
        assert result['daily_rainfall']['2024-06-10'] == pytest.approx(5.0)
        assert result['last_rain_event']['date'] == '2024-06-11T01:00:00+00:00'

    def test_same_hour_counted_once(self):
        result = aggregate_observations([
            _obs('2024-06-10T05:00:00+00:00', 0.002),
            _obs('2024-06-10T05:20:00+00:00', 0.002),
        ])
        assert result['total_mm'] == pytest.approx(2.0)

    def test_skips_glitches_and_missing(self):
        result = aggregate_observations([
            _obs('2024-06-10T05:00:00+00:00', 0.5),  # 500 mm in an hour
            _obs('2024-06-10T06:00:00+00:00', None),
            _obs('2024-06-10T07:00:00+00:00', 0),
        ])
        assert result['total_mm'] == 0


class TestFetchRainfall:
    @patch('weather_service.requests.get')
    def test_happy_path(self, mock_get):
        mock_get.side_effect = [
            _response({'properties': {'observationStations': 'https://nws/stations'}}),
            _response({'features': [{'id': 'https://nws/stations/KSTS', 'properties': {'name': 'Santa Rosa'}}]}),
            _response({'features': [_obs('2024-06-10T05:00:00+00:00', 0.004)]}),
        ]
        now = datetime(2024, 6, 15, 12, tzinfo=timezone.utc)
        result = fetch_field_rainfall(38.5, -122.4, days=14, now=now)

        assert result['total_mm'] == pytest.approx(4.0)
        assert result['station_name'] == 'Santa Rosa'
        assert result['source'] == 'NWS'
        assert mock_get.call_args_list[2].args[0] == 'https://nws/stations/KSTS/observations'
        assert 'User-Agent' in mock_get.call_args_list[0].kwargs['headers']

    @patch('weather_service.requests.get', side_effect=requests.ConnectionError('offline'))
    def test_failure_returns_zero_with_error(self, mock_get):
        result = fetch_field_rainfall(38.5, -122.4)
        assert result['total_mm'] == 0.0
        assert 'error' in result

    @patch('weather_service.requests.get')
    def test_no_station(self, mock_get):
        mock_get.side_effect = [
            _response({'properties': {'observationStations': 'https://nws/stations'}}),
            _response({'features': []}),
        ]
        result = fetch_field_rainfall(38.5, -122.4)
        assert result['total_mm'] == 0.0
        assert 'station' in result['error']

    @patch('weather_service.fetch_field_rainfall', return_value={'total_mm': 0.0})
    def test_window_request_covers_first_day(self, mock_fetch):
        fetch_window_rainfall(38.5, -122.4, '2024-06-01', '2024-06-15')
        kwargs = mock_fetch.call_args.kwargs
        assert kwargs['now'] == datetime(2024, 6, 16, tzinfo=timezone.utc)
        assert kwargs['now'] - timedelta(days=kwargs['days']) == datetime(2024, 6, 1, tzinfo=timezone.utc)


class TestForecast:
    @patch('weather_service.requests.get')
    def test_predicted_rain_from_probabilities(self, mock_get):
        mock_get.side_effect = [
            _response({'properties': {'forecast': 'https://nws/forecast'}}),
            _response({'properties': {'periods': [
                {'name': 'Tonight', 'probabilityOfPrecipitation': {'value': 80}},
                {'name': 'Tomorrow', 'probabilityOfPrecipitation': {'value': 50}},
                {'name': 'Later', 'probabilityOfPrecipitation': {'value': None}},
            ]}}),
        ]
        result = fetch_field_forecast(38.5, -122.4)
        assert result['predicted_rainfall_mm'] == 15.0
        assert len(result['periods']) == 3

    @pytest.mark.parametrize('prob,mm', [(90, 10.0), (71, 10.0), (70, 5.0), (41, 5.0), (25, 2.0), (20, 0.0), (0, 0.0)])
    def test_period_bands(self, prob, mm):
        assert estimate_period_rainfall(prob) == mm


class TestRainfallInWindow:
    def test_filters_daily_breakdown(self):
        rainfall = {'total_mm': 30.0, 'daily_rainfall': {'2024-05-20': 25.0, '2024-06-10': 5.0}}
        assert rainfall_in_window(rainfall, '2024-06-01', '2024-06-15') == 5.0

    def test_falls_back_to_total(self):
        assert rainfall_in_window({'total_mm': 7.5}, '2024-06-01', '2024-06-15') == 7.5

    def test_unavailable_is_zero(self):
        assert rainfall_in_window(None, '2024-06-01', '2024-06-15') == 0.0


class TestAdjustedIrrigation:
    def test_forecast_discounted_by_confidence(self):
        result = calculate_adjusted_irrigation(20.0, 0.0, 10.0)
        assert result['adjusted_need_mm'] == pytest.approx(13.0)
        assert result['savings_percent'] == pytest.approx(35.0)

    def test_never_negative(self):
        assert calculate_adjusted_irrigation(5.0, 10.0, 0.0)['adjusted_need_mm'] == 0.0

    def test_capped_at_field_capacity(self):
        assert calculate_adjusted_irrigation(400.0)['adjusted_need_mm'] == 150.0
