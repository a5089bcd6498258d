"""Tests for et_service.py — OpenET fetch, Kc application and ET aggregation."""

from datetime import date
from unittest.mock import MagicMock, patch

import pytest
import requests

from et_service import (
    SOURCE_MOCK, SOURCE_OPENET, apply_kc, estimate_forecast_et, fetch_openet_data,
    generate_mock_et_data, summarize_et, window_sum,
)


def _series(values, start_day=1):
    return [
        {'date': f'2024-06-{start_day + i:02d}', 'et': v, 'etc': v}
        for i, v in enumerate(values)
    ]


class TestApplyKc:
    def test_constant_kc(self):
        result = apply_kc(_series([4.0, 5.0]), kc=0.5)
        assert [r['etc'] for r in result] == [2.0, 2.5]

    def test_callable_kc_uses_record_date(self):
        series = [{'date': '2024-06-30', 'et': 10.0}, {'date': '2024-07-01', 'et': 10.0}]
        result = apply_kc(series)
        assert result[0]['etc'] == pytest.approx(7.0)
        assert result[1]['etc'] == pytest.approx(8.5)

    def test_preserves_order_and_length_without_interpolating(self):
        series = [{'date': '2024-06-05', 'et': 1.0}, {'date': '2024-06-01', 'et': 2.0}]
        result = apply_kc(series, kc=1.0)
        assert [r['date'] for r in result] == ['2024-06-05', '2024-06-01']

    def test_does_not_mutate_input(self):
        series = _series([4.0])
        apply_kc(series, kc=0.5)
        assert series[0]['etc'] == 4.0


class TestWindowSum:
    def test_half_open_interval(self):
        series = _series([1.0, 2.0, 3.0, 4.0])
        # [06-02, 06-04) -> days 2 and 3
        assert window_sum(series, '2024-06-02', '2024-06-04') == pytest.approx(5.0)

    def test_empty_window(self):
        assert window_sum(_series([1.0]), '2024-07-01', '2024-07-05') == 0


class TestSummaries:
    def test_summarize(self):
        summary = summarize_et(_series([2.0, 4.0]))
        assert summary['avg_et'] == 3.0
        assert summary['total_et'] == 6.0
        assert summary['days'] == 2

    def test_forecast_uses_recent_mean(self):
        series = _series([10.0] * 3 + [2.0] * 7)
        assert estimate_forecast_et(series, days=3) == pytest.approx(6.0)

    def test_forecast_without_history(self):
        assert estimate_forecast_et([]) is None


class TestFetchOpenET:
    @patch('et_service.requests.post')
    def test_transforms_response(self, mock_post):
        response = MagicMock()
        response.json.return_value = [
            {'time': '2024-06-01T00:00:00', 'et': 5.2},
            {'time': '2024-06-02T00:00:00', 'et': 4.8},
        ]
        response.raise_for_status.return_value = None
        mock_post.return_value = response

        result = fetch_openet_data(38.5, -122.4, '2024-06-01', '2024-06-02')

        assert result['source'] == SOURCE_OPENET
        assert [r['date'] for r in result['timeseries']] == ['2024-06-01', '2024-06-02']
        assert result['timeseries'][0]['et'] == 5.2
        body = mock_post.call_args.kwargs['json']
        assert body['geometry'] == [-122.4, 38.5]
        assert body['date_range'] == ['2024-06-01', '2024-06-02']

    @patch('et_service.requests.post', side_effect=requests.Timeout('slow'))
    def test_timeout_falls_back_to_mock(self, mock_post):
        result = fetch_openet_data(38.5, -122.4, '2024-06-01', '2024-06-03')
        assert result['source'] == SOURCE_MOCK
        assert len(result['timeseries']) == 3

    @patch('et_service.requests.post', side_effect=requests.ConnectionError('down'))
    def test_connection_error_falls_back_to_mock(self, mock_post):
        assert fetch_openet_data(38.5, -122.4, '2024-06-01', '2024-06-01')['source'] == SOURCE_MOCK

    def test_invalid_model(self):
        with pytest.raises(ValueError):
            fetch_openet_data(38.5, -122.4, '2024-06-01', '2024-06-02', model='bogus')


class TestMockData:
    def test_deterministic(self):
        a = generate_mock_et_data(date(2024, 6, 1), date(2024, 6, 10))
        b = generate_mock_et_data(date(2024, 6, 1), date(2024, 6, 10))
        assert a['timeseries'] == b['timeseries']

    def test_values_in_plausible_band(self):
        series = generate_mock_et_data('2024-01-01', '2024-12-31')['timeseries']
        assert all(2.0 <= r['et'] <= 5.0 for r in series)
