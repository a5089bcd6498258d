"""Tests for irrigation_recommendation.py — urgency tiers, volume and runtime."""

import pytest

from irrigation_recommendation import (
    NO_IRRIGATION_MESSAGE, URGENCY_CRITICAL, URGENCY_HIGH, URGENCY_LOW, URGENCY_MODERATE,
    URGENCY_NONE, URGENCY_ORDER, classify_urgency, recommend_irrigation,
)


class TestNoIrrigation:
    def test_zero_deficit_with_forecast(self):
        result = recommend_irrigation(0, 10, 100, forecast_et_mm=10)
        assert result['needs_irrigation'] is False
        assert result['urgency'] == URGENCY_NONE
        assert result['message'] == NO_IRRIGATION_MESSAGE
        assert result['gallons'] == 0
        assert result['hours'] == 0

    def test_surplus(self):
        assert recommend_irrigation(-12, 10, 100)['needs_irrigation'] is False


class TestRecommendation:
    def test_critical_deficit(self):
        result = recommend_irrigation(35, 10, 100)
        assert result['urgency'] == URGENCY_CRITICAL
        assert result['message'] == 'Irrigate immediately - critical water stress'
        assert result['amount_inches'] == pytest.approx(35 / 25.4)
        assert result['gallons'] == pytest.approx(35 / 25.4 * 10 * 27154)
        assert result['hours'] == pytest.approx(result['gallons'] / 6000)

    def test_forecast_adds_to_volume_not_urgency(self):
        base = recommend_irrigation(10, 10, 100)
        with_forecast = recommend_irrigation(10, 10, 100, forecast_et_mm=12)
        assert with_forecast['urgency'] == base['urgency'] == URGENCY_MODERATE
        assert with_forecast['amount_mm'] == pytest.approx(22)

    def test_missing_flow_rate_reports_no_hours(self):
        result = recommend_irrigation(20, 10, None)
        assert result['hours'] is None
        assert result['gallons'] > 0

    def test_zero_flow_rate(self):
        assert recommend_irrigation(20, 10, 0)['hours'] is None


class TestUrgency:
    @pytest.mark.parametrize('deficit,tier', [
        (30.1, URGENCY_CRITICAL), (30, URGENCY_HIGH), (15.5, URGENCY_HIGH),
        (15, URGENCY_MODERATE), (8.01, URGENCY_MODERATE), (8, URGENCY_LOW), (0.5, URGENCY_LOW),
    ])
    def test_tier_boundaries(self, deficit, tier):
        assert classify_urgency(deficit)[0] == tier

    def test_monotonic_in_deficit(self):
        previous = None
        for deficit in [0, 1, 5, 8, 9, 14, 15, 16, 25, 30, 31, 60]:
            result = recommend_irrigation(deficit, 10, 100, forecast_et_mm=3)
            rank = URGENCY_ORDER.index(result['urgency'])
            if previous is not None:
                assert rank >= previous[0]
                assert result['gallons'] >= previous[1]
            previous = (rank, result['gallons'])
