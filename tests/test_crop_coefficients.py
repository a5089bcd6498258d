"""Tests for crop_coefficients.py — grapevine growth stages and Kc."""

from datetime import date

import pytest

from crop_coefficients import GROWTH_STAGES, check_etc_in_target, get_grape_kc, get_growth_stage


class TestGrapeKc:
    @pytest.mark.parametrize('month,kc', [
        (1, 0.30), (3, 0.30), (4, 0.45), (5, 0.70), (6, 0.70),
        (7, 0.85), (8, 0.85), (9, 0.90), (10, 0.75), (11, 0.50), (12, 0.30),
    ])
    def test_kc_by_month(self, month, kc):
        assert get_grape_kc(date(2024, month, 15)) == kc

    def test_every_month_resolves(self):
        for month in range(1, 13):
            assert 0.30 <= get_grape_kc(date(2024, month, 1)) <= 0.90

    def test_accepts_strings(self):
        assert get_grape_kc('2024-09-30') == 0.90

    def test_months_partitioned_once(self):
        months = [m for stage in GROWTH_STAGES.values() for m in stage['months']]
        assert sorted(months) == list(range(1, 13))


class TestGrowthStage:
    def test_stage_dict(self):
        stage = get_growth_stage(date(2024, 7, 4))
        assert stage['key'] == 'fruitset'
        assert stage['target_et_range'] == (4.0, 6.0)
        assert stage['management_tip']

    def test_dormant(self):
        assert get_growth_stage('2024-12-25')['key'] == 'dormant'


class TestTargetCheck:
    def test_in_range(self):
        result = check_etc_in_target(5.0, date(2024, 9, 1))
        assert result['in_range'] is True
        assert result['position'] == 'in_range'

    def test_below(self):
        result = check_etc_in_target(1.0, date(2024, 6, 1))
        assert result['position'] == 'below'
        assert result['target_min'] == 3.0

    def test_above(self):
        assert check_etc_in_target(2.0, date(2024, 1, 1))['position'] == 'above'
