"""Tests for fertyfit.engine.cycle and fertyfit.models.fields."""

import math
import pytest
from datetime import date

from fertyfit.engine.cycle import (
    BmiCategory,
    assess_bmi,
    average_cycle_length,
    bmi_category,
    calculate_bmi,
    cycle_day,
    days_since,
    fertile_window,
    is_plausible_cycle_length,
    next_period_date,
    parse_local_date,
    should_notify_for_fertility,
)
from fertyfit.models.fields import to_bool, to_float, to_int, to_str_list


TODAY = date(2026, 2, 15)


# ═══════════════════════════════════════════════════════════════════════════
# Local Dates
# ═══════════════════════════════════════════════════════════════════════════


class TestLocalDates:
    def test_parse_plain_date(self):
        assert parse_local_date("2024-03-15") == date(2024, 3, 15)

    def test_parse_keeps_calendar_date_of_timestamp(self):
        # the date part is used as-is, no timezone shift
        assert parse_local_date("2024-03-15T23:30:00-05:00") == date(2024, 3, 15)

    @pytest.mark.parametrize("value", [None, "", "15/03/2024", "2024-13-01", "abc"])
    def test_parse_invalid_returns_none(self, value):
        assert parse_local_date(value) is None

    def test_days_since(self):
        assert days_since("2026-02-01", TODAY) == 14
        assert days_since(None, TODAY) is None


# ═══════════════════════════════════════════════════════════════════════════
# Cycle Day & Fertile Window
# ═══════════════════════════════════════════════════════════════════════════


class TestCycleDay:
    def test_first_day_is_one(self):
        assert cycle_day("2026-02-15", 28, TODAY) == 1

    def test_counts_days_since_period(self):
        assert cycle_day("2026-02-01", 28, TODAY) == 15

    def test_wraps_into_cycle_length(self):
        # 45 days elapsed -> day 46 -> day 18 of the second cycle
        assert cycle_day("2026-01-01", 28, TODAY) == 18

    def test_last_day_of_cycle_does_not_wrap(self):
        assert cycle_day("2026-01-19", 28, TODAY) == 28

    def test_future_period_is_unknown(self):
        assert cycle_day("2026-03-01", 28, TODAY) == 0

    @pytest.mark.parametrize("value", [None, "", "not-a-date"])
    def test_missing_period_is_unknown(self, value):
        assert cycle_day(value, 28, TODAY) == 0

    def test_without_cycle_length_does_not_wrap(self):
        assert cycle_day("2026-01-01", None, TODAY) == 46


class TestFertileWindow:
    def test_28_day_cycle(self):
        window = fertile_window(28)
        assert window.ovulation_day == 14
        assert window.start == 9
        assert window.end == 15
        assert window.fertile_days == 7

    def test_window_always_seven_days(self):
        for length in (21, 26, 32, 45):
            window = fertile_window(length)
            assert window.fertile_days == 7
            assert window.end - window.start + 1 == 7

    def test_contains(self):
        window = fertile_window(30)
        assert window.contains(11)
        assert window.contains(17)
        assert not window.contains(18)


class TestNextPeriod:
    def test_within_first_cycle(self):
        assert next_period_date("2026-02-01", 28, TODAY) == date(2026, 3, 1)

    def test_projects_forward_past_missed_cycles(self):
        assert next_period_date("2026-01-01", 28, TODAY) == date(2026, 2, 26)

    def test_requires_cycle_length(self):
        assert next_period_date("2026-02-01", None, TODAY) is None


class TestAverageCycleLength:
    def test_mean_gap(self):
        history = ["2026-02-26", "2026-01-01", "2026-01-29"]
        assert average_cycle_length(history) == 28

    def test_half_day_mean_rounds_up(self):
        # gaps of 28 and 29 days
        assert average_cycle_length(["2026-01-01", "2026-01-29", "2026-02-27"]) == 29

    def test_needs_two_dates(self):
        assert average_cycle_length(["2026-01-01"]) is None
        assert average_cycle_length(["2026-01-01", "2026-01-01"]) is None

    def test_plausible_range(self):
        assert is_plausible_cycle_length(21)
        assert is_plausible_cycle_length(45)
        assert not is_plausible_cycle_length(20)
        assert not is_plausible_cycle_length(None)


# ═══════════════════════════════════════════════════════════════════════════
# BMI & Age Gate
# ═══════════════════════════════════════════════════════════════════════════


class TestBmi:
    def test_height_in_centimetres(self):
        assert calculate_bmi(60, 165) == pytest.approx(22.0)

    def test_height_in_metres(self):
        assert calculate_bmi(60, 1.65) == pytest.approx(22.0)

    @pytest.mark.parametrize("weight,height", [(0, 165), (60, 0), (None, 165), (60, None), ("abc", 165)])
    def test_unusable_inputs(self, weight, height):
        assert calculate_bmi(weight, height) is None

    @pytest.mark.parametrize("bmi,expected", [
        (18.4, BmiCategory.UNDERWEIGHT),
        (18.5, BmiCategory.NORMAL),
        (24.9, BmiCategory.NORMAL),
        (25.0, BmiCategory.OVERWEIGHT),
        (30.0, BmiCategory.OBESE),
    ])
    def test_categories(self, bmi, expected):
        assert bmi_category(bmi) == expected

    def test_assessment_carries_impact_text(self):
        assessment = assess_bmi(80, 165)
        assert assessment.category == BmiCategory.OVERWEIGHT
        assert assessment.fertility_impact


class TestFertilityGate:
    def test_unknown_age_is_allowed(self):
        assert should_notify_for_fertility(None) is True

    def test_boundary(self):
        assert should_notify_for_fertility(49) is True
        assert should_notify_for_fertility(50) is False


# ═══════════════════════════════════════════════════════════════════════════
# Value Coercion
# ═══════════════════════════════════════════════════════════════════════════


class TestCoercion:
    @pytest.mark.parametrize("value,expected", [
        ("7,5", 7.5),
        ("8", 8.0),
        (3, 3.0),
        ("", None),
        ("nan", None),
        (math.inf, None),
        (True, None),
        (None, None),
    ])
    def test_to_float(self, value, expected):
        assert to_float(value) == expected

    def test_to_int_rounds(self):
        assert to_int("27.6") == 28
        assert to_int("28,5") == 29

    @pytest.mark.parametrize("value,expected", [
        ("Sí", True),
        ("si", True),
        ("No", False),
        ("No, nunca", False),
        (0, False),
        ("quizás", None),
        ("", None),
    ])
    def test_to_bool(self, value, expected):
        assert to_bool(value) is expected

    def test_to_str_list_splits_text(self):
        assert to_str_list("SOP, Endometriosis\nHipotiroidismo") == [
            "SOP", "Endometriosis", "Hipotiroidismo",
        ]
        assert to_str_list(None) == []


class TestReferenceValues:
    def test_day_after_full_cycle_wraps_to_one(self):
        assert cycle_day("2024-01-01", 28, date(2024, 1, 29)) == 1

    def test_bmi_units_agree(self):
        assert calculate_bmi(70, 1.75) == calculate_bmi(70, 175)
