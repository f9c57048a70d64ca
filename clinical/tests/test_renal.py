"""
Unit tests for the Cockcroft-Gault renal function estimator.
"""
from datetime import date, datetime

import pytest

from clinical.renal import (
    GFREstimate,
    assess_renal_function,
    calculate_age,
    classify_gfr,
    estimate_gfr,
)


class TestCalculateAge:

    def test_birthday_already_passed(self):
        assert calculate_age(date(1975, 3, 2), today=date(2025, 6, 1)) == 50

    def test_birthday_not_yet_this_year(self):
        assert calculate_age(date(1975, 3, 2), today=date(2025, 3, 1)) == 49

    def test_on_birthday(self):
        assert calculate_age(date(1975, 3, 2), today=date(2025, 3, 2)) == 50

    def test_string_and_datetime_inputs(self):
        assert calculate_age("1975-03-02", today="2025-03-02") == 50
        assert calculate_age(datetime(1975, 3, 2, 8, 0), today=date(2025, 3, 3)) == 50

    @pytest.mark.parametrize("value", [None, "", "not-a-date", "1975-13-40"])
    def test_invalid_birth_date(self, value):
        assert calculate_age(value) is None


class TestEstimateGfr:

    def test_male_worked_example(self):
        # ((140 - 50) * 70) / (72 * 1.0) = 87.5 -> 88
        assert estimate_gfr(50, 70, "M", 1.0) == 88

    def test_female_worked_example(self):
        # 88 * 0.85 = 74.8 -> 75
        assert estimate_gfr(50, 70, "F", 1.0) == 75

    def test_unknown_sex_uses_unadjusted_formula(self):
        assert estimate_gfr(50, 70, "U", 1.0) == 88

    def test_string_inputs(self):
        assert estimate_gfr("50", "70", "M", "1.0") == 88

    @pytest.mark.parametrize("args", [
        (None, 70, "M", 1.0),
        (50, None, "M", 1.0),
        (50, 70, None, 1.0),
        (50, 70, "", 1.0),
        (50, 70, "M", None),
        (50, 70, "M", ""),
        (50, 70, "M", "abc"),
        (50, 70, "M", 0),
        (50, 70, "M", -1.2),
        (50, 0, "M", 1.0),
        (50, -70, "M", 1.0),
        ("fifty", 70, "M", 1.0),
    ])
    def test_missing_or_invalid_input_returns_none(self, args):
        assert estimate_gfr(*args) is None


class TestClassifyGfr:

    @pytest.mark.parametrize("egfr,label", [
        (5, "Stage 5 CKD (Kidney Failure)"),
        (14, "Stage 5 CKD (Kidney Failure)"),
        (15, "Stage 4 CKD (Severe)"),
        (29, "Stage 4 CKD (Severe)"),
        (30, "Stage 3 CKD (Moderate)"),
        (59, "Stage 3 CKD (Moderate)"),
        (60, "Stage 2 CKD (Mild)"),
        (75, "Stage 2 CKD (Mild)"),
        (89, "Stage 2 CKD (Mild)"),
        (90, "Normal"),
        (140, "Normal"),
    ])
    def test_bands(self, egfr, label):
        assert classify_gfr(egfr) == label

    def test_none(self):
        assert classify_gfr(None) is None


class TestAssessRenalFunction:

    def test_male(self):
        result = assess_renal_function(date(1975, 3, 2), 70, "M", "1.0", today=date(2025, 6, 1))
        assert result == GFREstimate(egfr=88, stage="Stage 2 CKD (Mild)")

    def test_female(self):
        result = assess_renal_function(date(1975, 3, 2), 70, "F", 1.0, today=date(2025, 6, 1))
        assert result.to_dict() == {"egfr": 75, "stage": "Stage 2 CKD (Mild)"}

    def test_no_birth_date(self):
        assert assess_renal_function(None, 70, "M", 1.0) is None
