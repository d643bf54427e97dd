"""
Tests for grade_calculator - the single source of grade thresholds

The ladder is a pure function of the weighted sum: monotonic, and the
thresholds are inclusive.
"""

import pytest

from grade_calculator import (
    FACTOR_WEIGHTS,
    GRADE_ORDER,
    calculate_grade,
    get_grade_config,
    grade_from_weighted_sum,
    grade_meets_minimum,
    grade_rank,
    weighted_sum,
)
from pick_schema import FactorScoreSet


class TestLadder:

    def test_weights_sum_to_one(self):
        assert sum(FACTOR_WEIGHTS.values()) == pytest.approx(1.0)

    @pytest.mark.parametrize("total,grade", [
        (100, "A+"), (78.5, "A+"), (78.49, "A"), (76, "A"), (73.5, "A-"),
        (70, "B+"), (66, "B"), (62, "B-"), (58, "C+"), (54, "C"),
        (50, "C-"), (47, "D+"), (44, "D"), (43.99, "F"), (0, "F"),
    ])
    def test_thresholds(self, total, grade):
        assert grade_from_weighted_sum(total) == grade

    def test_monotonic_in_weighted_sum(self):
        previous_rank = grade_rank("F")
        for step in range(0, 401):
            rank = grade_rank(grade_from_weighted_sum(step / 4))
            assert rank <= previous_rank
            previous_rank = rank

    def test_order_best_to_worst(self):
        assert GRADE_ORDER[0] == "A+"
        assert GRADE_ORDER[-1] == "F"
        assert len(GRADE_ORDER) == 12


class TestCalculateGrade:

    def test_weighted_sum(self):
        scores = FactorScoreSet(78, 62, 60, 70, 80, 82)
        assert weighted_sum(scores) == pytest.approx(72.8)

    def test_grade_and_units(self):
        result = calculate_grade(FactorScoreSet(78, 62, 60, 70, 80, 82))
        assert result.grade == "B+"
        assert result.weighted_sum == 72.8
        assert result.units == 1.25

    def test_units_scale_with_base(self):
        result = calculate_grade(FactorScoreSet(78, 62, 60, 70, 80, 82), base_unit_size=2.0)
        assert result.units == 2.5

    def test_weak_selection(self):
        result = calculate_grade(FactorScoreSet(32, 34, 36, 34, 48, 82))
        assert result.weighted_sum == pytest.approx(44.7)
        assert result.grade == "D"

    def test_out_of_range_scores_rejected(self):
        with pytest.raises(ValueError):
            FactorScoreSet(101, 50, 50, 50, 50, 50)


class TestMinimum:

    def test_default_minimum_is_c_plus(self):
        assert grade_meets_minimum("C+")
        assert grade_meets_minimum("A")
        assert not grade_meets_minimum("C")

    def test_explicit_minimum(self):
        assert grade_meets_minimum("B-", "B-")
        assert not grade_meets_minimum("C+", "B-")

    def test_unknown_grade(self):
        with pytest.raises(KeyError):
            grade_rank("Z")
        assert get_grade_config("Z")["rank"] == 12
