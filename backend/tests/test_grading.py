"""
Tests for core/grading.py — grade bands, remarks, term ordering.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.grading import (
    get_all_grade_thresholds,
    get_remark_for_grade,
    grade_for,
    map_term_key_to_label,
    round_half_up,
    sort_terms,
    summarize_grade_distribution,
    term_index,
)


class TestGradeFor:
    """Tests for the shared score → letter mapping."""

    @pytest.mark.parametrize("total,expected", [
        (100, "A"), (90, "A"), (89.5, "A"), (89.4, "B"), (80, "B"),
        (70, "C"), (60, "D"), (59, "F"), (0, "F"), (-12, "F"),
    ])
    def test_bands(self, total, expected):
        assert grade_for(total) == expected

    def test_non_numeric_is_f(self):
        assert grade_for(None) == "F"
        assert grade_for("abc") == "F"
        assert grade_for(float("nan")) == "F"

    def test_result_sheet_total(self):
        """19 + 18 + 19 + 36 = 92 grades the same wherever it is derived."""
        total = 19 + 18 + 19 + 36
        assert total == 92
        assert grade_for(total) == "A"


class TestRoundHalfUp:
    def test_halves_round_up(self):
        assert round_half_up(72.5) == 73
        assert round_half_up(2.5) == 3

    def test_below_half_rounds_down(self):
        assert round_half_up(72.49) == 72


class TestRemarksAndScale:
    def test_remark_known_grade(self):
        assert get_remark_for_grade("a") == "Outstanding performance"

    def test_remark_unknown_grade(self):
        assert get_remark_for_grade("Z") == ""

    def test_thresholds_cover_scale(self):
        scale = get_all_grade_thresholds()
        assert [s["label"] for s in scale] == ["A", "B", "C", "D", "F"]
        assert scale[0]["max"] == 100
        assert scale[1]["max"] == 89
        assert scale[-1]["min"] == 0


class TestGradeDistribution:
    def test_counts_and_pass_rate(self):
        summary = summarize_grade_distribution([95, 85, 72, 40])
        assert summary["distribution"] == {"A": 1, "B": 1, "C": 1, "D": 0, "F": 1}
        assert summary["total"] == 4
        assert summary["passes"] == 3
        assert summary["pass_rate"] == 75

    def test_empty(self):
        summary = summarize_grade_distribution([])
        assert summary["total"] == 0
        assert summary["pass_rate"] == 0


class TestTermOrder:
    def test_canonical_order(self):
        assert sort_terms(["Third Term", "First Term", "Second Term"]) == [
            "First Term", "Second Term", "Third Term",
        ]

    def test_unrecognised_terms_last(self):
        assert term_index("Summer School") == 3
        assert sort_terms(["Summer School", "Second Term"]) == ["Second Term", "Summer School"]

    def test_term_key_labels(self):
        assert map_term_key_to_label("second") == "Second Term"
        assert map_term_key_to_label("Second Term") == "Second Term"
