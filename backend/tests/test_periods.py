"""
Tests for core/periods.py — sliding windows, period keys, term labels.
"""

import os
import sys

import pandas as pd
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.normalizer import normalize_payment, to_iso
from core.periods import (
    PERIOD_KEYS,
    as_utc,
    determine_term_label,
    filter_payments_by_period,
    normalize_period_key,
    resolve_payment_date,
)

NOW = pd.Timestamp("2026-10-15T12:00:00Z")


def _paid_days_ago(days, pid):
    return normalize_payment({
        "id": pid,
        "status": "paid",
        "amount": 100,
        "updatedAt": to_iso(NOW - pd.Timedelta(days=days)),
    })


@pytest.fixture
def payments():
    return [
        _paid_days_ago(10, "recent"),
        _paid_days_ago(200, "last-term"),
        _paid_days_ago(400, "last-session"),
        normalize_payment({"id": "undated", "status": "paid", "amount": 5}),
    ]


def _ids(selected):
    return [p.id for p in selected]


class TestFilterPaymentsByPeriod:
    def test_current_term(self, payments):
        assert _ids(filter_payments_by_period(payments, "current-term", NOW)) == ["recent"]

    def test_last_term(self, payments):
        assert _ids(filter_payments_by_period(payments, "last-term", NOW)) == ["last-term"]

    def test_current_session(self, payments):
        assert _ids(filter_payments_by_period(payments, "current-session", NOW)) == [
            "recent", "last-term",
        ]

    def test_last_session(self, payments):
        assert _ids(filter_payments_by_period(payments, "last-session", NOW)) == ["last-session"]

    def test_all_includes_undated(self, payments):
        assert _ids(filter_payments_by_period(payments, "all", NOW)) == [
            "recent", "last-term", "last-session", "undated",
        ]

    def test_undated_never_in_named_window(self, payments):
        for key in PERIOD_KEYS:
            if key == "all":
                continue
            assert "undated" not in _ids(filter_payments_by_period(payments, key, NOW))

    def test_boundary_belongs_to_newer_window(self):
        """Exactly 120 days ago starts the current term and ends the last one."""
        edge = [_paid_days_ago(120, "edge")]
        assert _ids(filter_payments_by_period(edge, "current-term", NOW)) == ["edge"]
        assert _ids(filter_payments_by_period(edge, "last-term", NOW)) == []


class TestResolvePaymentDate:
    def test_updated_wins(self):
        payment = normalize_payment({
            "createdAt": "2026-01-01T00:00:00Z",
            "updatedAt": "2026-01-03T00:00:00Z",
        })
        assert resolve_payment_date(payment) == pd.Timestamp("2026-01-03T00:00:00Z")

    def test_falls_back_to_created(self):
        payment = normalize_payment({"createdAt": "2026-01-01T00:00:00Z"})
        assert resolve_payment_date(payment) == pd.Timestamp("2026-01-01T00:00:00Z")

    def test_undated(self):
        assert resolve_payment_date(normalize_payment({})) is None


class TestPeriodKeys:
    def test_unknown_falls_back(self):
        assert normalize_period_key("bogus") == "current-term"
        assert normalize_period_key(None) == "current-term"

    def test_known_kept(self):
        assert normalize_period_key("last-session") == "last-session"

    def test_naive_anchor_is_utc(self):
        assert as_utc("2026-10-15 12:00:00") == NOW


class TestTermLabel:
    @pytest.mark.parametrize("month,label", [
        (1, "First Term"), (4, "First Term"), (5, "Second Term"), (7, "Second Term"),
        (8, "Third Term"), (10, "Third Term"), (11, "Holiday Session"), (12, "Holiday Session"),
    ])
    def test_month_mapping(self, month, label):
        assert determine_term_label(pd.Timestamp(year=2026, month=month, day=15, tz="UTC")) == label
