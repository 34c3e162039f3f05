"""
finance.py — Fee collection analytics over normalised payments.

Computes:
- Monthly fee collection (collected vs expected)
- Class-wise collection with distinct paying students
- Period summary (collection rate, defaulters, collection time)
- Global defaulter list
- The full FinancialAnalyticsSnapshot across all reporting periods

Every snapshot is rebuilt from the complete payment set; nothing is patched
incrementally.
"""

import json
import logging
from typing import Any, Iterable, List, Optional

import numpy as np
import pandas as pd

from core.models import (
    AnalyticsPayment,
    ClassCollectionEntry,
    FeeCollectionEntry,
    FinancialAnalyticsPeriod,
    FinancialAnalyticsSnapshot,
    FinancialDefaulterEntry,
    FinancialSummary,
)
from core.normalizer import normalize_payments, parse_instant, to_iso
from core.periods import (
    PERIOD_KEYS,
    as_utc,
    determine_term_label,
    filter_payments_by_period,
    resolve_payment_date,
)

logger = logging.getLogger(__name__)

# A completed payment settled within this many days of creation is "on time".
ON_TIME_DAYS = 14

UNASSIGNED_CLASS = "Unassigned"
# Term label for defaulters whose payments carry no usable date.
UNDATED_TERM = "Unknown Term"
NO_CONTACT = "Contact unavailable"

FRAME_COLUMNS = [
    "id", "student_key", "student_name", "class_label", "contact", "status",
    "amount", "month_order", "month_label", "term_label", "collection_days",
]


# ── Helpers ─────────────────────────────────────────────────────────

def _money(value: Any) -> float:
    return round(float(value), 2)


def _clamp_percentage(value: float) -> float:
    """Clamp to [0, 100] and keep one decimal place."""
    if not np.isfinite(value):
        return 0.0
    return round(min(100.0, max(0.0, float(value))), 1)


def _rate(part: float, whole: float) -> float:
    return _clamp_percentage(part / whole * 100) if whole > 0 else 0.0


def _collection_days(payment: AnalyticsPayment) -> float:
    """Days between creation and settlement, NaN when either date is missing."""
    created = parse_instant(payment.created_at)
    updated = parse_instant(payment.updated_at)
    if created is None or updated is None:
        return np.nan
    seconds = max(0.0, (updated - created).total_seconds())
    return seconds / 86400


def _payments_frame(payments: Iterable[AnalyticsPayment]) -> pd.DataFrame:
    """
    One row per payment with every grouping key pre-resolved.

    Undated payments get no month and no term; they are never attributed to
    the moment of the recompute.
    """
    rows = []
    for payment in payments:
        resolved = resolve_payment_date(payment)
        rows.append({
            "id": payment.id,
            "student_key": payment.student_key,
            "student_name": payment.student_name,
            "class_label": payment.class_name or UNASSIGNED_CLASS,
            "contact": payment.parent_email or payment.parent_name or NO_CONTACT,
            "status": payment.status,
            "amount": float(payment.amount),
            "month_order": resolved.year * 12 + (resolved.month - 1) if resolved is not None else None,
            "month_label": resolved.strftime("%b %Y") if resolved is not None else None,
            "term_label": determine_term_label(resolved) if resolved is not None else UNDATED_TERM,
            "collection_days": _collection_days(payment),
        })

    df = pd.DataFrame(rows, columns=FRAME_COLUMNS)
    df["amount"] = pd.to_numeric(df["amount"], errors="coerce").fillna(0.0)
    df["collected"] = df["amount"].where(df["status"] == "completed", 0.0)
    df["expected"] = df["amount"].where(df["status"].isin(["completed", "pending"]), 0.0)
    return df


# ── Roll-ups ────────────────────────────────────────────────────────

def build_fee_collection(payments: List[AnalyticsPayment]) -> List[FeeCollectionEntry]:
    """Collected vs expected per calendar month, oldest month first. Undated payments are skipped."""
    df = _payments_frame(payments)
    df = df[df["month_order"].notna()]
    if df.empty:
        return []

    monthly = (
        df.groupby(["month_order", "month_label"], sort=True)[["collected", "expected"]]
        .sum()
        .reset_index()
    )
    return [
        FeeCollectionEntry(
            month=row.month_label,
            collected=_money(row.collected),
            expected=_money(row.expected),
            percentage=_rate(row.collected, row.expected),
        )
        for row in monthly.itertuples(index=False)
    ]


def build_class_collection(payments: List[AnalyticsPayment]) -> List[ClassCollectionEntry]:
    """Collected vs expected per class, highest collection first."""
    df = _payments_frame(payments)
    if df.empty:
        return []

    per_class = df.groupby("class_label", sort=False).agg(
        collected=("collected", "sum"),
        expected=("expected", "sum"),
    )
    paying = df[df["status"] == "completed"].groupby("class_label")["student_key"].nunique()

    entries = [
        ClassCollectionEntry(
            class_label=str(label),
            collected=_money(row["collected"]),
            expected=_money(row["expected"]),
            students=int(paying.get(label, 0)),
            percentage=_rate(row["collected"], row["expected"]),
        )
        for label, row in per_class.iterrows()
    ]
    entries.sort(key=lambda e: e.collected, reverse=True)
    return entries


def calculate_summary(payments: List[AnalyticsPayment]) -> FinancialSummary:
    """Headline numbers for one payment set."""
    df = _payments_frame(payments)
    if df.empty:
        return FinancialSummary()

    completed = df[df["status"] == "completed"]
    outstanding = df[df["status"] != "completed"]

    total_collected = float(completed["amount"].sum())
    outstanding_amount = float(outstanding["amount"].sum())

    # Only settlements with both timestamps say anything about collection time.
    durations = completed["collection_days"].dropna()
    if len(durations) > 0:
        avg_collection_time = round(float(durations.mean()), 1)
        on_time_rate = _clamp_percentage(float((durations <= ON_TIME_DAYS).mean()) * 100)
    else:
        avg_collection_time = 0.0
        on_time_rate = 0.0

    return FinancialSummary(
        total_collected=_money(total_collected),
        collection_rate=_rate(total_collected, total_collected + outstanding_amount),
        students_paid=int(completed["student_key"].nunique()),
        defaulters_count=int(outstanding["student_key"].nunique()),
        outstanding_amount=_money(outstanding_amount),
        avg_collection_time=avg_collection_time,
        on_time_payment_rate=on_time_rate,
    )


def build_defaulters(payments: List[AnalyticsPayment]) -> List[FinancialDefaulterEntry]:
    """
    Students with unsettled payments, largest outstanding amount first.

    Always computed over every payment, never a single period. Descriptive
    fields come from the first unsettled payment seen for each student; a
    payment without a usable date is labelled UNDATED_TERM.
    """
    df = _payments_frame(payments)
    unsettled = df[df["status"] != "completed"]
    if unsettled.empty:
        return []

    per_student = unsettled.groupby("student_key", sort=False).agg(
        name=("student_name", "first"),
        class_label=("class_label", "first"),
        term=("term_label", "first"),
        contact=("contact", "first"),
        amount=("amount", "sum"),
    )
    per_student = per_student.sort_values("amount", ascending=False, kind="stable")

    return [
        FinancialDefaulterEntry(
            id=str(key),
            name=row["name"],
            class_label=row["class_label"],
            term=row["term"],
            contact=row["contact"],
            amount=_money(row["amount"]),
        )
        for key, row in per_student.iterrows()
    ]


# ── Snapshot ────────────────────────────────────────────────────────

def calculate_period(payments: List[AnalyticsPayment]) -> FinancialAnalyticsPeriod:
    return FinancialAnalyticsPeriod(
        summary=calculate_summary(payments),
        fee_collection=build_fee_collection(payments),
        class_collection=build_class_collection(payments),
    )


def calculate_financial_analytics(
    payments: List[AnalyticsPayment], now: Optional[Any] = None
) -> FinancialAnalyticsSnapshot:
    """Build the full snapshot from already-normalised payments."""
    anchor = as_utc(now)
    periods = {}
    for key in PERIOD_KEYS:
        filtered = filter_payments_by_period(payments, key, anchor)
        periods[key] = calculate_period(filtered)
        logger.debug("Period %s: %d of %d payments", key, len(filtered), len(payments))

    return FinancialAnalyticsSnapshot(
        generated_at=to_iso(anchor),
        periods=periods,
        defaulters=build_defaulters(payments),
    )


def recompute_financial_analytics(
    raw_payments: Iterable[Any], now: Optional[Any] = None
) -> FinancialAnalyticsSnapshot:
    """Normalise raw payment records and rebuild the snapshot from scratch."""
    raw_payments = list(raw_payments or [])
    payments = normalize_payments(raw_payments)
    logger.info(
        "Recomputing financial analytics from %d payments (%d unusable)",
        len(payments), len(raw_payments) - len(payments),
    )
    return calculate_financial_analytics(payments, now)


def snapshot_periods_json(snapshot: FinancialAnalyticsSnapshot) -> str:
    """Canonical JSON of the `periods` map, for comparing recomputes."""
    periods = snapshot.to_document()["periods"]
    return json.dumps(periods, sort_keys=True, separators=(",", ":"))
