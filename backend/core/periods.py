"""
periods.py — Sliding reporting windows anchored to "now".

A window is [now - start_days_ago, now - end_days_ago). A None bound is open.
Payments without a usable date never belong to a named window but always
belong to "all". Bucketing only includes or excludes; it never raises.
"""

from typing import Dict, List, Optional

import pandas as pd

from core.models import AnalyticsPayment
from core.normalizer import parse_instant


PERIOD_CONFIG: Dict[str, Dict[str, Optional[int]]] = {
    "current-term": {"start_days_ago": 120, "end_days_ago": None},
    "last-term": {"start_days_ago": 240, "end_days_ago": 120},
    "current-session": {"start_days_ago": 365, "end_days_ago": None},
    "last-session": {"start_days_ago": 730, "end_days_ago": 365},
    "all": {"start_days_ago": None, "end_days_ago": None},
}

PERIOD_KEYS = list(PERIOD_CONFIG)
DEFAULT_PERIOD = "current-term"


def utc_now() -> pd.Timestamp:
    return pd.Timestamp.now(tz="UTC")


def as_utc(moment=None) -> pd.Timestamp:
    """Coerce an anchor instant to a UTC Timestamp; None means now."""
    if moment is None:
        return utc_now()
    ts = pd.Timestamp(moment)
    return ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")


def normalize_period_key(period: Optional[str]) -> str:
    """Return a known period key, falling back to the current term."""
    return period if period in PERIOD_CONFIG else DEFAULT_PERIOD


def resolve_payment_date(payment: AnalyticsPayment) -> Optional[pd.Timestamp]:
    """The instant a payment is bucketed by: updated_at, else created_at."""
    return parse_instant(payment.updated_at or payment.created_at)


def is_within_period(timestamp: pd.Timestamp, period: str, now: pd.Timestamp) -> bool:
    config = PERIOD_CONFIG[period]
    start_days = config["start_days_ago"]
    end_days = config["end_days_ago"]

    if start_days is not None and timestamp < now - pd.Timedelta(days=start_days):
        return False
    if end_days is not None and timestamp >= now - pd.Timedelta(days=end_days):
        return False
    return True


def filter_payments_by_period(
    payments: List[AnalyticsPayment],
    period: str,
    now: pd.Timestamp,
) -> List[AnalyticsPayment]:
    """Payments that fall inside the named window."""
    if period == "all":
        return list(payments)

    selected = []
    for payment in payments:
        resolved = resolve_payment_date(payment)
        if resolved is None:
            continue
        if is_within_period(resolved, period, now):
            selected.append(payment)
    return selected


def determine_term_label(moment: pd.Timestamp) -> str:
    """Rough school-term label from the calendar month."""
    month = moment.month
    if month <= 4:
        return "First Term"
    if month <= 7:
        return "Second Term"
    if month <= 10:
        return "Third Term"
    return "Holiday Session"
