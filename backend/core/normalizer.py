"""
normalizer.py — Best-effort normalisation of loosely-typed raw records.

Handles:
- Alias probing across the record and its nested `metadata` mapping
- String trimming (blank strings count as absent)
- Numeric coercion from strings like "NGN 12,500.00"
- Payment status synonyms (paid / success → completed, declined → failed)
- Timestamp coercion to ISO-8601 UTC

Malformed values never raise: they resolve to 0, None or "pending".
"""

import math
import numbers
import re
import time
from datetime import date, datetime
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from core.models import AnalyticsPayment, ExamResultInput


# Ordered alias lists per canonical field. The first non-empty match wins,
# top-level record first, then `metadata`.
PAYMENT_ALIASES = {
    "id": ["id", "reference"],
    "student_id": ["studentId", "student_id", "studentID"],
    "student_name": ["studentName", "student_name", "student"],
    "parent_name": [
        "parentName", "parent_name", "guardianName", "guardian_name",
        "customerName", "customer_name",
    ],
    "parent_email": [
        "parentEmail", "parent_email", "guardianEmail", "guardian_email",
        "customerEmail", "customer_email", "email",
    ],
    "class_name": ["className", "class_name", "class", "classroom"],
    "status": ["status"],
    "method": ["method", "paymentChannel", "payment_channel"],
    "payment_type": ["paymentType", "payment_type", "type"],
    "source": ["source", "channel", "payment_channel"],
    "created_at": ["createdAt", "created_at", "date", "timestamp"],
    "updated_at": [
        "updatedAt", "updated_at", "processedAt", "processed_at",
        "completedAt", "completed_at",
    ],
    "amount": ["amount", "total", "value"],
}

# Gateway callbacks stash the verification time only inside metadata.
METADATA_ONLY_DATE_ALIASES = {
    "created_at": ["createdAt", "timestamp"],
    "updated_at": ["verifiedAt", "verified_at"],
}

RESULT_ALIASES = {
    "student_id": ["studentId", "student_id", "studentID"],
    "student_name": ["studentName", "student_name", "name"],
    "ca1": ["ca1", "ca_1", "firstCa"],
    "ca2": ["ca2", "ca_2", "secondCa"],
    "assignment": ["assignment", "assignments"],
    "exam": ["exam", "examScore", "exam_score"],
    "position": ["position"],
    "total_students": ["totalStudents", "total_students"],
    "remarks": ["remarks", "remark"],
    "status": ["status"],
    "grade": ["grade"],
}

COMPLETED_STATUSES = {"completed", "paid", "success", "successful"}
FAILED_STATUSES = {"failed", "declined", "reversed"}
RESULT_STATUSES = {"pending", "published", "withheld"}

_NUMERIC_PREFIX = re.compile(r"-?(?:\d+(?:\.\d*)?|\.\d+)")


# ── Scalar coercion ─────────────────────────────────────────────────

def get_string(value: Any) -> Optional[str]:
    """Trimmed string or None. Integers are accepted as identifiers."""
    if isinstance(value, str):
        trimmed = value.strip()
        return trimmed or None
    if isinstance(value, numbers.Integral) and not isinstance(value, bool):
        return str(value)
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def get_number(value: Any) -> float:
    """Coerce to a finite float; anything unparsable becomes 0."""
    if _is_number(value):
        v = float(value)
        return v if math.isfinite(v) else 0.0
    if isinstance(value, str):
        cleaned = re.sub(r"[^0-9.\-]", "", value)
        match = _NUMERIC_PREFIX.match(cleaned)
        if not match:
            return 0.0
        v = float(match.group(0))
        return v if math.isfinite(v) else 0.0
    return 0.0


def parse_instant(value: Any) -> Optional[pd.Timestamp]:
    """Parse a string/datetime into a UTC Timestamp, or None when unusable."""
    if isinstance(value, str):
        if not value.strip():
            return None
    elif not isinstance(value, (datetime, date)):
        return None

    ts = pd.to_datetime(value, utc=True, errors="coerce")
    if ts is None or pd.isna(ts):
        return None
    return ts


def to_iso(ts: pd.Timestamp) -> str:
    """ISO-8601 with millisecond precision and a `Z` suffix."""
    return ts.tz_convert("UTC").strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def ensure_date(value: Any) -> Optional[str]:
    ts = parse_instant(value)
    return to_iso(ts) if ts is not None else None


def normalize_status(value: Any) -> str:
    """Map payment status synonyms onto completed / failed / pending."""
    status = get_string(value)
    if not status:
        return "pending"
    status = status.lower()
    if status in COMPLETED_STATUSES:
        return "completed"
    if status in FAILED_STATUSES:
        return "failed"
    return "pending"


# ── Alias probing ───────────────────────────────────────────────────

def _sources(record: Mapping) -> List[Mapping]:
    metadata = record.get("metadata")
    return [record, metadata if isinstance(metadata, Mapping) else {}]


def _pick(
    sources: Sequence[Mapping],
    keys: Iterable[str],
    coerce: Callable[[Any], Any],
) -> Any:
    keys = list(keys)
    for source in sources:
        for key in keys:
            value = coerce(source.get(key))
            if value is not None:
                return value
    return None


def pick_string(sources: Sequence[Mapping], keys: Iterable[str]) -> Optional[str]:
    return _pick(sources, keys, get_string)


def _date_candidate(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value
    return get_string(value) if isinstance(value, str) else None


def pick_date_value(sources: Sequence[Mapping], keys: Iterable[str]) -> Any:
    """First non-empty raw date value (string or datetime), not yet coerced."""
    return _pick(sources, keys, _date_candidate)


def pick_number(sources: Sequence[Mapping], keys: Iterable[str]) -> Optional[float]:
    """
    First usable number across the aliases.

    A literal numeric 0 is a real answer; a string that coerces to 0 is not,
    so probing continues to the next alias.
    """
    for source in sources:
        for key in keys:
            raw = source.get(key)
            if raw is None or isinstance(raw, bool):
                continue
            if isinstance(raw, str) and not raw.strip():
                continue
            parsed = get_number(raw)
            if parsed == 0:
                if _is_number(raw):
                    return parsed
                continue
            return parsed
    return None


# ── Payments ────────────────────────────────────────────────────────

def _first_date(sources, keys, fallback_sources, fallback_keys) -> Optional[str]:
    """
    Coerce the first non-empty date value. An unparsable first match gives
    None; later aliases are not consulted. The fallback aliases are only
    probed when no primary alias holds a value at all.
    """
    value = pick_date_value(sources, keys)
    if value is None:
        value = pick_date_value(fallback_sources, fallback_keys)
    return ensure_date(value)


def normalize_payment(raw: Any) -> Optional[AnalyticsPayment]:
    """Convert an arbitrary payment record into an AnalyticsPayment."""
    if not isinstance(raw, Mapping):
        return None

    sources = _sources(raw)
    metadata_only = sources[1:]
    a = PAYMENT_ALIASES

    created_at = _first_date(
        sources, a["created_at"], metadata_only, METADATA_ONLY_DATE_ALIASES["created_at"]
    )
    updated_at = _first_date(
        sources, a["updated_at"], metadata_only, METADATA_ONLY_DATE_ALIASES["updated_at"]
    )
    amount = pick_number(sources, a["amount"])

    return AnalyticsPayment(
        id=pick_string(sources, a["id"]) or f"payment-{int(time.time() * 1000)}",
        student_id=pick_string(sources, a["student_id"]),
        student_name=pick_string(sources, a["student_name"]) or "Unknown Student",
        parent_name=pick_string(sources, a["parent_name"]),
        parent_email=pick_string(sources, a["parent_email"]),
        class_name=pick_string(sources, a["class_name"]),
        amount=amount if amount is not None else 0.0,
        status=normalize_status(pick_string(sources, a["status"])),
        method=pick_string(sources, a["method"]),
        payment_type=pick_string(sources, a["payment_type"]),
        source=pick_string(sources, a["source"]),
        created_at=created_at,
        updated_at=updated_at,
    )


def normalize_payments(raws: Iterable[Any]) -> List[AnalyticsPayment]:
    """Normalise a batch, dropping entries that are not records at all."""
    payments = []
    for raw in raws or []:
        payment = normalize_payment(raw)
        if payment is not None:
            payments.append(payment)
    return payments


# ── Exam result input ───────────────────────────────────────────────

def _optional_int(value: Optional[float]) -> Optional[int]:
    if value is None:
        return None
    return int(round(value))


def normalize_result_input(raw: Any) -> ExamResultInput:
    """
    Build an ExamResultInput from a score-entry row.

    Raises ValueError when the row has no student id: without it the ledger
    cannot key the upsert.
    """
    if isinstance(raw, ExamResultInput):
        return raw
    if not isinstance(raw, Mapping):
        raise ValueError("Exam result row must be an object.")

    sources = [raw]
    a = RESULT_ALIASES

    student_id = pick_string(sources, a["student_id"])
    if not student_id:
        raise ValueError("Exam result row is missing a student id.")

    status = (pick_string(sources, a["status"]) or "").lower()
    grade = pick_string(sources, a["grade"])

    return ExamResultInput(
        student_id=student_id,
        student_name=pick_string(sources, a["student_name"]) or student_id,
        ca1=pick_number(sources, a["ca1"]) or 0,
        ca2=pick_number(sources, a["ca2"]) or 0,
        assignment=pick_number(sources, a["assignment"]) or 0,
        exam=pick_number(sources, a["exam"]) or 0,
        position=_optional_int(pick_number(sources, a["position"])),
        total_students=_optional_int(pick_number(sources, a["total_students"])),
        remarks=pick_string(sources, a["remarks"]),
        status=status if status in RESULT_STATUSES else None,
        grade=grade.upper() if grade else None,
    )
