"""
grading.py — Shared grade bands and term ordering.

Every component that needs a letter grade goes through grade_for(), so the
score → letter mapping is defined exactly once:
  A (90+), B (80+), C (70+), D (60+), F

Also holds the canonical term order used by the cumulative report builder.
"""

import math
from typing import Any, Dict, Iterable, List, Optional


# Grade bands (min_score, label, remark). Ordered high to low.
GRADE_BOUNDARIES = [
    (90, "A", "Outstanding performance"),
    (80, "B", "Very good work"),
    (70, "C", "Good effort"),
    (60, "D", "Fair - room for growth"),
    (0, "F", "Requires urgent attention"),
]

GRADE_BANDS = [label for _, label, _ in GRADE_BOUNDARIES]


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives (72.5 → 73)."""
    return int(math.floor(value + 0.5))


def grade_for(total: Optional[float]) -> str:
    """Return the letter grade for a 0-100 total."""
    try:
        value = float(total)
    except (TypeError, ValueError):
        return "F"
    if not math.isfinite(value):
        return "F"

    safe_total = max(0, round_half_up(value))
    for min_score, label, _ in GRADE_BOUNDARIES:
        if safe_total >= min_score:
            return label
    return "F"


def get_remark_for_grade(grade: str) -> str:
    """Teacher-facing remark for a grade label, empty for unknown labels."""
    normalized = str(grade or "").strip().upper()
    for _, label, remark in GRADE_BOUNDARIES:
        if label == normalized:
            return remark
    return ""


def get_all_grade_thresholds() -> List[Dict[str, Any]]:
    """Return the full grade scale for legend/reference."""
    thresholds = []
    for idx, (min_score, label, remark) in enumerate(GRADE_BOUNDARIES):
        max_score = 100 if idx == 0 else GRADE_BOUNDARIES[idx - 1][0] - 1
        thresholds.append({
            "min": min_score,
            "max": max_score,
            "label": label,
            "remark": remark,
        })
    return thresholds


def summarize_grade_distribution(scores: Iterable[float]) -> Dict[str, Any]:
    """Count grades across scores. Anything above F counts as a pass."""
    distribution = {label: 0 for label in GRADE_BANDS}
    total = 0
    for score in scores:
        distribution[grade_for(score)] += 1
        total += 1

    passes = total - distribution["F"] if total else 0
    pass_rate = round_half_up(passes / total * 100) if total else 0
    return {
        "distribution": distribution,
        "total": total,
        "passes": passes,
        "pass_rate": pass_rate,
    }


# ── Term ordering ───────────────────────────────────────────────────

TERM_ORDER = ["First Term", "Second Term", "Third Term"]

TERM_LABELS = {
    "first": "First Term",
    "second": "Second Term",
    "third": "Third Term",
}


def term_index(term: str) -> int:
    """Position of a term in the school year; unrecognised terms sort last."""
    try:
        return TERM_ORDER.index(term)
    except ValueError:
        return len(TERM_ORDER)


def map_term_key_to_label(term_key: str) -> str:
    return TERM_LABELS.get(term_key, term_key)


def sort_terms(term_list: Iterable[str]) -> List[str]:
    """Sort term labels in calendar order (First, Second, Third, then the rest)."""
    return sorted(term_list, key=term_index)
