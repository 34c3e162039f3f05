"""
cumulative.py — Cumulative (multi-term) report cards from exam results.

For each (student, session):
- Per-term overall average, grade, class position and cohort size
- Terms ordered First, Second, Third, then anything unrecognised
- Cumulative average, grade and position across terms
- Per-subject average and trend (last term's total vs first term's total)

Class position is the mean of the per-subject positions, at both the term
and the cumulative level. Averaging ranks across subjects is a known
approximation kept for compatibility with existing report cards.
"""

import logging
from typing import Iterable, List, Optional, Sequence

import pandas as pd

from core.grading import grade_for, round_half_up, term_index
from core.models import (
    CumulativeSubjectAverage,
    CumulativeTermRecord,
    CumulativeTermSubject,
    ExamResultRecord,
    StudentCumulativeReportRecord,
)
from core.normalizer import to_iso
from core.periods import as_utc

logger = logging.getLogger(__name__)


def _optional_int(value) -> Optional[int]:
    if value is None or pd.isna(value):
        return None
    return int(value)


def _trend(first_total: float, last_total: float) -> str:
    delta = last_total - first_total
    if delta > 0:
        return "up"
    if delta < 0:
        return "down"
    return "stable"


def _build_term(term: str, rows: List[ExamResultRecord], tdf: pd.DataFrame) -> CumulativeTermRecord:
    subject_count = len(rows)
    overall_average = round_half_up(tdf["total"].sum() / subject_count)

    positions = tdf["position"].dropna()
    if len(positions) > 0:
        class_position = max(1, round_half_up(positions.mean()))
    else:
        class_position = 1

    cohort_sizes = tdf["total_students"].dropna()
    largest = int(cohort_sizes.max()) if len(cohort_sizes) > 0 else 0
    total_students = largest if largest > 0 else max(1, subject_count)

    return CumulativeTermRecord(
        term=term,
        session=rows[0].session,
        subjects=[
            CumulativeTermSubject(
                name=r.subject,
                ca1=r.ca1,
                ca2=r.ca2,
                assignment=r.assignment,
                exam=r.exam,
                total=round_half_up(r.total),
                grade=r.grade,
                position=_optional_int(r.position),
            )
            for r in rows
        ],
        overall_average=overall_average,
        overall_grade=grade_for(overall_average),
        class_position=class_position,
        total_students=total_students,
    )


def _build_subject_averages(rows: Sequence[ExamResultRecord]) -> List[CumulativeSubjectAverage]:
    history = {}
    for r in rows:
        history.setdefault(r.subject, []).append((term_index(r.term), r.total))

    averages = []
    for name, points in history.items():
        ordered = sorted(points, key=lambda p: p[0])
        totals = [total for _, total in ordered]
        average = round_half_up(sum(totals) / len(totals))
        trend = _trend(totals[0], totals[-1]) if len(totals) > 1 else "stable"
        averages.append(CumulativeSubjectAverage(
            name=name,
            average=average,
            grade=grade_for(average),
            trend=trend,
        ))

    averages.sort(key=lambda s: s.name.casefold())
    return averages


def _build_report(
    rows: List[ExamResultRecord], gdf: pd.DataFrame, updated_at: str
) -> StudentCumulativeReportRecord:
    first = rows[0]

    terms = []
    for term, tdf in gdf.groupby("term", sort=False):
        term_rows = [rows[i] for i in tdf.index]
        terms.append(_build_term(str(term), term_rows, tdf))
    terms.sort(key=lambda t: term_index(t.term))

    cumulative_average = round_half_up(sum(t.overall_average for t in terms) / len(terms))
    cumulative_position = max(
        1, round_half_up(sum(t.class_position for t in terms) / len(terms))
    )

    return StudentCumulativeReportRecord(
        student_id=first.student_id,
        student_name=first.student_name,
        class_name=first.class_name,
        session=first.session,
        terms=terms,
        cumulative_average=cumulative_average,
        cumulative_grade=grade_for(cumulative_average),
        cumulative_position=cumulative_position,
        total_students=max(t.total_students for t in terms),
        subject_averages=_build_subject_averages(rows),
        updated_at=updated_at,
    )


def build_cumulative_reports(
    results: Iterable[ExamResultRecord], now=None
) -> List[StudentCumulativeReportRecord]:
    """One freshly built report per (student, session) found in `results`."""
    results = list(results)
    if not results:
        return []

    updated_at = to_iso(as_utc(now))
    df = pd.DataFrame(
        [
            {
                "student_id": r.student_id,
                "session": r.session,
                "term": r.term,
                "total": float(r.total),
                "position": r.position,
                "total_students": r.total_students,
            }
            for r in results
        ]
    )
    df["position"] = pd.to_numeric(df["position"], errors="coerce")
    df["total_students"] = pd.to_numeric(df["total_students"], errors="coerce")

    reports = []
    for _, gdf in df.groupby(["student_id", "session"], sort=False):
        rows = [results[i] for i in gdf.index]
        reports.append(_build_report(rows, gdf.reset_index(drop=True), updated_at))
    return reports


def recompute_cumulative_reports(
    results: Iterable[ExamResultRecord],
    student_ids: Iterable[str],
    session: Optional[str],
    now=None,
) -> List[StudentCumulativeReportRecord]:
    """Rebuild reports for the given students, scoped to one session when given."""
    wanted = set(student_ids)
    scoped = [
        r for r in results
        if r.student_id in wanted and (not session or r.session == session)
    ]
    logger.debug(
        "Rebuilding cumulative reports for %d students (%d result rows, session=%s)",
        len(wanted), len(scoped), session,
    )
    return build_cumulative_reports(scoped, now)


def merge_cumulative_reports(
    existing: Iterable[StudentCumulativeReportRecord],
    rebuilt: Iterable[StudentCumulativeReportRecord],
    student_ids: Iterable[str],
    session: Optional[str],
) -> List[StudentCumulativeReportRecord]:
    """Replace every prior report for the rebuilt students/session with the new ones."""
    wanted = set(student_ids)
    kept = [
        record for record in existing
        if record.student_id not in wanted or (session and record.session != session)
    ]
    return kept + list(rebuilt)
