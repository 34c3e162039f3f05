"""
Exam routes — schedules, result entry/publishing and cumulative reports.

Fixed paths (/schedules, /cumulative, /grade-scale) are declared before the
/{exam_id}/... routes so they are never captured as exam ids.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from core.grading import get_all_grade_thresholds, summarize_grade_distribution
from core.ledger import ExamResultLedger, ExamScheduleNotFound
from core.store import get_default_store

router = APIRouter()


def _ledger() -> ExamResultLedger:
    return ExamResultLedger(get_default_store())


# ── Schedules ───────────────────────────────────────────────────────

@router.post("/schedules")
async def create_schedule(payload: dict):
    """Create an exam schedule. Terms may be keys ("first") or labels ("First Term")."""
    try:
        schedule = _ledger().create_schedule(payload)
    except ValidationError as e:
        raise HTTPException(400, f"Invalid exam schedule: {e.errors()}")
    return schedule.to_document()


@router.get("/schedules")
async def list_schedules(
    status: Optional[str] = None,
    class_id: Optional[str] = None,
    class_name: Optional[str] = None,
    session: Optional[str] = None,
    term: Optional[str] = None,
):
    schedules = _ledger().list_schedules(
        status=status, class_id=class_id, class_name=class_name, session=session, term=term
    )
    return [s.to_document() for s in schedules]


@router.patch("/schedules/{exam_id}")
async def update_schedule(exam_id: str, payload: dict):
    """Edit a schedule; changed start/end times re-derive the duration."""
    try:
        schedule = _ledger().update_schedule(exam_id, payload)
    except ExamScheduleNotFound as e:
        raise HTTPException(404, str(e))
    except ValidationError as e:
        raise HTTPException(400, f"Invalid exam schedule: {e.errors()}")
    return schedule.to_document()


@router.delete("/schedules/{exam_id}")
async def delete_schedule(exam_id: str):
    """Delete a schedule, its results, and refresh affected cumulative reports."""
    return {"deleted": _ledger().delete_schedule(exam_id)}


# ── Reports and reference data ──────────────────────────────────────

@router.get("/cumulative/{student_id}")
async def cumulative_report(student_id: str, session: Optional[str] = None):
    """Cumulative report card for a student (latest session when none is given)."""
    report = _ledger().get_student_cumulative_report(student_id, session)
    if report is None:
        raise HTTPException(404, f"No results found for student '{student_id}'.")
    return report.to_document()


@router.get("/grade-scale")
async def grade_scale():
    """Grade bands shared by result sheets and report cards."""
    return {"grade_scale": get_all_grade_thresholds()}


# ── Results ─────────────────────────────────────────────────────────

@router.get("/{exam_id}/results")
async def get_results(exam_id: str):
    return [r.to_document() for r in _ledger().get_results(exam_id)]


@router.post("/{exam_id}/results")
async def save_results(exam_id: str, payload: dict):
    """
    Save (upsert) score rows for an exam.
    Expects: { "results": [...], "autoPublish": false }
    """
    rows = payload.get("results")
    if not rows:
        raise HTTPException(400, "No results provided.")

    try:
        saved = _ledger().save_results(
            exam_id, rows, auto_publish=bool(payload.get("autoPublish", False))
        )
    except ExamScheduleNotFound as e:
        raise HTTPException(404, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    return [r.to_document() for r in saved]


@router.post("/{exam_id}/publish")
async def publish_results(exam_id: str):
    try:
        published = _ledger().publish_results(exam_id)
    except ExamScheduleNotFound as e:
        raise HTTPException(404, str(e))
    return [r.to_document() for r in published]


@router.get("/{exam_id}/summary")
async def results_summary(exam_id: str):
    """Grade distribution and pass rate for one exam's results."""
    ledger = _ledger()
    if ledger.get_schedule(exam_id) is None:
        raise HTTPException(404, "Exam schedule not found")
    return summarize_grade_distribution(r.total for r in ledger.get_results(exam_id))
