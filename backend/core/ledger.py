"""
ledger.py — Exam schedules, result rows and cumulative report maintenance.

Result rows are upserted by (exam, student). Every mutation that touches a
student's results rebuilds that student's cumulative report for the exam's
session from the complete result set and replaces the stored record.
Each mutating call holds the store lock from its first read to its last write.
"""

import functools
import logging
import re
import uuid
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from core.cumulative import merge_cumulative_reports, recompute_cumulative_reports
from core.grading import grade_for, map_term_key_to_label
from core.models import (
    ExamResultRecord,
    ExamSchedule,
    ExamScheduleInput,
    ExamScheduleUpdate,
    StudentCumulativeReportRecord,
)
from core.normalizer import normalize_result_input, to_iso
from core.periods import as_utc, utc_now
from core.store import KeyValueStore, read_json, store_lock, write_json

logger = logging.getLogger(__name__)

SCHEDULES_KEY = "examSchedules"
RESULTS_KEY = "examResults"
CUMULATIVES_KEY = "cumulativeReports"

# Schedule fields an update may not clear by sending null.
REQUIRED_SCHEDULE_FIELDS = {
    "subject", "class_id", "class_name", "term", "session",
    "exam_date", "start_time", "end_time", "status", "updated_by",
}


class ExamScheduleNotFound(LookupError):
    """Raised when results reference an exam schedule that does not exist."""

    def __init__(self, exam_id: str):
        super().__init__("Exam schedule not found")
        self.exam_id = exam_id


# ── Helpers ─────────────────────────────────────────────────────────

def _to_minutes(value: str) -> int:
    """Minutes past midnight for "14:30" or "2:30 PM"; 0 when unparsable."""
    normalized = str(value or "").strip().upper()

    am_pm = re.match(r"^(\d{1,2}):(\d{2})\s*(AM|PM)$", normalized)
    if am_pm:
        hours = int(am_pm.group(1)) % 12
        if am_pm.group(3) == "PM":
            hours += 12
        return hours * 60 + int(am_pm.group(2))

    parts = normalized.split(":")
    try:
        hours = int(parts[0])
        minutes = int(parts[1]) if len(parts) > 1 else 0
    except ValueError:
        return 0
    return hours * 60 + minutes


def calculate_duration_minutes(start_time: str, end_time: str) -> int:
    """Exam length in minutes; an end before the start wraps past midnight."""
    start = _to_minutes(start_time)
    end = _to_minutes(end_time)
    if start == 0 and end == 0:
        return 0

    duration = end - start
    if duration <= 0:
        duration += 24 * 60
    return duration


def _generate_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _locked(method):
    """Hold the store lock for the whole load, modify, save cycle."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper


def _carry(value, prior, field):
    """Input value when given, else the stored row's value."""
    if value is not None:
        return value
    return getattr(prior, field) if prior is not None else None


# ── Ledger ──────────────────────────────────────────────────────────

class ExamResultLedger:
    """Exam schedules and results over a KeyValueStore."""

    def __init__(self, store: KeyValueStore, clock: Optional[Callable[[], Any]] = None):
        self.store = store
        self._clock = clock or utc_now
        self._lock = store_lock(store)

    def _now(self) -> str:
        return to_iso(as_utc(self._clock()))

    # Persistence

    def _load_schedules(self) -> List[ExamSchedule]:
        return [ExamSchedule.model_validate(d) for d in read_json(self.store, SCHEDULES_KEY, [])]

    def _save_schedules(self, schedules: Iterable[ExamSchedule]) -> None:
        write_json(self.store, SCHEDULES_KEY, [s.to_document() for s in schedules])

    def _load_results(self) -> List[ExamResultRecord]:
        return [ExamResultRecord.model_validate(d) for d in read_json(self.store, RESULTS_KEY, [])]

    def _save_results(self, results: Iterable[ExamResultRecord]) -> None:
        write_json(self.store, RESULTS_KEY, [r.to_document() for r in results])

    def _load_reports(self) -> List[StudentCumulativeReportRecord]:
        return [
            StudentCumulativeReportRecord.model_validate(d)
            for d in read_json(self.store, CUMULATIVES_KEY, [])
        ]

    def _save_reports(self, reports: Iterable[StudentCumulativeReportRecord]) -> None:
        write_json(self.store, CUMULATIVES_KEY, [r.to_document() for r in reports])

    # Schedules

    @_locked
    def create_schedule(self, payload: Mapping[str, Any]) -> ExamSchedule:
        data = ExamScheduleInput.model_validate(payload)
        now = self._now()
        schedule = ExamSchedule(
            id=_generate_id("exam"),
            subject=data.subject,
            class_id=data.class_id,
            class_name=data.class_name or data.class_id,
            term=map_term_key_to_label(data.term),
            session=data.session,
            exam_date=data.exam_date,
            start_time=data.start_time,
            end_time=data.end_time,
            duration_minutes=calculate_duration_minutes(data.start_time, data.end_time),
            venue=data.venue,
            invigilator=data.invigilator,
            notes=data.notes,
            status="scheduled",
            created_by=data.created_by,
            updated_by=data.created_by,
            created_at=now,
            updated_at=now,
        )

        schedules = self._load_schedules()
        schedules.append(schedule)
        self._save_schedules(schedules)
        logger.info("Created exam schedule %s (%s, %s)", schedule.id, schedule.subject, schedule.class_name)
        return schedule

    def get_schedule(self, exam_id: str) -> Optional[ExamSchedule]:
        for schedule in self._load_schedules():
            if schedule.id == exam_id:
                return schedule
        return None

    def list_schedules(
        self,
        status: Optional[str] = None,
        class_id: Optional[str] = None,
        class_name: Optional[str] = None,
        session: Optional[str] = None,
        term: Optional[str] = None,
    ) -> List[ExamSchedule]:
        filters = {
            "status": status,
            "class_id": class_id,
            "class_name": class_name,
            "session": session,
            "term": term,
        }
        matched = [
            s for s in self._load_schedules()
            if all(value is None or getattr(s, field) == value for field, value in filters.items())
        ]
        return sorted(matched, key=lambda s: (s.exam_date, s.start_time))

    @_locked
    def update_schedule(self, exam_id: str, updates: Mapping[str, Any]) -> ExamSchedule:
        """
        Apply a partial edit. Term keys map to labels and the duration is
        re-derived from the resulting start and end times.
        """
        schedules = self._load_schedules()
        index = next((i for i, s in enumerate(schedules) if s.id == exam_id), None)
        if index is None:
            raise ExamScheduleNotFound(exam_id)
        existing = schedules[index]

        changes = ExamScheduleUpdate.model_validate(updates).model_dump(exclude_unset=True)
        changes = {
            field: value for field, value in changes.items()
            if value is not None or field not in REQUIRED_SCHEDULE_FIELDS
        }
        if "term" in changes:
            changes["term"] = map_term_key_to_label(changes["term"])

        start_time = changes.get("start_time", existing.start_time)
        end_time = changes.get("end_time", existing.end_time)
        changes["duration_minutes"] = calculate_duration_minutes(start_time, end_time)
        changes["updated_at"] = self._now()

        updated = existing.model_copy(update=changes)
        schedules[index] = updated
        self._save_schedules(schedules)
        logger.info("Updated exam schedule %s", exam_id)
        return updated

    @_locked
    def delete_schedule(self, exam_id: str) -> bool:
        """
        Remove a schedule and all of its result rows, then rebuild cumulative
        reports for exactly the students who lost a row.
        """
        schedules = self._load_schedules()
        removed = next((s for s in schedules if s.id == exam_id), None)
        if removed is None:
            return False

        self._save_schedules([s for s in schedules if s.id != exam_id])

        existing = self._load_results()
        remaining = [r for r in existing if r.exam_id != exam_id]
        if len(remaining) != len(existing):
            self._save_results(remaining)
            affected = list(dict.fromkeys(r.student_id for r in existing if r.exam_id == exam_id))
            self.update_cumulative_reports_for_students(affected, removed.session, results=remaining)

        logger.info("Deleted exam schedule %s and %d result rows", exam_id, len(existing) - len(remaining))
        return True

    # Results

    def get_results(self, exam_id: str) -> List[ExamResultRecord]:
        return [r for r in self._load_results() if r.exam_id == exam_id]

    @_locked
    def save_results(
        self,
        exam_id: str,
        results: Iterable[Any],
        auto_publish: bool = False,
    ) -> List[ExamResultRecord]:
        """
        Upsert result rows for one exam.

        Status precedence: the row's own status, then "published" when
        auto_publish is set, then the stored status, then "pending".
        """
        schedules = self._load_schedules()
        exam_index = next((i for i, s in enumerate(schedules) if s.id == exam_id), None)
        if exam_index is None:
            raise ExamScheduleNotFound(exam_id)
        exam = schedules[exam_index]

        inputs = [normalize_result_input(r) for r in results]
        existing = self._load_results()
        prior_by_student = {r.student_id: r for r in existing if r.exam_id == exam_id}
        now = self._now()

        processed: Dict[str, ExamResultRecord] = {}
        for item in inputs:
            prior = prior_by_student.get(item.student_id)
            total = item.ca1 + item.ca2 + item.assignment + item.exam

            if item.status:
                status = item.status
            elif auto_publish:
                status = "published"
            elif prior is not None:
                status = prior.status
            else:
                status = "pending"

            published_at = prior.published_at if prior is not None else None
            if status == "published" and not published_at:
                published_at = now

            total_students = _carry(item.total_students, prior, "total_students")
            processed[item.student_id] = ExamResultRecord(
                id=prior.id if prior is not None else _generate_id("exam_result"),
                exam_id=exam_id,
                student_id=item.student_id,
                student_name=item.student_name,
                class_id=exam.class_id,
                class_name=exam.class_name,
                subject=exam.subject,
                term=exam.term,
                session=exam.session,
                ca1=item.ca1,
                ca2=item.ca2,
                assignment=item.assignment,
                exam=item.exam,
                total=total,
                grade=item.grade or grade_for(total),
                position=_carry(item.position, prior, "position"),
                total_students=total_students if total_students is not None else len(inputs),
                remarks=_carry(item.remarks, prior, "remarks"),
                status=status,
                published_at=published_at,
                created_at=prior.created_at if prior is not None else now,
                updated_at=now,
            )

        combined = []
        for record in existing:
            if record.exam_id == exam_id and record.student_id in processed:
                continue
            combined.append(record)
        combined.extend(processed.values())
        self._save_results(combined)

        if processed:
            self.update_cumulative_reports_for_students(list(processed), exam.session, results=combined)
            schedules[exam_index] = exam.model_copy(update={"status": "completed", "updated_at": now})
            self._save_schedules(schedules)

        logger.info("Saved %d results for exam %s", len(processed), exam_id)
        return list(processed.values())

    @_locked
    def publish_results(self, exam_id: str) -> List[ExamResultRecord]:
        """Publish every unpublished row of an exam. Safe to call repeatedly."""
        exam = self.get_schedule(exam_id)
        if exam is None:
            raise ExamScheduleNotFound(exam_id)

        now = self._now()
        changed = False
        updated = []
        for record in self._load_results():
            if record.exam_id == exam_id and not (record.status == "published" and record.published_at):
                record = record.model_copy(update={
                    "status": "published",
                    "published_at": record.published_at or now,
                    "updated_at": now,
                })
                changed = True
            updated.append(record)

        exam_rows = [r for r in updated if r.exam_id == exam_id]
        if changed:
            self._save_results(updated)
            affected = list(dict.fromkeys(r.student_id for r in exam_rows))
            self.update_cumulative_reports_for_students(affected, exam.session, results=updated)
            logger.info("Published results for exam %s", exam_id)
        return exam_rows

    # Cumulative reports

    def get_cumulative_reports(self) -> List[StudentCumulativeReportRecord]:
        return self._load_reports()

    @_locked
    def update_cumulative_reports_for_students(
        self,
        student_ids: Iterable[str],
        session: Optional[str],
        results: Optional[List[ExamResultRecord]] = None,
    ) -> List[StudentCumulativeReportRecord]:
        """Rebuild and store the reports for these students; returns the rebuilt ones."""
        student_ids = list(student_ids)
        if not student_ids:
            return []

        if results is None:
            results = self._load_results()
        rebuilt = recompute_cumulative_reports(results, student_ids, session, now=self._clock())
        merged = merge_cumulative_reports(self._load_reports(), rebuilt, student_ids, session)
        self._save_reports(merged)
        return rebuilt

    @_locked
    def get_student_cumulative_report(
        self, student_id: str, session: Optional[str] = None
    ) -> Optional[StudentCumulativeReportRecord]:
        """Refresh and return a student's report (latest one when no session is given)."""
        if not student_id:
            return None

        results = self._load_results()
        mine = [r for r in results if r.student_id == student_id and (not session or r.session == session)]
        if not mine:
            return None

        sessions = [session] if session else list(dict.fromkeys(r.session for r in mine))
        for session_key in sessions:
            self.update_cumulative_reports_for_students([student_id], session_key, results=results)

        reports = [r for r in self._load_reports() if r.student_id == student_id]
        if session:
            return next((r for r in reports if r.session == session), None)
        if not reports:
            return None
        return sorted(reports, key=lambda r: (r.updated_at, r.session), reverse=True)[0]
