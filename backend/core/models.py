"""
models.py — Typed records for payments, exam results and derived views.

Python attributes are snake_case; persisted JSON uses camelCase aliases so
stored documents keep the shape the dashboards read.
"""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


PaymentStatus = Literal["completed", "pending", "failed"]
ResultStatus = Literal["pending", "published", "withheld"]
ScheduleStatus = Literal["scheduled", "completed", "cancelled"]
Trend = Literal["up", "down", "stable"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict:
        """JSON-safe dict with camelCase keys, as persisted."""
        return self.model_dump(mode="json", by_alias=True)


# ── Payments / financial views ──────────────────────────────────────

class AnalyticsPayment(CamelModel):
    id: str
    student_id: Optional[str] = None
    student_name: str
    parent_name: Optional[str] = None
    parent_email: Optional[str] = None
    class_name: Optional[str] = None
    amount: float = 0.0
    status: PaymentStatus = "pending"
    method: Optional[str] = None
    payment_type: Optional[str] = None
    source: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def student_key(self) -> str:
        """Identity used for distinct-student counts and defaulter rows."""
        return self.student_id or self.student_name or self.id


class FeeCollectionEntry(CamelModel):
    month: str
    collected: float
    expected: float
    percentage: float


class ClassCollectionEntry(CamelModel):
    class_label: str = Field(alias="class")
    collected: float
    expected: float
    students: int
    percentage: float


class FinancialSummary(CamelModel):
    total_collected: float = 0.0
    collection_rate: float = 0.0
    students_paid: int = 0
    defaulters_count: int = 0
    outstanding_amount: float = 0.0
    avg_collection_time: float = 0.0
    on_time_payment_rate: float = 0.0


class FinancialDefaulterEntry(CamelModel):
    id: str
    name: str
    class_label: str = Field(alias="class")
    term: str
    contact: str
    amount: float


class FinancialAnalyticsPeriod(CamelModel):
    summary: FinancialSummary
    fee_collection: List[FeeCollectionEntry]
    class_collection: List[ClassCollectionEntry]


class FinancialAnalyticsSnapshot(CamelModel):
    generated_at: str
    periods: Dict[str, FinancialAnalyticsPeriod]
    defaulters: List[FinancialDefaulterEntry]


# ── Exams / academic views ──────────────────────────────────────────

class ExamScheduleInput(CamelModel):
    subject: str
    class_id: str
    class_name: Optional[str] = None
    term: str
    session: str
    exam_date: str
    start_time: str
    end_time: str
    venue: Optional[str] = None
    invigilator: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None


class ExamScheduleUpdate(CamelModel):
    """Partial schedule edit; only the fields actually sent are applied."""

    subject: Optional[str] = None
    class_id: Optional[str] = None
    class_name: Optional[str] = None
    term: Optional[str] = None
    session: Optional[str] = None
    exam_date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    venue: Optional[str] = None
    invigilator: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[ScheduleStatus] = None
    updated_by: Optional[str] = None


class ExamSchedule(CamelModel):
    id: str
    subject: str
    class_id: str
    class_name: str
    term: str
    session: str
    exam_date: str
    start_time: str
    end_time: str
    duration_minutes: int = 0
    venue: Optional[str] = None
    invigilator: Optional[str] = None
    notes: Optional[str] = None
    status: ScheduleStatus = "scheduled"
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: str
    updated_at: str


class ExamResultInput(CamelModel):
    student_id: str
    student_name: str
    ca1: float = 0
    ca2: float = 0
    assignment: float = 0
    exam: float = 0
    position: Optional[int] = None
    total_students: Optional[int] = None
    remarks: Optional[str] = None
    status: Optional[ResultStatus] = None
    grade: Optional[str] = None


class ExamResultRecord(CamelModel):
    id: str
    exam_id: str
    student_id: str
    student_name: str
    class_id: str
    class_name: str
    subject: str
    term: str
    session: str
    ca1: float
    ca2: float
    assignment: float
    exam: float
    total: float
    grade: str
    position: Optional[int] = None
    total_students: Optional[int] = None
    remarks: Optional[str] = None
    status: ResultStatus = "pending"
    published_at: Optional[str] = None
    created_at: str
    updated_at: str


class CumulativeTermSubject(CamelModel):
    name: str
    ca1: float
    ca2: float
    assignment: float
    exam: float
    total: int
    grade: str
    position: Optional[int] = None


class CumulativeTermRecord(CamelModel):
    term: str
    session: str
    subjects: List[CumulativeTermSubject]
    overall_average: int
    overall_grade: str
    class_position: int
    total_students: int


class CumulativeSubjectAverage(CamelModel):
    name: str
    average: int
    grade: str
    trend: Trend


class StudentCumulativeReportRecord(CamelModel):
    student_id: str
    student_name: str
    class_name: str
    session: str
    terms: List[CumulativeTermRecord]
    cumulative_average: int
    cumulative_grade: str
    cumulative_position: int
    total_students: int
    subject_averages: List[CumulativeSubjectAverage]
    updated_at: str
