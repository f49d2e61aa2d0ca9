# app/attendiq/models/results.py
"""Typed results returned by the anti-proxy and attendance services."""

from enum import Enum
from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from .db_models import AttendanceRecord, FlagStatus


class RiskAssessment(BaseModel):
    is_valid: bool
    is_new_device: bool
    risk_score: int = Field(..., ge=0, le=100)
    reasons: List[str] = Field(default_factory=list)


class AttemptSummary(BaseModel):
    attempt_count: int = 0
    reasons: List[str] = Field(default_factory=list)


class ActivityAssessment(BaseModel):
    is_suspicious: bool
    risk_level: Literal["low", "medium", "high"]
    risk_score: int = 0
    reasons: List[str] = Field(default_factory=list)


class ClockInOutcome(str, Enum):
    CLOCKED_IN = "CLOCKED_IN"
    ALREADY_CLOCKED_IN = "ALREADY_CLOCKED_IN"


class ClockInResult(BaseModel):
    outcome: ClockInOutcome
    message: str
    record: AttendanceRecord
    session_end_time: datetime
    risk_score: int = 0
    warnings: List[str] = Field(default_factory=list)


class ClockOutResult(BaseModel):
    message: str
    record: AttendanceRecord
    time_elapsed_minutes: int


class FlaggedStudentView(BaseModel):
    """A flag joined with student and class display information."""
    id: UUID
    student_id: UUID
    student_name: str
    student_email: str
    class_id: UUID
    class_name: str
    subject: Optional[str] = None
    reasons: List[str] = Field(default_factory=list)
    risk_score: int
    attempt_count: int
    flagged_at: datetime
    status: FlagStatus
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[UUID] = None
    notes: Optional[str] = None

    @property
    def is_suspicious(self) -> bool:
        return len(self.reasons) > 0


class SessionAttendanceSummary(BaseModel):
    total_attended: int
    clocked_in_count: int
    completed_count: int
    clock_in_deadline_passed: bool
