# app/attendiq/models/db_models.py

from enum import Enum
from pydantic import BaseModel, Field
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID


class Role(str, Enum):
    STUDENT = "STUDENT"
    TEACHER = "TEACHER"
    ADMIN = "ADMIN"


class AttendanceStatus(str, Enum):
    CLOCKED_IN = "CLOCKED_IN"
    CLOCKED_OUT = "CLOCKED_OUT"
    COMPLETED = "COMPLETED"


class FlagStatus(str, Enum):
    PENDING = "PENDING"
    RESOLVED = "RESOLVED"


class User(BaseModel):
    """
    Represents a user in the system, mapping to the 'users' table.
    """
    id: UUID = Field(..., description="Primary key")
    role: Role = Field(..., description="Fixed at registration.")
    email: str
    name: str


class ClassRoom(BaseModel):
    """
    Represents a class owned by a teacher, mapping to the 'classes' table.
    The geofence is optional; both coordinates must be present for it to apply.
    """
    id: UUID
    teacher_id: UUID = Field(..., description="FK to the owning teacher")
    name: str
    subject: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_radius: Optional[float] = Field(None, description="Geofence radius in meters.")

    @property
    def has_geofence(self) -> bool:
        return bool(self.latitude and self.longitude)


class Enrollment(BaseModel):
    id: UUID
    student_id: UUID
    class_id: UUID
    enrolled_at: Optional[datetime] = None


class Session(BaseModel):
    """
    One class meeting, mapping to the 'sessions' table.
    valid_until is the clock-in deadline; the class itself runs for
    class_duration_minutes starting at created_at.
    """
    id: UUID
    class_id: UUID
    otp: str
    valid_until: datetime
    class_duration_minutes: int = Field(60, gt=0)
    created_at: datetime

    @property
    def class_end_time(self) -> datetime:
        return self.created_at + timedelta(minutes=self.class_duration_minutes)


class AttendanceRecord(BaseModel):
    """
    A single student's attendance for a session, mapping to the 'attendance' table.
    Unique per (student_id, session_id).
    """
    id: UUID
    session_id: UUID
    student_id: UUID
    status: AttendanceStatus
    timestamp: datetime
    clock_in_time: Optional[datetime] = None
    clock_out_time: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    clock_out_latitude: Optional[float] = None
    clock_out_longitude: Optional[float] = None
    device_fingerprint: Optional[str] = None
    user_agent: Optional[str] = None
    screen_resolution: Optional[str] = None
    risk_score: int = Field(0, ge=0, le=100)
    is_new_device: bool = False


class FlaggedStudent(BaseModel):
    """
    Instructor-visible review flag, mapping to the 'flagged_students' table.
    Unique per (student_id, class_id). attempt_count is NULL for rows written
    before the column existed.
    """
    id: UUID
    student_id: UUID
    class_id: UUID
    reasons: List[str] = Field(default_factory=list)
    risk_score: int = 0
    attempt_count: Optional[int] = None
    status: FlagStatus = FlagStatus.PENDING
    flagged_at: datetime
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[UUID] = None
    notes: Optional[str] = None
