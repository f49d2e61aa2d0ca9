from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel
from uuid import UUID
from datetime import datetime
from typing import List, Optional

from ...models.db_models import AttendanceStatus, FlagStatus
from ...models.results import ClockInOutcome
from ...tools.device_fingerprint import DeviceAttributes


class MarkAttendanceRequest(BaseModel):
    """Clock-in body. Accepts the camelCase keys sent by the mobile and web clients."""
    otp: str = Field(..., min_length=1, max_length=12)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    user_agent: Optional[str] = None
    screen_resolution: Optional[str] = None
    device_model: Optional[str] = None
    os_version: Optional[str] = None
    timezone: Optional[str] = None
    language: Optional[str] = None
    battery_level: Optional[float] = None
    is_charging: Optional[bool] = None
    network_ssid: Optional[str] = Field(None, alias="networkSSID")

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def device_attributes(self) -> DeviceAttributes:
        return DeviceAttributes(
            **self.model_dump(include=set(DeviceAttributes.model_fields))
        )


class ClockOutRequest(BaseModel):
    otp: str = Field(..., min_length=1, max_length=12)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class ResolveFlagRequest(BaseModel):
    note: Optional[str] = Field(None, max_length=1000, description="Optional resolution note appended to the audit log.")


class AttendanceRecordResponse(BaseModel):
    id: UUID
    session_id: UUID
    student_id: UUID
    status: AttendanceStatus
    timestamp: datetime
    clock_in_time: Optional[datetime] = None
    clock_out_time: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    risk_score: int
    is_new_device: bool

    model_config = ConfigDict(from_attributes=True)


class ClockInResponse(BaseModel):
    outcome: ClockInOutcome
    message: str
    record: AttendanceRecordResponse
    session_end_time: datetime
    risk_score: int
    warnings: List[str] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class ClockOutResponse(BaseModel):
    message: str
    record: AttendanceRecordResponse
    time_elapsed_minutes: int

    model_config = ConfigDict(from_attributes=True)


class SessionAttendanceResponse(BaseModel):
    session_id: UUID
    class_id: UUID
    valid_until: datetime
    total_attended: int
    clocked_in_count: int
    completed_count: int
    clock_in_deadline_passed: bool
    records: List[AttendanceRecordResponse]


class FlaggedStudentResponse(BaseModel):
    id: UUID
    student_id: UUID
    student_name: str
    student_email: str
    class_id: UUID
    class_name: str
    subject: Optional[str] = None
    reasons: List[str]
    risk_score: int
    attempt_count: int
    flagged_at: datetime
    status: FlagStatus
    resolved_at: Optional[datetime] = None
    notes: Optional[str] = None
    is_suspicious: bool

    model_config = ConfigDict(from_attributes=True)


class FlagResolutionResponse(BaseModel):
    id: UUID
    status: FlagStatus
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[UUID] = None
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)
