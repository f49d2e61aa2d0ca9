from pydantic import BaseModel, Field, ConfigDict
from uuid import UUID
from datetime import datetime


class SessionCreateRequest(BaseModel):
    """Request model for opening a new class meeting."""
    class_id: UUID
    clock_in_window_minutes: int = Field(10, ge=1, le=240, description="How long the OTP accepts clock-ins.")
    class_duration_minutes: int = Field(60, ge=1, le=600, description="Scheduled length of the class.")


class SessionResponse(BaseModel):
    id: UUID
    class_id: UUID
    otp: str
    valid_until: datetime
    class_duration_minutes: int
    created_at: datetime
    class_end_time: datetime

    model_config = ConfigDict(from_attributes=True)
