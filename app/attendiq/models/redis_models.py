from pydantic import BaseModel, Field
from datetime import datetime
from typing import List
from uuid import UUID


class SuspiciousAttempt(BaseModel):
    """
    One risky clock-in submission, stored in the Redis list
    'suspicious_attempts:{student_id}:{session_id}'.
    """
    student_id: UUID
    session_id: UUID
    timestamp: datetime
    risk_score: int = Field(..., ge=0, le=100)
    device_fingerprint: str = ""
    reasons: List[str] = Field(default_factory=list)
