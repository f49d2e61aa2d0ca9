import logging
from typing import List, Optional
from uuid import UUID
from datetime import datetime, timedelta, timezone

from ..config.config import settings
from ..db.db_client import AsyncPostgresClient
from ..db.redis_client import RedisClient
from ..models.redis_models import SuspiciousAttempt
from ..models.results import AttemptSummary

logger = logging.getLogger(__name__)

REPEATED_ATTEMPTS_REASON = "Repeated suspicious attempts"


def _unique(reasons: List[str]) -> List[str]:
    """Order-preserving de-duplication."""
    return list(dict.fromkeys(reasons))


def fallback_reasons(risk_score: int) -> List[str]:
    """Coarse reason for a score when the assessor supplied none."""
    if risk_score >= 50:
        return ["Credential sharing detected"]
    if risk_score >= 40:
        return ["Same device used by multiple students"]
    if risk_score >= 30:
        return ["Multiple device usage detected"]
    if risk_score >= 25:
        return ["New device detected"]
    return []


class AttemptTracker:
    """
    Keeps the rolling window of clock-in submissions per (student, session) and
    merges each new risk signal with that history. Blocking decisions are
    left to the caller.
    """
    def __init__(self, redis_client: RedisClient, db_client: AsyncPostgresClient):
        self.redis_client = redis_client
        self.db_client = db_client

    async def record_attempt(
        self,
        student_id: UUID,
        session_id: UUID,
        risk_score: int,
        fingerprint: Optional[str] = None,
        assessor_reasons: Optional[List[str]] = None,
    ) -> AttemptSummary:
        now = datetime.now(timezone.utc)

        reasons: List[str] = list(assessor_reasons) if assessor_reasons else fallback_reasons(risk_score)

        # Sharing inside this very session is stronger evidence than the
        # history-wide check, so it is always reported.
        if fingerprint:
            session_sharers = await self.db_client.find_attendance_by_same_fingerprint(
                fingerprint=fingerprint,
                exclude_student_id=student_id,
                since=now - timedelta(minutes=settings.SESSION_SHARING_WINDOW_MINUTES),
                session_id=session_id,
            )
            if session_sharers:
                reasons.append(
                    f"Credential sharing: Same device used by {len(session_sharers) + 1} student(s) in this session"
                )

        attempt = SuspiciousAttempt(
            student_id=student_id,
            session_id=session_id,
            timestamp=now,
            risk_score=risk_score,
            device_fingerprint=fingerprint or "",
            reasons=_unique(reasons),
        )
        attempts = await self.redis_client.append_suspicious_attempt(
            attempt,
            max_items=settings.ATTEMPT_HISTORY_LIMIT,
            ttl=settings.ATTEMPT_TTL_SECONDS,
        )

        if len(attempts) > 1:
            reasons.append(REPEATED_ATTEMPTS_REASON)

        logger.info(
            f"Clock-in attempt recorded for student '{student_id}' in session '{session_id}': "
            f"#{len(attempts)}, risk score {risk_score}."
        )
        return AttemptSummary(attempt_count=len(attempts), reasons=_unique(reasons))
