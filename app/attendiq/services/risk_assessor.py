import logging
from collections import Counter
from typing import List, Optional
from uuid import UUID
from datetime import datetime, timedelta, timezone

from ..config.config import settings
from ..db.db_client import AsyncPostgresClient
from ..models.db_models import AttendanceRecord
from ..models.results import RiskAssessment, ActivityAssessment
from ..tools.location_verifier import calculate_distance
from .errors import UserNotFoundError

logger = logging.getLogger(__name__)

# Rule weights.
NEW_DEVICE_SCORE = 25
SHARED_DEVICE_SCORE = 50
MANY_DEVICES_SCORE = 35
THREE_DEVICES_SCORE = 20
IMPOSSIBLE_TRAVEL_SCORE = 40
RAPID_TRAVEL_SCORE = 25
VOLUME_ANOMALY_SCORE = 15
SWITCHING_PATTERN_SCORE = 30

RAPID_MARKS_SCORE = 30
MANY_LOCATIONS_SCORE = 25
UNUSUAL_HOURS_SCORE = 20


def _clamp(score: int) -> int:
    return max(0, min(score, 100))


class RiskAssessor:
    """
    Scores a clock-in submission for signs of proxy attendance using the
    student's recent history and other students' use of the same device.
    """
    def __init__(self, db_client: AsyncPostgresClient):
        self.db_client = db_client

    async def assess(
        self,
        student_id: UUID,
        fingerprint: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> RiskAssessment:
        now = datetime.now(timezone.utc)
        result = await self.db_client.find_user_with_recent_attendance(student_id, settings.RECENT_HISTORY_LIMIT)
        if result is None:
            logger.error(f"Risk assessment requested for unknown user '{student_id}'.")
            raise UserNotFoundError("User not found.")
        _, history = result

        reasons: List[str] = []
        risk_score = 0

        is_new_device = not any(record.device_fingerprint == fingerprint for record in history)
        if is_new_device:
            risk_score += NEW_DEVICE_SCORE
            reasons.append("New device detected")

        # Same device, different students, within the sharing window.
        other_students = await self.db_client.find_attendance_by_same_fingerprint(
            fingerprint=fingerprint,
            exclude_student_id=student_id,
            since=now - timedelta(minutes=settings.SHARED_DEVICE_WINDOW_MINUTES),
        )
        if other_students:
            risk_score += SHARED_DEVICE_SCORE
            reasons.append(
                f"Same device used by {len(other_students)} other student(s) recently - Possible credential sharing"
            )

        week_ago = now - timedelta(days=7)
        recent_fingerprints = [
            record.device_fingerprint for record in history
            if record.timestamp > week_ago and record.device_fingerprint
        ]
        device_usage = Counter(recent_fingerprints)
        distinct_devices = len(device_usage)

        if distinct_devices > 3:
            risk_score += MANY_DEVICES_SCORE
            reasons.append(f"Using {distinct_devices} different devices in 7 days")
        elif distinct_devices == 3 and not is_new_device:
            risk_score += THREE_DEVICES_SCORE
            reasons.append("Switching between 3 devices in 7 days")

        if latitude and longitude:
            travel_score, travel_reason = self._score_location_change(history, latitude, longitude, now)
            if travel_score:
                risk_score += travel_score
                reasons.append(travel_reason)

        day_count = sum(1 for record in history if record.timestamp > now - timedelta(hours=24))
        if day_count > 6:
            risk_score += VOLUME_ANOMALY_SCORE
            reasons.append(f"Unusual activity: {day_count} clock-ins in 24 hours")

        # Hopping between borrowed devices rather than owning several.
        if distinct_devices >= 3 and len(history) >= 5 and max(device_usage.values()) <= 2:
            risk_score += SWITCHING_PATTERN_SCORE
            reasons.append("Device switching pattern suggests credential sharing")

        risk_score = _clamp(risk_score)
        return RiskAssessment(
            is_valid=risk_score < settings.RISK_VALID_THRESHOLD,
            is_new_device=is_new_device,
            risk_score=risk_score,
            reasons=reasons,
        )

    @staticmethod
    def _score_location_change(history: List[AttendanceRecord], latitude: float, longitude: float, now: datetime):
        window_start = now - timedelta(minutes=30)
        recent = [
            record for record in history
            if record.timestamp > window_start and record.latitude and record.longitude
        ]
        if not recent:
            return 0, None

        # History is newest first.
        latest = recent[0]
        distance = calculate_distance(latitude, longitude, latest.latitude, latest.longitude)
        elapsed = (now - latest.timestamp).total_seconds()

        if distance > 500 and elapsed < 5 * 60:
            return IMPOSSIBLE_TRAVEL_SCORE, (
                f"Impossible location change: {round(distance)}m in {round(elapsed)}s - Possible credential sharing"
            )
        if distance > 1000 and elapsed < 10 * 60:
            return RAPID_TRAVEL_SCORE, f"Rapid location change: {round(distance)}m"
        return 0, None

    async def assess_activity_pattern(self, student_id: UUID) -> ActivityAssessment:
        """
        Broader seven-day check: rapid consecutive marks, many distinct
        locations and marks spread over many hours of the day.
        """
        now = datetime.now(timezone.utc)
        records = await self.db_client.find_attendance_since(student_id, now - timedelta(days=7))

        reasons: List[str] = []
        risk_score = 0

        ordered = sorted(records, key=lambda r: r.timestamp, reverse=True)
        rapid = any(
            abs((earlier.timestamp - later.timestamp).total_seconds()) < 2 * 60
            for later, earlier in zip(ordered, ordered[1:])
        )
        if rapid:
            risk_score += RAPID_MARKS_SCORE
            reasons.append("Multiple attendance marks in short time period")

        locations = {
            (record.latitude, record.longitude) for record in ordered
            if record.latitude is not None and record.longitude is not None
        }
        if len(locations) > 3:
            risk_score += MANY_LOCATIONS_SCORE
            reasons.append("Attendance marked from multiple locations")

        hours = {record.timestamp.astimezone(timezone.utc).hour for record in ordered}
        if len(hours) > 8:
            risk_score += UNUSUAL_HOURS_SCORE
            reasons.append("Attendance marked at unusual hours")

        if risk_score >= 50:
            risk_level = "high"
        elif risk_score >= 25:
            risk_level = "medium"
        else:
            risk_level = "low"

        return ActivityAssessment(
            is_suspicious=risk_score >= 25,
            risk_level=risk_level,
            risk_score=risk_score,
            reasons=reasons,
        )
