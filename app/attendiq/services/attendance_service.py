import logging
import math
from typing import List, Optional, Tuple
from uuid import UUID, uuid4
from datetime import datetime, timezone

import redis.asyncio as redis

from ..config.config import settings
from ..db.redis_client import RedisClient
from ..db.db_client import AsyncPostgresClient
from ..models.db_models import User, ClassRoom, Session, AttendanceRecord, AttendanceStatus
from ..models.results import (
    AttemptSummary, ClockInOutcome, ClockInResult, ClockOutResult, SessionAttendanceSummary
)
from ..tools.device_fingerprint import DeviceAttributes, generate_device_fingerprint, is_android_device
from ..tools.location_verifier import calculate_distance, describe_distance, is_within_radius
from .attempt_tracker import AttemptTracker
from .flag_service import FlagService
from .risk_assessor import RiskAssessor
from .errors import (
    ServiceError, AuthorizationError, ClassNotFoundError, SessionNotFoundError,
    InvalidOrExpiredOtpError, ClockInDeadlinePassedError, NotEnrolledError,
    CredentialSharingBlockedError, RepeatedSuspiciousAttemptsBlockedError, SuspiciousActivityBlockedError,
    LocationPermissionRequiredError, LocationVerificationFailedError,
    AlreadyCompletedError, MustClockInFirstError, AlreadyClockedOutError, TooEarlyToClockOutError,
)

logger = logging.getLogger(__name__)

CREDENTIAL_SHARING_MARKERS = ("Credential sharing", "Same device used by", "Possible credential sharing")


def indicates_credential_sharing(reasons: List[str]) -> bool:
    return any(marker.lower() in reason.lower() for reason in reasons for marker in CREDENTIAL_SHARING_MARKERS)


class AttendanceService:
    """
    Clock-in / clock-out state machine for a student in one session:
    NONE -> CLOCKED_IN -> CLOCKED_OUT | COMPLETED.
    """
    def __init__(self, redis_client: RedisClient, db_client: AsyncPostgresClient):
        self.redis_client = redis_client
        self.db_client = db_client
        self.risk_assessor = RiskAssessor(db_client)
        self.attempt_tracker = AttemptTracker(redis_client, db_client)
        self.flag_service = FlagService(db_client)

    # ===== Shared checks =====

    async def _resolve_session_for_clock_in(self, otp: str, now: datetime) -> Session:
        session = await self.db_client.find_session_by_otp(otp, now)
        if session:
            return session
        latest = await self.db_client.find_latest_session_by_otp(otp)
        if latest:
            logger.warning(f"Clock-in with OTP for session '{latest.id}' after its deadline {latest.valid_until}.")
            raise ClockInDeadlinePassedError("Clock-in deadline has passed for this session.")
        raise InvalidOrExpiredOtpError("Invalid or expired OTP.")

    async def _verify_enrollment(self, student_id: UUID, class_id: UUID) -> None:
        enrollment = await self.db_client.find_enrollment(student_id, class_id)
        if not enrollment:
            logger.warning(f"Student '{student_id}' is not enrolled in class '{class_id}'.")
            raise NotEnrolledError("You are not enrolled in this class.")

    async def _get_class(self, class_id: UUID) -> ClassRoom:
        class_room = await self.db_client.find_class(class_id)
        if not class_room:
            raise ClassNotFoundError("Class not found.")
        return class_room

    def _verify_location(
        self,
        class_room: ClassRoom,
        latitude: Optional[float],
        longitude: Optional[float],
        is_android: bool,
    ) -> None:
        """No-op for classes without a geofence."""
        if not class_room.has_geofence:
            return
        if latitude is None or longitude is None:
            raise LocationPermissionRequiredError(
                "Location is required for this class. Please enable location services."
            )

        radius = class_room.location_radius or settings.DEFAULT_LOCATION_RADIUS_METERS
        if not is_within_radius(
            latitude, longitude, class_room.latitude, class_room.longitude, radius, is_android=is_android
        ):
            distance = calculate_distance(latitude, longitude, class_room.latitude, class_room.longitude)
            raise LocationVerificationFailedError(
                f"Location verification failed. {describe_distance(distance, radius)}",
                distance_meters=distance,
                radius_meters=radius,
            )

    # ===== Anti-proxy policy =====

    async def _record_attempt(
        self, student_id: UUID, session_id: UUID, risk_score: int, fingerprint: str, reasons: List[str]
    ) -> AttemptSummary:
        try:
            return await self.attempt_tracker.record_attempt(
                student_id=student_id,
                session_id=session_id,
                risk_score=risk_score,
                fingerprint=fingerprint,
                assessor_reasons=reasons,
            )
        except redis.RedisError as e:
            logger.error(f"Could not record suspicious attempt for student '{student_id}'.", exc_info=True)
            raise ServiceError("An error occurred while verifying your attendance.") from e

    async def _flag_best_effort(
        self, student_id: UUID, class_id: UUID, reasons: List[str], risk_score: int, attempt_count: int
    ) -> None:
        """A failed flag write never turns a block into an allow."""
        try:
            await self.flag_service.flag_student(
                student_id=student_id,
                class_id=class_id,
                reasons=reasons,
                risk_score=risk_score,
                attempt_count=attempt_count,
            )
        except Exception as e:
            logger.error(f"Failed to flag student '{student_id}' in class '{class_id}': {e}", exc_info=True)

    async def _apply_blocking_policy(
        self, student: User, session: Session, risk_score: int, summary: AttemptSummary
    ) -> List[str]:
        """
        Ordered tiers, first match wins. Returns the non-fatal warnings when
        the submission is allowed through.
        """
        reasons = summary.reasons
        attempt_count = summary.attempt_count
        sharing = indicates_credential_sharing(reasons)

        if sharing and risk_score >= settings.CREDENTIAL_SHARING_BLOCK_SCORE:
            logger.warning(
                f"BLOCKED credential sharing: student '{student.id}', session '{session.id}', "
                f"risk score {risk_score}. Reasons: {', '.join(reasons)}"
            )
            await self._flag_best_effort(student.id, session.class_id, reasons, risk_score, attempt_count)
            raise CredentialSharingBlockedError(
                "Attendance blocked: this device appears to be shared between students. "
                "Your instructor has been notified.",
                reasons=reasons,
            )

        if attempt_count >= settings.REPEAT_ATTEMPT_THRESHOLD and risk_score >= settings.REPEAT_ATTEMPT_MIN_SCORE:
            logger.warning(
                f"BLOCKED repeated suspicious attempts: student '{student.id}', session '{session.id}', "
                f"attempt #{attempt_count}, risk score {risk_score}."
            )
            await self._flag_best_effort(student.id, session.class_id, reasons, risk_score, attempt_count)
            raise RepeatedSuspiciousAttemptsBlockedError(
                f"Attendance blocked after {attempt_count} suspicious attempts. Your instructor has been notified.",
                reasons=reasons,
            )

        if attempt_count >= settings.MAX_SUSPICIOUS_ATTEMPTS:
            logger.warning(
                f"BLOCKED attempt cap reached: student '{student.id}', session '{session.id}', "
                f"attempt #{attempt_count}."
            )
            await self._flag_best_effort(student.id, session.class_id, reasons, risk_score, attempt_count)
            raise RepeatedSuspiciousAttemptsBlockedError(
                f"Attendance blocked after {attempt_count} suspicious attempts. Your instructor has been notified.",
                reasons=reasons,
            )

        if reasons:
            logger.warning(
                f"Suspicious clock-in allowed: student '{student.id}', session '{session.id}', "
                f"attempt #{attempt_count}, risk score {risk_score}. Reasons: {', '.join(reasons)}"
            )
            # Sharing below the blocking score still goes to the instructor.
            if sharing:
                await self._flag_best_effort(student.id, session.class_id, reasons, risk_score, attempt_count)
            return list(reasons)
        return []

    # ===== Clock-in =====

    async def clock_in(
        self,
        student: User,
        otp: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        device: Optional[DeviceAttributes] = None,
    ) -> ClockInResult:
        """
        Marks the student present for the session the OTP opens.

        Retrying while still CLOCKED_IN returns the existing record instead
        of an error.

        Raises:
            InvalidOrExpiredOtpError, ClockInDeadlinePassedError, NotEnrolledError,
            AttendanceBlockedError subclasses, LocationPermissionRequiredError,
            LocationVerificationFailedError, AlreadyCompletedError.
        """
        now = datetime.now(timezone.utc)
        logger.info(f"Student '{student.id}' is attempting to clock in.")

        session = await self._resolve_session_for_clock_in(otp, now)
        await self._verify_enrollment(student.id, session.class_id)

        device = device or DeviceAttributes()
        fingerprint = generate_device_fingerprint(device)
        assessment = await self.risk_assessor.assess(student.id, fingerprint, latitude, longitude)

        summary = await self._record_attempt(
            student.id, session.id, assessment.risk_score, fingerprint, assessment.reasons
        )
        warnings = await self._apply_blocking_policy(student, session, assessment.risk_score, summary)

        activity = await self.risk_assessor.assess_activity_pattern(student.id)
        if activity.risk_level == "high":
            logger.warning(
                f"BLOCKED suspicious activity pattern: student '{student.id}', score {activity.risk_score}. "
                f"Reasons: {', '.join(activity.reasons)}"
            )
            await self._flag_best_effort(
                student.id, session.class_id, activity.reasons, activity.risk_score, summary.attempt_count
            )
            raise SuspiciousActivityBlockedError(
                "Attendance blocked due to a suspicious activity pattern. Your instructor has been notified.",
                reasons=activity.reasons,
            )

        class_room = await self._get_class(session.class_id)
        self._verify_location(class_room, latitude, longitude, is_android_device(device))

        existing = await self.db_client.find_attendance_record(student.id, session.id)
        if existing:
            return self._existing_clock_in(existing, session)

        record = AttendanceRecord(
            id=uuid4(),
            session_id=session.id,
            student_id=student.id,
            status=AttendanceStatus.CLOCKED_IN,
            timestamp=now,
            clock_in_time=now,
            latitude=latitude,
            longitude=longitude,
            device_fingerprint=fingerprint,
            user_agent=device.user_agent,
            screen_resolution=device.screen_resolution,
            risk_score=assessment.risk_score,
            is_new_device=assessment.is_new_device,
        )
        created = await self.db_client.create_attendance_record(record)
        if created is None:
            # Lost the insert race to a concurrent clock-in for the same session.
            existing = await self.db_client.find_attendance_record(student.id, session.id)
            if existing is None:
                raise ServiceError("Could not create attendance record.")
            return self._existing_clock_in(existing, session)

        logger.info(
            f"Student '{student.id}' clocked in to session '{session.id}' with risk score {assessment.risk_score}."
        )
        return ClockInResult(
            outcome=ClockInOutcome.CLOCKED_IN,
            message="Successfully clocked in.",
            record=created,
            session_end_time=session.class_end_time,
            risk_score=assessment.risk_score,
            warnings=warnings,
        )

    def _existing_clock_in(self, existing: AttendanceRecord, session: Session) -> ClockInResult:
        if existing.status != AttendanceStatus.CLOCKED_IN:
            raise AlreadyCompletedError("You have already completed attendance for this session.")
        logger.info(f"Student '{existing.student_id}' is already clocked in to session '{session.id}'.")
        return ClockInResult(
            outcome=ClockInOutcome.ALREADY_CLOCKED_IN,
            message="You are already clocked in to this session.",
            record=existing,
            session_end_time=session.class_end_time,
            risk_score=existing.risk_score,
        )

    # ===== Clock-out =====

    async def clock_out(
        self,
        student: User,
        otp: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> ClockOutResult:
        """
        Clocks the student out. The clock-in deadline does not apply, but the
        minimum presence rule does until the scheduled class end.
        """
        now = datetime.now(timezone.utc)
        logger.info(f"Student '{student.id}' is attempting to clock out.")

        # OTPs are reissued once a clock-in window closes.
        session = await self.db_client.find_clocked_in_session_by_otp(otp, student.id)
        if session is None:
            session = await self.db_client.find_latest_session_by_otp(otp)
        if not session:
            raise InvalidOrExpiredOtpError("Invalid OTP.")
        await self._verify_enrollment(student.id, session.class_id)

        record = await self.db_client.find_attendance_record(student.id, session.id)
        if not record:
            raise MustClockInFirstError("You must clock in before clocking out.")
        if record.status != AttendanceStatus.CLOCKED_IN:
            raise AlreadyClockedOutError("You have already clocked out of this session.")

        clock_in_time = record.clock_in_time or record.timestamp
        elapsed_minutes = (now - clock_in_time).total_seconds() / 60
        class_end = session.class_end_time
        minimum_minutes = settings.MIN_PRESENCE_RATIO * session.class_duration_minutes

        if now < class_end and elapsed_minutes < minimum_minutes:
            remaining = math.ceil(minimum_minutes - elapsed_minutes)
            logger.info(f"Student '{student.id}' tried to clock out {remaining} minute(s) early.")
            raise TooEarlyToClockOutError(
                f"Too early to clock out. Please wait {remaining} more minute(s).",
                remaining_minutes=remaining,
            )

        class_room = await self._get_class(session.class_id)
        self._verify_location(
            class_room, latitude, longitude, is_android_device(DeviceAttributes(user_agent=record.user_agent))
        )

        new_status = AttendanceStatus.COMPLETED if now >= class_end else AttendanceStatus.CLOCKED_OUT
        updated = await self.db_client.update_attendance_record(
            record.id,
            status=new_status,
            clock_out_time=now,
            clock_out_latitude=latitude,
            clock_out_longitude=longitude,
        )
        if updated is None:
            raise AlreadyClockedOutError("You have already clocked out of this session.")

        logger.info(f"Student '{student.id}' clocked out of session '{session.id}' as {new_status.value}.")
        return ClockOutResult(
            message="Successfully clocked out.",
            record=updated,
            time_elapsed_minutes=math.floor(elapsed_minutes),
        )

    # ===== Reads =====

    async def get_my_attendance(self, student: User) -> List[AttendanceRecord]:
        return await self.db_client.get_attendance_records_for_student(student.id)

    async def get_session_attendance(
        self, teacher: User, session_id: UUID
    ) -> Tuple[Session, List[AttendanceRecord], SessionAttendanceSummary]:
        """Records of one session for the teacher who owns its class."""
        session = await self.db_client.find_session(session_id)
        if not session:
            raise SessionNotFoundError("Session not found.")
        class_room = await self._get_class(session.class_id)
        if class_room.teacher_id != teacher.id:
            raise AuthorizationError("You do not have permission to view this session.")

        records = await self.db_client.get_attendance_records_for_session(session_id)
        summary = SessionAttendanceSummary(
            total_attended=len(records),
            clocked_in_count=sum(1 for r in records if r.status == AttendanceStatus.CLOCKED_IN),
            completed_count=sum(1 for r in records if r.status == AttendanceStatus.COMPLETED),
            clock_in_deadline_passed=session.valid_until <= datetime.now(timezone.utc),
        )
        return session, records, summary
