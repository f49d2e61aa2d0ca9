import pytest
import pytest_asyncio
import uuid
from collections import defaultdict
from datetime import datetime, timezone, timedelta
from unittest.mock import AsyncMock, patch

import redis.asyncio as redis

from app.attendiq.config.config import settings
from app.attendiq.services.attendance_service import AttendanceService, indicates_credential_sharing
from app.attendiq.services.errors import (
    ServiceError, AuthorizationError, SessionNotFoundError,
    InvalidOrExpiredOtpError, ClockInDeadlinePassedError, NotEnrolledError,
    CredentialSharingBlockedError, RepeatedSuspiciousAttemptsBlockedError, SuspiciousActivityBlockedError,
    LocationPermissionRequiredError, LocationVerificationFailedError,
    AlreadyCompletedError, MustClockInFirstError, AlreadyClockedOutError, TooEarlyToClockOutError,
)
from app.attendiq.models.db_models import (
    User, Role, ClassRoom, Enrollment, Session, AttendanceRecord, AttendanceStatus, FlaggedStudent
)
from app.attendiq.models.results import (
    ActivityAssessment, AttemptSummary, ClockInOutcome, RiskAssessment
)
from app.attendiq.tools.device_fingerprint import DeviceAttributes, generate_device_fingerprint

OTP = "482913"


# --- Fixtures ---

@pytest.fixture
def teacher() -> User:
    return User(id=uuid.uuid4(), role=Role.TEACHER, email="grace@example.edu", name="Grace Teacher")


@pytest.fixture
def student() -> User:
    return User(id=uuid.uuid4(), role=Role.STUDENT, email="ada@example.edu", name="Ada Student")


@pytest.fixture
def second_student() -> User:
    return User(id=uuid.uuid4(), role=Role.STUDENT, email="bob@example.edu", name="Bob Student")


@pytest.fixture
def class_room(teacher) -> ClassRoom:
    return ClassRoom(
        id=uuid.uuid4(), teacher_id=teacher.id, name="Compilers",
        latitude=42.0, longitude=-84.0, location_radius=30,
    )


@pytest.fixture
def session(class_room) -> Session:
    now = datetime.now(timezone.utc)
    return Session(
        id=uuid.uuid4(), class_id=class_room.id, otp=OTP,
        valid_until=now + timedelta(minutes=10), class_duration_minutes=60, created_at=now,
    )


@pytest.fixture
def device() -> DeviceAttributes:
    return DeviceAttributes(
        device_model="iPhone15,2", os_version="iOS 17.4",
        user_agent="Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X)",
        screen_resolution="1179x2556", timezone="America/Detroit", language="en-US",
    )


def make_record(student_id, session_id, status=AttendanceStatus.CLOCKED_IN, clock_in_ago=timedelta(0)) -> AttendanceRecord:
    clock_in = datetime.now(timezone.utc) - clock_in_ago
    return AttendanceRecord(
        id=uuid.uuid4(), session_id=session_id, student_id=student_id, status=status,
        timestamp=clock_in, clock_in_time=clock_in,
    )


def _in_memory_attempt_store():
    store = defaultdict(list)

    async def append(attempt, max_items, ttl):
        key = (attempt.student_id, attempt.session_id)
        store[key] = (store[key] + [attempt])[-max_items:]
        return list(store[key])

    return append


async def _echo_created(record):
    return record


@pytest_asyncio.fixture
async def service_instance(student, teacher, class_room, session):
    """AttendanceService over mocked clients, wired for a valid first clock-in."""
    mock_redis_client = AsyncMock()
    mock_redis_client.append_suspicious_attempt.side_effect = _in_memory_attempt_store()
    mock_db_client = AsyncMock()

    users = {student.id: student, teacher.id: teacher}
    mock_db_client.find_user.side_effect = lambda user_id: users.get(user_id)
    mock_db_client.find_session_by_otp.return_value = session
    mock_db_client.find_latest_session_by_otp.return_value = session
    mock_db_client.find_clocked_in_session_by_otp.return_value = None
    mock_db_client.find_enrollment.return_value = Enrollment(id=uuid.uuid4(), student_id=student.id, class_id=class_room.id)
    mock_db_client.find_user_with_recent_attendance.return_value = (student, [])
    mock_db_client.find_attendance_by_same_fingerprint.return_value = []
    mock_db_client.find_attendance_since.return_value = []
    mock_db_client.find_class.return_value = class_room
    mock_db_client.find_attendance_record.return_value = None
    mock_db_client.create_attendance_record.side_effect = _echo_created

    service = AttendanceService(redis_client=mock_redis_client, db_client=mock_db_client)
    return service, mock_redis_client, mock_db_client


@pytest.fixture
def stub_risk(service_instance):
    """Replaces scoring and attempt tracking so blocking tiers can be driven directly."""
    service, _, _ = service_instance
    service.risk_assessor = AsyncMock()
    service.attempt_tracker = AsyncMock()
    service.flag_service = AsyncMock()
    service.risk_assessor.assess_activity_pattern.return_value = ActivityAssessment(
        is_suspicious=False, risk_level="low", risk_score=0, reasons=[]
    )

    def configure(risk_score, attempt_count, reasons):
        service.risk_assessor.assess.return_value = RiskAssessment(
            is_valid=risk_score < 60, is_new_device=False, risk_score=risk_score, reasons=reasons
        )
        service.attempt_tracker.record_attempt.return_value = AttemptSummary(
            attempt_count=attempt_count, reasons=reasons
        )
        return service

    return configure


def test_indicates_credential_sharing():
    assert indicates_credential_sharing(["Same device used by 2 other student(s) recently - Possible credential sharing"])
    assert indicates_credential_sharing(["Credential sharing: Same device used by 2 student(s) in this session"])
    assert indicates_credential_sharing(["credential sharing detected"])
    assert not indicates_credential_sharing(["New device detected", "Repeated suspicious attempts"])


# --- Clock-in ---

@pytest.mark.asyncio
class TestClockIn:

    async def test_first_clock_in_on_new_device(self, service_instance, student, session, device):
        service, _, mock_db = service_instance

        result = await service.clock_in(student, OTP, 42.0, -84.0, device)

        assert result.outcome == ClockInOutcome.CLOCKED_IN
        assert result.risk_score == 25
        assert result.record.status == AttendanceStatus.CLOCKED_IN
        assert result.record.is_new_device is True
        assert result.record.device_fingerprint == generate_device_fingerprint(device)
        assert result.session_end_time == session.class_end_time
        assert result.warnings == ["New device detected"]
        mock_db.create_attendance_record.assert_awaited_once()

    async def test_known_device_is_recorded_without_warnings(self, service_instance, student, session, device):
        service, mock_redis, mock_db = service_instance
        previous = make_record(student.id, uuid.uuid4(), AttendanceStatus.COMPLETED, timedelta(days=2))
        previous.device_fingerprint = generate_device_fingerprint(device)
        mock_db.find_user_with_recent_attendance.return_value = (student, [previous])

        result = await service.clock_in(student, OTP, 42.0, -84.0, device)

        assert result.risk_score == 0
        assert result.warnings == []
        mock_redis.append_suspicious_attempt.assert_awaited_once()

    async def test_clean_fifth_submission_hits_attempt_cap(
        self, service_instance, student, class_room, device
    ):
        service, mock_redis, mock_db = service_instance
        mock_db.upsert_flag.return_value = FlaggedStudent(
            id=uuid.uuid4(), student_id=student.id, class_id=class_room.id,
            reasons=["x"], risk_score=0, attempt_count=5, flagged_at=datetime.now(timezone.utc),
        )

        # Four new-device submissions from outside the geofence.
        for _ in range(4):
            with pytest.raises(LocationVerificationFailedError):
                await service.clock_in(student, OTP, 42.01, -84.0, device)
        mock_db.upsert_flag.assert_not_awaited()

        previous = make_record(student.id, uuid.uuid4(), AttendanceStatus.COMPLETED, timedelta(days=2))
        previous.device_fingerprint = generate_device_fingerprint(device)
        mock_db.find_user_with_recent_attendance.return_value = (student, [previous])

        with patch("app.attendiq.services.flag_service.notify", new_callable=AsyncMock):
            with pytest.raises(RepeatedSuspiciousAttemptsBlockedError, match="5 suspicious attempts"):
                await service.clock_in(student, OTP, 42.0, -84.0, device)

        assert mock_redis.append_suspicious_attempt.await_count == 5
        mock_db.upsert_flag.assert_awaited_once()
        assert mock_db.upsert_flag.await_args.kwargs["attempt_count"] == 5
        mock_db.create_attendance_record.assert_not_awaited()

    async def test_second_student_on_same_device_is_flagged(
        self, service_instance, student, second_student, class_room, device
    ):
        service, _, mock_db = service_instance
        mock_db.find_user_with_recent_attendance.return_value = (second_student, [])
        mock_db.find_attendance_by_same_fingerprint.return_value = [student.id]
        mock_db.find_user.side_effect = None
        mock_db.find_user.return_value = second_student
        mock_db.upsert_flag.return_value = FlaggedStudent(
            id=uuid.uuid4(), student_id=second_student.id, class_id=class_room.id,
            reasons=["x"], risk_score=75, attempt_count=1, flagged_at=datetime.now(timezone.utc),
        )

        with patch("app.attendiq.services.flag_service.notify", new_callable=AsyncMock):
            with pytest.raises(CredentialSharingBlockedError) as exc_info:
                await service.clock_in(second_student, OTP, 42.0, -84.0, device)

        assert any("Possible credential sharing" in r for r in exc_info.value.reasons)
        assert exc_info.value.to_detail()["code"] == "CREDENTIAL_SHARING_BLOCKED"
        mock_db.upsert_flag.assert_awaited_once()
        assert mock_db.upsert_flag.await_args.kwargs["student_id"] == second_student.id
        mock_db.create_attendance_record.assert_not_awaited()

    @pytest.mark.parametrize("ada_submits_second", [True, False])
    async def test_credential_sharing_is_detected_in_either_order(
        self, service_instance, student, second_student, teacher, class_room, device, ada_submits_second
    ):
        service, _, mock_db = service_instance
        first, second = (second_student, student) if ada_submits_second else (student, second_student)
        users = {student.id: student, second_student.id: second_student, teacher.id: teacher}
        mock_db.find_user.side_effect = lambda user_id: users.get(user_id)
        mock_db.find_user_with_recent_attendance.return_value = (second, [])
        mock_db.find_attendance_by_same_fingerprint.return_value = [first.id]
        mock_db.upsert_flag.return_value = FlaggedStudent(
            id=uuid.uuid4(), student_id=second.id, class_id=class_room.id,
            reasons=["x"], risk_score=75, attempt_count=1, flagged_at=datetime.now(timezone.utc),
        )

        with patch("app.attendiq.services.flag_service.notify", new_callable=AsyncMock):
            with pytest.raises(CredentialSharingBlockedError) as exc_info:
                await service.clock_in(second, OTP, 42.0, -84.0, device)

        assert any("Possible credential sharing" in r for r in exc_info.value.reasons)
        assert any("in this session" in r for r in exc_info.value.reasons)
        mock_db.upsert_flag.assert_awaited_once()
        assert mock_db.upsert_flag.await_args.kwargs["student_id"] == second.id
        assert mock_db.upsert_flag.await_args.kwargs["risk_score"] == 75
        sharing_lookup = mock_db.find_attendance_by_same_fingerprint.await_args_list[0]
        assert sharing_lookup.kwargs["exclude_student_id"] == second.id

    async def test_shared_device_below_block_score_is_flagged_but_allowed(
        self, service_instance, student, second_student, class_room, device, monkeypatch
    ):
        monkeypatch.setattr(settings, "CREDENTIAL_SHARING_BLOCK_SCORE", 90)
        monkeypatch.setattr(settings, "REPEAT_ATTEMPT_MIN_SCORE", 90)
        service, _, mock_db = service_instance
        mock_db.find_user_with_recent_attendance.return_value = (second_student, [])
        mock_db.find_attendance_by_same_fingerprint.return_value = [student.id]
        mock_db.find_user.side_effect = None
        mock_db.find_user.return_value = second_student
        mock_db.find_enrollment.return_value = Enrollment(
            id=uuid.uuid4(), student_id=second_student.id, class_id=class_room.id
        )
        mock_db.upsert_flag.return_value = FlaggedStudent(
            id=uuid.uuid4(), student_id=second_student.id, class_id=class_room.id,
            reasons=["x"], risk_score=75, attempt_count=1, flagged_at=datetime.now(timezone.utc),
        )

        with patch("app.attendiq.services.flag_service.notify", new_callable=AsyncMock):
            result = await service.clock_in(second_student, OTP, 42.0, -84.0, device)

        assert result.outcome == ClockInOutcome.CLOCKED_IN
        assert result.risk_score == 75
        assert any("Credential sharing" in w for w in result.warnings)
        mock_db.upsert_flag.assert_awaited_once()

    async def test_deadline_passed(self, service_instance, student, session, device):
        service, _, mock_db = service_instance
        mock_db.find_session_by_otp.return_value = None
        mock_db.find_latest_session_by_otp.return_value = session.model_copy(
            update={"valid_until": datetime.now(timezone.utc) - timedelta(minutes=1)}
        )

        with pytest.raises(ClockInDeadlinePassedError):
            await service.clock_in(student, OTP, 42.0, -84.0, device)
        mock_db.create_attendance_record.assert_not_awaited()

    async def test_unknown_otp(self, service_instance, student, device):
        service, _, mock_db = service_instance
        mock_db.find_session_by_otp.return_value = None
        mock_db.find_latest_session_by_otp.return_value = None

        with pytest.raises(InvalidOrExpiredOtpError) as exc_info:
            await service.clock_in(student, "000000", 42.0, -84.0, device)
        assert not isinstance(exc_info.value, ClockInDeadlinePassedError)

    async def test_not_enrolled(self, service_instance, student, device):
        service, _, mock_db = service_instance
        mock_db.find_enrollment.return_value = None

        with pytest.raises(NotEnrolledError):
            await service.clock_in(student, OTP, 42.0, -84.0, device)
        mock_db.find_user_with_recent_attendance.assert_not_awaited()

    async def test_retry_while_clocked_in_returns_same_record(self, service_instance, student, session, device):
        service, _, mock_db = service_instance
        existing = make_record(student.id, session.id)
        mock_db.find_attendance_record.return_value = existing

        result = await service.clock_in(student, OTP, 42.0, -84.0, device)

        assert result.outcome == ClockInOutcome.ALREADY_CLOCKED_IN
        assert result.record == existing
        mock_db.create_attendance_record.assert_not_awaited()

    async def test_lost_insert_race_is_idempotent(self, service_instance, student, session, device):
        service, _, mock_db = service_instance
        existing = make_record(student.id, session.id)
        mock_db.find_attendance_record.side_effect = [None, existing]
        mock_db.create_attendance_record.side_effect = None
        mock_db.create_attendance_record.return_value = None

        result = await service.clock_in(student, OTP, 42.0, -84.0, device)

        assert result.outcome == ClockInOutcome.ALREADY_CLOCKED_IN
        assert result.record.id == existing.id

    async def test_already_completed(self, service_instance, student, session, device):
        service, _, mock_db = service_instance
        mock_db.find_attendance_record.return_value = make_record(student.id, session.id, AttendanceStatus.COMPLETED)

        with pytest.raises(AlreadyCompletedError):
            await service.clock_in(student, OTP, 42.0, -84.0, device)

    async def test_geofence_requires_location(self, service_instance, student, device):
        service, _, _ = service_instance
        with pytest.raises(LocationPermissionRequiredError):
            await service.clock_in(student, OTP, None, None, device)

    async def test_geofence_rejects_far_location(self, service_instance, student, device):
        service, _, mock_db = service_instance

        with pytest.raises(LocationVerificationFailedError, match="Too far from class") as exc_info:
            await service.clock_in(student, OTP, 42.01, -84.0, device)

        assert exc_info.value.distance_meters == pytest.approx(1112, rel=0.01)
        assert exc_info.value.radius_meters == 30
        mock_db.create_attendance_record.assert_not_awaited()

    async def test_class_without_geofence_needs_no_location(self, service_instance, student, class_room, device):
        service, _, mock_db = service_instance
        mock_db.find_class.return_value = class_room.model_copy(update={"latitude": None, "longitude": None})

        result = await service.clock_in(student, OTP, None, None, device)

        assert result.outcome == ClockInOutcome.CLOCKED_IN

    async def test_attempt_store_failure_fails_closed(self, service_instance, student, device):
        service, mock_redis, mock_db = service_instance
        mock_redis.append_suspicious_attempt.side_effect = redis.ConnectionError("redis down")

        with pytest.raises(ServiceError, match="verifying your attendance"):
            await service.clock_in(student, OTP, 42.0, -84.0, device)
        mock_db.create_attendance_record.assert_not_awaited()


@pytest.mark.asyncio
class TestBlockingPolicy:

    async def test_repeated_attempts_with_moderate_score(self, stub_risk, student, device):
        service = stub_risk(risk_score=50, attempt_count=3, reasons=["Multiple device usage detected"])

        with pytest.raises(RepeatedSuspiciousAttemptsBlockedError):
            await service.clock_in(student, OTP, 42.0, -84.0, device)
        service.flag_service.flag_student.assert_awaited_once()
        assert service.flag_service.flag_student.await_args.kwargs["attempt_count"] == 3

    async def test_absolute_attempt_cap(self, stub_risk, student, device):
        service = stub_risk(risk_score=25, attempt_count=5, reasons=["New device detected"])

        with pytest.raises(RepeatedSuspiciousAttemptsBlockedError, match="5 suspicious attempts"):
            await service.clock_in(student, OTP, 42.0, -84.0, device)
        service.flag_service.flag_student.assert_awaited_once()

    async def test_below_thresholds_warns_and_allows(self, stub_risk, student, device):
        service = stub_risk(risk_score=25, attempt_count=2, reasons=["New device detected"])

        result = await service.clock_in(student, OTP, 42.0, -84.0, device)

        assert result.outcome == ClockInOutcome.CLOCKED_IN
        assert result.warnings == ["New device detected"]
        service.flag_service.flag_student.assert_not_awaited()

    async def test_flag_write_failure_still_blocks(self, stub_risk, student, device):
        service = stub_risk(
            risk_score=75, attempt_count=1,
            reasons=["Same device used by 1 other student(s) recently - Possible credential sharing"],
        )
        service.flag_service.flag_student.side_effect = RuntimeError("database unavailable")

        with pytest.raises(CredentialSharingBlockedError):
            await service.clock_in(student, OTP, 42.0, -84.0, device)

    async def test_zero_risk_is_still_tracked(self, stub_risk, student, device):
        service = stub_risk(risk_score=0, attempt_count=1, reasons=[])

        result = await service.clock_in(student, OTP, 42.0, -84.0, device)

        assert result.warnings == []
        service.attempt_tracker.record_attempt.assert_awaited_once()
        assert service.attempt_tracker.record_attempt.await_args.kwargs["risk_score"] == 0

    async def test_high_activity_pattern_blocks(self, stub_risk, student, device):
        service = stub_risk(risk_score=0, attempt_count=0, reasons=[])
        service.risk_assessor.assess_activity_pattern.return_value = ActivityAssessment(
            is_suspicious=True, risk_level="high", risk_score=55,
            reasons=["Multiple attendance marks in short time period", "Attendance marked from multiple locations"],
        )

        with pytest.raises(SuspiciousActivityBlockedError) as exc_info:
            await service.clock_in(student, OTP, 42.0, -84.0, device)
        assert len(exc_info.value.reasons) == 2
        service.flag_service.flag_student.assert_awaited_once()


# --- Clock-out ---

@pytest.mark.asyncio
class TestClockOut:

    async def test_too_early(self, service_instance, student, session):
        service, _, mock_db = service_instance
        mock_db.find_attendance_record.return_value = make_record(student.id, session.id, clock_in_ago=timedelta(minutes=10))

        with pytest.raises(TooEarlyToClockOutError) as exc_info:
            await service.clock_out(student, OTP, 42.0, -84.0)

        assert exc_info.value.remaining_minutes == 38
        mock_db.update_attendance_record.assert_not_awaited()

    async def test_after_minimum_presence_before_class_end(self, service_instance, student, session):
        service, _, mock_db = service_instance
        now = datetime.now(timezone.utc)
        mock_db.find_latest_session_by_otp.return_value = session.model_copy(
            update={"created_at": now - timedelta(minutes=50), "valid_until": now - timedelta(minutes=40)}
        )
        record = make_record(student.id, session.id, clock_in_ago=timedelta(minutes=50))
        mock_db.find_attendance_record.return_value = record
        mock_db.update_attendance_record.return_value = record.model_copy(update={"status": AttendanceStatus.CLOCKED_OUT})

        result = await service.clock_out(student, OTP, 42.0, -84.0)

        assert result.record.status == AttendanceStatus.CLOCKED_OUT
        assert result.time_elapsed_minutes == 50
        assert mock_db.update_attendance_record.await_args.kwargs["status"] == AttendanceStatus.CLOCKED_OUT

    async def test_reissued_otp_resolves_the_session_clocked_into(self, service_instance, student, session):
        service, _, mock_db = service_instance
        now = datetime.now(timezone.utc)
        own_session = session.model_copy(
            update={"created_at": now - timedelta(minutes=50), "valid_until": now - timedelta(minutes=40)}
        )
        other_class_session = Session(
            id=uuid.uuid4(), class_id=uuid.uuid4(), otp=OTP,
            valid_until=now + timedelta(minutes=10), class_duration_minutes=60, created_at=now,
        )
        mock_db.find_clocked_in_session_by_otp.return_value = own_session
        mock_db.find_latest_session_by_otp.return_value = other_class_session
        record = make_record(student.id, own_session.id, clock_in_ago=timedelta(minutes=50))
        mock_db.find_attendance_record.return_value = record
        mock_db.update_attendance_record.return_value = record.model_copy(update={"status": AttendanceStatus.CLOCKED_OUT})

        result = await service.clock_out(student, OTP, 42.0, -84.0)

        assert result.record.status == AttendanceStatus.CLOCKED_OUT
        mock_db.find_clocked_in_session_by_otp.assert_awaited_once_with(OTP, student.id)
        mock_db.find_latest_session_by_otp.assert_not_awaited()
        mock_db.find_enrollment.assert_awaited_once_with(student.id, own_session.class_id)
        mock_db.find_attendance_record.assert_awaited_once_with(student.id, own_session.id)

    async def test_after_class_end_completes(self, service_instance, student, session):
        service, _, mock_db = service_instance
        now = datetime.now(timezone.utc)
        mock_db.find_latest_session_by_otp.return_value = session.model_copy(
            update={"created_at": now - timedelta(minutes=70), "valid_until": now - timedelta(minutes=60)}
        )
        record = make_record(student.id, session.id, clock_in_ago=timedelta(minutes=20))
        mock_db.find_attendance_record.return_value = record
        mock_db.update_attendance_record.return_value = record.model_copy(update={"status": AttendanceStatus.COMPLETED})

        result = await service.clock_out(student, OTP, 42.0, -84.0)

        assert result.record.status == AttendanceStatus.COMPLETED
        assert mock_db.update_attendance_record.await_args.kwargs["status"] == AttendanceStatus.COMPLETED

    async def test_must_clock_in_first(self, service_instance, student):
        service, _, _ = service_instance
        with pytest.raises(MustClockInFirstError):
            await service.clock_out(student, OTP, 42.0, -84.0)

    async def test_already_clocked_out(self, service_instance, student, session):
        service, _, mock_db = service_instance
        mock_db.find_attendance_record.return_value = make_record(student.id, session.id, AttendanceStatus.CLOCKED_OUT)

        with pytest.raises(AlreadyClockedOutError):
            await service.clock_out(student, OTP, 42.0, -84.0)

    async def test_concurrent_clock_out_loses_update(self, service_instance, student, session):
        service, _, mock_db = service_instance
        now = datetime.now(timezone.utc)
        mock_db.find_latest_session_by_otp.return_value = session.model_copy(
            update={"created_at": now - timedelta(minutes=70)}
        )
        mock_db.find_attendance_record.return_value = make_record(student.id, session.id, clock_in_ago=timedelta(minutes=60))
        mock_db.update_attendance_record.return_value = None

        with pytest.raises(AlreadyClockedOutError):
            await service.clock_out(student, OTP, 42.0, -84.0)

    async def test_unknown_otp(self, service_instance, student):
        service, _, mock_db = service_instance
        mock_db.find_latest_session_by_otp.return_value = None
        with pytest.raises(InvalidOrExpiredOtpError):
            await service.clock_out(student, "999999")

    async def test_clock_out_location_is_verified(self, service_instance, student, session):
        service, _, mock_db = service_instance
        now = datetime.now(timezone.utc)
        mock_db.find_latest_session_by_otp.return_value = session.model_copy(
            update={"created_at": now - timedelta(minutes=70)}
        )
        mock_db.find_attendance_record.return_value = make_record(student.id, session.id, clock_in_ago=timedelta(minutes=60))

        with pytest.raises(LocationVerificationFailedError):
            await service.clock_out(student, OTP, 42.05, -84.0)


# --- Reads ---

@pytest.mark.asyncio
class TestReads:

    async def test_my_attendance(self, service_instance, student, session):
        service, _, mock_db = service_instance
        records = [make_record(student.id, session.id)]
        mock_db.get_attendance_records_for_student.return_value = records

        assert await service.get_my_attendance(student) == records
        mock_db.get_attendance_records_for_student.assert_awaited_once_with(student.id)

    async def test_session_attendance_summary(self, service_instance, teacher, session):
        service, _, mock_db = service_instance
        mock_db.find_session.return_value = session
        mock_db.get_attendance_records_for_session.return_value = [
            make_record(uuid.uuid4(), session.id, AttendanceStatus.CLOCKED_IN),
            make_record(uuid.uuid4(), session.id, AttendanceStatus.CLOCKED_IN),
            make_record(uuid.uuid4(), session.id, AttendanceStatus.COMPLETED),
        ]

        found, records, summary = await service.get_session_attendance(teacher, session.id)

        assert found == session
        assert len(records) == 3
        assert summary.total_attended == 3
        assert summary.clocked_in_count == 2
        assert summary.completed_count == 1
        assert summary.clock_in_deadline_passed is False

    async def test_session_attendance_other_teacher(self, service_instance, session):
        service, _, mock_db = service_instance
        mock_db.find_session.return_value = session
        intruder = User(id=uuid.uuid4(), role=Role.TEACHER, email="x@example.edu", name="Other")

        with pytest.raises(AuthorizationError):
            await service.get_session_attendance(intruder, session.id)

    async def test_session_attendance_unknown_session(self, service_instance, teacher):
        service, _, mock_db = service_instance
        mock_db.find_session.return_value = None
        with pytest.raises(SessionNotFoundError):
            await service.get_session_attendance(teacher, uuid.uuid4())
