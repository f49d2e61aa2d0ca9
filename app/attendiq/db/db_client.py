import logging
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID, uuid4
import asyncpg
from datetime import datetime, timezone
from ..models.db_models import (
    User, ClassRoom, Enrollment, Session, AttendanceRecord, AttendanceStatus, FlaggedStudent
)

logger = logging.getLogger(__name__)

class AsyncPostgresClient:
    """
    PostgreSQL client behind every data-access operation of the service.
    """
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    # ===== Users =====

    async def find_user(self, user_id: UUID) -> Optional[User]:
        query = "SELECT id, role, email, name FROM users WHERE id = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, user_id)
            return User(**record) if record else None

    async def find_user_with_recent_attendance(self, user_id: UUID, limit: int) -> Optional[Tuple[User, List[AttendanceRecord]]]:
        """Returns the user and their latest `limit` attendance records, newest first."""
        async with self._pool.acquire() as connection:
            user_record = await connection.fetchrow("SELECT id, role, email, name FROM users WHERE id = $1;", user_id)
            if not user_record:
                return None
            records = await connection.fetch(
                "SELECT * FROM attendance WHERE student_id = $1 ORDER BY timestamp DESC LIMIT $2;",
                user_id, limit
            )
            return User(**user_record), [AttendanceRecord(**r) for r in records]

    # ===== Device / activity lookups =====

    async def find_attendance_by_same_fingerprint(
        self,
        fingerprint: str,
        exclude_student_id: UUID,
        since: datetime,
        session_id: Optional[UUID] = None
    ) -> List[UUID]:
        """Distinct ids of other students who submitted this fingerprint since `since`."""
        query = """
            SELECT DISTINCT student_id FROM attendance
            WHERE device_fingerprint = $1
              AND student_id <> $2
              AND timestamp >= $3
              AND ($4::uuid IS NULL OR session_id = $4);
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, fingerprint, exclude_student_id, since, session_id)
            return [r["student_id"] for r in records]

    async def find_attendance_since(self, student_id: UUID, since: datetime) -> List[AttendanceRecord]:
        query = "SELECT * FROM attendance WHERE student_id = $1 AND timestamp >= $2 ORDER BY timestamp DESC;"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, student_id, since)
            return [AttendanceRecord(**r) for r in records]

    # ===== Sessions =====

    async def find_session_by_otp(self, otp: str, now: datetime) -> Optional[Session]:
        """The session this OTP opens, if its clock-in deadline has not passed."""
        query = """
            SELECT * FROM sessions
            WHERE otp = $1 AND valid_until > $2
            ORDER BY created_at DESC LIMIT 1;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, otp, now)
            return Session(**record) if record else None

    async def find_latest_session_by_otp(self, otp: str) -> Optional[Session]:
        """The most recent session issued with this OTP, regardless of deadline."""
        query = "SELECT * FROM sessions WHERE otp = $1 ORDER BY created_at DESC LIMIT 1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, otp)
            return Session(**record) if record else None

    async def find_clocked_in_session_by_otp(self, otp: str, student_id: UUID) -> Optional[Session]:
        """The newest session with this OTP the student is still CLOCKED_IN to."""
        query = """
            SELECT s.* FROM sessions s
            JOIN attendance a ON a.session_id = s.id
            WHERE s.otp = $1 AND a.student_id = $2 AND a.status = 'CLOCKED_IN'
            ORDER BY s.created_at DESC
            LIMIT 1;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, otp, student_id)
            return Session(**record) if record else None

    async def find_session(self, session_id: UUID) -> Optional[Session]:
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow("SELECT * FROM sessions WHERE id = $1;", session_id)
            return Session(**record) if record else None

    async def otp_in_use(self, otp: str, now: datetime) -> bool:
        query = "SELECT EXISTS(SELECT 1 FROM sessions WHERE otp = $1 AND valid_until > $2);"
        async with self._pool.acquire() as connection:
            return await connection.fetchval(query, otp, now)

    async def create_session(self, session: Session) -> Session:
        query = """
            INSERT INTO sessions (id, class_id, otp, valid_until, class_duration_minutes, created_at)
            VALUES ($1, $2, $3, $4, $5, $6)
            RETURNING *;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(
                query, session.id, session.class_id, session.otp, session.valid_until,
                session.class_duration_minutes, session.created_at
            )
            return Session(**record)

    # ===== Classes & enrollments =====

    async def find_class(self, class_id: UUID) -> Optional[ClassRoom]:
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow("SELECT * FROM classes WHERE id = $1;", class_id)
            return ClassRoom(**record) if record else None

    async def get_classes_by_teacher(self, teacher_id: UUID) -> List[ClassRoom]:
        async with self._pool.acquire() as connection:
            records = await connection.fetch("SELECT * FROM classes WHERE teacher_id = $1;", teacher_id)
            return [ClassRoom(**r) for r in records]

    async def find_enrollment(self, student_id: UUID, class_id: UUID) -> Optional[Enrollment]:
        query = "SELECT * FROM enrollments WHERE student_id = $1 AND class_id = $2;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, student_id, class_id)
            return Enrollment(**record) if record else None

    # ===== Attendance records =====

    async def find_attendance_record(self, student_id: UUID, session_id: UUID) -> Optional[AttendanceRecord]:
        query = "SELECT * FROM attendance WHERE student_id = $1 AND session_id = $2;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, student_id, session_id)
            return AttendanceRecord(**record) if record else None

    async def create_attendance_record(self, record: AttendanceRecord) -> Optional[AttendanceRecord]:
        """
        Inserts a clock-in. Returns None when (student_id, session_id) already
        exists, so a concurrent duplicate clock-in never creates a second row.
        """
        query = """
            INSERT INTO attendance (
                id, session_id, student_id, status, timestamp, clock_in_time,
                latitude, longitude, device_fingerprint, user_agent, screen_resolution,
                risk_score, is_new_device
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
            ON CONFLICT (student_id, session_id) DO NOTHING
            RETURNING *;
        """
        async with self._pool.acquire() as connection:
            created = await connection.fetchrow(
                query, record.id, record.session_id, record.student_id, record.status.value,
                record.timestamp, record.clock_in_time, record.latitude, record.longitude,
                record.device_fingerprint, record.user_agent, record.screen_resolution,
                record.risk_score, record.is_new_device
            )
            return AttendanceRecord(**created) if created else None

    async def update_attendance_record(
        self,
        record_id: UUID,
        status: AttendanceStatus,
        clock_out_time: datetime,
        clock_out_latitude: Optional[float] = None,
        clock_out_longitude: Optional[float] = None
    ) -> Optional[AttendanceRecord]:
        """Clocks a record out. Only a CLOCKED_IN row is updated; otherwise returns None."""
        query = """
            UPDATE attendance
            SET status = $2,
                clock_out_time = $3,
                clock_out_latitude = $4,
                clock_out_longitude = $5
            WHERE id = $1 AND status = 'CLOCKED_IN'
            RETURNING *;
        """
        async with self._pool.acquire() as connection:
            updated = await connection.fetchrow(
                query, record_id, status.value, clock_out_time, clock_out_latitude, clock_out_longitude
            )
            return AttendanceRecord(**updated) if updated else None

    async def get_attendance_records_for_student(self, student_id: UUID) -> List[AttendanceRecord]:
        query = "SELECT * FROM attendance WHERE student_id = $1 ORDER BY timestamp DESC;"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, student_id)
            return [AttendanceRecord(**r) for r in records]

    async def get_attendance_records_for_session(self, session_id: UUID) -> List[AttendanceRecord]:
        query = "SELECT * FROM attendance WHERE session_id = $1 ORDER BY timestamp DESC;"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, session_id)
            return [AttendanceRecord(**r) for r in records]

    # ===== Instructor flags =====

    async def upsert_flag(
        self,
        student_id: UUID,
        class_id: UUID,
        reasons: List[str],
        risk_score: int,
        attempt_count: int,
        note: str
    ) -> FlaggedStudent:
        """
        Creates the (student, class) flag or overwrites the existing one,
        reopening it as PENDING. The note is appended to the audit log.
        """
        query = """
            INSERT INTO flagged_students (
                id, student_id, class_id, reasons, risk_score, attempt_count, status, flagged_at, notes
            )
            VALUES ($1, $2, $3, $4, $5, $6, 'PENDING', $7, $8)
            ON CONFLICT (student_id, class_id) DO UPDATE SET
                reasons = EXCLUDED.reasons,
                risk_score = EXCLUDED.risk_score,
                attempt_count = EXCLUDED.attempt_count,
                status = 'PENDING',
                flagged_at = EXCLUDED.flagged_at,
                resolved_at = NULL,
                resolved_by = NULL,
                notes = CASE
                    WHEN flagged_students.notes IS NULL OR flagged_students.notes = '' THEN EXCLUDED.notes
                    ELSE flagged_students.notes || E'\\n' || EXCLUDED.notes
                END
            RETURNING *;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(
                query, uuid4(), student_id, class_id, reasons, risk_score, attempt_count,
                datetime.now(timezone.utc), note
            )
            return FlaggedStudent(**record)

    async def get_flagged_students_by_classes(self, class_ids: List[UUID]) -> List[Dict[str, Any]]:
        """Flags of the given classes joined with student and class display fields, newest first."""
        if not class_ids:
            return []
        query = """
            SELECT f.*,
                   u.name AS student_name, u.email AS student_email,
                   c.name AS class_name, c.subject AS subject
            FROM flagged_students f
            JOIN users u ON u.id = f.student_id
            JOIN classes c ON c.id = f.class_id
            WHERE f.class_id = ANY($1::uuid[])
            ORDER BY f.flagged_at DESC;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, class_ids)
            return [dict(r) for r in records]

    async def find_flag(self, flag_id: UUID) -> Optional[FlaggedStudent]:
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow("SELECT * FROM flagged_students WHERE id = $1;", flag_id)
            return FlaggedStudent(**record) if record else None

    async def resolve_flag(self, flag_id: UUID, resolved_by: UUID, note: Optional[str] = None) -> Optional[FlaggedStudent]:
        query = """
            UPDATE flagged_students
            SET status = 'RESOLVED',
                resolved_at = $3,
                resolved_by = $2,
                notes = CASE
                    WHEN $4::text IS NULL THEN notes
                    WHEN notes IS NULL OR notes = '' THEN $4::text
                    ELSE notes || E'\\n' || $4::text
                END
            WHERE id = $1
            RETURNING *;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, flag_id, resolved_by, datetime.now(timezone.utc), note)
            return FlaggedStudent(**record) if record else None
