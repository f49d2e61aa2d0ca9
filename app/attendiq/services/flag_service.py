import logging
import re
from typing import Any, Dict, List, Optional
from uuid import UUID

from ..db.db_client import AsyncPostgresClient
from ..models.db_models import FlaggedStudent, User
from ..models.results import FlaggedStudentView
from ..tools.notifier import notify
from .errors import (
    AuthorizationError, ClassNotFoundError, NotFoundError, NotificationError, UserNotFoundError
)

logger = logging.getLogger(__name__)

_NOTES_ATTEMPTS_PATTERN = re.compile(r"after (\d+) suspicious attempts?", re.IGNORECASE)
_NOTES_ATTEMPTS_FALLBACK_PATTERN = re.compile(r"(\d+) attempts?", re.IGNORECASE)


def extract_attempt_count_from_notes(notes: Optional[str]) -> int:
    """
    Reads the attempt count out of a legacy notes string. Only used for flags
    written before attempt_count had its own column.
    """
    if not notes:
        return 0
    match = _NOTES_ATTEMPTS_PATTERN.search(notes)
    if match:
        return int(match.group(1))
    match = _NOTES_ATTEMPTS_FALLBACK_PATTERN.search(notes)
    if match:
        return int(match.group(1))
    return 0


def build_flag_note(attempt_count: int, reasons: List[str], risk_score: int) -> str:
    return (
        f"Student flagged after {attempt_count} suspicious attempts. "
        f"Activities: {', '.join(reasons)}. Risk score: {risk_score}."
    )


class FlagService:
    """
    Instructor review flags: one per (student, class), updated in place on
    every new flag and listed for the owning teacher.
    """
    def __init__(self, db_client: AsyncPostgresClient):
        self.db_client = db_client

    async def flag_student(
        self,
        student_id: UUID,
        class_id: UUID,
        reasons: List[str],
        risk_score: int,
        attempt_count: int = 1,
    ) -> FlaggedStudent:
        student = await self.db_client.find_user(student_id)
        if not student:
            raise UserNotFoundError("Student not found.")
        class_room = await self.db_client.find_class(class_id)
        if not class_room:
            raise ClassNotFoundError("Class not found.")

        flag = await self.db_client.upsert_flag(
            student_id=student_id,
            class_id=class_id,
            reasons=reasons,
            risk_score=risk_score,
            attempt_count=attempt_count,
            note=build_flag_note(attempt_count, reasons, risk_score),
        )
        logger.warning(
            f"FLAGGED STUDENT: {student.name} ({student.email}) in class '{class_room.name}'. "
            f"Risk score: {risk_score}. Attempts: {attempt_count}. Reasons: {', '.join(reasons)}"
        )

        teacher = await self.db_client.find_user(class_room.teacher_id)
        if teacher:
            await self._notify_teacher(teacher, student, class_room.name, flag)
        return flag

    async def _notify_teacher(self, teacher: User, student: User, class_name: str, flag: FlaggedStudent) -> None:
        payload = {
            "type": "student_flagged",
            "flag_id": str(flag.id),
            "student_name": student.name,
            "student_email": student.email,
            "class_name": class_name,
            "reasons": flag.reasons,
            "risk_score": flag.risk_score,
            "attempt_count": flag.attempt_count,
        }
        try:
            await notify("email", teacher.email, payload)
        except NotificationError as e:
            logger.error(f"Could not notify teacher '{teacher.id}' about flag {flag.id}: {e}", exc_info=True)

    def _to_view(self, row: Dict[str, Any]) -> FlaggedStudentView:
        attempt_count = row.get("attempt_count")
        if attempt_count is None:
            attempt_count = extract_attempt_count_from_notes(row.get("notes"))
        return FlaggedStudentView(**{**row, "attempt_count": attempt_count})

    async def list_flagged(self, class_ids: List[UUID]) -> List[FlaggedStudentView]:
        rows = await self.db_client.get_flagged_students_by_classes(class_ids)
        return [self._to_view(row) for row in rows]

    async def list_flagged_for_teacher(self, teacher: User, class_id: Optional[UUID] = None) -> List[FlaggedStudentView]:
        """Flags for all of the teacher's classes, or for one class after an ownership check."""
        classes = await self.db_client.get_classes_by_teacher(teacher.id)
        owned_ids = [c.id for c in classes]
        if class_id is not None:
            if class_id not in owned_ids:
                raise ClassNotFoundError("Class not found or access denied.")
            return await self.list_flagged([class_id])
        if not owned_ids:
            return []
        return await self.list_flagged(owned_ids)

    async def resolve_flag(self, teacher: User, flag_id: UUID, note: Optional[str] = None) -> FlaggedStudent:
        flag = await self.db_client.find_flag(flag_id)
        if not flag:
            raise NotFoundError("Flag not found.")
        class_room = await self.db_client.find_class(flag.class_id)
        if not class_room or class_room.teacher_id != teacher.id:
            raise AuthorizationError("You can only resolve flags for your own classes.")

        resolution_note = f"Resolved by {teacher.name}: {note}" if note else f"Resolved by {teacher.name}."
        resolved = await self.db_client.resolve_flag(flag_id, resolved_by=teacher.id, note=resolution_note)
        if not resolved:
            raise NotFoundError("Flag not found.")
        logger.info(f"Flag {flag_id} resolved by teacher '{teacher.id}'.")
        return resolved
