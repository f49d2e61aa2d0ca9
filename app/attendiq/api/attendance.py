import logging
from fastapi import APIRouter, Depends, HTTPException, status, Request
from typing import List, Optional
from uuid import UUID

from ..services.attendance_service import AttendanceService
from ..services.flag_service import FlagService
from ..services.errors import ServiceError
from ..models.db_models import User, Role
from .schemas.attendance import (
    MarkAttendanceRequest,
    ClockOutRequest,
    ResolveFlagRequest,
    AttendanceRecordResponse,
    ClockInResponse,
    ClockOutResponse,
    SessionAttendanceResponse,
    FlaggedStudentResponse,
    FlagResolutionResponse,
)
from .auth import get_current_user
from .dependencies import get_attendance_service, get_flag_service
from .utilities.http_errors import to_http_exception
from .utilities.limiter import limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/attendance", tags=["Attendance"])


def _verify_student_role(user: User):
    if user.role != Role.STUDENT:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This operation is only valid for students.")


def _verify_teacher_role(user: User):
    if user.role != Role.TEACHER:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This operation is only valid for teachers.")


def _unexpected(e: Exception) -> HTTPException:
    logger.error(f"Unexpected error in attendance endpoint: {e}", exc_info=True)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="An unexpected error occurred.")


# === Student ===

@router.post("/mark", response_model=ClockInResponse, summary="Clock in with a session OTP")
@limiter.limit("10/minute")
async def mark_attendance(
    request: Request,
    body: MarkAttendanceRequest,
    user: User = Depends(get_current_user),
    service: AttendanceService = Depends(get_attendance_service)
):
    """
    Clocks the student in. Calling it again while still clocked in returns
    the same record with outcome ALREADY_CLOCKED_IN.
    """
    _verify_student_role(user)
    try:
        result = await service.clock_in(
            student=user,
            otp=body.otp,
            latitude=body.latitude,
            longitude=body.longitude,
            device=body.device_attributes(),
        )
    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected(e)
    return ClockInResponse.model_validate(result)


@router.post("/clock-out", response_model=ClockOutResponse, summary="Clock out of the session")
@limiter.limit("10/minute")
async def clock_out(
    request: Request,
    body: ClockOutRequest,
    user: User = Depends(get_current_user),
    service: AttendanceService = Depends(get_attendance_service)
):
    _verify_student_role(user)
    try:
        result = await service.clock_out(
            student=user, otp=body.otp, latitude=body.latitude, longitude=body.longitude
        )
    except ServiceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _unexpected(e)
    return ClockOutResponse.model_validate(result)


@router.get("", response_model=List[AttendanceRecordResponse], summary="My attendance records")
@limiter.limit("60/minute")
async def get_my_attendance(
    request: Request,
    user: User = Depends(get_current_user),
    service: AttendanceService = Depends(get_attendance_service)
):
    _verify_student_role(user)
    records = await service.get_my_attendance(user)
    return [AttendanceRecordResponse.model_validate(r) for r in records]


# === Teacher ===

@router.get("/session/{session_id}", response_model=SessionAttendanceResponse, summary="Attendance of one session")
@limiter.limit("60/minute")
async def get_session_attendance(
    request: Request,
    session_id: UUID,
    user: User = Depends(get_current_user),
    service: AttendanceService = Depends(get_attendance_service)
):
    _verify_teacher_role(user)
    try:
        session, records, summary = await service.get_session_attendance(user, session_id)
    except ServiceError as e:
        raise to_http_exception(e)
    return SessionAttendanceResponse(
        session_id=session.id,
        class_id=session.class_id,
        valid_until=session.valid_until,
        records=[AttendanceRecordResponse.model_validate(r) for r in records],
        **summary.model_dump(),
    )


async def _list_flagged(user: User, class_id: Optional[str], service: FlagService) -> List[FlaggedStudentResponse]:
    _verify_teacher_role(user)
    class_filter: Optional[UUID] = None
    if class_id and class_id != "all":
        try:
            class_filter = UUID(class_id)
        except ValueError:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="class_id must be a UUID or 'all'.")
    try:
        flagged = await service.list_flagged_for_teacher(user, class_filter)
    except ServiceError as e:
        raise to_http_exception(e)
    return [FlaggedStudentResponse.model_validate(f) for f in flagged]


@router.get("/flagged-students", response_model=List[FlaggedStudentResponse], summary="Flagged students of all my classes")
@limiter.limit("30/minute")
async def get_flagged_students(
    request: Request,
    user: User = Depends(get_current_user),
    service: FlagService = Depends(get_flag_service)
):
    return await _list_flagged(user, None, service)


@router.get("/flagged-students/{class_id}", response_model=List[FlaggedStudentResponse], summary="Flagged students of one class")
@limiter.limit("30/minute")
async def get_flagged_students_for_class(
    request: Request,
    class_id: str,
    user: User = Depends(get_current_user),
    service: FlagService = Depends(get_flag_service)
):
    """`class_id` may be `all` for every class the teacher owns."""
    return await _list_flagged(user, class_id, service)


@router.post("/flagged-students/{flag_id}/resolve", response_model=FlagResolutionResponse, summary="Resolve a flag")
@limiter.limit("30/minute")
async def resolve_flag(
    request: Request,
    flag_id: UUID,
    body: Optional[ResolveFlagRequest] = None,
    user: User = Depends(get_current_user),
    service: FlagService = Depends(get_flag_service)
):
    _verify_teacher_role(user)
    try:
        resolved = await service.resolve_flag(user, flag_id, note=body.note if body else None)
    except ServiceError as e:
        raise to_http_exception(e)
    return FlagResolutionResponse.model_validate(resolved)
