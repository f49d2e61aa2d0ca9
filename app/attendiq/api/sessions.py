from fastapi import APIRouter, Depends, HTTPException, status, Request

from ..services.session_service import SessionService
from ..services.errors import ServiceError
from ..models.db_models import User, Role
from .schemas.session import SessionCreateRequest, SessionResponse
from .auth import get_current_user
from .dependencies import get_session_service
from .utilities.http_errors import to_http_exception
from .utilities.limiter import limiter

router = APIRouter(prefix="/sessions", tags=["Sessions"])


def _verify_teacher_role(user: User):
    if user.role != Role.TEACHER:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This operation is only valid for teachers.")


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED, summary="Start a class session")
@limiter.limit("5/minute")
async def start_session(
    request: Request,
    create_request: SessionCreateRequest,
    user: User = Depends(get_current_user),
    service: SessionService = Depends(get_session_service)
):
    """Opens a session and returns the OTP students clock in with."""
    _verify_teacher_role(user)
    try:
        session = await service.start_session(
            teacher=user,
            class_id=create_request.class_id,
            clock_in_window_minutes=create_request.clock_in_window_minutes,
            class_duration_minutes=create_request.class_duration_minutes,
        )
    except ServiceError as e:
        raise to_http_exception(e)
    return SessionResponse.model_validate(session)
