import logging
import secrets
from typing import Optional
from uuid import UUID, uuid4
from datetime import datetime, timedelta, timezone

import asyncpg

from ..config.config import settings
from ..db.db_client import AsyncPostgresClient
from ..models.db_models import User, Session
from .errors import ServiceError, AuthorizationError, ClassNotFoundError

logger = logging.getLogger(__name__)


def generate_otp(length: Optional[int] = None) -> str:
    length = length or settings.OTP_LENGTH
    return "".join(secrets.choice("0123456789") for _ in range(length))


class SessionService:
    """
    Opens class meetings: every session gets an OTP that no other currently
    valid session holds.
    """
    def __init__(self, db_client: AsyncPostgresClient):
        self.db_client = db_client

    async def _generate_unique_otp(self, now: datetime) -> str:
        for _ in range(settings.OTP_MAX_GENERATION_ATTEMPTS):
            otp = generate_otp()
            if not await self.db_client.otp_in_use(otp, now):
                return otp
        logger.error(f"No free OTP found after {settings.OTP_MAX_GENERATION_ATTEMPTS} attempts.")
        raise ServiceError("Could not generate a unique OTP. Please try again.")

    async def start_session(
        self,
        teacher: User,
        class_id: UUID,
        clock_in_window_minutes: int,
        class_duration_minutes: int = 60,
    ) -> Session:
        class_room = await self.db_client.find_class(class_id)
        if not class_room:
            raise ClassNotFoundError("Class not found.")
        if class_room.teacher_id != teacher.id:
            logger.warning(f"Teacher '{teacher.id}' tried to start a session for class '{class_id}' they do not own.")
            raise AuthorizationError("You can only start sessions for your own classes.")

        now = datetime.now(timezone.utc)
        try:
            otp = await self._generate_unique_otp(now)
            session = await self.db_client.create_session(Session(
                id=uuid4(),
                class_id=class_id,
                otp=otp,
                valid_until=now + timedelta(minutes=clock_in_window_minutes),
                class_duration_minutes=class_duration_minutes,
                created_at=now,
            ))
        except asyncpg.PostgresError as e:
            logger.error(f"Database error while starting a session for class '{class_id}'.", exc_info=True)
            raise ServiceError("A database error occurred while starting the session.") from e

        logger.info(
            f"Teacher '{teacher.id}' started session '{session.id}' for class '{class_room.name}', "
            f"clock-in open until {session.valid_until}."
        )
        return session
