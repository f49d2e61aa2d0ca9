#app/attendiq/api/dependencies.py
from fastapi import Request, Depends
import redis.asyncio as redis
import asyncpg

from ..db.redis_client import RedisClient
from ..db.db_client import AsyncPostgresClient
from ..services.attendance_service import AttendanceService
from ..services.flag_service import FlagService
from ..services.session_service import SessionService


def get_redis_pool(request: Request) -> redis.ConnectionPool:
    """Returns the Redis connection pool created at startup."""
    return request.app.state.redis_pool


def get_postgres_pool(request: Request) -> asyncpg.Pool:
    """Returns the PostgreSQL connection pool created at startup."""
    return request.app.state.postgres_pool


def get_db_client(postgres_pool: asyncpg.Pool = Depends(get_postgres_pool)) -> AsyncPostgresClient:
    return AsyncPostgresClient(pool=postgres_pool)


def get_attendance_service(
    redis_pool: redis.ConnectionPool = Depends(get_redis_pool),
    postgres_pool: asyncpg.Pool = Depends(get_postgres_pool)
) -> AttendanceService:
    """
    Builds a fresh AttendanceService per request on top of the shared pools.
    """
    redis_client = RedisClient(pool=redis_pool)
    db_client = AsyncPostgresClient(pool=postgres_pool)
    return AttendanceService(redis_client=redis_client, db_client=db_client)


def get_flag_service(db_client: AsyncPostgresClient = Depends(get_db_client)) -> FlagService:
    return FlagService(db_client=db_client)


def get_session_service(db_client: AsyncPostgresClient = Depends(get_db_client)) -> SessionService:
    return SessionService(db_client=db_client)
