# app/attendiq/main.py
import logging
from contextlib import asynccontextmanager

import asyncpg
import redis.asyncio as redis
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .api import attendance, sessions
from .api.utilities.limiter import limiter
from .config.config import settings
from .logging.logging_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


async def _open_pools(app: FastAPI) -> None:
    try:
        app.state.postgres_pool = await asyncpg.create_pool(dsn=settings.DATABASE_URL, min_size=5, max_size=20)
        app.state.redis_pool = redis.ConnectionPool.from_url(settings.APPLICATION_REDIS_URL, decode_responses=True)
    except Exception as e:
        logger.error(f"Could not open datastore pools: {e}", exc_info=True)
        app.state.postgres_pool = None
        app.state.redis_pool = None
        return
    logger.info("PostgreSQL and Redis pools are ready.")


async def _close_pools(app: FastAPI) -> None:
    postgres_pool = getattr(app.state, "postgres_pool", None)
    if postgres_pool is not None:
        await postgres_pool.close()
    redis_pool = getattr(app.state, "redis_pool", None)
    if redis_pool is not None:
        await redis_pool.disconnect()
    logger.info("Datastore pools closed.")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("AttendIQ starting up.")
    await _open_pools(app)
    yield
    logger.info("AttendIQ shutting down.")
    await _close_pools(app)


app = FastAPI(
    title="AttendIQ API",
    description="Attendance with anti-proxy risk scoring and instructor review flags.",
    version="1.0.0",
    lifespan=lifespan
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for module in (attendance, sessions):
    app.include_router(module.router, prefix=API_PREFIX)


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "ok", "message": "AttendIQ API is running."}
