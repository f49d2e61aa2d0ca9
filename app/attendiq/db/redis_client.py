import logging
from typing import List
from uuid import UUID
import redis.asyncio as redis

from ..models.redis_models import SuspiciousAttempt

logger = logging.getLogger(__name__)

class RedisClient:
    """
    Redis client for short-lived anti-proxy state shared by every worker.
    """

    def __init__(self, pool: redis.ConnectionPool):
        self._redis = redis.Redis(connection_pool=pool, decode_responses=True)

    @staticmethod
    def _attempts_key(student_id: UUID, session_id: UUID) -> str:
        return f"suspicious_attempts:{student_id}:{session_id}"

    # ===== Suspicious Attempt Tracking =====

    async def append_suspicious_attempt(self, attempt: SuspiciousAttempt, max_items: int, ttl: int) -> List[SuspiciousAttempt]:
        """
        Appends an attempt and returns the capped list after the append.

        Push, trim, expire and read run in one MULTI/EXEC block, so concurrent
        requests for the same key never lose an update.
        """
        key = self._attempts_key(attempt.student_id, attempt.session_id)

        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.rpush(key, attempt.model_dump_json())
            pipe.ltrim(key, -max_items, -1)
            pipe.expire(key, ttl)
            pipe.lrange(key, 0, -1)
            results = await pipe.execute()

        return [SuspiciousAttempt.model_validate_json(item) for item in results[-1]]

