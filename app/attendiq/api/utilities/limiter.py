# app/attendiq/api/utilities/limiter.py

from typing import Optional

import jwt
from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from ...config.config import settings


def _subject_from_bearer(authorization: Optional[str]) -> Optional[str]:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    try:
        # get_current_user enforces expiry.
        claims = jwt.decode(
            token, settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM], options={"verify_exp": False}
        )
    except jwt.PyJWTError:
        return None
    subject = claims.get("sub")
    return str(subject) if subject else None


def get_limiter_key(request: Request) -> str:
    """Buckets requests per authenticated student or teacher, per client address otherwise."""
    return _subject_from_bearer(request.headers.get("authorization")) or get_remote_address(request)


limiter = Limiter(key_func=get_limiter_key, storage_uri=settings.RATE_LIMITER_REDIS_URL)
