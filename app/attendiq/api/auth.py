import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from pydantic import ValidationError

from ..config.config import settings
from ..db.db_client import AsyncPostgresClient
from ..models.db_models import User
from .dependencies import get_db_client
from .schemas.user import TokenData

logger = logging.getLogger(__name__)

# Tokens are issued by the identity service.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token", auto_error=True)


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Signs `data` as a JWT. `sub` must carry the user id."""
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {**data, "exp": datetime.now(timezone.utc) + lifetime}
    if "sub" in claims:
        claims["sub"] = str(claims["sub"])
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> TokenData:
    try:
        claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return TokenData.model_validate(claims)
    except (jwt.PyJWTError, ValidationError) as e:
        logger.warning(f"Rejected bearer token: {e}")
        raise _unauthorized()


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db_client: AsyncPostgresClient = Depends(get_db_client)
) -> User:
    """Resolves the bearer token to the User row it names."""
    token_data = decode_token(token)
    if token_data.sub is None:
        logger.warning("Bearer token has no subject.")
        raise _unauthorized()

    user = await db_client.find_user(token_data.sub)
    if user is None:
        logger.warning(f"Bearer token names unknown user {token_data.sub}.")
        raise _unauthorized()
    return user
