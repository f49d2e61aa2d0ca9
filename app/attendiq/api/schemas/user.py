# app/attendiq/api/schemas/user.py
from pydantic import BaseModel
from typing import Optional
from uuid import UUID

from ...models.db_models import Role


# Claims carried by the bearer tokens the identity service issues
class TokenData(BaseModel):
    sub: Optional[UUID] = None
    role: Optional[Role] = None
