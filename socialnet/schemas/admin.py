from pydantic import BaseModel
from typing import Literal, Optional


class UserStatusUpdate(BaseModel):
    is_active: Optional[bool] = None


class UserRoleUpdate(BaseModel):
    role: Literal["USER", "ADMIN"]
