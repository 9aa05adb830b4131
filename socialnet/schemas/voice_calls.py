from pydantic import BaseModel, Field
from typing import Optional


class AdminCallCreate(BaseModel):
    receiver_id: int
    receiver_phone: Optional[str] = Field(None, max_length=32)
    caller_phone: Optional[str] = Field(None, max_length=32)


class UserCallCreate(BaseModel):
    receiver_id: int
