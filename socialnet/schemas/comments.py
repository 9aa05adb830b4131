from pydantic import BaseModel, Field
from typing import Optional

from ..models.comment import MAX_COMMENT_LENGTH


class CommentCreate(BaseModel):
    post_id: int
    text: str = Field(..., min_length=1, max_length=MAX_COMMENT_LENGTH)
    parent_comment_id: Optional[int] = None


class CommentUpdate(BaseModel):
    text: str = Field(..., min_length=1, max_length=MAX_COMMENT_LENGTH)
