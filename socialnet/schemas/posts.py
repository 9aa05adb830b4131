from datetime import datetime
from pydantic import BaseModel, Field, model_validator
from typing import List, Literal, Optional

from ..models.post import MAX_TEXT_LENGTH


class MediaItem(BaseModel):
    type: Literal["image", "video"]
    url: str = Field(..., max_length=1000)
    storage_id: Optional[str] = Field(None, max_length=255)
    thumbnail: Optional[str] = Field(None, max_length=1000)


class PollCreate(BaseModel):
    question: str = Field(..., min_length=1, max_length=500)
    options: List[str] = Field(..., min_length=2, max_length=10)
    ends_at: Optional[datetime] = None
    allow_multiple_votes: bool = False

    @model_validator(mode="after")
    def check_options(self):
        if any(not option.strip() for option in self.options):
            raise ValueError("Poll options cannot be empty")
        if any(len(option) > 200 for option in self.options):
            raise ValueError("Poll options cannot exceed 200 characters")
        return self


class PostCreate(BaseModel):
    text: Optional[str] = Field(None, max_length=MAX_TEXT_LENGTH)
    post_type: Literal["text", "image", "video", "poll", "mixed"] = "text"
    visibility: Literal["public", "private", "followers"] = "public"
    media: List[MediaItem] = []
    poll: Optional[PollCreate] = None

    @model_validator(mode="after")
    def check_content(self):
        has_text = bool(self.text and self.text.strip())
        if self.post_type == "poll" and self.poll is None:
            raise ValueError("Poll posts need a poll")
        if not (has_text or self.media or self.poll):
            raise ValueError("Post must have text, media or a poll")
        return self


class PostUpdate(BaseModel):
    text: Optional[str] = Field(None, max_length=MAX_TEXT_LENGTH)
    visibility: Optional[Literal["public", "private", "followers"]] = None


class VoteRequest(BaseModel):
    option_index: int = Field(..., ge=0)
