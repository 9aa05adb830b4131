from .auth import UserCreate, AdminCreate, UserLogin, RefreshRequest, ExternalLogin, ProfileUpdate
from .posts import MediaItem, PollCreate, PostCreate, PostUpdate, VoteRequest
from .comments import CommentCreate, CommentUpdate

__all__ = [
    "UserCreate",
    "AdminCreate",
    "UserLogin",
    "RefreshRequest",
    "ExternalLogin",
    "ProfileUpdate",
    "MediaItem",
    "PollCreate",
    "PostCreate",
    "PostUpdate",
    "VoteRequest",
    "CommentCreate",
    "CommentUpdate",
]
