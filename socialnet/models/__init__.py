from .user import User
from .login_history import LoginHistory
from .follow import Follow
from .post import Post, PostMedia, PollOption, PollVote, PostLike
from .comment import Comment, CommentLike
from .notification import Notification
from .device_token import DeviceToken
from .tracking import UserSession, ScreenActivity, ScreenAction
from .voice_call import VoiceCall

__all__ = [
    "User",
    "LoginHistory",
    "Follow",
    "Post",
    "PostMedia",
    "PollOption",
    "PollVote",
    "PostLike",
    "Comment",
    "CommentLike",
    "Notification",
    "DeviceToken",
    "UserSession",
    "ScreenActivity",
    "ScreenAction",
    "VoiceCall",
]
