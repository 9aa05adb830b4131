from .auth import router as auth_router
from .users import router as users_router
from .follows import router as follows_router
from .posts import router as posts_router
from .comments import router as comments_router
from .notifications import router as notifications_router
from .tracking import router as tracking_router
from .voice_calls import router as voice_calls_router
from .admin import router as admin_router
from .admin_notifications import router as admin_notifications_router
from .admin_tracking import router as admin_tracking_router

__all__ = [
    "auth_router",
    "users_router",
    "follows_router",
    "posts_router",
    "comments_router",
    "notifications_router",
    "tracking_router",
    "voice_calls_router",
    "admin_router",
    "admin_notifications_router",
    "admin_tracking_router",
]
