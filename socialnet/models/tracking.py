"""
Session and screen-activity analytics models.
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, JSON
from sqlalchemy.orm import relationship

from ..database import Base, utcnow

SESSION_ACTIVE = "active"
SESSION_IDLE = "idle"
SESSION_EXPIRED = "expired"
SESSION_LOGGED_OUT = "logged_out"
SESSION_STATUSES = (SESSION_ACTIVE, SESSION_IDLE, SESSION_EXPIRED, SESSION_LOGGED_OUT)
LIVE_SESSION_STATUSES = (SESSION_ACTIVE, SESSION_IDLE)

NAVIGATION_METHODS = ("push", "pop", "replace", "tab", "drawer", "deeplink", "back", "other")


def seconds_between(start, end) -> int:
    if start is None or end is None:
        return 0
    return max(0, int((end - start).total_seconds()))


class UserSession(Base):
    __tablename__ = "user_sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    session_token = Column(String(64), unique=True, index=True, nullable=False)
    device = Column(JSON, default=dict)
    ip = Column(String(64))
    user_agent = Column(String(500))
    location = Column(JSON)
    start_time = Column(DateTime, default=utcnow, index=True)
    last_activity_time = Column(DateTime, default=utcnow, index=True)
    end_time = Column(DateTime, nullable=True)
    status = Column(String(20), default=SESSION_ACTIVE, nullable=False, index=True)
    total_screens = Column(Integer, default=0, nullable=False)
    total_duration = Column(Integer, default=0, nullable=False)
    fcm_token = Column(String(512))
    language = Column(String(16))
    referrer = Column(String(255))
    is_first_session = Column(Boolean, default=False)

    user = relationship("User")
    activities = relationship("ScreenActivity", back_populates="session", cascade="all, delete-orphan",
                              order_by="ScreenActivity.entered_at")

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_SESSION_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "session_token": self.session_token,
            "device": self.device or {},
            "ip": self.ip,
            "location": self.location,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "last_activity_time": self.last_activity_time.isoformat() if self.last_activity_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "status": self.status,
            "total_screens": self.total_screens,
            "total_duration": self.total_duration,
            "language": self.language,
            "referrer": self.referrer,
            "is_first_session": self.is_first_session,
        }


class ScreenActivity(Base):
    __tablename__ = "screen_activities"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("user_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    screen_name = Column(String(100), nullable=False, index=True)
    screen_route = Column(String(255))
    screen_title = Column(String(255))
    previous_screen = Column(String(100))
    next_screen = Column(String(100))
    navigation_method = Column(String(20), default="push")
    entered_at = Column(DateTime, default=utcnow, index=True)
    exited_at = Column(DateTime, nullable=True)
    duration = Column(Integer, default=0, nullable=False)
    scroll_depth = Column(Integer, default=0, nullable=False)
    load_time = Column(Integer, nullable=True)
    api_calls = Column(Integer, default=0, nullable=False)
    device_state = Column(JSON)
    location = Column(JSON)
    errors = Column(JSON, default=list)
    referrer = Column(String(255))
    extra = Column("metadata", JSON, default=dict)

    session = relationship("UserSession", back_populates="activities")
    actions = relationship("ScreenAction", back_populates="activity", cascade="all, delete-orphan",
                           order_by="ScreenAction.occurred_at")

    @property
    def is_open(self) -> bool:
        return self.exited_at is None

    def close(self, at, next_screen: str = None) -> None:
        self.exited_at = max(at, self.entered_at) if self.entered_at else at
        self.duration = seconds_between(self.entered_at, self.exited_at)
        if next_screen:
            self.next_screen = next_screen

    def to_dict(self, include_actions: bool = False) -> dict:
        data = {
            "id": self.id,
            "session_id": self.session_id,
            "screen_name": self.screen_name,
            "screen_route": self.screen_route,
            "screen_title": self.screen_title,
            "previous_screen": self.previous_screen,
            "next_screen": self.next_screen,
            "navigation_method": self.navigation_method,
            "entered_at": self.entered_at.isoformat() if self.entered_at else None,
            "exited_at": self.exited_at.isoformat() if self.exited_at else None,
            "duration": self.duration,
            "scroll_depth": self.scroll_depth,
            "load_time": self.load_time,
            "api_calls": self.api_calls,
            "errors": self.errors or [],
        }
        if include_actions:
            data["actions"] = [a.to_dict() for a in self.actions]
        return data


class ScreenAction(Base):
    __tablename__ = "screen_actions"

    id = Column(Integer, primary_key=True, index=True)
    activity_id = Column(Integer, ForeignKey("screen_activities.id", ondelete="CASCADE"), nullable=False, index=True)
    action_type = Column(String(50), nullable=False)
    action_target = Column(String(255))
    extra = Column("metadata", JSON, default=dict)
    occurred_at = Column(DateTime, default=utcnow)

    activity = relationship("ScreenActivity", back_populates="actions")

    def to_dict(self) -> dict:
        return {
            "action_type": self.action_type,
            "action_target": self.action_target,
            "metadata": self.extra or {},
            "timestamp": self.occurred_at.isoformat() if self.occurred_at else None,
        }
