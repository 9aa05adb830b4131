"""
Append-only record of successful logins and registrations.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship

from ..database import Base, utcnow


class LoginHistory(Base):
    __tablename__ = "login_history"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    ip = Column(String(64))
    device = Column(JSON)
    location = Column(JSON)
    user_agent = Column(String(500))
    event = Column(String(20), default="login")  # login | register | external
    login_at = Column(DateTime, default=utcnow, index=True)

    user = relationship("User", back_populates="login_history")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ip": self.ip,
            "device": self.device,
            "location": self.location,
            "user_agent": self.user_agent,
            "event": self.event,
            "login_at": self.login_at.isoformat() if self.login_at else None,
        }
