"""
Push token registered by a client device.
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, Text
from sqlalchemy.orm import relationship

from ..database import Base, utcnow

DEVICE_TYPES = ("android", "ios", "web")


class DeviceToken(Base):
    __tablename__ = "device_tokens"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token = Column(String(512), unique=True, index=True, nullable=False)
    device_type = Column(String(10), nullable=False)
    device_id = Column(String(255))
    device_name = Column(String(255))
    device_model = Column(String(255))
    os_version = Column(String(64))
    app_version = Column(String(64))
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    last_used_at = Column(DateTime, default=utcnow)
    failure_count = Column(Integer, default=0, nullable=False)
    last_failure_at = Column(DateTime, nullable=True)
    last_failure_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="device_tokens")

    def to_dict(self, include_token: bool = False) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "device_type": self.device_type,
            "device_id": self.device_id,
            "device_name": self.device_name,
            "device_model": self.device_model,
            "os_version": self.os_version,
            "app_version": self.app_version,
            "is_active": self.is_active,
            "failure_count": self.failure_count,
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_token:
            data["token"] = self.token
        return data
