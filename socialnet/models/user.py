"""
User model for authentication, ownership and contact snapshots.
"""
import random

from sqlalchemy import Column, Integer, String, DateTime, Boolean, JSON
from sqlalchemy.orm import relationship

from ..database import Base, utcnow

ROLE_USER = "USER"
ROLE_ADMIN = "ADMIN"
ROLES = (ROLE_USER, ROLE_ADMIN)

DEFAULT_AVATAR = "https://placehold.co/200x200?text=User"

RTC_UID_MAX = 1_000_000


def random_rtc_uid() -> int:
    return random.randint(1, RTC_UID_MAX)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    user_name = Column(String(50), nullable=True)
    name = Column(String(50), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(32), unique=True, index=True, nullable=True)
    hashed_password = Column(String(255), nullable=False)
    avatar = Column(String(500), default=DEFAULT_AVATAR)
    role = Column(String(10), default=ROLE_USER, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    rtc_uid = Column(Integer, unique=True, index=True, default=random_rtc_uid)
    external_subject = Column(String(255), unique=True, nullable=True)

    # Registration snapshot
    registered_ip = Column(String(64))
    registered_device = Column(JSON)
    registered_location = Column(JSON)

    # Last login snapshot
    last_ip = Column(String(64))
    last_device = Column(JSON)
    last_location = Column(JSON)
    last_login_at = Column(DateTime)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    posts = relationship("Post", back_populates="author", cascade="all, delete-orphan",
                         foreign_keys="Post.author_id")
    login_history = relationship("LoginHistory", back_populates="user", cascade="all, delete-orphan")
    device_tokens = relationship("DeviceToken", back_populates="user", cascade="all, delete-orphan")

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def to_public_dict(self) -> dict:
        """Author card used inside posts, comments and follow lists."""
        return {
            "id": self.id,
            "name": self.name,
            "user_name": self.user_name,
            "avatar": self.avatar,
        }

    def to_dict(self, include_private: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "user_name": self.user_name,
            "email": self.email,
            "phone": self.phone,
            "avatar": self.avatar,
            "role": self.role,
            "is_active": self.is_active,
            "rtc_uid": self.rtc_uid,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_private:
            data.update({
                "registered_from": {
                    "ip": self.registered_ip,
                    "device": self.registered_device,
                    "location": self.registered_location,
                },
                "last_login": {
                    "ip": self.last_ip,
                    "device": self.last_device,
                    "location": self.last_location,
                    "at": self.last_login_at.isoformat() if self.last_login_at else None,
                },
            })
        return data
