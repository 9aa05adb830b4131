"""
Voice call signaling record.
"""
import uuid

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from ..database import Base, utcnow

CALL_ADMIN_TO_USER = "admin_to_user"
CALL_USER_TO_USER = "user_to_user"

CALL_INITIATED = "initiated"
CALL_RINGING = "ringing"
CALL_ANSWERED = "answered"
CALL_REJECTED = "rejected"
CALL_ENDED = "ended"
CALL_MISSED = "missed"
CALL_FAILED = "failed"

PENDING_CALL_STATUSES = (CALL_INITIATED, CALL_RINGING)
TERMINAL_CALL_STATUSES = (CALL_REJECTED, CALL_ENDED, CALL_MISSED, CALL_FAILED)


def new_call_id() -> str:
    return uuid.uuid4().hex


class VoiceCall(Base):
    __tablename__ = "voice_calls"

    id = Column(Integer, primary_key=True, index=True)
    call_id = Column(String(64), unique=True, index=True, nullable=False, default=new_call_id)
    channel_name = Column(String(64), unique=True, nullable=False)
    caller_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    receiver_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    caller_phone = Column(String(32))
    receiver_phone = Column(String(32))
    call_type = Column(String(20), nullable=False)
    status = Column(String(20), default=CALL_INITIATED, nullable=False, index=True)
    start_time = Column(DateTime, nullable=True)
    end_time = Column(DateTime, nullable=True)
    duration = Column(Integer, default=0, nullable=False)
    recording_url = Column(String(1000))
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    caller = relationship("User", foreign_keys=[caller_id])
    receiver = relationship("User", foreign_keys=[receiver_id])

    def is_participant(self, user_id: int) -> bool:
        return user_id in (self.caller_id, self.receiver_id)

    def to_dict(self) -> dict:
        return {
            "call_id": self.call_id,
            "channel_name": self.channel_name,
            "caller": self.caller.to_public_dict() if self.caller else None,
            "receiver": self.receiver.to_public_dict() if self.receiver else None,
            "caller_phone": self.caller_phone,
            "receiver_phone": self.receiver_phone,
            "call_type": self.call_type,
            "status": self.status,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration": self.duration,
            "recording_url": self.recording_url,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
