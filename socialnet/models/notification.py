"""
Notification record: one message to one recipient and its delivery state.
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, JSON, Text
from sqlalchemy.orm import relationship

from ..database import Base, utcnow

NOTIFICATION_TYPES = ("general", "post", "comment", "like", "follow", "call", "admin", "system")
PRIORITIES = ("low", "medium", "high", "urgent")

STATUS_PENDING = "pending"
STATUS_SENT = "sent"
STATUS_DELIVERED = "delivered"
STATUS_READ = "read"
STATUS_FAILED = "failed"
DELIVERY_STATUSES = (STATUS_PENDING, STATUS_SENT, STATUS_DELIVERED, STATUS_READ, STATUS_FAILED)

UNREAD_STATUSES = (STATUS_SENT, STATUS_DELIVERED)

# Allowed moves of the delivery state machine
TRANSITIONS = {
    STATUS_PENDING: {STATUS_SENT, STATUS_FAILED},
    STATUS_SENT: {STATUS_DELIVERED, STATUS_READ},
    STATUS_DELIVERED: {STATUS_READ},
    STATUS_READ: set(),
    STATUS_FAILED: {STATUS_PENDING},
}

TIMESTAMP_FIELDS = {
    STATUS_SENT: "sent_at",
    STATUS_DELIVERED: "delivered_at",
    STATUS_READ: "read_at",
}


class InvalidTransition(ValueError):
    pass


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    sent_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    recipient_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(100), nullable=False)
    body = Column(String(500), nullable=False)
    type = Column(String(20), default="general", nullable=False, index=True)
    priority = Column(String(10), default="medium", nullable=False)
    data = Column(JSON, default=dict)
    image_url = Column(String(1000), nullable=True)
    actions = Column(JSON, default=list)

    delivery_status = Column(String(20), default=STATUS_PENDING, nullable=False, index=True)
    gateway_message_id = Column(String(255), nullable=True)
    gateway_response = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, default=0, nullable=False)

    sent_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    read_at = Column(DateTime, nullable=True)

    scheduled_for = Column(DateTime, nullable=True, index=True)
    is_scheduled = Column(Boolean, default=False, nullable=False, index=True)
    claim_token = Column(String(64), nullable=True)
    claimed_at = Column(DateTime, nullable=True)

    expires_at = Column(DateTime, nullable=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    sent_by = relationship("User", foreign_keys=[sent_by_id])
    recipient = relationship("User", foreign_keys=[recipient_id])

    def transition(self, status: str) -> None:
        """Move along the delivery state machine, stamping the matching time."""
        if status == self.delivery_status and status in (STATUS_READ, STATUS_DELIVERED):
            return
        if status not in TRANSITIONS.get(self.delivery_status, set()):
            raise InvalidTransition(f"Cannot move notification from {self.delivery_status} to {status}")
        self.delivery_status = status
        field = TIMESTAMP_FIELDS.get(status)
        if field and getattr(self, field) is None:
            setattr(self, field, utcnow())

    def to_dict(self) -> dict:
        def iso(value):
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "sent_by": self.sent_by.to_public_dict() if self.sent_by else None,
            "recipient_id": self.recipient_id,
            "title": self.title,
            "body": self.body,
            "type": self.type,
            "priority": self.priority,
            "data": self.data or {},
            "image_url": self.image_url,
            "actions": self.actions or [],
            "delivery_status": self.delivery_status,
            "gateway_message_id": self.gateway_message_id,
            "error_message": self.error_message,
            "retry_count": self.retry_count,
            "sent_at": iso(self.sent_at),
            "delivered_at": iso(self.delivered_at),
            "read_at": iso(self.read_at),
            "scheduled_for": iso(self.scheduled_for),
            "is_scheduled": self.is_scheduled,
            "expires_at": iso(self.expires_at),
            "created_at": iso(self.created_at),
        }
