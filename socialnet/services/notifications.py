"""
Notification delivery: device tokens, multicast sends, scheduling and retry.
"""
import secrets
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..config import Settings
from ..database import utcnow
from ..logging_config import push_logger
from ..models import DeviceToken, Notification, User
from ..models.notification import (
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_SENT,
    UNREAD_STATUSES,
)
from .push import MulticastResult, PushGateway, PushMessage

ALL_DEVICES_FAILED = "Failed to send to all devices"
NO_ACTIVE_TOKENS = "No active device tokens found for user"

SCHEDULED_BATCH_SIZE = 100
STALE_CLAIM = timedelta(minutes=10)


class NotificationError(Exception):
    """Domain error raised by notification operations."""


class DeliveryError(NotificationError):
    """Raised when a notification cannot be handed to the push gateway."""


@dataclass
class NotificationPayload:
    title: str
    body: str
    type: str = "general"
    priority: str = "medium"
    data: Dict[str, str] = field(default_factory=dict)
    image_url: Optional[str] = None
    actions: List[dict] = field(default_factory=list)
    expires_at: Optional[object] = None


@dataclass
class DeliveryReport:
    notification: Notification
    success_count: int
    failure_count: int

    def to_dict(self) -> dict:
        return {
            "notification": self.notification.to_dict(),
            "success_count": self.success_count,
            "failure_count": self.failure_count,
        }


# kind -> (type, title, body template, priority)
ACTIVITY_TEMPLATES = {
    "like": ("like", "New like", "{sender} liked your post", "low"),
    "comment": ("comment", "New comment", "{sender} commented on your post: {preview}", "medium"),
    "follow": ("follow", "New follower", "{sender} started following you", "medium"),
    "post": ("post", "New post", "{sender} shared a new post", "low"),
    "post_approved": ("post", "Post approved", "Your post is now live", "medium"),
    "post_rejected": ("post", "Post rejected", "Your post did not pass review", "medium"),
    "call": ("call", "Incoming call", "{sender} is calling you", "urgent"),
}


class NotificationService:
    """Creates notification records and delivers them through a push gateway."""

    def __init__(self, db: Session, gateway: PushGateway, settings: Settings):
        self.db = db
        self.gateway = gateway
        self.settings = settings

    # ------------------------------------------------------------
    # Device tokens
    # ------------------------------------------------------------

    def register_token(self, user: User, token: str, device_type: str, **device) -> DeviceToken:
        """Register a push token for ``user``, taking it over from any previous owner."""
        now = utcnow()
        record = self.db.query(DeviceToken).filter(DeviceToken.token == token).first()
        if record is None:
            record = DeviceToken(token=token, user_id=user.id, device_type=device_type)
            self.db.add(record)
        else:
            record.user_id = user.id
            record.device_type = device_type

        for key, value in device.items():
            if value is not None:
                setattr(record, key, value)
        record.is_active = True
        record.failure_count = 0
        record.last_failure_at = None
        record.last_failure_reason = None
        record.last_used_at = now

        self.db.commit()
        self.db.refresh(record)
        push_logger.info("Device token registered", user_id=user.id, device_type=device_type)
        return record

    def deactivate_token(self, user: User, token: str) -> bool:
        record = self.db.query(DeviceToken).filter(
            DeviceToken.token == token,
            DeviceToken.user_id == user.id,
        ).first()
        if record is None:
            return False
        record.is_active = False
        self.db.commit()
        return True

    def active_tokens(self, user_id: int) -> List[DeviceToken]:
        return self.db.query(DeviceToken).filter(
            DeviceToken.user_id == user_id,
            DeviceToken.is_active.is_(True),
        ).all()

    def mark_token_failed(self, record: DeviceToken, reason: Optional[str]) -> None:
        record.failure_count = (record.failure_count or 0) + 1
        record.last_failure_at = utcnow()
        record.last_failure_reason = reason
        if record.failure_count >= self.settings.device_token_failure_threshold:
            record.is_active = False
            push_logger.warning(
                "Device token deactivated after repeated failures",
                device_token_id=record.id,
                failure_count=record.failure_count,
            )

    def cleanup_stale_tokens(self, now=None) -> int:
        """Delete inactive tokens untouched for the configured number of days."""
        cutoff = (now or utcnow()) - timedelta(days=self.settings.device_token_stale_days)
        removed = self.db.query(DeviceToken).filter(
            DeviceToken.is_active.is_(False),
            DeviceToken.updated_at < cutoff,
        ).delete(synchronize_session=False)
        self.db.commit()
        return removed

    # ------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------

    def _new_record(self, recipient_id: int, payload: NotificationPayload,
                    sent_by_id: Optional[int]) -> Notification:
        return Notification(
            sent_by_id=sent_by_id,
            recipient_id=recipient_id,
            title=payload.title,
            body=payload.body,
            type=payload.type,
            priority=payload.priority,
            data=dict(payload.data or {}),
            image_url=payload.image_url,
            actions=list(payload.actions or []),
            expires_at=payload.expires_at,
            delivery_status=STATUS_PENDING,
        )

    def _push_message(self, notification: Notification) -> PushMessage:
        data = {
            "notificationId": str(notification.id),
            "type": notification.type,
            "priority": notification.priority,
        }
        data.update(notification.data or {})
        return PushMessage(
            title=notification.title,
            body=notification.body,
            data=data,
            priority=notification.priority,
            image_url=notification.image_url,
        )

    def _deliver(self, notification: Notification, tokens: List[DeviceToken]) -> DeliveryReport:
        """Multicast ``notification`` to ``tokens`` and record the outcome on it."""
        values = [t.token for t in tokens]
        try:
            result = self.gateway.send_multicast(values, self._push_message(notification))
        except Exception as e:
            push_logger.error("Push gateway raised", error=e, notification_id=notification.id)
            result = MulticastResult.all_failed(values, str(e))

        now = utcnow()
        by_token = {t.token: t for t in tokens}
        first_message_id = None
        for item in result.responses:
            record = by_token.get(item.token)
            if record is None:
                continue
            if item.success:
                record.last_used_at = now
                first_message_id = first_message_id or item.message_id
            else:
                self.mark_token_failed(record, item.error)

        notification.gateway_response = result.to_dict()
        if result.success_count > 0:
            notification.transition(STATUS_SENT)
            notification.gateway_message_id = first_message_id
            notification.error_message = None
        else:
            notification.transition(STATUS_FAILED)
            notification.error_message = ALL_DEVICES_FAILED
        notification.is_scheduled = False

        self.db.commit()
        self.db.refresh(notification)
        push_logger.info(
            "Notification delivered",
            notification_id=notification.id,
            recipient_id=notification.recipient_id,
            status=notification.delivery_status,
            success_count=result.success_count,
            failure_count=result.failure_count,
        )
        return DeliveryReport(notification, result.success_count, result.failure_count)

    def send_to_user(self, recipient_id: int, payload: NotificationPayload,
                     sent_by_id: Optional[int] = None) -> DeliveryReport:
        """Send one notification to every active device of one user."""
        recipient = self.db.get(User, recipient_id)
        if recipient is None:
            raise DeliveryError("User not found")

        tokens = self.active_tokens(recipient_id)
        if not tokens:
            raise DeliveryError(NO_ACTIVE_TOKENS)

        notification = self._new_record(recipient_id, payload, sent_by_id)
        self.db.add(notification)
        self.db.commit()
        self.db.refresh(notification)
        return self._deliver(notification, tokens)

    def send_to_users(self, recipient_ids: Iterable[int], payload: NotificationPayload,
                      sent_by_id: Optional[int] = None) -> dict:
        """Independent per-recipient sends, aggregated into one report."""
        results, errors = [], []
        success_count = failure_count = 0

        for recipient_id in dict.fromkeys(recipient_ids):
            try:
                report = self.send_to_user(recipient_id, payload, sent_by_id)
            except DeliveryError as e:
                failure_count += 1
                errors.append({"user_id": recipient_id, "error": str(e)})
                continue

            if report.notification.delivery_status == STATUS_SENT:
                success_count += 1
            else:
                failure_count += 1
            results.append({
                "user_id": recipient_id,
                "notification_id": report.notification.id,
                "status": report.notification.delivery_status,
                "success_count": report.success_count,
                "failure_count": report.failure_count,
            })

        return {
            "success_count": success_count,
            "failure_count": failure_count,
            "results": results,
            "errors": errors,
        }

    def broadcast(self, payload: NotificationPayload, sent_by_id: Optional[int] = None) -> dict:
        ids = [row.id for row in self.db.query(User.id).filter(User.is_active.is_(True)).all()]
        report = self.send_to_users(ids, payload, sent_by_id)
        report["total_users"] = len(ids)
        return report

    def send_to_role(self, role: str, payload: NotificationPayload,
                     sent_by_id: Optional[int] = None) -> dict:
        ids = [
            row.id for row in self.db.query(User.id).filter(
                User.role == role,
                User.is_active.is_(True),
            ).all()
        ]
        report = self.send_to_users(ids, payload, sent_by_id)
        report["total_users"] = len(ids)
        return report

    def notify_activity(self, kind: str, sender: Optional[User], recipient_id: int,
                        data: Optional[Dict[str, str]] = None, preview: str = "") -> Optional[DeliveryReport]:
        """Best-effort activity notification; delivery problems are only logged."""
        if sender is not None and sender.id == recipient_id:
            return None
        ntype, title, template, priority = ACTIVITY_TEMPLATES[kind]
        payload = NotificationPayload(
            title=title,
            body=template.format(sender=sender.name if sender else "Someone", preview=preview[:80]),
            type=ntype,
            priority=priority,
            data={k: str(v) for k, v in (data or {}).items()},
        )
        try:
            return self.send_to_user(recipient_id, payload, sender.id if sender else None)
        except NotificationError as e:
            push_logger.info("Activity notification skipped", kind=kind, recipient_id=recipient_id,
                             reason=str(e))
            return None

    # ------------------------------------------------------------
    # Scheduling and retry
    # ------------------------------------------------------------

    def schedule(self, recipient_id: int, payload: NotificationPayload, scheduled_for,
                 sent_by_id: Optional[int] = None) -> Notification:
        if scheduled_for <= utcnow():
            raise NotificationError("Scheduled time must be in the future")
        if self.db.get(User, recipient_id) is None:
            raise NotificationError("User not found")

        notification = self._new_record(recipient_id, payload, sent_by_id)
        notification.scheduled_for = scheduled_for
        notification.is_scheduled = True
        self.db.add(notification)
        self.db.commit()
        self.db.refresh(notification)
        push_logger.info("Notification scheduled", notification_id=notification.id,
                         scheduled_for=scheduled_for.isoformat())
        return notification

    def _claim(self, notification_id: int, claim_token: str, now) -> bool:
        """Atomically take ownership of a due scheduled record."""
        claimed = self.db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.is_scheduled.is_(True),
            Notification.delivery_status == STATUS_PENDING,
            or_(Notification.claim_token.is_(None), Notification.claimed_at < now - STALE_CLAIM),
        ).update({"claim_token": claim_token, "claimed_at": now}, synchronize_session=False)
        self.db.commit()
        return claimed == 1

    def process_scheduled(self, now=None) -> dict:
        """Deliver every due scheduled notification exactly once."""
        now = now or utcnow()
        due_ids = [
            row.id for row in self.db.query(Notification.id).filter(
                Notification.is_scheduled.is_(True),
                Notification.delivery_status == STATUS_PENDING,
                Notification.is_active.is_(True),
                Notification.scheduled_for <= now,
                or_(Notification.claim_token.is_(None), Notification.claimed_at < now - STALE_CLAIM),
            ).order_by(Notification.scheduled_for).limit(SCHEDULED_BATCH_SIZE).all()
        ]

        claim_token = secrets.token_hex(16)
        summary = {"due": len(due_ids), "processed": 0, "sent": 0, "failed": 0}
        for notification_id in due_ids:
            if not self._claim(notification_id, claim_token, now):
                continue

            notification = self.db.get(Notification, notification_id)
            self.db.refresh(notification)
            tokens = self.active_tokens(notification.recipient_id)
            if tokens:
                self._deliver(notification, tokens)
            else:
                notification.transition(STATUS_FAILED)
                notification.error_message = NO_ACTIVE_TOKENS
                notification.is_scheduled = False
                self.db.commit()

            summary["processed"] += 1
            if notification.delivery_status == STATUS_SENT:
                summary["sent"] += 1
            else:
                summary["failed"] += 1

        if summary["processed"]:
            push_logger.info("Processed scheduled notifications", **summary)
        return summary

    def retry(self, notification: Notification) -> DeliveryReport:
        """Re-run delivery for a failed notification."""
        if notification.delivery_status != STATUS_FAILED:
            raise NotificationError("Only failed notifications can be retried")

        notification.retry_count = (notification.retry_count or 0) + 1
        notification.transition(STATUS_PENDING)
        notification.error_message = None
        self.db.commit()

        tokens = self.active_tokens(notification.recipient_id)
        if not tokens:
            notification.transition(STATUS_FAILED)
            notification.error_message = NO_ACTIVE_TOKENS
            self.db.commit()
            raise DeliveryError(NO_ACTIVE_TOKENS)
        return self._deliver(notification, tokens)

    # ------------------------------------------------------------
    # Queries and housekeeping
    # ------------------------------------------------------------

    def unread_count(self, user_id: int) -> int:
        return self.db.query(func.count(Notification.id)).filter(
            Notification.recipient_id == user_id,
            Notification.is_active.is_(True),
            Notification.delivery_status.in_(UNREAD_STATUSES),
        ).scalar()

    def cleanup_expired(self, now=None) -> int:
        removed = self.db.query(Notification).filter(
            Notification.expires_at.isnot(None),
            Notification.expires_at < (now or utcnow()),
        ).delete(synchronize_session=False)
        self.db.commit()
        return removed
