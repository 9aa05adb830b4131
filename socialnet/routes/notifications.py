"""
Notification routes for end users: device tokens, inbox and read state.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlalchemy.orm import Session
from typing import Optional

from ..auth import get_required_user
from ..database import get_db, utcnow
from ..deps import get_notification_service
from ..models import DeviceToken, Notification, User
from ..models.notification import (
    DELIVERY_STATUSES,
    NOTIFICATION_TYPES,
    STATUS_DELIVERED,
    STATUS_READ,
    UNREAD_STATUSES,
    InvalidTransition,
)
from ..responses import success, created, deleted, paginated, bad_request, not_found, clamp
from ..schemas.notifications import TokenDeactivate, TokenRegister
from ..services.notifications import NotificationService

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])

MIN_PAGE_SIZE = 10
MAX_PAGE_SIZE = 50


def get_own_notification(db: Session, notification_id: int, user: User) -> Notification:
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.recipient_id == user.id,
        Notification.is_active.is_(True),
    ).first()
    if not notification:
        not_found("Notification")
    return notification


@router.post("/register-token", status_code=201)
def register_token(
    body: TokenRegister,
    current_user: User = Depends(get_required_user),
    service: NotificationService = Depends(get_notification_service),
):
    """Register (or take over) a device push token."""
    device = body.model_dump(exclude={"token", "device_type"})
    record = service.register_token(current_user, body.token, body.device_type, **device)
    return created({"device": record.to_dict()}, "Device token registered successfully")


@router.post("/deactivate-token")
def deactivate_token(
    body: TokenDeactivate,
    current_user: User = Depends(get_required_user),
    service: NotificationService = Depends(get_notification_service),
):
    """Stop push delivery to one of the caller's devices."""
    if not service.deactivate_token(current_user, body.token):
        not_found("Device token")
    return success(message="Device token deactivated successfully")


@router.get("/devices")
def get_devices(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """The caller's active devices."""
    devices = db.query(DeviceToken).filter(
        DeviceToken.user_id == current_user.id,
        DeviceToken.is_active.is_(True),
    ).order_by(DeviceToken.last_used_at.desc()).all()
    return success({"devices": [d.to_dict() for d in devices]})


@router.get("")
def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20),
    type: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
    service: NotificationService = Depends(get_notification_service),
):
    """The caller's notifications, newest first, with the unread count."""
    limit = clamp(limit, MIN_PAGE_SIZE, MAX_PAGE_SIZE)
    query = db.query(Notification).filter(
        Notification.recipient_id == current_user.id,
        Notification.is_active.is_(True),
    )
    if type:
        if type not in NOTIFICATION_TYPES:
            bad_request("Invalid notification type")
        query = query.filter(Notification.type == type)
    if status:
        if status not in DELIVERY_STATUSES:
            bad_request("Invalid delivery status")
        query = query.filter(Notification.delivery_status == status)

    total = query.count()
    rows = query.order_by(Notification.created_at.desc(), Notification.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return paginated(
        "notifications",
        [n.to_dict() for n in rows],
        total,
        page,
        limit,
        unread_count=service.unread_count(current_user.id),
    )


@router.get("/stats")
def notification_stats(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Counts by type, priority and read state for the caller."""
    base = db.query(Notification).filter(
        Notification.recipient_id == current_user.id,
        Notification.is_active.is_(True),
    )
    by_type = dict(
        base.with_entities(Notification.type, func.count(Notification.id)).group_by(Notification.type).all()
    )
    by_priority = dict(
        base.with_entities(Notification.priority, func.count(Notification.id)).group_by(Notification.priority).all()
    )
    total = base.count()
    unread = base.filter(Notification.delivery_status.in_(UNREAD_STATUSES)).count()
    read = base.filter(Notification.delivery_status == STATUS_READ).count()
    return success({
        "stats": {
            "total": total,
            "unread": unread,
            "read": read,
            "by_type": by_type,
            "by_priority": by_priority,
        }
    })


@router.patch("/read-all")
def mark_all_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Mark every unread notification of the caller as read."""
    updated = db.query(Notification).filter(
        Notification.recipient_id == current_user.id,
        Notification.is_active.is_(True),
        Notification.delivery_status.in_(UNREAD_STATUSES),
    ).update({"delivery_status": STATUS_READ, "read_at": utcnow()}, synchronize_session=False)
    db.commit()
    return success({"updated": updated}, "All notifications marked as read")


@router.get("/{notification_id}")
def get_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    return success({"notification": get_own_notification(db, notification_id, current_user).to_dict()})


def _transition(db: Session, notification: Notification, status: str) -> dict:
    try:
        notification.transition(status)
    except InvalidTransition as e:
        bad_request(str(e))
    db.commit()
    db.refresh(notification)
    return notification.to_dict()


@router.patch("/{notification_id}/delivered")
def mark_delivered(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Device receipt: sent -> delivered."""
    notification = get_own_notification(db, notification_id, current_user)
    return success({"notification": _transition(db, notification, STATUS_DELIVERED)}, "Notification marked as delivered")


@router.patch("/{notification_id}/read")
def mark_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    notification = get_own_notification(db, notification_id, current_user)
    return success({"notification": _transition(db, notification, STATUS_READ)}, "Notification marked as read")


@router.delete("/{notification_id}")
def delete_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Hide a notification from the caller's inbox."""
    notification = get_own_notification(db, notification_id, current_user)
    notification.is_active = False
    db.commit()
    return deleted("Notification deleted successfully")
