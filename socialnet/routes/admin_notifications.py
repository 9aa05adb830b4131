"""
Admin notification routes: targeted, bulk, broadcast, role and scheduled sends.
"""
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlalchemy.orm import Session
from typing import Optional

from ..auth import require_admin
from ..database import as_utc, get_db
from ..deps import get_notification_service
from ..models import DeviceToken, Notification, User
from ..models.notification import STATUS_DELIVERED, STATUS_FAILED, STATUS_READ, STATUS_SENT
from ..responses import success, created, deleted, paginated, bad_request, not_found
from ..schemas.notifications import (
    Broadcast,
    NotificationContent,
    ScheduleNotification,
    SendToRole,
    SendToUser,
    SendToUsers,
)
from ..services.notifications import (
    DeliveryError,
    NotificationError,
    NotificationPayload,
    NotificationService,
)

router = APIRouter(prefix="/api/v1/admin/notifications", tags=["admin-notifications"])

CONTENT_FIELDS = set(NotificationContent.model_fields)


def to_payload(body: NotificationContent) -> NotificationPayload:
    fields = body.model_dump(include=CONTENT_FIELDS)
    if fields.get("expires_at"):
        fields["expires_at"] = as_utc(fields["expires_at"])
    return NotificationPayload(**fields)


@router.post("/send", status_code=201)
def send_notification(
    body: SendToUser,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    service: NotificationService = Depends(get_notification_service),
):
    """Send to every active device of one user."""
    if not db.query(User.id).filter(User.id == body.user_id).first():
        not_found("User")
    try:
        report = service.send_to_user(body.user_id, to_payload(body), admin.id)
    except DeliveryError as e:
        bad_request(str(e), "DELIVERY_FAILED")
    return created(report.to_dict(), "Notification sent")


@router.post("/send-multiple")
def send_to_multiple(
    body: SendToUsers,
    admin: User = Depends(require_admin),
    service: NotificationService = Depends(get_notification_service),
):
    """Independent sends to several users; one failure does not stop the rest."""
    report = service.send_to_users(body.user_ids, to_payload(body), admin.id)
    return success(report, f"Sent to {report['success_count']} users, {report['failure_count']} failed")


@router.post("/broadcast")
def broadcast(
    body: Broadcast,
    admin: User = Depends(require_admin),
    service: NotificationService = Depends(get_notification_service),
):
    """Send to every active user."""
    report = service.broadcast(to_payload(body), admin.id)
    return success(report, "Broadcast completed")


@router.post("/send-by-role")
def send_by_role(
    body: SendToRole,
    admin: User = Depends(require_admin),
    service: NotificationService = Depends(get_notification_service),
):
    """Send to every active user with a role."""
    report = service.send_to_role(body.role, to_payload(body), admin.id)
    return success(report, f"Sent to role {body.role}")


@router.post("/schedule", status_code=201)
def schedule_notification(
    body: ScheduleNotification,
    admin: User = Depends(require_admin),
    service: NotificationService = Depends(get_notification_service),
):
    """Create a notification to be delivered at a future time."""
    try:
        notification = service.schedule(body.user_id, to_payload(body), as_utc(body.scheduled_for), admin.id)
    except NotificationError as e:
        bad_request(str(e))
    return created({"notification": notification.to_dict()}, "Notification scheduled successfully")


@router.get("")
def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    type: Optional[str] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    sent_by: Optional[int] = None,
    recipient: Optional[int] = None,
    scheduled: Optional[bool] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Every notification with filters."""
    query = db.query(Notification)
    if type:
        query = query.filter(Notification.type == type)
    if status:
        query = query.filter(Notification.delivery_status == status)
    if priority:
        query = query.filter(Notification.priority == priority)
    if sent_by is not None:
        query = query.filter(Notification.sent_by_id == sent_by)
    if recipient is not None:
        query = query.filter(Notification.recipient_id == recipient)
    if scheduled is not None:
        query = query.filter(Notification.is_scheduled.is_(scheduled))
    if start_date:
        query = query.filter(Notification.created_at >= as_utc(start_date))
    if end_date:
        query = query.filter(Notification.created_at <= as_utc(end_date))

    total = query.count()
    rows = query.order_by(Notification.created_at.desc(), Notification.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return paginated("notifications", [n.to_dict() for n in rows], total, page, limit)


@router.get("/stats")
def notification_overview(
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Delivery overview with success rate."""
    by_status = dict(
        db.query(Notification.delivery_status, func.count(Notification.id))
        .group_by(Notification.delivery_status).all()
    )
    by_type = dict(
        db.query(Notification.type, func.count(Notification.id)).group_by(Notification.type).all()
    )
    total = sum(by_status.values())
    delivered = sum(by_status.get(s, 0) for s in (STATUS_SENT, STATUS_DELIVERED, STATUS_READ))
    attempted = delivered + by_status.get(STATUS_FAILED, 0)
    return success({
        "overview": {
            "total": total,
            "by_status": by_status,
            "by_type": by_type,
            "scheduled": db.query(func.count(Notification.id)).filter(Notification.is_scheduled.is_(True)).scalar(),
            "success_rate": round(delivered / attempted * 100, 2) if attempted else 0,
        },
        "devices": {
            "total": db.query(func.count(DeviceToken.id)).scalar(),
            "active": db.query(func.count(DeviceToken.id)).filter(DeviceToken.is_active.is_(True)).scalar(),
        },
    })


@router.get("/devices")
def list_devices(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    device_type: Optional[str] = None,
    is_active: Optional[bool] = None,
    user_id: Optional[int] = None,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Registered devices with per-type counts."""
    query = db.query(DeviceToken)
    if device_type:
        query = query.filter(DeviceToken.device_type == device_type)
    if is_active is not None:
        query = query.filter(DeviceToken.is_active.is_(is_active))
    if user_id is not None:
        query = query.filter(DeviceToken.user_id == user_id)

    total = query.count()
    rows = query.order_by(DeviceToken.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    by_type = dict(
        db.query(DeviceToken.device_type, func.count(DeviceToken.id))
        .filter(DeviceToken.is_active.is_(True))
        .group_by(DeviceToken.device_type).all()
    )
    return paginated("devices", [d.to_dict() for d in rows], total, page, limit, by_type=by_type)


@router.post("/process-scheduled")
def process_scheduled(
    admin: User = Depends(require_admin),
    service: NotificationService = Depends(get_notification_service),
):
    """Run the scheduled-notification sweep now."""
    return success(service.process_scheduled(), "Scheduled notifications processed")


@router.post("/cleanup")
def cleanup(
    admin: User = Depends(require_admin),
    service: NotificationService = Depends(get_notification_service),
):
    """Remove expired notifications and stale device tokens now."""
    return success({
        "expired_notifications": service.cleanup_expired(),
        "stale_tokens": service.cleanup_stale_tokens(),
    }, "Cleanup completed")


@router.post("/{notification_id}/retry")
def retry_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    service: NotificationService = Depends(get_notification_service),
):
    """Re-deliver a failed notification."""
    notification = db.get(Notification, notification_id)
    if not notification:
        not_found("Notification")
    try:
        report = service.retry(notification)
    except NotificationError as e:
        bad_request(str(e))
    return success(report.to_dict(), "Notification retried")


@router.delete("/{notification_id}")
def delete_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Soft-delete a notification."""
    notification = db.get(Notification, notification_id)
    if not notification:
        not_found("Notification")
    notification.is_active = False
    db.commit()
    return deleted("Notification deleted successfully")
