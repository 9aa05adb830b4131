"""
Voice call signaling: call records, state changes and channel tokens.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth import get_required_user, require_admin
from ..database import get_db, utcnow
from ..deps import get_notification_service, get_rtc_service
from ..logging_config import get_logger
from ..models import User, VoiceCall
from ..models.tracking import seconds_between
from ..models.voice_call import (
    CALL_ADMIN_TO_USER,
    CALL_ANSWERED,
    CALL_ENDED,
    CALL_INITIATED,
    CALL_MISSED,
    CALL_REJECTED,
    CALL_RINGING,
    CALL_USER_TO_USER,
    PENDING_CALL_STATUSES,
    new_call_id,
)
from ..responses import success, created, paginated, bad_request, forbidden, not_found, server_error
from ..schemas.voice_calls import AdminCallCreate, UserCallCreate
from ..services.notifications import NotificationService
from ..services.rtc import ROLE_PUBLISHER, RtcConfigurationError, RtcTokenService

logger = get_logger("calls")

router = APIRouter(prefix="/api/v1/voice-calls", tags=["voice-calls"])


def get_call(db: Session, call_id: str) -> VoiceCall:
    call = db.query(VoiceCall).filter(VoiceCall.call_id == call_id).first()
    if not call:
        not_found("Call")
    return call


def issue_token(rtc: RtcTokenService, call: VoiceCall, user: User) -> dict:
    try:
        return rtc.generate_token(call.channel_name, user.rtc_uid, ROLE_PUBLISHER)
    except RtcConfigurationError as e:
        logger.error("Voice call token unavailable", error=e, call_id=call.call_id)
        server_error(str(e))


def _create_call(db: Session, caller: User, receiver_id: int, call_type: str, status: str,
                 rtc: RtcTokenService, notifications: NotificationService,
                 caller_phone=None, receiver_phone=None) -> dict:
    if receiver_id == caller.id:
        bad_request("You cannot call yourself")
    receiver = db.query(User).filter(User.id == receiver_id, User.is_active.is_(True)).first()
    if not receiver:
        not_found("Receiver")

    call_id = new_call_id()
    call = VoiceCall(
        call_id=call_id,
        channel_name=f"call_{call_id}",
        caller_id=caller.id,
        receiver_id=receiver.id,
        caller_phone=caller_phone or caller.phone,
        receiver_phone=receiver_phone or receiver.phone,
        call_type=call_type,
        status=status,
    )
    caller_token = issue_token(rtc, call, caller)
    receiver_token = issue_token(rtc, call, receiver)

    db.add(call)
    db.commit()
    db.refresh(call)

    notifications.notify_activity("call", caller, receiver.id, {
        "callId": call.call_id,
        "channelName": call.channel_name,
        "token": receiver_token["token"],
        "callType": call_type,
    })
    logger.info("Call created", call_id=call.call_id, caller_id=caller.id, receiver_id=receiver.id)
    return {"call": call.to_dict(), "token": caller_token, "receiver_token": receiver_token}


@router.post("/initiate", status_code=201)
def initiate_call(
    body: AdminCallCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    rtc: RtcTokenService = Depends(get_rtc_service),
    notifications: NotificationService = Depends(get_notification_service),
):
    """Admin calls a user."""
    data = _create_call(db, admin, body.receiver_id, CALL_ADMIN_TO_USER, CALL_INITIATED, rtc,
                        notifications, body.caller_phone, body.receiver_phone)
    return created(data, "Call initiated")


@router.post("/user-call", status_code=201)
def user_call(
    body: UserCallCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
    rtc: RtcTokenService = Depends(get_rtc_service),
    notifications: NotificationService = Depends(get_notification_service),
):
    """One user calls another."""
    data = _create_call(db, current_user, body.receiver_id, CALL_USER_TO_USER, CALL_RINGING, rtc, notifications)
    data.pop("receiver_token")
    return created(data, "Call started")


@router.get("/history")
def call_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Calls the caller took part in, newest first."""
    query = db.query(VoiceCall).filter(
        or_(VoiceCall.caller_id == current_user.id, VoiceCall.receiver_id == current_user.id),
    )
    total = query.count()
    rows = query.order_by(VoiceCall.created_at.desc(), VoiceCall.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return paginated("calls", [c.to_dict() for c in rows], total, page, limit)


@router.get("/{call_id}")
def call_details(
    call_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    call = get_call(db, call_id)
    if not call.is_participant(current_user.id) and not current_user.is_admin:
        forbidden("Not authorized to view this call")
    return success({"call": call.to_dict()})


@router.post("/{call_id}/answer")
def answer_call(
    call_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
    rtc: RtcTokenService = Depends(get_rtc_service),
):
    """Receiver answers a pending call and gets a channel token."""
    call = get_call(db, call_id)
    if call.receiver_id != current_user.id:
        forbidden("Only the receiver can answer this call")
    if call.status not in PENDING_CALL_STATUSES:
        bad_request(f"Call cannot be answered in status {call.status}")

    token = issue_token(rtc, call, current_user)
    call.status = CALL_ANSWERED
    call.start_time = utcnow()
    db.commit()
    db.refresh(call)
    return success({"call": call.to_dict(), "token": token}, "Call answered")


@router.post("/{call_id}/reject")
def reject_call(
    call_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    call = get_call(db, call_id)
    if call.receiver_id != current_user.id:
        forbidden("Only the receiver can reject this call")
    if call.status not in PENDING_CALL_STATUSES:
        bad_request(f"Call cannot be rejected in status {call.status}")

    call.status = CALL_REJECTED
    call.end_time = utcnow()
    db.commit()
    db.refresh(call)
    return success({"call": call.to_dict()}, "Call rejected")


@router.post("/{call_id}/end")
def end_call(
    call_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Either participant hangs up. Unanswered calls end as missed."""
    call = get_call(db, call_id)
    if not call.is_participant(current_user.id):
        forbidden("Only participants can end this call")

    now = utcnow()
    if call.status == CALL_ANSWERED:
        call.status = CALL_ENDED
        call.end_time = now
        call.duration = seconds_between(call.start_time, now)
    elif call.status in PENDING_CALL_STATUSES:
        call.status = CALL_MISSED
        call.end_time = now
        call.duration = 0
    else:
        bad_request(f"Call already finished with status {call.status}")

    db.commit()
    db.refresh(call)
    return success({"call": call.to_dict()}, "Call ended")
