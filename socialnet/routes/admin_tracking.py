"""
Admin analytics over sessions and screen activity.
"""
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy import String, cast
from sqlalchemy.orm import Session
from typing import List, Optional

from ..auth import require_admin
from ..config import get_settings
from ..database import as_utc, get_db
from ..models import User, UserSession
from ..models.tracking import LIVE_SESSION_STATUSES
from ..responses import success, paginated, bad_request, not_found
from ..services import tracking

router = APIRouter(prefix="/api/v1/admin/tracking", tags=["admin-tracking"])


@router.get("/active-sessions")
def active_sessions(
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Live sessions with their current screen."""
    sessions = db.query(UserSession).filter(
        UserSession.status.in_(LIVE_SESSION_STATUSES),
    ).order_by(UserSession.last_activity_time.desc()).all()

    items = []
    for session in sessions:
        screen = tracking.current_screen(db, session)
        item = session.to_dict()
        item["user"] = session.user.to_public_dict() if session.user else None
        item["current_screen"] = screen.screen_name if screen else None
        items.append(item)
    return success({"sessions": items, "count": len(items)})


@router.get("/sessions")
def all_sessions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user_id: Optional[int] = None,
    status: Optional[str] = None,
    country: Optional[str] = None,
    city: Optional[str] = None,
    device_type: Optional[str] = None,
    os: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Sessions with filters."""
    query = db.query(UserSession)
    if user_id is not None:
        query = query.filter(UserSession.user_id == user_id)
    if status:
        query = query.filter(UserSession.status == status)
    if start_date:
        query = query.filter(UserSession.start_time >= as_utc(start_date))
    if end_date:
        query = query.filter(UserSession.start_time <= as_utc(end_date))
    # JSON fields are matched textually to stay portable across databases
    for column, key, value in (
        (UserSession.location, "country", country),
        (UserSession.location, "city", city),
        (UserSession.device, "type", device_type),
        (UserSession.device, "os", os),
    ):
        if value:
            query = query.filter(cast(column, String).like(f'%"{key}": "{value}"%'))

    total = query.count()
    rows = query.order_by(UserSession.start_time.desc(), UserSession.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return paginated("sessions", [s.to_dict() for s in rows], total, page, limit)


@router.get("/sessions/{session_id}")
def session_detail(
    session_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """One session with its screen flow, actions and metrics."""
    session = db.get(UserSession, session_id)
    if not session:
        not_found("Session")
    data = session.to_dict()
    data["user"] = session.user.to_public_dict() if session.user else None
    return success({
        "session": data,
        "activities": [a.to_dict(include_actions=True) for a in session.activities],
        "metrics": tracking.session_metrics(session),
    })


@router.post("/sessions/expire-idle")
def expire_idle(
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Run the idle-session sweep now."""
    expired = tracking.expire_idle_sessions(db, get_settings().session_idle_minutes)
    return success({"expired": expired}, "Idle sessions expired")


@router.get("/screens")
def screens(
    days: int = Query(7, ge=1, le=365),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Per-screen visits, unique users, average duration and scroll depth."""
    return success({
        "screens": tracking.screen_analytics(db, days, limit),
        "active_now": tracking.active_users_by_screen(db),
    })


@router.get("/screens/{screen_name}")
def screen_detail(
    screen_name: str,
    days: int = Query(7, ge=1, le=365),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Transitions in and out of one screen and its hourly distribution."""
    return success({"screen": tracking.screen_detail(db, screen_name, days)})


@router.get("/users/{user_id}/behavior")
def user_behavior(
    user_id: int,
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    if not db.get(User, user_id):
        not_found("User")
    return success({"summary": tracking.user_session_summary(db, user_id, days)})


@router.get("/users/{user_id}/journey")
def user_journey(
    user_id: int,
    days: int = Query(7, ge=1, le=365),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """A user's recent sessions, each with its screen flow."""
    if not db.get(User, user_id):
        not_found("User")
    return success({"journey": tracking.user_journey(db, user_id, days, limit)})


@router.get("/paths")
def popular_paths(
    days: int = Query(7, ge=1, le=365),
    length: int = Query(3, ge=2, le=6),
    limit: int = Query(10, ge=1, le=50),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return success({"paths": tracking.popular_paths(db, days, length, limit)})


@router.get("/drop-offs")
def drop_offs(
    days: int = Query(7, ge=1, le=365),
    limit: int = Query(10, ge=1, le=50),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return success({"drop_offs": tracking.drop_off_points(db, days, limit)})


@router.get("/funnel")
def funnel(
    screens: List[str] = Query(...),
    days: int = Query(7, ge=1, le=365),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Session conversion through an ordered list of screens."""
    if len(screens) < 2:
        bad_request("A funnel needs at least two screens")
    return success({"funnel": tracking.funnel(db, screens, days)})


@router.get("/cohorts")
def cohorts(
    weeks: int = Query(4, ge=1, le=52),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return success({"cohorts": tracking.cohort_retention(db, weeks)})


@router.get("/dashboard")
def dashboard(
    days: int = Query(7, ge=1, le=365),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Headline user, session and screen numbers."""
    return success({"stats": tracking.dashboard_stats(db, days)})
