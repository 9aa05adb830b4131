"""
Client-side session and screen tracking routes.
"""
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ..auth import get_required_user
from ..database import get_db
from ..deps import get_geolocator
from ..models import ScreenActivity, User, UserSession
from ..models.tracking import LIVE_SESSION_STATUSES
from ..responses import success, created, paginated, not_found
from ..schemas.tracking import ActivityUpdate, Heartbeat, ScreenEnter, SessionRef, SessionStart
from ..services import tracking
from ..services.client_info import get_client_ip
from ..services.geolocation import GeoLocator

router = APIRouter(prefix="/api/v1/tracking", tags=["tracking"])


def require_live_session(db: Session, user: User, session_id: int) -> UserSession:
    session = tracking.get_live_session(db, user, session_id)
    if not session:
        not_found("Active session")
    return session


@router.post("/session/start", status_code=201)
def start_session(
    request: Request,
    body: SessionStart,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
    geolocator: GeoLocator = Depends(get_geolocator),
):
    """Start a tracking session, ending any session still open for the caller."""
    ip = get_client_ip(request)
    location = None if body.location else geolocator.lookup(ip)
    session = tracking.start_session(
        db,
        current_user,
        body.model_dump(),
        ip=ip,
        user_agent=request.headers.get("user-agent"),
        location=location,
    )
    return created({"session": session.to_dict()}, "Session started")


@router.post("/screen", status_code=201)
def track_screen(
    body: ScreenEnter,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Record entry into a screen."""
    session = require_live_session(db, current_user, body.session_id)
    activity = tracking.track_screen(db, session, body.model_dump())
    return created({"activity": activity.to_dict()}, "Screen tracked")


@router.put("/screen/{activity_id}")
def update_screen_activity(
    activity_id: int,
    body: ActivityUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Add scroll depth, an action, API calls or an error to a screen visit."""
    activity = db.query(ScreenActivity).filter(
        ScreenActivity.id == activity_id,
        ScreenActivity.user_id == current_user.id,
    ).first()
    if not activity:
        not_found("Screen activity")

    activity = tracking.update_activity(
        db,
        activity,
        scroll_depth=body.scroll_depth,
        action=body.action.model_dump() if body.action else None,
        api_calls=body.api_calls,
        error=body.error.model_dump() if body.error else None,
    )
    return success({"activity": activity.to_dict(include_actions=True)}, "Activity updated")


@router.post("/session/heartbeat")
def session_heartbeat(
    body: Heartbeat,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Keep a session alive, optionally reporting the app as idle."""
    session = require_live_session(db, current_user, body.session_id)
    session = tracking.heartbeat(db, session, idle=body.idle)
    return success({"session": session.to_dict()})


@router.post("/session/end")
def end_session(
    body: SessionRef,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """End a session and close its open screen visits."""
    session = require_live_session(db, current_user, body.session_id)
    session = tracking.end_session(db, session)
    return success({"session": session.to_dict(), "flow": tracking.screen_flow(session)}, "Session ended")


@router.get("/session/current")
def current_session(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """The caller's live session with its screen flow."""
    session = db.query(UserSession).filter(
        UserSession.user_id == current_user.id,
        UserSession.status.in_(LIVE_SESSION_STATUSES),
    ).order_by(UserSession.start_time.desc()).first()
    if not session:
        return success({"session": None})

    screen = tracking.current_screen(db, session)
    return success({
        "session": session.to_dict(),
        "current_screen": screen.to_dict() if screen else None,
        "flow": tracking.screen_flow(session),
    })


@router.get("/sessions")
def my_sessions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """The caller's sessions, newest first."""
    query = db.query(UserSession).filter(UserSession.user_id == current_user.id)
    total = query.count()
    rows = query.order_by(UserSession.start_time.desc(), UserSession.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return paginated("sessions", [s.to_dict() for s in rows], total, page, limit)
