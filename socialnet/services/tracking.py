"""
Session lifecycle, screen tracking and the analytics built on them.
"""
import secrets
from collections import Counter, defaultdict
from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..database import utcnow
from ..logging_config import tracking_logger
from ..models import ScreenAction, ScreenActivity, User, UserSession
from ..models.tracking import (
    LIVE_SESSION_STATUSES,
    SESSION_ACTIVE,
    SESSION_EXPIRED,
    SESSION_IDLE,
    SESSION_LOGGED_OUT,
    seconds_between,
)

LOGIN_SCREEN = "login"


# ============================================================
# SESSION LIFECYCLE
# ============================================================

def live_sessions(db: Session, user_id: int) -> List[UserSession]:
    return db.query(UserSession).filter(
        UserSession.user_id == user_id,
        UserSession.status.in_(LIVE_SESSION_STATUSES),
    ).all()


def get_live_session(db: Session, user: User, session_id: int) -> Optional[UserSession]:
    return db.query(UserSession).filter(
        UserSession.id == session_id,
        UserSession.user_id == user.id,
        UserSession.status.in_(LIVE_SESSION_STATUSES),
    ).first()


def open_activities(db: Session, session: UserSession) -> List[ScreenActivity]:
    return db.query(ScreenActivity).filter(
        ScreenActivity.session_id == session.id,
        ScreenActivity.exited_at.is_(None),
    ).order_by(ScreenActivity.entered_at).all()


def close_session(db: Session, session: UserSession, status: str, at=None) -> UserSession:
    """Close every open activity and end the session (caller commits)."""
    at = at or utcnow()
    for activity in open_activities(db, session):
        activity.close(at)
    session.status = status
    session.end_time = at
    session.total_duration = seconds_between(session.start_time, at)
    return session


def start_session(db: Session, user: User, data: dict, ip: Optional[str],
                  user_agent: Optional[str], location: Optional[dict]) -> UserSession:
    """End any live session for the user and start a new one on the login screen."""
    now = utcnow()
    for previous in live_sessions(db, user.id):
        close_session(db, previous, SESSION_LOGGED_OUT, now)

    is_first = db.query(UserSession.id).filter(UserSession.user_id == user.id).first() is None

    session = UserSession(
        user_id=user.id,
        session_token=secrets.token_hex(32),
        device=data.get("device") or {},
        ip=ip,
        user_agent=(user_agent or "")[:500],
        location=data.get("location") or location,
        start_time=now,
        last_activity_time=now,
        status=SESSION_ACTIVE,
        total_screens=1,
        fcm_token=data.get("fcm_token"),
        language=data.get("language"),
        referrer=data.get("referrer"),
        is_first_session=is_first,
    )
    db.add(session)
    db.flush()

    db.add(ScreenActivity(
        session_id=session.id,
        user_id=user.id,
        screen_name=LOGIN_SCREEN,
        screen_route=f"/{LOGIN_SCREEN}",
        navigation_method="replace",
        entered_at=now,
        device_state=data.get("device_state"),
    ))
    db.commit()
    db.refresh(session)
    tracking_logger.info("Session started", user_id=user.id, session_id=session.id)
    return session


def track_screen(db: Session, session: UserSession, data: dict) -> ScreenActivity:
    """Close the open activity and record entry into a new screen."""
    now = utcnow()
    screen_name = data["screen_name"]

    previous_name = None
    for activity in open_activities(db, session):
        activity.close(now, next_screen=screen_name)
        previous_name = activity.screen_name

    activity = ScreenActivity(
        session_id=session.id,
        user_id=session.user_id,
        screen_name=screen_name,
        screen_route=data.get("screen_route"),
        screen_title=data.get("screen_title"),
        previous_screen=data.get("previous_screen") or previous_name,
        navigation_method=data.get("navigation_method") or "push",
        entered_at=now,
        load_time=data.get("load_time"),
        device_state=data.get("device_state"),
        location=data.get("location"),
        referrer=data.get("referrer"),
        extra=data.get("metadata") or {},
    )
    db.add(activity)

    session.total_screens = (session.total_screens or 0) + 1
    session.last_activity_time = now
    session.status = SESSION_ACTIVE
    db.commit()
    db.refresh(activity)
    return activity


def update_activity(db: Session, activity: ScreenActivity, scroll_depth: Optional[int] = None,
                    action: Optional[dict] = None, api_calls: Optional[int] = None,
                    error: Optional[dict] = None) -> ScreenActivity:
    now = utcnow()
    if scroll_depth is not None:
        activity.scroll_depth = max(activity.scroll_depth or 0, scroll_depth)
    if action:
        db.add(ScreenAction(
            activity_id=activity.id,
            action_type=action["action_type"],
            action_target=action.get("action_target"),
            extra=action.get("metadata") or {},
            occurred_at=now,
        ))
    if api_calls:
        activity.api_calls = (activity.api_calls or 0) + api_calls
    if error:
        # Reassign so the JSON column registers the change
        activity.errors = list(activity.errors or []) + [{
            "error_type": error.get("error_type"),
            "error_message": error.get("error_message"),
            "timestamp": now.isoformat(),
        }]

    session = activity.session
    if session is not None and session.status in LIVE_SESSION_STATUSES:
        session.last_activity_time = now
        session.status = SESSION_ACTIVE
    db.commit()
    db.refresh(activity)
    return activity


def heartbeat(db: Session, session: UserSession, idle: bool = False) -> UserSession:
    session.last_activity_time = utcnow()
    session.status = SESSION_IDLE if idle else SESSION_ACTIVE
    db.commit()
    db.refresh(session)
    return session


def end_session(db: Session, session: UserSession) -> UserSession:
    close_session(db, session, SESSION_LOGGED_OUT)
    db.commit()
    db.refresh(session)
    tracking_logger.info("Session ended", user_id=session.user_id, session_id=session.id,
                         total_duration=session.total_duration)
    return session


def expire_idle_sessions(db: Session, idle_minutes: int, now=None) -> int:
    """Expire live sessions whose last activity is older than the idle window.

    The end time is the last activity, not the sweep time. The status guard
    on each update keeps concurrent sweeps from expiring a session twice.
    """
    now = now or utcnow()
    cutoff = now - timedelta(minutes=idle_minutes)
    stale = db.query(UserSession).filter(
        UserSession.status.in_(LIVE_SESSION_STATUSES),
        UserSession.last_activity_time < cutoff,
    ).all()

    expired = 0
    for session in stale:
        ended_at = session.last_activity_time
        claimed = db.query(UserSession).filter(
            UserSession.id == session.id,
            UserSession.status.in_(LIVE_SESSION_STATUSES),
        ).update({
            "status": SESSION_EXPIRED,
            "end_time": ended_at,
            "total_duration": seconds_between(session.start_time, ended_at),
        }, synchronize_session=False)
        if claimed != 1:
            continue
        for activity in open_activities(db, session):
            activity.close(ended_at)
        expired += 1
    db.commit()
    db.expire_all()

    if expired:
        tracking_logger.info("Expired idle sessions", count=expired, idle_minutes=idle_minutes)
    return expired


def screen_flow(session: UserSession) -> List[dict]:
    return [
        {
            "screen_name": a.screen_name,
            "entered_at": a.entered_at.isoformat() if a.entered_at else None,
            "exited_at": a.exited_at.isoformat() if a.exited_at else None,
            "duration": a.duration,
            "navigation_method": a.navigation_method,
        }
        for a in session.activities
    ]


def current_screen(db: Session, session: UserSession) -> Optional[ScreenActivity]:
    return db.query(ScreenActivity).filter(
        ScreenActivity.session_id == session.id,
        ScreenActivity.exited_at.is_(None),
    ).order_by(ScreenActivity.entered_at.desc()).first()


def session_metrics(session: UserSession) -> dict:
    activities = list(session.activities)
    durations = [a.duration for a in activities if a.exited_at is not None]
    return {
        "total_screens": len(activities),
        "unique_screens": len({a.screen_name for a in activities}),
        "total_actions": sum(len(a.actions) for a in activities),
        "total_api_calls": sum(a.api_calls or 0 for a in activities),
        "total_errors": sum(len(a.errors or []) for a in activities),
        "average_screen_duration": round(sum(durations) / len(durations), 2) if durations else 0,
        "session_duration": session.total_duration if session.end_time else
        seconds_between(session.start_time, utcnow()),
    }


# ============================================================
# ANALYTICS
# ============================================================

def _since(days: int):
    return utcnow() - timedelta(days=days)


def _activities_by_session(db: Session, days: int) -> Dict[int, List[ScreenActivity]]:
    rows = db.query(ScreenActivity).filter(
        ScreenActivity.entered_at >= _since(days),
    ).order_by(ScreenActivity.session_id, ScreenActivity.entered_at, ScreenActivity.id).all()
    grouped: Dict[int, List[ScreenActivity]] = defaultdict(list)
    for row in rows:
        grouped[row.session_id].append(row)
    return grouped


def screen_analytics(db: Session, days: int = 7, limit: int = 20) -> List[dict]:
    rows = db.query(
        ScreenActivity.screen_name,
        func.count(ScreenActivity.id),
        func.count(func.distinct(ScreenActivity.user_id)),
        func.avg(ScreenActivity.duration),
        func.avg(ScreenActivity.scroll_depth),
    ).filter(
        ScreenActivity.entered_at >= _since(days),
    ).group_by(ScreenActivity.screen_name).order_by(func.count(ScreenActivity.id).desc()).limit(limit).all()

    return [
        {
            "screen_name": name,
            "visits": visits,
            "unique_users": users,
            "avg_duration": round(float(avg_duration or 0), 2),
            "avg_scroll_depth": round(float(avg_scroll or 0), 2),
        }
        for name, visits, users, avg_duration, avg_scroll in rows
    ]


def popular_paths(db: Session, days: int = 7, length: int = 3, limit: int = 10) -> List[dict]:
    counter: Counter = Counter()
    for activities in _activities_by_session(db, days).values():
        names = [a.screen_name for a in activities]
        for i in range(len(names) - length + 1):
            counter[tuple(names[i:i + length])] += 1
    return [{"path": list(path), "count": count} for path, count in counter.most_common(limit)]


def drop_off_points(db: Session, days: int = 7, limit: int = 10) -> List[dict]:
    """Screens where ended sessions stopped, with exit rate against total visits."""
    exits: Counter = Counter()
    visits: Counter = Counter()
    ended = {
        row.id for row in db.query(UserSession.id).filter(
            UserSession.start_time >= _since(days),
            UserSession.status.in_((SESSION_EXPIRED, SESSION_LOGGED_OUT)),
        ).all()
    }
    for session_id, activities in _activities_by_session(db, days).items():
        for activity in activities:
            visits[activity.screen_name] += 1
        if session_id in ended and activities:
            exits[activities[-1].screen_name] += 1

    return [
        {
            "screen_name": name,
            "exits": count,
            "visits": visits[name],
            "exit_rate": round(count / visits[name] * 100, 2) if visits[name] else 0,
        }
        for name, count in exits.most_common(limit)
    ]


def active_users_by_screen(db: Session) -> List[dict]:
    rows = db.query(
        ScreenActivity.screen_name,
        func.count(func.distinct(ScreenActivity.user_id)),
    ).join(UserSession, UserSession.id == ScreenActivity.session_id).filter(
        ScreenActivity.exited_at.is_(None),
        UserSession.status.in_(LIVE_SESSION_STATUSES),
    ).group_by(ScreenActivity.screen_name).order_by(func.count(func.distinct(ScreenActivity.user_id)).desc()).all()
    return [{"screen_name": name, "active_users": count} for name, count in rows]


def user_session_summary(db: Session, user_id: int, days: int = 30) -> dict:
    sessions = db.query(UserSession).filter(
        UserSession.user_id == user_id,
        UserSession.start_time >= _since(days),
    ).all()
    screens = Counter(
        row.screen_name for row in db.query(ScreenActivity.screen_name).filter(
            ScreenActivity.user_id == user_id,
            ScreenActivity.entered_at >= _since(days),
        ).all()
    )
    durations = [s.total_duration for s in sessions if s.end_time]
    return {
        "user_id": user_id,
        "total_sessions": len(sessions),
        "total_duration": sum(durations),
        "avg_session_duration": round(sum(durations) / len(durations), 2) if durations else 0,
        "avg_screens_per_session": round(sum(s.total_screens for s in sessions) / len(sessions), 2)
        if sessions else 0,
        "most_visited_screens": [{"screen_name": n, "visits": c} for n, c in screens.most_common(5)],
    }


def user_journey(db: Session, user_id: int, days: int = 7, limit: int = 20) -> List[dict]:
    sessions = db.query(UserSession).filter(
        UserSession.user_id == user_id,
        UserSession.start_time >= _since(days),
    ).order_by(UserSession.start_time.desc()).limit(limit).all()
    return [{"session": s.to_dict(), "flow": screen_flow(s)} for s in sessions]


def screen_detail(db: Session, screen_name: str, days: int = 7) -> dict:
    rows = db.query(ScreenActivity).filter(
        ScreenActivity.screen_name == screen_name,
        ScreenActivity.entered_at >= _since(days),
    ).all()
    durations = [a.duration for a in rows if a.exited_at is not None]
    hourly = Counter(a.entered_at.hour for a in rows if a.entered_at)
    return {
        "screen_name": screen_name,
        "visits": len(rows),
        "unique_users": len({a.user_id for a in rows}),
        "avg_duration": round(sum(durations) / len(durations), 2) if durations else 0,
        "avg_scroll_depth": round(sum(a.scroll_depth or 0 for a in rows) / len(rows), 2) if rows else 0,
        "came_from": [
            {"screen_name": n, "count": c}
            for n, c in Counter(a.previous_screen for a in rows if a.previous_screen).most_common(10)
        ],
        "went_to": [
            {"screen_name": n, "count": c}
            for n, c in Counter(a.next_screen for a in rows if a.next_screen).most_common(10)
        ],
        "hourly_distribution": [{"hour": h, "visits": hourly.get(h, 0)} for h in range(24)],
    }


def funnel(db: Session, screens: List[str], days: int = 7) -> List[dict]:
    """Sessions reaching each step of an ordered screen sequence."""
    reached = [0] * len(screens)
    for activities in _activities_by_session(db, days).values():
        step = 0
        for activity in activities:
            if step < len(screens) and activity.screen_name == screens[step]:
                reached[step] += 1
                step += 1

    result = []
    for index, name in enumerate(screens):
        base = reached[0] or 0
        result.append({
            "step": index + 1,
            "screen_name": name,
            "sessions": reached[index],
            "conversion_rate": round(reached[index] / base * 100, 2) if base else 0,
        })
    return result


def cohort_retention(db: Session, weeks: int = 4) -> List[dict]:
    """Weekly signup cohorts and the share of them with a session in each later week."""
    start = utcnow() - timedelta(weeks=weeks)
    users = db.query(User.id, User.created_at).filter(User.created_at >= start).all()
    activity = defaultdict(set)
    for user_id, started in db.query(UserSession.user_id, UserSession.start_time).filter(
        UserSession.start_time >= start,
    ).all():
        activity[user_id].add(started)

    cohorts: Dict[int, List[int]] = defaultdict(list)
    signup_at = {}
    for user_id, created_at in users:
        week = (created_at - start).days // 7
        cohorts[week].append(user_id)
        signup_at[user_id] = created_at

    result = []
    for week in sorted(cohorts):
        members = cohorts[week]
        retention = []
        for offset in range(weeks - week):
            active = 0
            for user_id in members:
                lo = signup_at[user_id] + timedelta(weeks=offset)
                hi = lo + timedelta(weeks=1)
                if any(lo <= t < hi for t in activity[user_id]):
                    active += 1
            retention.append(round(active / len(members) * 100, 2))
        result.append({
            "cohort_week": week,
            "cohort_start": (start + timedelta(weeks=week)).date().isoformat(),
            "users": len(members),
            "retention": retention,
        })
    return result


def dashboard_stats(db: Session, days: int = 7) -> dict:
    since = _since(days)
    sessions = db.query(UserSession).filter(UserSession.start_time >= since).all()
    ended = [s.total_duration for s in sessions if s.end_time]
    device_types = Counter((s.device or {}).get("type") or "unknown" for s in sessions)
    countries = Counter(((s.location or {}).get("country") or "Unknown") for s in sessions)
    cities = Counter(((s.location or {}).get("city") or "Unknown") for s in sessions)

    return {
        "users": {
            "total": db.query(func.count(User.id)).scalar(),
            "new": db.query(func.count(User.id)).filter(User.created_at >= since).scalar(),
            "active": len({s.user_id for s in sessions}),
            "online_now": db.query(func.count(func.distinct(UserSession.user_id))).filter(
                UserSession.status.in_(LIVE_SESSION_STATUSES),
            ).scalar(),
        },
        "sessions": {
            "total": len(sessions),
            "live": sum(1 for s in sessions if s.status in LIVE_SESSION_STATUSES),
            "avg_duration": round(sum(ended) / len(ended), 2) if ended else 0,
        },
        "screen_views": db.query(func.count(ScreenActivity.id)).filter(
            ScreenActivity.entered_at >= since,
        ).scalar(),
        "device_distribution": [{"type": k, "count": v} for k, v in device_types.most_common()],
        "top_countries": [{"country": k, "count": v} for k, v in countries.most_common(10)],
        "top_cities": [{"city": k, "count": v} for k, v in cities.most_common(10)],
        "top_screens": screen_analytics(db, days, limit=5),
    }
