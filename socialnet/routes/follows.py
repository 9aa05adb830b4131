"""
Follow graph routes.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import Optional

from ..auth import get_current_user, get_required_user
from ..database import get_db
from ..deps import get_notification_service
from ..models import Follow, User
from ..responses import success, paginated, bad_request, conflict, not_found, unauthorized
from ..services.content import is_following
from ..services.notifications import NotificationService

router = APIRouter(prefix="/api/v1/follow", tags=["follow"])


@router.post("/{user_id}", status_code=201)
def follow_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
    notifications: NotificationService = Depends(get_notification_service),
):
    """Follow another user."""
    if user_id == current_user.id:
        bad_request("You cannot follow yourself")

    target = db.query(User).filter(User.id == user_id, User.is_active.is_(True)).first()
    if not target:
        not_found("User")

    if is_following(db, current_user.id, user_id):
        conflict("Already following this user")

    follow = Follow(follower_id=current_user.id, following_id=user_id, status="accepted")
    db.add(follow)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        conflict("Already following this user")

    notifications.notify_activity("follow", current_user, user_id, {"userId": current_user.id})
    return success({"following": target.to_public_dict()}, "User followed successfully")


@router.delete("/{user_id}")
def unfollow_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Stop following a user. Unfollowing someone not followed is a no-op."""
    removed = db.query(Follow).filter(
        Follow.follower_id == current_user.id,
        Follow.following_id == user_id,
    ).delete(synchronize_session=False)
    db.commit()
    return success({"removed": bool(removed)}, "User unfollowed successfully")


def _resolve_user_id(user_id: Optional[int], current_user: Optional[User]) -> int:
    if user_id is not None:
        return user_id
    if current_user is None:
        unauthorized()
    return current_user.id


def _follow_page(db: Session, filter_column, select_column, user_id: int, page: int, limit: int):
    query = db.query(Follow).filter(filter_column == user_id, Follow.status == "accepted")
    total = query.count()
    edges = query.order_by(Follow.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    users = []
    for edge in edges:
        other = edge.follower if select_column == "follower" else edge.following
        item = other.to_public_dict()
        item["followed_at"] = edge.created_at.isoformat() if edge.created_at else None
        users.append(item)
    return total, users


@router.get("/followers")
@router.get("/followers/{user_id}")
def get_followers(
    user_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: Optional[User] = Depends(get_current_user),
):
    """Users following ``user_id`` (or the caller)."""
    target = _resolve_user_id(user_id, current_user)
    total, users = _follow_page(db, Follow.following_id, "follower", target, page, limit)
    return paginated("followers", users, total, page, limit)


@router.get("/following")
@router.get("/following/{user_id}")
def get_following(
    user_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: Optional[User] = Depends(get_current_user),
):
    """Users followed by ``user_id`` (or the caller)."""
    target = _resolve_user_id(user_id, current_user)
    total, users = _follow_page(db, Follow.follower_id, "following", target, page, limit)
    return paginated("following", users, total, page, limit)


@router.get("/status/{user_id}")
def get_follow_status(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Whether the caller follows ``user_id`` and vice versa."""
    return success({
        "is_following": is_following(db, current_user.id, user_id),
        "is_followed_by": is_following(db, user_id, current_user.id),
    })
