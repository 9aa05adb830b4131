"""
User profile routes: own profile, stats, public profiles and login history.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlalchemy.orm import Session
from typing import Optional

from ..auth import get_current_user, get_required_user
from ..database import get_db
from ..models import Comment, Follow, LoginHistory, Post, User
from ..responses import success, paginated, not_found
from ..schemas.auth import ProfileUpdate
from ..services.content import is_following
from .auth import update_profile

router = APIRouter(prefix="/api/v1/users", tags=["users"])


def follow_counts(db: Session, user_id: int) -> dict:
    followers = db.query(func.count(Follow.id)).filter(
        Follow.following_id == user_id, Follow.status == "accepted",
    ).scalar()
    following = db.query(func.count(Follow.id)).filter(
        Follow.follower_id == user_id, Follow.status == "accepted",
    ).scalar()
    return {"followers_count": followers, "following_count": following}


@router.get("/me")
def get_my_profile(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Get the current user's profile with follow counts."""
    data = current_user.to_dict(include_private=True)
    data.update(follow_counts(db, current_user.id))
    return success({"user": data})


@router.put("/me")
def update_my_profile(
    update: ProfileUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Update the current user's profile."""
    return update_profile(update, db, current_user)


@router.get("/stats")
def get_my_stats(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Post, follow and engagement counts for the current user."""
    by_status = dict(
        db.query(Post.status, func.count(Post.id))
        .filter(Post.author_id == current_user.id, Post.is_active.is_(True))
        .group_by(Post.status)
        .all()
    )
    likes_received = db.query(func.coalesce(func.sum(Post.like_count), 0)).filter(
        Post.author_id == current_user.id,
    ).scalar()
    comments_written = db.query(func.count(Comment.id)).filter(
        Comment.user_id == current_user.id,
    ).scalar()

    stats = {
        "posts": {
            "total": sum(by_status.values()),
            "live": by_status.get("live", 0),
            "in_review": by_status.get("inReview", 0),
            "rejected": by_status.get("rejected", 0),
        },
        "likes_received": likes_received,
        "comments_written": comments_written,
    }
    stats.update(follow_counts(db, current_user.id))
    return success({"stats": stats})


@router.get("/profile/{user_id}")
def get_profile(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: Optional[User] = Depends(get_current_user),
):
    """Public profile of another user."""
    user = db.query(User).filter(User.id == user_id, User.is_active.is_(True)).first()
    if not user:
        not_found("User")

    data = user.to_public_dict()
    data["created_at"] = user.created_at.isoformat() if user.created_at else None
    data.update(follow_counts(db, user.id))
    data["posts_count"] = db.query(func.count(Post.id)).filter(
        Post.author_id == user.id,
        Post.status == "live",
        Post.is_active.is_(True),
    ).scalar()
    if current_user:
        data["is_following"] = is_following(db, current_user.id, user.id)
    return success({"user": data})


@router.get("/login-history")
def get_login_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Paginated login history of the current user."""
    query = db.query(LoginHistory).filter(LoginHistory.user_id == current_user.id)
    total = query.count()
    rows = query.order_by(LoginHistory.login_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return paginated("history", [r.to_dict() for r in rows], total, page, limit)
