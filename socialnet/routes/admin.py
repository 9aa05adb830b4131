"""
Admin routes: moderation queue and user management.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_
from sqlalchemy.orm import Session
from typing import List, Optional

from ..auth import require_admin
from ..database import get_db, utcnow
from ..deps import get_notification_service
from ..logging_config import api_logger
from ..models import Comment, Post, User
from ..models.post import MODERATION_STATUSES, STATUS_IN_REVIEW, STATUS_LIVE, STATUS_REJECTED
from ..responses import success, deleted, paginated, bad_request, forbidden, not_found, require
from ..schemas.admin import UserRoleUpdate, UserStatusUpdate
from ..services.content import serialize_posts
from ..services.notifications import NotificationService

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])

USER_SORTS = {
    "newest": User.created_at.desc(),
    "oldest": User.created_at.asc(),
    "name": User.name.asc(),
    "last_login": User.last_login_at.desc(),
}


@router.get("/stats")
def admin_stats(
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Counts of users, posts by review status and comments."""
    by_status = dict(
        db.query(Post.status, func.count(Post.id)).filter(Post.is_active.is_(True)).group_by(Post.status).all()
    )
    return success({
        "stats": {
            "users": {
                "total": db.query(func.count(User.id)).scalar(),
                "active": db.query(func.count(User.id)).filter(User.is_active.is_(True)).scalar(),
                "admins": db.query(func.count(User.id)).filter(User.role == "ADMIN").scalar(),
            },
            "posts": {
                "total": sum(by_status.values()),
                "pending": by_status.get(STATUS_IN_REVIEW, 0),
                "live": by_status.get(STATUS_LIVE, 0),
                "rejected": by_status.get(STATUS_REJECTED, 0),
            },
            "comments": db.query(func.count(Comment.id)).scalar(),
        }
    })


@router.get("/posts")
def list_posts(
    status: List[str] = Query([STATUS_IN_REVIEW]),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Posts by review status; pass ``status=all`` for every status."""
    query = db.query(Post).filter(Post.is_active.is_(True))
    if "all" not in status:
        invalid = [s for s in status if s not in MODERATION_STATUSES]
        if invalid:
            bad_request(f"Invalid status filter: {', '.join(invalid)}")
        query = query.filter(Post.status.in_(status))

    total = query.count()
    posts = query.order_by(Post.created_at.desc(), Post.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return paginated("posts", serialize_posts(db, posts, admin), total, page, limit)


def _review(db: Session, post_id: int, admin: User, status: str,
            notifications: NotificationService, kind: str) -> dict:
    post = db.query(Post).filter(Post.id == post_id, Post.is_active.is_(True)).first()
    if not post:
        not_found("Post")

    post.status = status
    post.reviewed_by_id = admin.id
    post.reviewed_at = utcnow()
    db.commit()
    db.refresh(post)

    api_logger.info("Post reviewed", post_id=post.id, status=status, reviewer_id=admin.id)
    notifications.notify_activity(kind, admin, post.author_id, {"postId": post.id})
    return serialize_posts(db, [post], admin)[0]


@router.put("/posts/{post_id}/approve")
def approve_post(
    post_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    notifications: NotificationService = Depends(get_notification_service),
):
    """Publish a post."""
    post = _review(db, post_id, admin, STATUS_LIVE, notifications, "post_approved")
    return success({"post": post}, "Post approved")


@router.put("/posts/{post_id}/reject")
def reject_post(
    post_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    notifications: NotificationService = Depends(get_notification_service),
):
    post = _review(db, post_id, admin, STATUS_REJECTED, notifications, "post_rejected")
    return success({"post": post}, "Post rejected")


@router.get("/users")
def list_users(
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    sort: str = "newest",
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Users with role, activity and text filters."""
    query = db.query(User)
    if role:
        query = query.filter(User.role == role)
    if is_active is not None:
        query = query.filter(User.is_active.is_(is_active))
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            User.name.ilike(pattern),
            User.user_name.ilike(pattern),
            User.email.ilike(pattern),
            User.phone.ilike(pattern),
        ))

    total = query.count()
    order = USER_SORTS.get(sort, USER_SORTS["newest"])
    users = query.order_by(order, User.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return paginated("users", [u.to_dict() for u in users], total, page, limit)


def get_user_or_404(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if not user:
        not_found("User")
    return user


@router.get("/users/{user_id}")
def user_detail(
    user_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """A user with registration/login snapshots and content counts."""
    user = get_user_or_404(db, user_id)
    data = user.to_dict(include_private=True)
    data["posts_count"] = db.query(func.count(Post.id)).filter(Post.author_id == user.id).scalar()
    data["comments_count"] = db.query(func.count(Comment.id)).filter(Comment.user_id == user.id).scalar()
    return success({"user": data})


@router.put("/users/{user_id}/status")
def update_user_status(
    user_id: int,
    body: UserStatusUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Activate or deactivate an account."""
    require(body.is_active, "is_active")
    user = get_user_or_404(db, user_id)
    if user.id == admin.id and not body.is_active:
        forbidden("You cannot deactivate your own account")

    user.is_active = body.is_active
    db.commit()
    db.refresh(user)
    state = "activated" if user.is_active else "deactivated"
    return success({"user": user.to_dict()}, f"User {state} successfully")


@router.put("/users/{user_id}/role")
def update_user_role(
    user_id: int,
    body: UserRoleUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    if user_id == admin.id:
        forbidden("You cannot change your own role")
    user = get_user_or_404(db, user_id)
    user.role = body.role
    db.commit()
    db.refresh(user)
    return success({"user": user.to_dict()}, "User role updated successfully")


@router.delete("/users/{user_id}")
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Deactivate an account; content stays in place."""
    if user_id == admin.id:
        forbidden("You cannot delete your own account")
    user = get_user_or_404(db, user_id)
    user.is_active = False
    db.commit()
    return deleted("User deleted successfully")
