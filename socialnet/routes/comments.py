"""
Comment routes: create, list, replies, edit, delete and like.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from ..auth import get_current_user, get_required_user
from ..database import get_db
from ..deps import get_notification_service
from ..models import Comment, User
from ..responses import success, created, deleted, paginated, bad_request, forbidden, not_found
from ..schemas.comments import CommentCreate, CommentUpdate
from ..services.content import comment_to_dict, liked_comment_ids, toggle_comment_like
from ..services.notifications import NotificationService
from .posts import get_live_post

router = APIRouter(prefix="/api/v1/comments", tags=["comments"])


def get_comment(db: Session, comment_id: int) -> Comment:
    comment = db.query(Comment).filter(Comment.id == comment_id, Comment.is_active.is_(True)).first()
    if not comment:
        not_found("Comment")
    return comment


def get_visible_comment(db: Session, comment_id: int, viewer: Optional[User]) -> Comment:
    comment = get_comment(db, comment_id)
    get_live_post(db, comment.post_id, viewer)
    return comment


def get_owned_comment(db: Session, comment_id: int, user: User) -> Comment:
    comment = get_comment(db, comment_id)
    if comment.user_id != user.id and not user.is_admin:
        forbidden("Not authorized to modify this comment")
    return comment


@router.post("", status_code=201)
def create_comment(
    comment_data: CommentCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
    notifications: NotificationService = Depends(get_notification_service),
):
    """Comment on a post, or reply to a comment on it."""
    post = get_live_post(db, comment_data.post_id, current_user)

    parent_id = None
    if comment_data.parent_comment_id is not None:
        parent = db.query(Comment).filter(
            Comment.id == comment_data.parent_comment_id,
            Comment.is_active.is_(True),
        ).first()
        if not parent:
            not_found("Parent comment")
        if parent.post_id != post.id:
            bad_request("Parent comment belongs to a different post")
        # Replies to replies attach to the top-level comment
        parent_id = parent.parent_id or parent.id

    comment = Comment(
        post_id=post.id,
        user_id=current_user.id,
        parent_id=parent_id,
        text=comment_data.text,
    )
    db.add(comment)
    db.commit()
    db.refresh(comment)

    notifications.notify_activity(
        "comment", current_user, post.author_id,
        {"postId": post.id, "commentId": comment.id},
        preview=comment.text,
    )
    return created({"comment": comment_to_dict(comment)}, "Comment added successfully")


@router.get("/post/{post_id}")
def get_post_comments(
    post_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: Optional[User] = Depends(get_current_user),
):
    """Top-level comments of a post, newest first."""
    get_live_post(db, post_id, current_user)
    query = db.query(Comment).filter(
        Comment.post_id == post_id,
        Comment.parent_id.is_(None),
        Comment.is_active.is_(True),
    )
    total = query.count()
    comments = query.order_by(Comment.created_at.desc(), Comment.id.desc()).offset((page - 1) * limit).limit(limit).all()
    liked = liked_comment_ids(db, [c.id for c in comments], current_user)
    return paginated("comments", [comment_to_dict(c, liked) for c in comments], total, page, limit)


@router.get("/{comment_id}/replies")
def get_replies(
    comment_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: Optional[User] = Depends(get_current_user),
):
    """Replies to a comment, oldest first."""
    get_visible_comment(db, comment_id, current_user)
    query = db.query(Comment).filter(Comment.parent_id == comment_id, Comment.is_active.is_(True))
    total = query.count()
    replies = query.order_by(Comment.created_at.asc(), Comment.id.asc()).offset((page - 1) * limit).limit(limit).all()
    liked = liked_comment_ids(db, [c.id for c in replies], current_user)
    return paginated("replies", [comment_to_dict(c, liked) for c in replies], total, page, limit)


@router.put("/{comment_id}")
def update_comment(
    comment_id: int,
    update: CommentUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Edit a comment (owner or admin)."""
    comment = get_owned_comment(db, comment_id, current_user)
    comment.text = update.text
    comment.is_edited = True
    db.commit()
    db.refresh(comment)
    return success({"comment": comment_to_dict(comment)}, "Comment updated successfully")


@router.delete("/{comment_id}")
def delete_comment(
    comment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Delete a comment and its replies (owner or admin)."""
    comment = get_owned_comment(db, comment_id, current_user)
    db.delete(comment)
    db.commit()
    return deleted("Comment deleted successfully")


@router.post("/{comment_id}/like")
def like_comment(
    comment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Toggle the caller's like on a comment."""
    comment = get_visible_comment(db, comment_id, current_user)
    liked, likes_count = toggle_comment_like(db, comment, current_user)
    return success(
        {"liked": liked, "likes_count": likes_count},
        "Comment liked" if liked else "Comment unliked",
    )
