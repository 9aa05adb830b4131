"""
Posts routes: creation, feed, single fetch, owner views, likes, votes and shares.
"""
from datetime import timedelta

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy.orm import Session
from typing import Optional

from ..auth import get_current_user, get_required_user
from ..config import get_settings
from ..database import as_utc, get_db, utcnow
from ..deps import get_feed_composer, get_media_storage, get_notification_service
from ..logging_config import api_logger
from ..models import PollOption, Post, PostMedia, User
from ..models.post import MODERATION_STATUSES, STATUS_IN_REVIEW, STATUS_LIVE
from ..responses import success, created, deleted, paginated, bad_request, forbidden, not_found
from ..schemas.posts import PostCreate, PostUpdate, VoteRequest
from ..services.content import (
    ContentError,
    can_view_post,
    cast_vote,
    increment_shares,
    post_to_dict,
    serialize_posts,
    toggle_post_like,
)
from ..services.feed import FeedComposer
from ..services.notifications import NotificationService
from ..services.storage import LocalMediaStorage, StorageError

settings = get_settings()

router = APIRouter(prefix="/api/v1/posts", tags=["posts"])

DEFAULT_POLL_DURATION = timedelta(days=7)


def get_live_post(db: Session, post_id: int, viewer: Optional[User]) -> Post:
    """A live post the viewer may see; hidden posts answer 404 like missing ones."""
    post = db.query(Post).filter(Post.id == post_id).first()
    if not post or not can_view_post(db, post, viewer):
        not_found("Post")
    return post


def get_owned_post(db: Session, post_id: int, user: User) -> Post:
    post = db.query(Post).filter(Post.id == post_id, Post.is_active.is_(True)).first()
    if not post:
        not_found("Post")
    if post.author_id != user.id and not user.is_admin:
        forbidden("Not authorized to modify this post")
    return post


@router.post("", status_code=201)
def create_post(
    post_data: PostCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Create a post. It starts in review when moderation is on."""
    post = Post(
        author_id=current_user.id,
        text=post_data.text,
        post_type=post_data.post_type,
        visibility=post_data.visibility,
        status=STATUS_IN_REVIEW if settings.moderation_enabled else STATUS_LIVE,
    )

    for position, item in enumerate(post_data.media):
        post.media.append(PostMedia(
            position=position,
            media_type=item.type,
            url=item.url,
            storage_id=item.storage_id,
            thumbnail=item.thumbnail,
        ))

    if post_data.poll:
        ends_at = as_utc(post_data.poll.ends_at) if post_data.poll.ends_at else utcnow() + DEFAULT_POLL_DURATION
        if ends_at <= utcnow():
            bad_request("Poll end time must be in the future")
        post.poll_question = post_data.poll.question
        post.poll_ends_at = ends_at
        post.poll_allow_multiple = post_data.poll.allow_multiple_votes
        for position, text in enumerate(post_data.poll.options):
            post.poll_options.append(PollOption(position=position, text=text.strip()))

    db.add(post)
    db.commit()
    db.refresh(post)

    api_logger.info("Post created", post_id=post.id, author_id=current_user.id, status=post.status)
    message = "Post submitted for review" if post.status == STATUS_IN_REVIEW else "Post created successfully"
    return created({"post": post_to_dict(db, post, current_user)}, message)


@router.post("/media", status_code=201)
async def upload_media(
    file: UploadFile = File(...),
    current_user: User = Depends(get_required_user),
    storage: LocalMediaStorage = Depends(get_media_storage),
):
    """Store an image or video and return a media descriptor for a new post."""
    content = await file.read()
    try:
        stored = storage.save(file.filename or "upload", content, file.content_type)
    except StorageError as e:
        bad_request(str(e))
    return created({"media": stored.to_dict()}, "Media uploaded")


@router.get("")
def get_feed(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    current_user: Optional[User] = Depends(get_current_user),
    composer: FeedComposer = Depends(get_feed_composer),
):
    """Personalized feed: followed authors first, then trending posts."""
    feed = composer.compose(current_user, page, limit)
    return success({
        "posts": serialize_posts(composer.db, feed.posts, current_user),
        "pagination": {"page": feed.page, "limit": feed.limit, "hasMore": feed.has_more},
    })


@router.get("/my-posts")
def get_my_posts(
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """All of the caller's posts, whatever their review status."""
    query = db.query(Post).filter(Post.author_id == current_user.id, Post.is_active.is_(True))
    if status:
        if status not in MODERATION_STATUSES:
            bad_request("Invalid status filter")
        query = query.filter(Post.status == status)

    total = query.count()
    posts = query.order_by(Post.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return paginated("posts", serialize_posts(db, posts, current_user), total, page, limit)


@router.get("/user/{user_id}")
def get_user_posts(
    user_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: Optional[User] = Depends(get_current_user),
):
    """Live public posts of one author."""
    query = db.query(Post).filter(
        Post.author_id == user_id,
        Post.status == STATUS_LIVE,
        Post.is_active.is_(True),
        Post.visibility == "public",
    )
    total = query.count()
    posts = query.order_by(Post.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return paginated("posts", serialize_posts(db, posts, current_user), total, page, limit)


@router.get("/{post_id}")
def get_post(
    post_id: int,
    db: Session = Depends(get_db),
    current_user: Optional[User] = Depends(get_current_user),
):
    """Fetch one live post the caller is allowed to see."""
    post = get_live_post(db, post_id, current_user)
    return success({"post": post_to_dict(db, post, current_user)})


@router.put("/{post_id}")
def update_post(
    post_id: int,
    update: PostUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Edit text or visibility (owner or admin)."""
    post = get_owned_post(db, post_id, current_user)
    for key, value in update.model_dump(exclude_unset=True).items():
        setattr(post, key, value)
    if not (post.text and post.text.strip()) and not post.media and not post.has_poll:
        bad_request("Post must have text, media or a poll")
    db.commit()
    db.refresh(post)
    return success({"post": post_to_dict(db, post, current_user)}, "Post updated successfully")


@router.delete("/{post_id}")
def delete_post(
    post_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
    storage: LocalMediaStorage = Depends(get_media_storage),
):
    """Delete a post with its comments, likes, votes and stored media."""
    post = get_owned_post(db, post_id, current_user)
    storage_ids = [m.storage_id for m in post.media if m.storage_id]

    db.delete(post)
    db.commit()

    for storage_id in storage_ids:
        try:
            storage.delete(storage_id)
        except (StorageError, OSError) as e:
            api_logger.warning("Media delete failed", post_id=post_id, storage_id=storage_id,
                               error_message=str(e))

    return deleted("Post deleted successfully")


@router.post("/{post_id}/like")
def like_post(
    post_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
    notifications: NotificationService = Depends(get_notification_service),
):
    """Toggle the caller's like on a post."""
    post = get_live_post(db, post_id, current_user)
    liked, likes_count = toggle_post_like(db, post, current_user)
    if liked:
        notifications.notify_activity("like", current_user, post.author_id, {"postId": post.id})
    return success(
        {"liked": liked, "likes_count": likes_count},
        "Post liked" if liked else "Post unliked",
    )


@router.post("/{post_id}/vote")
def vote_on_poll(
    post_id: int,
    vote: VoteRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Vote for one poll option."""
    post = get_live_post(db, post_id, current_user)
    try:
        cast_vote(db, post, current_user, vote.option_index)
    except ContentError as e:
        bad_request(str(e))
    db.refresh(post)
    return success({"poll": post_to_dict(db, post, current_user)["poll"]}, "Vote recorded")


@router.post("/{post_id}/share")
def share_post(
    post_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Count a share of a post."""
    post = get_live_post(db, post_id, current_user)
    return success({"shares_count": increment_shares(db, post)}, "Post shared")
