"""
Post and comment helpers: visibility, serialization and atomic membership
changes (likes, poll votes, shares).
"""
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..database import utcnow
from ..models import Comment, CommentLike, Follow, PollOption, PollVote, Post, PostLike, User
from ..models.post import STATUS_LIVE


class ContentError(Exception):
    """Rejected content operation; routes answer 400."""


def is_following(db: Session, follower_id: Optional[int], following_id: int) -> bool:
    if follower_id is None:
        return False
    return db.query(Follow.id).filter(
        Follow.follower_id == follower_id,
        Follow.following_id == following_id,
        Follow.status == "accepted",
    ).first() is not None


def following_ids(db: Session, user_id: int) -> Set[int]:
    rows = db.query(Follow.following_id).filter(
        Follow.follower_id == user_id,
        Follow.status == "accepted",
    ).all()
    return {row.following_id for row in rows}


def can_view_post(db: Session, post: Post, viewer: Optional[User]) -> bool:
    """Public single-post rule: live and active, then visibility."""
    if post.status != STATUS_LIVE or not post.is_active:
        return False
    if post.visibility == "public":
        return True
    if viewer is None:
        return False
    if viewer.id == post.author_id:
        return True
    if post.visibility == "followers":
        return is_following(db, viewer.id, post.author_id)
    return False


# ============================================================
# SERIALIZATION
# ============================================================

def serialize_posts(db: Session, posts: List[Post], viewer: Optional[User] = None) -> List[dict]:
    """Serialize posts with per-viewer like and vote flags in a fixed number of queries."""
    if not posts:
        return []
    ids = [p.id for p in posts]

    liked: Set[int] = set()
    voted: Set[int] = set()
    if viewer is not None:
        liked = {
            row.post_id for row in db.query(PostLike.post_id).filter(
                PostLike.post_id.in_(ids), PostLike.user_id == viewer.id,
            ).all()
        }
        voted = {
            row.option_id for row in db.query(PollVote.option_id).filter(
                PollVote.post_id.in_(ids), PollVote.user_id == viewer.id,
            ).all()
        }

    vote_counts: Dict[int, int] = dict(
        db.query(PollVote.option_id, func.count(PollVote.id))
        .filter(PollVote.post_id.in_(ids))
        .group_by(PollVote.option_id)
        .all()
    )

    return [_post_dict(p, p.id in liked, voted, vote_counts, viewer) for p in posts]


def post_to_dict(db: Session, post: Post, viewer: Optional[User] = None) -> dict:
    return serialize_posts(db, [post], viewer)[0]


def _post_dict(post: Post, liked: bool, voted: Set[int], vote_counts: Dict[int, int],
               viewer: Optional[User]) -> dict:
    poll = None
    if post.has_poll:
        options = [
            {
                "index": option.position,
                "text": option.text,
                "votes_count": vote_counts.get(option.id, 0),
                "voted": option.id in voted,
            }
            for option in post.poll_options
        ]
        poll = {
            "question": post.poll_question,
            "options": options,
            "total_votes": sum(o["votes_count"] for o in options),
            "ends_at": post.poll_ends_at.isoformat() if post.poll_ends_at else None,
            "allow_multiple_votes": post.poll_allow_multiple,
            "has_ended": bool(post.poll_ends_at and post.poll_ends_at < utcnow()),
        }

    data = {
        "id": post.id,
        "author": post.author.to_public_dict() if post.author else None,
        "text": post.text,
        "post_type": post.post_type,
        "media": [m.to_dict() for m in post.media],
        "poll": poll,
        "likes_count": post.like_count,
        "comments_count": post.comments_count,
        "shares_count": post.shares_count,
        "visibility": post.visibility,
        "status": post.status,
        "is_active": post.is_active,
        "created_at": post.created_at.isoformat() if post.created_at else None,
        "updated_at": post.updated_at.isoformat() if post.updated_at else None,
    }
    if viewer is not None:
        data["liked"] = liked
    if viewer is not None and (viewer.is_admin or viewer.id == post.author_id):
        data["reviewed_by"] = post.reviewed_by_id
        data["reviewed_at"] = post.reviewed_at.isoformat() if post.reviewed_at else None
    return data


def comment_to_dict(comment: Comment, liked_ids: Iterable[int] = ()) -> dict:
    return {
        "id": comment.id,
        "post_id": comment.post_id,
        "parent_comment_id": comment.parent_id,
        "user": comment.user.to_public_dict() if comment.user else None,
        "text": comment.text,
        "likes_count": comment.like_count,
        "replies_count": comment.replies_count,
        "liked": comment.id in set(liked_ids),
        "is_edited": comment.is_edited,
        "created_at": comment.created_at.isoformat() if comment.created_at else None,
        "updated_at": comment.updated_at.isoformat() if comment.updated_at else None,
    }


def liked_comment_ids(db: Session, comment_ids: List[int], viewer: Optional[User]) -> Set[int]:
    if viewer is None or not comment_ids:
        return set()
    return {
        row.comment_id for row in db.query(CommentLike.comment_id).filter(
            CommentLike.comment_id.in_(comment_ids), CommentLike.user_id == viewer.id,
        ).all()
    }


# ============================================================
# ATOMIC MEMBERSHIP
# ============================================================

def _toggle(db: Session, like_model, owner_column: str, counter_model, counter_column: str,
            target_id: int, user_id: int) -> bool:
    """Toggle a (target, user) row in a join table and move the counter with it.

    Returns True when the row exists after the call.
    """
    owner = getattr(like_model, owner_column)
    counter = getattr(counter_model, counter_column)

    removed = db.query(like_model).filter(
        owner == target_id, like_model.user_id == user_id,
    ).delete(synchronize_session=False)
    if removed:
        db.query(counter_model).filter(counter_model.id == target_id).update(
            {counter: counter - removed}, synchronize_session=False,
        )
        db.commit()
        return False

    db.add(like_model(**{owner_column: target_id, "user_id": user_id}))
    try:
        db.flush()
    except IntegrityError:
        # Lost a race with a concurrent like from the same user
        db.rollback()
        return True
    db.query(counter_model).filter(counter_model.id == target_id).update(
        {counter: counter + 1}, synchronize_session=False,
    )
    db.commit()
    return True


def toggle_post_like(db: Session, post: Post, user: User) -> Tuple[bool, int]:
    liked = _toggle(db, PostLike, "post_id", Post, "like_count", post.id, user.id)
    db.refresh(post)
    return liked, post.like_count


def toggle_comment_like(db: Session, comment: Comment, user: User) -> Tuple[bool, int]:
    liked = _toggle(db, CommentLike, "comment_id", Comment, "like_count", comment.id, user.id)
    db.refresh(comment)
    return liked, comment.like_count


def increment_shares(db: Session, post: Post) -> int:
    db.query(Post).filter(Post.id == post.id).update(
        {Post.shares_count: Post.shares_count + 1}, synchronize_session=False,
    )
    db.commit()
    db.refresh(post)
    return post.shares_count


def cast_vote(db: Session, post: Post, user: User, option_index: int) -> None:
    """Record a poll vote; uniqueness is enforced by the vote table constraints."""
    if not post.has_poll:
        raise ContentError("This post does not have a poll")
    if post.poll_ends_at and post.poll_ends_at < utcnow():
        raise ContentError("Poll has ended")

    option = db.query(PollOption).filter(
        PollOption.post_id == post.id,
        PollOption.position == option_index,
    ).first()
    if option is None:
        raise ContentError("Invalid option index")

    db.add(PollVote(
        option_id=option.id,
        post_id=post.id,
        user_id=user.id,
        single_vote_post_id=None if post.poll_allow_multiple else post.id,
    ))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        if post.poll_allow_multiple:
            raise ContentError("You have already voted for this option")
        raise ContentError("Already voted")
