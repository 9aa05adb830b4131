"""
Comment model with one level of replies.

Counters on the post and the parent comment are kept by mapper hooks so
route code never adjusts them by hand.
"""
from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, ForeignKey, UniqueConstraint, event, update,
)
from sqlalchemy.orm import relationship

from ..database import Base, utcnow
from .post import Post

MAX_COMMENT_LENGTH = 1000


class Comment(Base):
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, index=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_id = Column(Integer, ForeignKey("comments.id", ondelete="CASCADE"), nullable=True, index=True)
    text = Column(String(MAX_COMMENT_LENGTH), nullable=False)
    like_count = Column(Integer, default=0, nullable=False)
    replies_count = Column(Integer, default=0, nullable=False)
    is_edited = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    post = relationship("Post", back_populates="comments")
    user = relationship("User")
    parent = relationship("Comment", remote_side=[id], back_populates="replies")
    replies = relationship("Comment", back_populates="parent", cascade="all, delete-orphan")
    likes = relationship("CommentLike", cascade="all, delete-orphan")


class CommentLike(Base):
    __tablename__ = "comment_likes"
    __table_args__ = (
        UniqueConstraint("comment_id", "user_id", name="uq_comment_like"),
    )

    id = Column(Integer, primary_key=True, index=True)
    comment_id = Column(Integer, ForeignKey("comments.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow)


def _adjust_counters(connection, target: Comment, delta: int) -> None:
    if target.parent_id is None:
        connection.execute(
            update(Post.__table__)
            .where(Post.__table__.c.id == target.post_id)
            .values(comments_count=Post.__table__.c.comments_count + delta)
        )
    else:
        table = Comment.__table__
        connection.execute(
            update(table)
            .where(table.c.id == target.parent_id)
            .values(replies_count=table.c.replies_count + delta)
        )


@event.listens_for(Comment, "after_insert")
def _comment_inserted(mapper, connection, target):
    _adjust_counters(connection, target, 1)


@event.listens_for(Comment, "after_delete")
def _comment_deleted(mapper, connection, target):
    _adjust_counters(connection, target, -1)
