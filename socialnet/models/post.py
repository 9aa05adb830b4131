"""
Post model with media attachments, polls and likes.
"""
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Boolean, ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ..database import Base, utcnow

POST_TYPES = ("text", "image", "video", "poll", "mixed")
VISIBILITIES = ("public", "private", "followers")

STATUS_IN_REVIEW = "inReview"
STATUS_LIVE = "live"
STATUS_REJECTED = "rejected"
MODERATION_STATUSES = (STATUS_IN_REVIEW, STATUS_LIVE, STATUS_REJECTED)

MAX_TEXT_LENGTH = 5000


class Post(Base):
    __tablename__ = "posts"

    id = Column(Integer, primary_key=True, index=True)
    author_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    text = Column(Text, nullable=True)
    post_type = Column(String(10), default="text", nullable=False)
    visibility = Column(String(10), default="public", nullable=False)
    status = Column(String(10), default=STATUS_IN_REVIEW, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Poll
    poll_question = Column(String(500), nullable=True)
    poll_ends_at = Column(DateTime, nullable=True)
    poll_allow_multiple = Column(Boolean, default=False)

    # Counters, only ever changed with atomic UPDATE statements
    like_count = Column(Integer, default=0, nullable=False)
    comments_count = Column(Integer, default=0, nullable=False)
    shares_count = Column(Integer, default=0, nullable=False)

    reviewed_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    author = relationship("User", back_populates="posts", foreign_keys=[author_id])
    reviewed_by = relationship("User", foreign_keys=[reviewed_by_id])
    media = relationship("PostMedia", back_populates="post", cascade="all, delete-orphan",
                         order_by="PostMedia.position")
    poll_options = relationship("PollOption", back_populates="post", cascade="all, delete-orphan",
                                order_by="PollOption.position")
    likes = relationship("PostLike", cascade="all, delete-orphan")
    comments = relationship("Comment", back_populates="post", cascade="all, delete-orphan")

    @property
    def has_poll(self) -> bool:
        return self.poll_question is not None


class PostMedia(Base):
    __tablename__ = "post_media"

    id = Column(Integer, primary_key=True, index=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, default=0)
    media_type = Column(String(10), nullable=False)  # image | video
    url = Column(String(1000), nullable=False)
    storage_id = Column(String(255), nullable=True)
    thumbnail = Column(String(1000), nullable=True)

    post = relationship("Post", back_populates="media")

    def to_dict(self) -> dict:
        return {
            "type": self.media_type,
            "url": self.url,
            "storage_id": self.storage_id,
            "thumbnail": self.thumbnail,
        }


class PollOption(Base):
    __tablename__ = "poll_options"

    id = Column(Integer, primary_key=True, index=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    text = Column(String(200), nullable=False)

    post = relationship("Post", back_populates="poll_options")
    votes = relationship("PollVote", back_populates="option", cascade="all, delete-orphan")


class PollVote(Base):
    """One voter's choice of one option.

    ``single_vote_post_id`` is filled only on single-choice polls, so the
    unique constraint on it stops a second vote on the same poll while
    leaving multi-choice polls limited to one vote per option.
    """
    __tablename__ = "poll_votes"
    __table_args__ = (
        UniqueConstraint("option_id", "user_id", name="uq_poll_vote_option_user"),
        UniqueConstraint("single_vote_post_id", "user_id", name="uq_poll_vote_single_choice"),
    )

    id = Column(Integer, primary_key=True, index=True)
    option_id = Column(Integer, ForeignKey("poll_options.id", ondelete="CASCADE"), nullable=False, index=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    single_vote_post_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    option = relationship("PollOption", back_populates="votes")


class PostLike(Base):
    __tablename__ = "post_likes"
    __table_args__ = (
        UniqueConstraint("post_id", "user_id", name="uq_post_like"),
    )

    id = Column(Integer, primary_key=True, index=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow)
