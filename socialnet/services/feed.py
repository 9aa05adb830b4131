"""
Personalized feed composition.

A page is built from recent posts by followed authors, backfilled with
trending public posts, ranked so followed posts always come first, and on
deep pages topped up with recycled high-engagement posts.
"""
import random
from dataclasses import dataclass
from typing import List, Optional, Set

from sqlalchemy.orm import Session, selectinload

from ..config import Settings
from ..logging_config import feed_logger, timed
from ..models import Post, User
from ..models.post import STATUS_LIVE
from ..responses import clamp
from .content import following_ids

# Larger than any page, so a followed post always outranks a trending one
AFFINITY_BONUS = 1000.0


def rank_score(position: int, is_followed: bool, jitter: float, rng: random.Random) -> float:
    """Score a candidate from its position within its source list.

    Position encodes recency (followed) or engagement (trending); the
    random term can move a post only ``jitter`` slots within its group.
    """
    score = -float(position)
    if is_followed:
        score += AFFINITY_BONUS
    if jitter > 0:
        score += rng.uniform(-jitter, jitter)
    return score


@dataclass
class FeedPage:
    posts: List[Post]
    page: int
    limit: int
    has_more: bool


class FeedComposer:
    """Builds one feed page for a viewer."""

    def __init__(self, db: Session, settings: Settings, rng: Optional[random.Random] = None):
        self.db = db
        self.settings = settings
        self.rng = rng or random.Random()

    def _visible(self):
        return self.db.query(Post).options(
            selectinload(Post.author),
            selectinload(Post.media),
            selectinload(Post.poll_options),
        ).filter(
            Post.status == STATUS_LIVE,
            Post.is_active.is_(True),
        )

    def _followed_posts(self, authors: Set[int], offset: int, limit: int) -> List[Post]:
        if not authors:
            return []
        return (
            self._visible()
            .filter(
                Post.author_id.in_(authors),
                Post.visibility.in_(("public", "followers")),
            )
            .order_by(Post.created_at.desc(), Post.id.desc())
            .offset(offset)
            .limit(2 * limit)
            .all()
        )

    def _trending_posts(self, exclude_authors: Set[int], offset: int, count: int) -> List[Post]:
        query = self._visible().filter(Post.visibility == "public")
        if exclude_authors:
            query = query.filter(Post.author_id.notin_(exclude_authors))
        return (
            query.order_by(
                Post.like_count.desc(),
                Post.comments_count.desc(),
                Post.created_at.desc(),
                Post.id.desc(),
            )
            .offset(offset)
            .limit(count)
            .all()
        )

    def _evergreen_posts(self, seen: Set[int], count: int) -> List[Post]:
        query = self._visible().filter(Post.visibility == "public")
        if seen:
            query = query.filter(Post.id.notin_(seen))
        candidates = (
            query.order_by(Post.like_count.desc(), Post.comments_count.desc())
            .limit(count)
            .all()
        )
        self.rng.shuffle(candidates)
        return candidates

    @timed(feed_logger)
    def compose(self, viewer: Optional[User], page: int = 1, limit: int = 20) -> FeedPage:
        page = max(1, page)
        limit = clamp(limit, self.settings.feed_min_limit, self.settings.feed_max_limit)
        offset = (page - 1) * limit

        followed_authors = following_ids(self.db, viewer.id) if viewer else set()
        followed = self._followed_posts(followed_authors, offset, limit)

        trending: List[Post] = []
        if len(followed) < limit:
            shortfall = limit - len(followed)
            excluded = set(followed_authors)
            if viewer:
                excluded.add(viewer.id)
            trending = self._trending_posts(excluded, offset, shortfall + limit)

        scored = []
        seen: Set[int] = set()
        for group, is_followed in ((followed, True), (trending, False)):
            for position, post in enumerate(group):
                if post.id in seen:
                    continue
                seen.add(post.id)
                score = rank_score(position, is_followed, self.settings.feed_jitter, self.rng)
                scored.append((score, post))

        scored.sort(key=lambda item: item[0], reverse=True)
        posts = [post for _, post in scored[:limit]]

        if len(posts) < limit and page > self.settings.feed_recycle_after_page:
            on_page = {p.id for p in posts}
            for post in self._evergreen_posts(on_page, 2 * limit):
                if len(posts) >= limit:
                    break
                posts.append(post)

        has_more = True if self.settings.feed_infinite_scroll else len(posts) == limit

        feed_logger.debug(
            "Feed composed",
            viewer_id=viewer.id if viewer else None,
            page=page,
            limit=limit,
            followed=len(followed),
            trending=len(trending),
            returned=len(posts),
        )
        return FeedPage(posts=posts, page=page, limit=limit, has_more=has_more)
