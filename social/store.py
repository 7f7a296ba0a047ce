"""
social/store.py -- SQLAlchemy-backed persistence for posts, comments, follower edges and the feed.

Uses SQLAlchemy Core (not ORM) so the dataclasses in social/models.py remain
the authoritative domain representation. Shares the database (and MetaData)
with auth/store.py: the feed joins posts to their authors in the users table.

Pattern: Repository + Data Mapper. SocialStore is the repository; the
_row_to_* functions are the mappers. Route handlers never touch SQL directly.

Follower edges are stored ordered as (followed_id, follower_id):
  - self-follow is rejected before the insert (SelfFollowError) and also
    blocked by a CHECK constraint
  - a duplicate pair violates the primary key -> DuplicateFollowError
Both are conflict kinds the API reports distinctly.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = SocialStore(engine=user_store.engine)     # same database as UserStore
    post = store.create_post(Post(title="t", content="c", user_id=1))
    store.follow(follower_id=2, followed_id=1)
    feed = store.get_user_feed(2, FeedQuery(limit=10))
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import (
    CheckConstraint,
    Column,
    Integer,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.store import users
from core.config import get_settings
from core.database import DEFAULT_TIMEOUT_SECONDS, build_engine, metadata, now_iso, storage_errors
from core.errors import DuplicateFollowError, NotFoundError, SelfFollowError
from social.models import Comment, FeedItem, FeedQuery, Follow, Post

logger = logging.getLogger("socialfeed.social.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_posts = Table(
    "posts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(255), nullable=False),
    Column("content", Text, nullable=False),
    Column("user_id", Integer, nullable=False, index=True),
    Column("tags", Text),  # JSON array serialized as text
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_comments = Table(
    "comments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("post_id", Integer, nullable=False, index=True),
    Column("user_id", Integer, nullable=False),
    Column("content", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_followers = Table(
    "followers",
    metadata,
    Column("followed_id", Integer, nullable=False),
    Column("follower_id", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    PrimaryKeyConstraint("followed_id", "follower_id", name="pk_followers"),
    CheckConstraint("followed_id <> follower_id", name="chk_user_not_self_follow"),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SocialStore:
    def __init__(
        self,
        db_url: str | None = None,
        *,
        engine: Engine | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        if engine is None:
            engine = build_engine(db_url or get_settings().database_url, timeout)
        self.engine: Engine = engine
        with storage_errors("schema setup"):
            metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------------

    def create_post(self, post: Post) -> Post:
        """Insert a post and return it with id and timestamps populated."""
        now = now_iso()
        with storage_errors("create_post"):
            with self.engine.begin() as conn:
                result = conn.execute(
                    _posts.insert().values(
                        title=post.title,
                        content=post.content,
                        user_id=post.user_id,
                        tags=json.dumps(post.tags),
                        created_at=now,
                        updated_at=now,
                    )
                )
                post_id = result.inserted_primary_key[0]
        return Post(
            id=post_id,
            title=post.title,
            content=post.content,
            user_id=post.user_id,
            tags=list(post.tags),
            created_at=now,
            updated_at=now,
        )

    def get_post(self, post_id: int) -> Post:
        """Return the post or raise NotFoundError. Comments are not loaded."""
        with storage_errors("get_post"):
            with self.engine.connect() as conn:
                row = conn.execute(_posts.select().where(_posts.c.id == post_id)).fetchone()
        if row is None:
            raise NotFoundError()
        return _row_to_post(row)

    def update_post(self, post: Post) -> Post:
        """Persist title and content changes. Raises NotFoundError if the post is gone."""
        now = now_iso()
        with storage_errors("update_post"):
            with self.engine.begin() as conn:
                result = conn.execute(
                    _posts.update()
                    .where(_posts.c.id == post.id)
                    .values(title=post.title, content=post.content, updated_at=now)
                )
        if result.rowcount == 0:
            raise NotFoundError()
        post.updated_at = now
        return post

    def delete_post(self, post_id: int) -> None:
        """Delete a post and its comments in one transaction."""
        with storage_errors("delete_post"):
            with self.engine.begin() as conn:
                result = conn.execute(_posts.delete().where(_posts.c.id == post_id))
                if result.rowcount == 0:
                    raise NotFoundError()
                conn.execute(_comments.delete().where(_comments.c.post_id == post_id))

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def create_comment(self, comment: Comment) -> Comment:
        """Attach a comment to an existing post. Raises NotFoundError if the post is absent."""
        now = now_iso()
        with storage_errors("create_comment"):
            with self.engine.begin() as conn:
                exists = conn.execute(select(_posts.c.id).where(_posts.c.id == comment.post_id)).fetchone()
                if exists is None:
                    raise NotFoundError()
                result = conn.execute(
                    _comments.insert().values(
                        post_id=comment.post_id,
                        user_id=comment.user_id,
                        content=comment.content,
                        created_at=now,
                    )
                )
                comment_id = result.inserted_primary_key[0]
        return Comment(
            id=comment_id,
            post_id=comment.post_id,
            user_id=comment.user_id,
            content=comment.content,
            created_at=now,
        )

    def get_comments(self, post_id: int) -> list[Comment]:
        """Return a post's comments, oldest first, with each author's email."""
        with storage_errors("get_comments"):
            with self.engine.connect() as conn:
                rows = conn.execute(
                    select(_comments, users.c.email.label("author_email"))
                    .join_from(_comments, users, _comments.c.user_id == users.c.id, isouter=True)
                    .where(_comments.c.post_id == post_id)
                    .order_by(_comments.c.created_at, _comments.c.id)
                ).fetchall()
        return [_row_to_comment(r) for r in rows]

    # ------------------------------------------------------------------
    # Follower edges
    # ------------------------------------------------------------------

    def follow(self, follower_id: int, followed_id: int) -> Follow:
        """Record that follower_id follows followed_id.

        Raises SelfFollowError when both ids are equal and
        DuplicateFollowError when the edge already exists.
        """
        if follower_id == followed_id:
            raise SelfFollowError()
        now = now_iso()
        with storage_errors("follow"):
            try:
                with self.engine.begin() as conn:
                    conn.execute(
                        _followers.insert().values(followed_id=followed_id, follower_id=follower_id, created_at=now)
                    )
            except IntegrityError as exc:
                raise DuplicateFollowError() from exc
        return Follow(followed_id=followed_id, follower_id=follower_id, created_at=now)

    def unfollow(self, follower_id: int, followed_id: int) -> bool:
        """Remove the edge. Returns False if it did not exist (not an error)."""
        with storage_errors("unfollow"):
            with self.engine.begin() as conn:
                result = conn.execute(
                    _followers.delete().where(
                        (_followers.c.followed_id == followed_id) & (_followers.c.follower_id == follower_id)
                    )
                )
        return result.rowcount > 0

    def is_following(self, follower_id: int, followed_id: int) -> bool:
        with storage_errors("is_following"):
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(_followers.c.followed_id).where(
                        (_followers.c.followed_id == followed_id) & (_followers.c.follower_id == follower_id)
                    )
                ).fetchone()
        return row is not None

    # ------------------------------------------------------------------
    # Feed
    # ------------------------------------------------------------------

    def get_user_feed(self, user_id: int, query: FeedQuery) -> list[FeedItem]:
        """Posts by user_id and by everyone user_id follows, with author and comment count.

        tags matches posts carrying ANY of the given tags; search is a
        case-insensitive substring match on title or content.
        """
        followed = select(_followers.c.followed_id).where(_followers.c.follower_id == user_id)
        comment_counts = (
            select(_comments.c.post_id, func.count(_comments.c.id).label("comments_count"))
            .group_by(_comments.c.post_id)
            .subquery()
        )
        stmt = (
            select(
                _posts,
                users.c.email.label("author_email"),
                func.coalesce(comment_counts.c.comments_count, 0).label("comments_count"),
            )
            .join_from(_posts, users, _posts.c.user_id == users.c.id)
            .outerjoin(comment_counts, comment_counts.c.post_id == _posts.c.id)
            .where(or_(_posts.c.user_id == user_id, _posts.c.user_id.in_(followed)))
        )
        if query.tags:
            stmt = stmt.where(or_(*[_posts.c.tags.contains(json.dumps(tag), autoescape=True) for tag in query.tags]))
        if query.search:
            stmt = stmt.where(
                or_(
                    _posts.c.title.icontains(query.search, autoescape=True),
                    _posts.c.content.icontains(query.search, autoescape=True),
                )
            )
        if query.sort == "asc":
            stmt = stmt.order_by(_posts.c.created_at.asc(), _posts.c.id.asc())
        else:
            stmt = stmt.order_by(_posts.c.created_at.desc(), _posts.c.id.desc())
        stmt = stmt.limit(query.limit).offset(query.offset)

        with storage_errors("get_user_feed"):
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).fetchall()
        return [
            FeedItem(post=_row_to_post(r), author_email=r.author_email, comments_count=int(r.comments_count))
            for r in rows
        ]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_post(row) -> Post:
    return Post(
        id=row.id,
        title=row.title,
        content=row.content,
        user_id=row.user_id,
        tags=json.loads(row.tags) if row.tags else [],
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_comment(row) -> Comment:
    return Comment(
        id=row.id,
        post_id=row.post_id,
        user_id=row.user_id,
        content=row.content,
        created_at=row.created_at,
        author_email=row.author_email,
    )
