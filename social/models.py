"""
social/models.py -- Domain dataclasses for posts, comments, follower edges and the feed.

These are pure data containers with zero logic. All business rules
(self-follow, duplicate edges, feed visibility) live in social/store.py.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Optional


@dataclass
class Comment:
    post_id: int
    user_id: int
    content: str
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    author_email: Optional[str] = None


@dataclass
class Post:
    """A post owned by exactly one user (user_id).

    Ownership is what the update/delete gates compare against the acting user.
    comments is only populated by the "show" read path.
    """

    title: str
    content: str
    user_id: int
    tags: list[str] = field(default_factory=list)
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""
    comments: list[Comment] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Follow:
    """Directed edge: follower_id follows followed_id. follower_id != followed_id."""

    followed_id: int
    follower_id: int
    created_at: str = ""


@dataclass
class FeedItem:
    """One row of a personalized feed: a post plus author and comment count."""

    post: Post
    author_email: str
    comments_count: int

    def to_dict(self) -> dict[str, Any]:
        data = self.post.to_dict()
        data.pop("comments", None)
        data["author"] = {"id": self.post.user_id, "email": self.author_email}
        data["comments_count"] = self.comments_count
        return data


@dataclass
class FeedQuery:
    """Already-validated feed parameters (the API layer enforces the bounds)."""

    limit: int = 20
    offset: int = 0
    sort: str = "desc"  # "asc" | "desc" by created_at
    tags: list[str] = field(default_factory=list)
    search: str = ""
