"""
auth/dependencies.py -- FastAPI Depends() helpers for the per-request access pipeline.

Gates, in the order a protected request meets them:
  1. Rate gate        -- api/main.py middleware (runs before routing)
  2. Session gate     -- get_current_user(): Authorization: Bearer <token>
  3. Identity         -- resolve_user(): UserCache first, UserStore on miss
  4. Ownership / role -- require_post_ownership(role): owner AND role level >= role

Outcomes are uniform per gate: gates 2 and 3 raise AuthenticationError
("unauthorized") whatever the cause, gate 4 raises ForbiddenError
("forbidden") whether ownership or privilege was missing.

The resolved user and post are passed to handlers as dependency results,
never stashed in globals.

Layer rule: no imports from api/. auth/dependencies.py may import from
fastapi (Request/Depends) because it is part of the dependency injection
system, and from cache/ and social/ because it composes them.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Optional

from fastapi import Depends, Request

from auth.models import User
from auth.store import UserStore
from cache.store import UserCache
from core.database import MAX_ID
from core.errors import (
    AuthenticationError,
    CacheUnavailableError,
    ForbiddenError,
    NotFoundError,
    SocialFeedError,
    StorageUnavailableError,
    ValidationFailedError,
)
from social.models import Post
from social.store import SocialStore

logger = logging.getLogger("socialfeed.auth.access")


# ---------------------------------------------------------------------------
# Session gate
# ---------------------------------------------------------------------------


def _bearer_token(header: str) -> str:
    parts = header.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        raise AuthenticationError()
    return parts[1]


def get_current_user(request: Request) -> User:
    """Require a valid session token and return the acting user.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    authenticator = request.app.state.authenticator
    token = _bearer_token(request.headers.get("Authorization", ""))
    claims = authenticator.validate(token)
    return resolve_user(
        authenticator.subject_id(claims),
        request.app.state.user_store,
        getattr(request.app.state, "user_cache", None),
    )


# ---------------------------------------------------------------------------
# Identity resolution (cache-aside)
# ---------------------------------------------------------------------------


def resolve_user(user_id: int, user_store: UserStore, user_cache: Optional[UserCache]) -> User:
    """Return the user for a validated subject id.

    A cache miss reads the store and repopulates the cache. A cache outage
    degrades to the store for this request; it never fails the request.
    Any store failure, a deleted user or an unreachable database, is the
    same AuthenticationError the session gate raises. Outages are logged.
    """
    cache_usable = user_cache is not None
    if user_cache is not None:
        try:
            cached = user_cache.get(user_id)
        except CacheUnavailableError:
            logger.warning("User cache unavailable, reading user %d from the store", user_id)
            cache_usable = False
        else:
            if cached is not None:
                return cached

    try:
        user = user_store.get_by_id(user_id)
    except NotFoundError as exc:
        raise AuthenticationError() from exc
    except StorageUnavailableError as exc:
        logger.warning("Store unavailable while resolving user %d", user_id)
        raise AuthenticationError() from exc

    if cache_usable:
        try:
            user_cache.put(user)
        except CacheUnavailableError:
            logger.warning("Could not cache user %d", user_id)
    return user


# ---------------------------------------------------------------------------
# Ownership / role gate
# ---------------------------------------------------------------------------


def confirm_role_precedence(user_store: UserStore, user: User, role_name: str) -> bool:
    """Return True if user's role level is at least the level of role_name.

    The required role is looked up in the role table on every check. A name
    missing from that table is a server misconfiguration, not a 403.
    """
    try:
        required = user_store.get_role_by_name(role_name)
    except NotFoundError as exc:
        logger.error("Authorization check references unknown role %r", role_name)
        raise SocialFeedError() from exc
    return user.role.level >= required.level


def parse_id(raw: str, what: str) -> int:
    """Parse a path id in 1..MAX_ID or raise ValidationFailedError."""
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValidationFailedError(f"invalid {what} id") from exc
    if value < 1 or value > MAX_ID:
        raise ValidationFailedError(f"invalid {what} id")
    return value


def load_post(request: Request, post_id: str) -> Post:
    """Resolve the {post_id} path parameter to a Post (400 if malformed, 404 if absent)."""
    social_store: SocialStore = request.app.state.social_store
    return social_store.get_post(parse_id(post_id, "post"))


def require_post_ownership(role_name: str) -> Callable[..., Post]:
    """Build a dependency admitting only the post's owner holding at least role_name.

    Usage:
        @router.delete("/post/{post_id}/delete")
        def delete(post: Post = Depends(require_post_ownership("admin"))): ...
    """

    def dependency(
        request: Request,
        user: User = Depends(get_current_user),
        post: Post = Depends(load_post),
    ) -> Post:
        if post.user_id != user.id:
            raise ForbiddenError()
        if not confirm_role_precedence(request.app.state.user_store, user, role_name):
            raise ForbiddenError()
        return post

    return dependency
