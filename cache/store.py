"""
cache/store.py -- Redis-backed read-through cache for user records.

Sits in front of UserStore.get_by_id() on every authenticated request.
The cache is advisory; UserStore is authoritative. Entries carry an absolute
TTL (default 60 seconds) and are never invalidated on user mutation, so a
profile or role change can take up to one TTL to become visible.

Result contract:
  get() returns a User on hit and None on miss. A backend failure is NOT a
  miss: it raises CacheUnavailableError so the caller can tell "not cached
  yet" apart from "cache is down" and degrade to the store explicitly.
  A corrupted entry (bad JSON, missing fields) is treated as a miss.

Snapshots never include the password hash.

Usage:
    cache = UserCache.from_url("redis://localhost:6379/0")
    user = cache.get(42)           # User | None, or raises CacheUnavailableError
    cache.put(user)                # default TTL
    cache.put(user, ttl=30)
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from redis import Redis, RedisError

from auth.models import Role, User
from core.errors import CacheUnavailableError

logger = logging.getLogger("socialfeed.cache")

_DEFAULT_TTL = 60  # seconds

_KEY_PREFIX = "user-"


class UserCache:
    def __init__(self, client: Redis, ttl: int = _DEFAULT_TTL) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.client = client
        self.ttl = ttl

    @classmethod
    def from_url(cls, redis_url: str, ttl: int = _DEFAULT_TTL, *, socket_timeout: float = 5.0) -> UserCache:
        client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client, ttl)

    @staticmethod
    def _key(user_id: int) -> str:
        return f"{_KEY_PREFIX}{user_id}"

    def verify_connection(self) -> None:
        """Raise CacheUnavailableError if Redis cannot be reached."""
        try:
            self.client.ping()
        except RedisError as exc:
            raise CacheUnavailableError() from exc

    def get(self, user_id: int) -> Optional[User]:
        """Return the cached snapshot for user_id, or None if absent or expired."""
        try:
            data = self.client.get(self._key(user_id))
        except RedisError as exc:
            raise CacheUnavailableError() from exc
        if not data:
            return None
        try:
            return _decode_user(data)
        except (json.JSONDecodeError, TypeError, KeyError):
            logger.warning("Discarding corrupted cache entry for user %d", user_id)
            return None

    def put(self, user: User, ttl: Optional[int] = None) -> None:
        """Store a snapshot of user for ttl seconds (default: the cache TTL)."""
        if user.id is None:
            raise ValueError("cannot cache a user without an id")
        try:
            self.client.setex(self._key(user.id), ttl or self.ttl, _encode_user(user))
        except RedisError as exc:
            raise CacheUnavailableError() from exc

    def close(self) -> None:
        self.client.close()


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def _encode_user(user: User) -> str:
    return json.dumps(user.to_public_dict())


def _decode_user(data: str) -> User:
    raw = json.loads(data)
    role = raw["role"]
    return User(
        id=raw["id"],
        email=raw["email"],
        email_verified_at=raw["email_verified_at"],
        created_at=raw["created_at"],
        updated_at=raw["updated_at"],
        role=Role(
            id=role["id"],
            name=role["name"],
            level=role["level"],
            description=role.get("description") or "",
        ),
    )
