"""
core/errors.py -- Error taxonomy shared by the stores, the access pipeline and the API.

Every error a caller can observe is one of these classes. Each carries the
HTTP status and a stable machine-readable code so api/main.py can render all
of them through a single exception handler.

Classification happens at the boundary that first sees the raw failure:
stores translate SQLAlchemy errors (IntegrityError -> a Conflict kind,
OperationalError / pool timeout -> StorageUnavailableError) and the user
cache translates redis errors into CacheUnavailableError. Nothing above the
stores ever sees a raw driver exception.

Layer rule: core/ is the kernel. This module imports only the stdlib.
"""

from __future__ import annotations

from typing import Optional


class SocialFeedError(Exception):
    """Base class for every classified error in socialfeed."""

    status_code: int = 500
    error_code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(SocialFeedError):
    """Resource or credential absent, or logically hidden (e.g. unverified account)."""

    status_code = 404
    error_code = "not_found"
    default_message = "resource not found"


class ConflictError(SocialFeedError):
    status_code = 409
    error_code = "conflict"
    default_message = "resource already exists"


class DuplicateEmailError(ConflictError):
    error_code = "duplicate_email"
    default_message = "the email already exists"


class SelfFollowError(ConflictError):
    error_code = "self_follow"
    default_message = "you cannot follow yourself"


class DuplicateFollowError(ConflictError):
    error_code = "duplicate_follow"
    default_message = "you already follow this user"


class AuthenticationError(SocialFeedError):
    """Missing, malformed, invalid or expired session token.

    The message is deliberately uniform: callers must not learn which check failed.
    """

    status_code = 401
    error_code = "unauthorized"
    default_message = "unauthorized"


class ForbiddenError(SocialFeedError):
    """Ownership or role-precedence check failed. Both collapse to this one kind."""

    status_code = 403
    error_code = "forbidden"
    default_message = "forbidden"


class RateLimitedError(SocialFeedError):
    status_code = 429
    error_code = "rate_limited"
    default_message = "too many requests"

    def __init__(self, retry_after: float, message: Optional[str] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ValidationFailedError(SocialFeedError):
    status_code = 400
    error_code = "validation_error"
    default_message = "invalid request"


class StorageUnavailableError(SocialFeedError):
    """The relational store timed out or refused the connection."""

    status_code = 503
    error_code = "unavailable"
    default_message = "service temporarily unavailable"


class CacheUnavailableError(SocialFeedError):
    """The user cache backend failed. Internal only -- callers degrade to the store."""

    status_code = 503
    error_code = "cache_unavailable"
    default_message = "cache unavailable"
