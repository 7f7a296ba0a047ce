"""
API request and response models for socialfeed REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
social/models.py, which own the internal domain representation. Route
handlers map between the two.

Every response, success or failure, uses one envelope shape:
    {"status": bool, "message": str, "token"?: str, "data"?: any}
Errors add a stable "code" and never carry data.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.database import MAX_ID
from social.models import FeedQuery

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

MAX_FEED_LIMIT = 20
MAX_FEED_TAGS = 5


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SortEnum(str, Enum):
    asc = "asc"
    desc = "desc"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class Credentials(BaseModel):
    """Email/password pair shared by register and login.

    The email is normalized (trimmed, lowercased) before the pattern check.
    The password is taken verbatim. The 72 character cap keeps ASCII input
    inside bcrypt's 72 byte limit.
    """

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=8, max_length=72)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class RegisterRequest(Credentials):
    pass


class LoginRequest(Credentials):
    pass


class PostCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=100)
    content: str = Field(min_length=1, max_length=1000)
    tags: list[str] = Field(default_factory=list, max_length=20)


class PostUpdate(BaseModel):
    """Partial update. Omitted fields keep their stored value."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    content: Optional[str] = Field(default=None, min_length=1, max_length=1000)


class CommentCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    content: str = Field(min_length=1, max_length=1000)


class FeedParams(BaseModel):
    """Query parameters for GET /v1/users/feed.

    tags arrives as a comma-separated string and is split before the
    length check, so "a,b,,c" becomes ["a", "b", "c"].
    """

    limit: int = Field(default=MAX_FEED_LIMIT, ge=1, le=MAX_FEED_LIMIT)
    offset: int = Field(default=0, ge=0, le=MAX_ID)
    sort: SortEnum = SortEnum.desc
    tags: list[str] = Field(default_factory=list, max_length=MAX_FEED_TAGS)
    search: str = Field(default="", max_length=1000)

    @field_validator("tags", mode="before")
    @classmethod
    def split_tags(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [t.strip() for t in value.split(",") if t.strip()]
        return value

    def to_query(self) -> FeedQuery:
        return FeedQuery(
            limit=self.limit,
            offset=self.offset,
            sort=self.sort.value,
            tags=list(self.tags),
            search=self.search,
        )


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class ApiResponse(BaseModel):
    """Success envelope. token and data are omitted when None."""

    model_config = ConfigDict(frozen=True)

    status: bool = True
    message: str
    token: Optional[str] = None
    data: Optional[Any] = None

    def to_body(self) -> dict[str, Any]:
        """Dump the envelope, dropping absent token/data but keeping nulls inside data."""
        return self.model_dump(exclude={name for name in ("token", "data") if getattr(self, name) is None})


class ErrorResponse(BaseModel):
    """Error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    status: bool = False
    message: str
    code: str


class HealthResponse(BaseModel):
    """Response for GET /v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str
    cache: str
