"""
api/routes/v1/users.py -- User profile, follower edges and the personalized feed.

Routes (all require a session token):
  GET /v1/users/feed                -- posts by the caller and everyone they follow
  GET /v1/users/{user_id}           -- public profile
  PUT /v1/users/{user_id}/follow    -- caller follows user_id
  PUT /v1/users/{user_id}/unfollow  -- caller stops following user_id (idempotent)

/users/feed is registered before /users/{user_id} so "feed" is never parsed
as an id.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from api.models import ApiResponse, FeedParams
from auth.dependencies import get_current_user, parse_id
from auth.models import User
from auth.store import UserStore
from core.errors import ValidationFailedError
from social.store import SocialStore

router = APIRouter()


def _first_error(exc: ValidationError) -> str:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    return f"{field}: {first.get('msg')}" if field else str(first.get("msg"))


@router.get("/users/feed")
def feed(request: Request, user: User = Depends(get_current_user)) -> JSONResponse:
    """Query: limit (1..20), offset (>=0), sort (asc|desc), tags (comma list, <=5), search.

    Malformed query parameters are a 400, like every other malformed input
    that does not come from a JSON body.
    """
    raw = {k: v for k, v in request.query_params.items() if k in FeedParams.model_fields}
    try:
        params = FeedParams.model_validate(raw)
    except ValidationError as exc:
        raise ValidationFailedError(_first_error(exc)) from exc

    social_store: SocialStore = request.app.state.social_store
    items = social_store.get_user_feed(user.id, params.to_query())
    return JSONResponse(
        content=ApiResponse(message="feed", data=[item.to_dict() for item in items]).to_body()
    )


@router.get("/users/{user_id}")
def get_user(request: Request, user_id: str, user: User = Depends(get_current_user)) -> JSONResponse:
    user_store: UserStore = request.app.state.user_store
    target = user_store.get_by_id(parse_id(user_id, "user"))
    return JSONResponse(
        content=ApiResponse(message="user", data=target.to_public_dict()).to_body()
    )


@router.put("/users/{user_id}/follow")
def follow(request: Request, user_id: str, user: User = Depends(get_current_user)) -> JSONResponse:
    """404 if the target does not exist; 409 self_follow / duplicate_follow."""
    user_store: UserStore = request.app.state.user_store
    social_store: SocialStore = request.app.state.social_store
    target = user_store.get_by_id(parse_id(user_id, "user"))
    edge = social_store.follow(follower_id=user.id, followed_id=target.id)
    return JSONResponse(
        content=ApiResponse(
            message="followed",
            data={"followed_id": edge.followed_id, "follower_id": edge.follower_id, "created_at": edge.created_at},
        ).to_body()
    )


@router.put("/users/{user_id}/unfollow")
def unfollow(request: Request, user_id: str, user: User = Depends(get_current_user)) -> JSONResponse:
    social_store: SocialStore = request.app.state.social_store
    removed = social_store.unfollow(follower_id=user.id, followed_id=parse_id(user_id, "user"))
    return JSONResponse(
        content=ApiResponse(message="unfollowed" if removed else "not following").to_body()
    )
