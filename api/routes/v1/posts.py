"""
api/routes/v1/posts.py -- Post and comment endpoints.

Routes (all require a session token):
  POST   /v1/post/create               -- create a post owned by the caller
  GET    /v1/post/{post_id}/show       -- post with its comments
  POST   /v1/post/{post_id}/comments   -- comment on a post
  PATCH  /v1/post/{post_id}/update     -- owner holding at least "moderator"
  DELETE /v1/post/{post_id}/delete     -- owner holding at least "admin"

A malformed post_id is a 400 and an absent post a 404, resolved by
auth.dependencies.load_post before the handler runs. Ownership and role
failures are one uniform 403.
"""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import ApiResponse, CommentCreate, PostCreate, PostUpdate
from auth.dependencies import get_current_user, load_post, require_post_ownership
from auth.models import User
from social.models import Comment, Post
from social.store import SocialStore

router = APIRouter()

_require_moderator_owner = require_post_ownership("moderator")
_require_admin_owner = require_post_ownership("admin")


@router.post("/post/create", status_code=201)
def create_post(request: Request, body: PostCreate, user: User = Depends(get_current_user)) -> JSONResponse:
    social_store: SocialStore = request.app.state.social_store
    post = social_store.create_post(Post(title=body.title, content=body.content, user_id=user.id, tags=body.tags))
    return JSONResponse(
        status_code=201,
        content=ApiResponse(message="post created", data=post.to_dict()).to_body(),
    )


@router.get("/post/{post_id}/show")
def show_post(
    request: Request,
    user: User = Depends(get_current_user),
    post: Post = Depends(load_post),
) -> JSONResponse:
    social_store: SocialStore = request.app.state.social_store
    post.comments = social_store.get_comments(post.id)
    return JSONResponse(content=ApiResponse(message="post", data=post.to_dict()).to_body())


@router.post("/post/{post_id}/comments", status_code=201)
def create_comment(
    request: Request,
    body: CommentCreate,
    user: User = Depends(get_current_user),
    post: Post = Depends(load_post),
) -> JSONResponse:
    social_store: SocialStore = request.app.state.social_store
    comment = social_store.create_comment(Comment(post_id=post.id, user_id=user.id, content=body.content))
    comment.author_email = user.email
    return JSONResponse(
        status_code=201,
        content=ApiResponse(message="comment created", data=asdict(comment)).to_body(),
    )


@router.patch("/post/{post_id}/update")
def update_post(
    request: Request,
    body: PostUpdate,
    post: Post = Depends(_require_moderator_owner),
) -> JSONResponse:
    """Apply the provided fields; omitted fields are left unchanged."""
    if body.title is not None:
        post.title = body.title
    if body.content is not None:
        post.content = body.content
    social_store: SocialStore = request.app.state.social_store
    updated = social_store.update_post(post)
    return JSONResponse(content=ApiResponse(message="post updated", data=updated.to_dict()).to_body())


@router.delete("/post/{post_id}/delete")
def delete_post(request: Request, post: Post = Depends(_require_admin_owner)) -> JSONResponse:
    social_store: SocialStore = request.app.state.social_store
    social_store.delete_post(post.id)
    return JSONResponse(content=ApiResponse(message="post deleted").to_body())
