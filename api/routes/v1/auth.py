"""
api/routes/v1/auth.py -- Registration, activation and login endpoints.

Routes:
  POST /v1/register                 -- create an unverified user plus a one-time invitation
  PUT  /v1/users/activate/{token}   -- redeem the invitation; marks the email verified
  POST /v1/login                    -- email/password login; returns a session token

Security:
  [H2] POST /login is rate-limited per client identity (LOGIN_RATE_LIMIT).
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on responses carrying a token.
  Unknown email, unverified account and wrong password produce one message.
  Wrong, expired and already-used invitation tokens produce one 404.

The plaintext invitation token is returned in the register response as the
stand-in for out-of-band email delivery. It is never logged or stored.
"""

from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.limiter import LOGIN_RATE_LIMIT, limiter
from api.models import ApiResponse, ErrorResponse, LoginRequest, RegisterRequest
from auth.models import User
from auth.store import UserStore
from auth.tokens import authenticate_user, generate_invitation_token, hash_password
from core.config import get_settings

# Auth policy: every route here is public -- they are how a caller obtains a session.
router = APIRouter()

_BAD_CREDENTIALS = "incorrect email or password"


@router.post("/register", status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create the account and its invitation in one transaction.

    409 duplicate_email if the address is taken (case-insensitive).
    """
    user_store: UserStore = request.app.state.user_store
    plaintext_token = generate_invitation_token()
    user = user_store.create_and_invite(
        User(email=body.email, hashed_password=hash_password(body.password)),
        plaintext_token,
        timedelta(seconds=get_settings().invitation_ttl_seconds),
    )
    resp = JSONResponse(
        status_code=201,
        content=ApiResponse(
            message="user registered, check your email to activate your account",
            data={"user": user.to_public_dict(), "token": plaintext_token},
        ).to_body(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.put("/users/activate/{token}")
def activate(request: Request, token: str) -> JSONResponse:
    user_store: UserStore = request.app.state.user_store
    user_store.activate(token)
    return JSONResponse(content=ApiResponse(message="Your email has been verified").to_body())


@router.post("/login")
@limiter.limit(LOGIN_RATE_LIMIT)  # [H2] must be BELOW @router so the route registers the limited wrapper
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Exchange email and password for a session token.

    Uses authenticate_user() which includes timing equalization [C1]. Do NOT
    inline get_by_email() + verify_password() -- that re-introduces the
    timing attack.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        resp = JSONResponse(
            status_code=400,
            content=ErrorResponse(message=_BAD_CREDENTIALS, code="bad_credentials").model_dump(),
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    token = request.app.state.authenticator.issue(user.id)
    resp = JSONResponse(
        content=ApiResponse(message="login successful", token=token).to_body(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp
