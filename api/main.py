"""
api/main.py -- FastAPI application entry point for socialfeed.

Run with:      python main.py serve
               uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. log_requests       -- method, path, status, latency, client identity
  2. rate_gate          -- fixed-window admission per client identity (429)
  3. CORSMiddleware     -- adds CORS headers for allowed browser origins

add_middleware() and @app.middleware both wrap the current stack, so the
last one registered is the outermost.

Lifespan handles startup (stores, optional Redis user cache, authenticator,
rate limiter) and shutdown (cancel limiter expiry tasks, close cache and DB)
symmetrically.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import client_identity, limiter
from api.models import ApiResponse, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.posts import router as posts_router
from api.routes.v1.users import router as users_router
from auth.store import UserStore
from auth.tokens import Authenticator
from cache.store import UserCache
from core.config import Settings, get_settings
from core.database import ping
from core.errors import CacheUnavailableError, RateLimitedError, SocialFeedError
from core.ratelimiter import FixedWindowRateLimiter
from social.store import SocialStore

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("socialfeed.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def _connect_user_cache(settings: Settings) -> Optional[UserCache]:
    """Return a connected UserCache, or None to run cache-less.

    An unreachable Redis at startup is not fatal: identity resolution reads
    the store directly when there is no cache.
    """
    if not settings.redis_enabled:
        logger.info("User cache disabled")
        return None
    cache = UserCache.from_url(settings.redis_url, ttl=settings.user_cache_ttl_seconds)
    try:
        cache.verify_connection()
    except CacheUnavailableError:
        logger.warning("Redis unreachable at %s -- running without the user cache", settings.redis_url)
        cache.close()
        return None
    logger.info("User cache connected (ttl=%ds)", settings.user_cache_ttl_seconds)
    return cache


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build every shared resource into app.state; tear them down in reverse.

    The rate limiter is created here rather than at import time so its lock
    and expiry tasks belong to the serving event loop.
    """
    settings = get_settings()
    logger.info("socialfeed API starting up")
    app.state.user_store = UserStore(settings.database_url, timeout=settings.db_timeout_seconds)
    # Same engine: the feed joins posts to users.
    app.state.social_store = SocialStore(engine=app.state.user_store.engine)
    app.state.user_cache = _connect_user_cache(settings)
    app.state.authenticator = Authenticator.from_settings(settings)
    app.state.rate_limiter = FixedWindowRateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window=settings.rate_limit_window_seconds,
        enabled=settings.rate_limit_enabled,
    )
    logger.info(
        "Rate limiter %s (%d requests / %.1fs)",
        "enabled" if settings.rate_limit_enabled else "disabled",
        settings.rate_limit_max_requests,
        settings.rate_limit_window_seconds,
    )

    yield

    await app.state.rate_limiter.close()
    if app.state.user_cache is not None:
        app.state.user_cache.close()
    app.state.user_store.close()
    logger.info("socialfeed API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="socialfeed API",
    description="Posts, comments, follows and a personalized feed behind JWT auth.",
    version=API_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

# @limiter.limit() looks for app.state.limiter by convention. There are no
# default limits, so SlowAPIMiddleware is not mounted.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Error rendering
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(message=message, code=code).model_dump(),
    )


def _rate_limited_response(retry_after: float, message: str) -> JSONResponse:
    response = _error_response(429, RateLimitedError.error_code, message)
    response.headers["Retry-After"] = str(max(1, math.ceil(retry_after)))
    return response


# ---------------------------------------------------------------------------
# Rate gate middleware
#
# Runs before routing, so every path (health included) is counted. An
# exception raised here would bypass the exception handlers below, hence the
# response is built directly.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def rate_gate(request: Request, call_next):
    rate_limiter: Optional[FixedWindowRateLimiter] = getattr(request.app.state, "rate_limiter", None)
    if rate_limiter is not None:
        allowed, retry_after = await rate_limiter.admit(client_identity(request))
        if not allowed:
            return _rate_limited_response(retry_after, RateLimitedError.default_message)
    return await call_next(request)


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        client_identity(request),
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/v1", tags=["Auth"])
app.include_router(users_router, prefix="/v1", tags=["Users"])
app.include_router(posts_router, prefix="/v1", tags=["Posts"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(SocialFeedError)
async def socialfeed_error_handler(request: Request, exc: SocialFeedError) -> JSONResponse:
    """Render any classified error with its own status and code."""
    if isinstance(exc, RateLimitedError):
        return _rate_limited_response(exc.retry_after, exc.message)
    if exc.status_code >= 500:
        logger.error(
            "%s on %s %s: %s", exc.__class__.__name__, request.method, request.url.path, exc.__cause__ or exc
        )
    return _error_response(exc.status_code, exc.error_code, exc.message)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Per-route slowapi limit hit (login brute-force guard)."""
    logger.warning("Route limit exceeded on %s by %s", request.url.path, client_identity(request))
    return _rate_limited_response(exc.limit.limit.get_expiry(), RateLimitedError.default_message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with the first validation failure as the message."""
    errors = exc.errors()
    message = "Request validation failed."
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    return _error_response(422, "validation_error", message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Unknown routes, wrong methods and any other framework-level HTTP errors."""
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is logged with its traceback, never written to the
    response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, SocialFeedError.error_code, SocialFeedError.default_message)


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/v1/health", tags=["Health"])
def health(request: Request) -> JSONResponse:
    """Liveness plus database and cache component status."""
    database_ok = ping(request.app.state.user_store.engine)
    user_cache: Optional[UserCache] = request.app.state.user_cache
    if user_cache is None:
        cache_status = "disabled"
    else:
        try:
            user_cache.verify_connection()
            cache_status = "ok"
        except CacheUnavailableError:
            cache_status = "unavailable"
    body = HealthResponse(
        status="ok" if database_ok else "degraded",
        version=API_VERSION,
        database="ok" if database_ok else "unavailable",
        cache=cache_status,
    )
    return JSONResponse(
        status_code=200 if database_ok else 503,
        content=ApiResponse(
            status=database_ok,
            message="ok" if database_ok else "database unavailable",
            data=body.model_dump(),
        ).to_body(),
    )
