"""
api/limiter.py -- Client identity derivation and the shared slowapi limiter.

client_identity() is the single definition of "who is calling" for
throttling. It feeds both the fixed-window rate gate in api/main.py and the
slowapi limiter used for per-route brute-force limits (@limiter.limit()).

Using a single shared Limiter instance ensures all routes share the same
in-memory counter store. If this were instantiated in each module
separately, each module would get its own isolated counter and the limits
would never trigger.
"""

from fastapi import Request
from slowapi import Limiter

from core.config import get_settings


def _strip_port(address: str) -> str:
    if address.startswith("["):
        end = address.find("]")
        return address[1:end] if end != -1 else address
    if address.count(":") == 1:  # host:port; bare IPv6 has several colons
        return address.split(":", 1)[0]
    return address


def client_identity(request: Request) -> str:
    """First X-Forwarded-For entry if present, else the peer address without port."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    host = request.client.host if request.client else ""
    return _strip_port(host) or "unknown"


LOGIN_RATE_LIMIT = get_settings().login_rate_limit

limiter = Limiter(key_func=client_identity, storage_uri="memory://")
