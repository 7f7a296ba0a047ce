"""
core/ratelimiter.py -- In-process fixed-window request rate limiter.

Each client identity gets a counter that lives for exactly one window,
anchored to the identity's first request. The window does not slide and is
not re-armed by traffic: when it elapses, a detached expiry task removes the
counter and the next request starts a fresh window as if the identity were new.

Concurrency:
  The identity -> window map is the only in-process mutable shared state in
  the service. A single asyncio.Lock covers read, check, increment, insert and
  delete. Expiry tasks take the same lock before deleting.

  Each window is its own object. The expiry task only deletes the entry if it
  still points at the window it was scheduled for, so a late expiry can never
  wipe a newer window for the same identity.

Usage:
    limiter = FixedWindowRateLimiter(max_requests=20, window=5.0)
    allowed, retry_after = await limiter.admit("203.0.113.7")
    ...
    await limiter.close()   # on shutdown: cancels pending expiry tasks

Layer rule: core/ is the kernel. This module imports only the stdlib.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

logger = logging.getLogger("socialfeed.ratelimiter")


@dataclass(eq=False)
class _Window:
    """Counter for one identity's current window. Compared by identity, not value."""

    count: int = 0


class FixedWindowRateLimiter:
    """Admission-control gate keyed by client identity.

    When disabled, admit() always allows with a zero retry hint -- that is a
    valid operating mode, not a degraded one. admit() never raises.
    """

    def __init__(self, max_requests: int, window: float, enabled: bool = True) -> None:
        if max_requests <= 0:
            raise ValueError("max_requests must be a positive integer")
        if window <= 0:
            raise ValueError("window must be a positive duration")
        self.max_requests = max_requests
        self.window = window
        self.enabled = enabled
        self._clients: dict[str, _Window] = {}
        self._lock = asyncio.Lock()
        self._expiry_tasks: set[asyncio.Task] = set()

    async def admit(self, identity: str) -> tuple[bool, float]:
        """Count one request for identity and decide whether to let it through.

        Returns (allowed, retry_after_seconds). On rejection retry_after is the
        full configured window: the remaining time is not tracked per identity.
        """
        if not self.enabled:
            return True, 0.0

        async with self._lock:
            current = self._clients.get(identity)
            if current is None:
                current = _Window()
                self._clients[identity] = current
                self._schedule_expiry(identity, current)
            if current.count < self.max_requests:
                current.count += 1
                return True, 0.0

        logger.warning("Rate limit exceeded for %s", identity)
        return False, self.window

    def tracked_identities(self) -> int:
        """Number of identities with a live window. Diagnostics only."""
        return len(self._clients)

    def _schedule_expiry(self, identity: str, window: _Window) -> None:
        # Caller holds self._lock.
        task = asyncio.get_running_loop().create_task(self._expire(identity, window))
        self._expiry_tasks.add(task)
        task.add_done_callback(self._expiry_tasks.discard)

    async def _expire(self, identity: str, window: _Window) -> None:
        await asyncio.sleep(self.window)
        async with self._lock:
            if self._clients.get(identity) is window:
                del self._clients[identity]

    async def close(self) -> None:
        """Cancel pending expiry tasks and drop all windows."""
        tasks = list(self._expiry_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        async with self._lock:
            self._clients.clear()
