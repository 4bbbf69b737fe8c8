# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Sliding-window admission control keyed by caller identity.

Each identity owns an ordered list of request timestamps inside a trailing
window. A request is admitted, and its timestamp recorded, only while the
list holds fewer entries than the quota. Expired entries are purged lazily
on every access, and a periodic sweep drops identities whose window has
emptied.

State lives behind :class:`RateLimitStore` so a shared external store can
replace :class:`InMemoryRateLimitStore` in multi-process deployments. The
in-memory store serializes every read and write through one
:class:`asyncio.Lock`; the admission check is a single locked
purge-count-append step, so concurrent checks cannot exceed the quota.

Example:
    Gating a request::

        limiter = SlidingWindowRateLimiter(quota=5, window=60)
        if not await limiter.is_allowed("ip:203.0.113.7"):
            retry_after = await limiter.reset_seconds("ip:203.0.113.7")
"""

from __future__ import annotations

import asyncio
import contextlib
import math
import time
from collections.abc import Callable, Iterable

from .logger import get_logger

Clock = Callable[[], float]

logger = get_logger("RateLimiter")


class RateLimitStore:
    """Storage for per-identity request timestamps.

    Every method receives ``now`` from the caller so the limiter's clock is
    the only time source.
    """

    async def check(self, key: str, quota: int, window: float, now: float) -> bool:
        """Purge, then record ``now`` and return True if under quota."""
        raise NotImplementedError

    async def remaining(self, key: str, quota: int, window: float, now: float) -> int:
        raise NotImplementedError

    async def reset_seconds(self, key: str, window: float, now: float) -> int:
        raise NotImplementedError

    async def sweep(self, window: float, now: float) -> int:
        """Drop identities with no entry inside the window; return how many."""
        raise NotImplementedError


class InMemoryRateLimitStore(RateLimitStore):
    """Process-local store guarded by a single lock."""

    def __init__(self):
        self._windows: dict[str, list[float]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._windows)

    def _live(self, key: str, window: float, now: float) -> list[float]:
        return [ts for ts in self._windows.get(key, ()) if now - ts < window]

    async def check(self, key: str, quota: int, window: float, now: float) -> bool:
        async with self._lock:
            live = self._live(key, window, now)
            if len(live) >= quota:
                if live:
                    self._windows[key] = live
                return False
            live.append(now)
            self._windows[key] = live
            return True

    async def remaining(self, key: str, quota: int, window: float, now: float) -> int:
        async with self._lock:
            return max(0, quota - len(self._live(key, window, now)))

    async def reset_seconds(self, key: str, window: float, now: float) -> int:
        async with self._lock:
            live = self._live(key, window, now)
            if not live:
                return 0
            return max(0, math.ceil(min(live) + window - now))

    async def sweep(self, window: float, now: float) -> int:
        async with self._lock:
            removed = 0
            for key in list(self._windows):
                live = self._live(key, window, now)
                if live:
                    self._windows[key] = live
                else:
                    del self._windows[key]
                    removed += 1
            return removed


class SlidingWindowRateLimiter:
    """Admit at most ``quota`` requests per identity in any ``window`` seconds.

    Attributes:
        quota: Requests allowed per window.
        window: Window length in seconds.
        store: Backing :class:`RateLimitStore`.
    """

    def __init__(
        self,
        quota: int,
        window: float = 60.0,
        store: RateLimitStore | None = None,
        clock: Clock = time.time,
    ):
        self.quota = quota
        self.window = window
        self.store = store or InMemoryRateLimitStore()
        self._clock = clock

    async def is_allowed(self, identifier: str) -> bool:
        allowed = await self.store.check(identifier, self.quota, self.window, self._clock())
        if not allowed:
            logger.info("Rate limit exceeded for %s (quota=%d)", identifier, self.quota)
        return allowed

    async def remaining(self, identifier: str) -> int:
        """Requests still available; does not consume quota."""
        return await self.store.remaining(identifier, self.quota, self.window, self._clock())

    async def reset_seconds(self, identifier: str) -> int:
        """Whole seconds until the oldest recorded request leaves the window."""
        return await self.store.reset_seconds(identifier, self.window, self._clock())

    async def reset_at(self, identifier: str) -> int:
        """Epoch second at which the window frees up, for ``X-RateLimit-Reset``."""
        return int(self._clock()) + await self.reset_seconds(identifier)

    async def cleanup(self) -> int:
        return await self.store.sweep(self.window, self._clock())


class RateLimitSweeper:
    """Background task that periodically sweeps a set of limiters."""

    def __init__(self, limiters: Iterable[SlidingWindowRateLimiter], interval: float = 300.0):
        self._limiters = list(limiters)
        self.interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep_once(self) -> int:
        removed = 0
        for limiter in self._limiters:
            removed += await limiter.cleanup()
        if removed:
            logger.debug("Rate limit sweep removed %d idle identities", removed)
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("Rate limit sweep failed")

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
