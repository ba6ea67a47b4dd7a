"""Per-key single-flight guards used for feedback-loop suppression.

Each sync direction registers the ids it is about to write in a guard; the
opposite direction checks the guard and drops the echo of that write.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_GUARD_TTL_SEC = 10.0


class ReentrancyGuard:
    """Set of in-flight keys, each with the task running it and a TTL timer.

    ``run`` is single-flight: a second caller for a key already in flight
    awaits the first caller's task instead of running its own function. The
    TTL bounds how long a key can stay registered if its task never settles.
    """

    def __init__(self, name: str, ttl: float = DEFAULT_GUARD_TTL_SEC) -> None:
        self.name = name
        self._ttl = ttl
        self._keys: set[str] = set()
        self._tasks: dict[str, asyncio.Future[Any]] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def has(self, key: str) -> bool:
        return key in self._keys

    async def run(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        existing = self._tasks.get(key)
        if key in self._keys and existing is not None:
            logger.debug("guard_joined_inflight", extra={"guard": self.name, "key": key})
            return await asyncio.shield(existing)

        self._register(key)
        task = asyncio.ensure_future(fn())
        self._tasks[key] = task
        try:
            return await task
        finally:
            if self._tasks.get(key) is task:
                self._cleanup(key)

    def mark(self, key: str) -> None:
        """Hold ``key`` until :meth:`release` or until the TTL expires."""
        self._register(key)

    def release(self, key: str) -> None:
        self._cleanup(key)

    def clear(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._tasks.clear()
        self._keys.clear()

    def _register(self, key: str) -> None:
        self._keys.add(key)
        previous = self._timers.pop(key, None)
        if previous is not None:
            previous.cancel()
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(self._ttl, self._expire, key)

    def _expire(self, key: str) -> None:
        if key in self._keys:
            logger.warning(
                "guard_ttl_expired", extra={"guard": self.name, "key": key, "ttl": self._ttl}
            )
        self._timers.pop(key, None)
        self._keys.discard(key)
        self._tasks.pop(key, None)

    def _cleanup(self, key: str) -> None:
        self._keys.discard(key)
        self._tasks.pop(key, None)
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()


async def guard_run(guard: ReentrancyGuard, key: str, fn: Callable[[], Awaitable[T]]) -> T:
    """Functional alias for :meth:`ReentrancyGuard.run`."""
    return await guard.run(key, fn)
