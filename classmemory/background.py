"""Utilities for asyncio coordination.

``KeyedLock`` serializes critical sections per key (one chapter at a time)
inside this process. ``spawn`` supervises fire-and-forget jobs so exceptions
are logged instead of failing silently.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Dict, Optional, Set

logger = logging.getLogger(__name__)

# Strong references until done; the loop only keeps weak ones.
_background_tasks: Set[asyncio.Task[Any]] = set()


def spawn(coro: Awaitable[Any], *, name: Optional[str] = None) -> asyncio.Task[Any]:
    """Run ``coro`` in the background; a failure is logged, never raised."""
    task = asyncio.create_task(coro, name=name)  # type: ignore[arg-type]
    _background_tasks.add(task)

    def _finished(t: asyncio.Task[Any]) -> None:
        _background_tasks.discard(t)
        if t.cancelled():
            logger.debug("background task %s cancelled", name or t)
            return
        exc = t.exception()
        if exc is not None:
            logger.error("background task %s failed", name or t, exc_info=exc)

    task.add_done_callback(_finished)
    return task


class KeyedLock:
    """One ``asyncio.Lock`` per key, created on demand.

    An entry lives only while some coroutine holds or awaits it, so the
    registry does not grow with the number of keys ever seen.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]


__all__ = ["spawn", "KeyedLock"]
