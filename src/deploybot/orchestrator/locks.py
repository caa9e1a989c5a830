"""Per-key serialization of pipeline runs.

Two runs for the same (repository, branch) share one deployment directory
and must never overlap. Runs for different keys proceed in parallel. Locks
exist only while some run holds or waits for them.

Example:
    >>> locks = KeyedLockRegistry()
    >>> async with locks.hold((repository_id, "main")):
    ...     await pipeline.run(request)
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager

import structlog

logger = structlog.get_logger(__name__)


class KeyedLockRegistry:
    """One ``asyncio.Lock`` per key, forgotten once no run uses it."""

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, key: Hashable) -> bool:
        """Whether a run currently holds the lock for ``key``."""
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1

        if lock.locked():
            logger.info("run_waiting_for_lock", key=str(key))

        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]
