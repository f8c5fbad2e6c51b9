"""
Per-Key Async Locks
===================

Serializes work on the same key (e.g. one ticket) while letting work on
different keys run concurrently. Locks are reference counted and dropped
once nobody holds or waits on them, so the registry does not grow with the
number of entities ever touched.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable


class KeyedLockRegistry:
    """Registry of asyncio locks keyed by an arbitrary hashable."""

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._waiters: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._waiters[key] = self._waiters.get(key, 0) + 1

        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def is_held(self, key: Hashable) -> bool:
        """Check whether ``key`` is currently locked."""
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


# Process-wide registry: dispatch for one entity never interleaves with
# another dispatch for the same entity.
entity_locks = KeyedLockRegistry()
