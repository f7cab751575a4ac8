"""Per-path asyncio mutexes."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class PathMutex:
    """One asyncio.Lock per path, so same-path calls run one at a time."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, path: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(path, asyncio.Lock())
        self._waiters[path] = self._waiters.get(path, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[path] -= 1
            if self._waiters[path] == 0:
                del self._waiters[path]
                del self._locks[path]

    def is_held(self, path: str) -> bool:
        lock = self._locks.get(path)
        return lock is not None and lock.locked()
