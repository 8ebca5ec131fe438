"""Per-key mutual exclusion for read-modify-write sequences on media rows."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Hashable, TypeVar

T = TypeVar("T")


class KeyedLock:
    """Serialise coroutines sharing a key while letting other keys run freely.

    Any code that does "load existing row / decide / save" for a title must go
    through :meth:`dispatch` with the title's TMDB ID, otherwise two scanners
    can both decide the row is missing and insert it twice.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    async def dispatch(self, key: Hashable, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` once every earlier dispatch for ``key`` has finished.

        ``asyncio.Lock`` wakes waiters in FIFO order so submissions for one key
        run in the order they were made.
        """

        skey = str(key)
        lock = self._locks.get(skey)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[skey] = lock
        self._holders[skey] = self._holders.get(skey, 0) + 1
        try:
            async with lock:
                return await fn()
        finally:
            remaining = self._holders[skey] - 1
            if remaining:
                self._holders[skey] = remaining
            else:
                del self._holders[skey]
                del self._locks[skey]

    def locked(self, key: Hashable) -> bool:
        lock = self._locks.get(str(key))
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
