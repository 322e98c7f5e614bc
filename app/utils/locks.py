"""
Per-key asyncio locks.

Upload sessions and owner quota counters are serialized independently:
there is one lock per upload id and one per owner, never a global lock.
"""
import asyncio
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable


class KeyedLocks:
    """
    Registry handing out one asyncio.Lock per key.

    Entries are reference counted and dropped once nobody holds or waits
    on them, so the registry does not grow with every upload id ever seen.
    """

    def __init__(self, name: str):
        self.name = name
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._holders: dict[Hashable, int] = {}
        self._global_lock = threading.Lock()

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        """Acquire the lock for ``key`` for the duration of the block."""
        lock = self._checkout(key)
        try:
            async with lock:
                yield
        finally:
            self._release(key)

    def __len__(self) -> int:
        return len(self._locks)

    def clear(self) -> None:
        with self._global_lock:
            self._locks.clear()
            self._holders.clear()

    def _checkout(self, key: Hashable) -> asyncio.Lock:
        with self._global_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[key] = lock
            self._holders[key] = self._holders.get(key, 0) + 1
            return lock

    def _release(self, key: Hashable) -> None:
        with self._global_lock:
            remaining = self._holders.get(key, 1) - 1
            if remaining <= 0:
                self._holders.pop(key, None)
                self._locks.pop(key, None)
            else:
                self._holders[key] = remaining


# Key: upload_id. Held by chunk writes, finalize, cancel and expiry.
upload_locks = KeyedLocks("upload")

# Key: owner (user) id. Held by quota admission and the finalize commit.
quota_locks = KeyedLocks("quota")
