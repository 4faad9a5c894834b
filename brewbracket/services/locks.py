"""
In-process critical sections for the bracket engine.

One asyncio.Lock per key. Station mutations wait their turn; round
advances fail fast when another advance for the same tournament is
already running.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Callable, Dict, Hashable


class KeyedLockRegistry:
    """Lazily created asyncio locks keyed by entity id."""

    def __init__(self, name: str):
        self.name = name
        self._locks: Dict[Hashable, asyncio.Lock] = {}

    def get(self, key: Hashable) -> asyncio.Lock:
        # No await between lookup and insert, so this is atomic on one loop
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def is_held(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: Hashable):
        """Wait for the lock on key."""
        async with self.get(key):
            yield

    @asynccontextmanager
    async def try_hold(self, key: Hashable, on_busy: Callable[[], Exception]):
        """Take the lock on key or raise on_busy() immediately."""
        lock = self.get(key)
        if lock.locked():
            raise on_busy()
        async with lock:
            yield


# Station read-modify-write of next_available_at / status
station_locks = KeyedLockRegistry("station")

# complete_round / populate_next_round per tournament
tournament_advance_locks = KeyedLockRegistry("tournament_advance")
