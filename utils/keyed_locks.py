"""
Per-key asyncio locks

One lock per player id serializes every balance mutation of that player
without a global lock. Locks are held weakly so idle players do not pin
memory.
"""

import asyncio
import weakref
from typing import Hashable


class KeyedLocks:
    """Get or create the lock guarding a single key"""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[Hashable, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def __call__(self, key: Hashable) -> asyncio.Lock:
        return self.get(key)
