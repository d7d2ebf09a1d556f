"""
Per-key asyncio locks.

Work on the same key runs one at a time in arrival order; work on different
keys is free to interleave.
"""

from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator
import asyncio


class KeyedLock:
    """A lazily created asyncio.Lock per key, dropped once nobody waits on it."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
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
