"""Per-key asyncio locks."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional


class _OwnedLock:
    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.owner: Optional[asyncio.Task] = None
        self.depth = 0
        self.waiters = 0


class KeyedLock:
    """Serialise work per key within one process.

    Re-entrant for the task that already holds a key, so an operation holding
    a session's lock can call another operation that takes the same lock.
    Entries are dropped once nobody holds or waits on them.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, _OwnedLock] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        task = asyncio.current_task()
        entry = self._locks.get(key)
        if entry is not None and entry.owner is task and task is not None:
            entry.depth += 1
            try:
                yield
            finally:
                entry.depth -= 1
            return

        if entry is None:
            entry = self._locks[key] = _OwnedLock()
        entry.waiters += 1
        try:
            await entry.lock.acquire()
        finally:
            entry.waiters -= 1
        entry.owner = task
        entry.depth = 1
        try:
            yield
        finally:
            entry.depth = 0
            entry.owner = None
            entry.lock.release()
            if entry.waiters == 0 and self._locks.get(key) is entry:
                del self._locks[key]

    def is_held(self, key: str) -> bool:
        entry = self._locks.get(key)
        return entry is not None and entry.lock.locked()
