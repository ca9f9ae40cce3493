"""In-memory cache store for testing and single-process use."""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict, Optional, Tuple

from .base import BaseCache


class InMemoryCache(BaseCache):
    """Dictionary-backed cache with lazy TTL expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        async with self._lock:
            self._entries[key] = (value, self._clock() + ttl)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)
