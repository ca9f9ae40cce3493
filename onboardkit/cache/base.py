"""Base cache store interface."""

from __future__ import annotations

import abc
from typing import Optional


class BaseCache(metaclass=abc.ABCMeta):
    """Abstract key/value store with per-key TTL.

    Every operation is atomic for a single key. Backends raise
    :class:`~onboardkit.errors.CacheUnavailable` when the store cannot be
    reached.
    """

    async def connect(self) -> None:
        """Open connection to the store (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to the store (no-op by default)."""
        pass

    @abc.abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored value, or ``None`` when absent or expired."""
        raise NotImplementedError

    @abc.abstractmethod
    async def set(self, key: str, value: str, ttl: int) -> None:
        """Store ``value`` under ``key`` for ``ttl`` seconds."""
        raise NotImplementedError

    @abc.abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key`` if present."""
        raise NotImplementedError
