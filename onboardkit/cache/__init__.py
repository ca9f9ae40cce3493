"""Cache store factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import OnboardkitConfig, load_config
from .base import BaseCache
from .inmemory import InMemoryCache


def get_cache(
    backend: Optional[str] = None, config: Optional[OnboardkitConfig] = None
) -> BaseCache:
    """Factory function to get the configured cache store."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("ONBOARDKIT_CACHE")
        or config.cache.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryCache()
    elif backend == "redis":
        from .redis import RedisCache

        redis_conf = config.cache.redis
        return RedisCache(
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
        )
    else:
        raise ValueError(f"Unsupported cache backend: {backend}")


__all__ = ["BaseCache", "InMemoryCache", "get_cache"]
