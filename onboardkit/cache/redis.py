"""Redis cache store for multi-process deployments."""

from __future__ import annotations

from typing import Any, Optional

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from ..errors import CacheUnavailable
from .base import BaseCache


class RedisCache(BaseCache):
    """Redis-backed cache using ``SET ... EX`` for TTLs."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        client: Optional[Any] = None,
    ) -> None:
        if redis is None and client is None:
            raise ImportError("redis package is required for RedisCache")

        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._redis: Optional[Any] = client

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        try:
            await self._redis.ping()
        except redis.RedisError as e:
            self._redis = None
            raise CacheUnavailable(f"Redis ping failed: {e}") from e

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def _client(self) -> Any:
        if not self._redis:
            await self.connect()
        return self._redis

    async def get(self, key: str) -> Optional[str]:
        client = await self._client()
        try:
            value = await client.get(key)
        except Exception as e:
            raise CacheUnavailable(f"Redis GET {key} failed: {e}") from e
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        client = await self._client()
        try:
            await client.set(key, value, ex=ttl)
        except Exception as e:
            raise CacheUnavailable(f"Redis SET {key} failed: {e}") from e

    async def delete(self, key: str) -> None:
        client = await self._client()
        try:
            await client.delete(key)
        except Exception as e:
            raise CacheUnavailable(f"Redis DEL {key} failed: {e}") from e
