"""Read-through cache of computed progress snapshots."""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import ValidationError

from ..cache import BaseCache
from ..constants import DEFAULT_CACHE_KEY_PREFIX, DEFAULT_PROGRESS_TTL_SECONDS
from ..contracts import ProgressSnapshot

logger = logging.getLogger(__name__)


class ProgressCache:
    """Snapshot cache keyed by session id.

    Every store failure is logged and treated as a miss or a no-op, so the
    caller always falls back to computing progress directly.
    """

    def __init__(
        self,
        store: BaseCache,
        ttl_seconds: int = DEFAULT_PROGRESS_TTL_SECONDS,
        key_prefix: str = DEFAULT_CACHE_KEY_PREFIX,
    ) -> None:
        self._store = store
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix

    def key(self, session_id: str) -> str:
        return f"{self.key_prefix}:{session_id}"

    async def get(self, session_id: str) -> Optional[ProgressSnapshot]:
        try:
            raw = await self._store.get(self.key(session_id))
        except Exception as e:
            logger.warning(f"Failed to read progress cache for session {session_id}: {e}")
            return None
        if not raw:
            return None
        try:
            return ProgressSnapshot.model_validate_json(raw)
        except ValidationError:
            logger.warning(f"Discarding malformed progress cache entry for session {session_id}")
            return None

    async def put(self, session_id: str, snapshot: ProgressSnapshot) -> None:
        try:
            await self._store.set(
                self.key(session_id), snapshot.model_dump_json(), self.ttl_seconds
            )
        except Exception as e:
            logger.warning(f"Failed to write progress cache for session {session_id}: {e}")

    async def invalidate(self, session_id: str) -> bool:
        """Drop the cached snapshot. Returns ``False`` if the store failed."""
        try:
            await self._store.delete(self.key(session_id))
        except Exception as e:
            logger.error(f"Failed to invalidate progress cache for session {session_id}: {e}")
            return False
        return True
