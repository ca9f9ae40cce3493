"""The ``get_progress`` pipeline."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Mapping, Optional

from ..constants import DEFAULT_RETRY_BASE_DELAY, DEFAULT_WATERMARK_MAX_ATTEMPTS, WATERMARK_KEY
from ..contracts import ProgressSnapshot
from ..errors import ProgressConflict, SessionNotFound
from ..utils import KeyedLock, schedule_retry
from .cache import ProgressCache
from .calculator import ProgressCalculator
from .pace import PaceEstimator
from .payload import ProgressPayload, parse_progress

if TYPE_CHECKING:
    from ..persistence import SessionRepository

logger = logging.getLogger(__name__)


class ProgressService:
    """Serves progress snapshots, computing and caching them on a miss.

    On a miss the snapshot is computed from the stored payload and, when the
    percentage rose, the new watermark is written back with compare-and-set
    before the snapshot is cached. Losing the race means reloading and
    recomputing.
    """

    def __init__(
        self,
        repository: "SessionRepository",
        cache: ProgressCache,
        calculator: Optional[ProgressCalculator] = None,
        estimator: Optional[PaceEstimator] = None,
        locks: Optional[KeyedLock] = None,
        max_attempts: int = DEFAULT_WATERMARK_MAX_ATTEMPTS,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    ) -> None:
        self._repository = repository
        self._cache = cache
        self.calculator = calculator or ProgressCalculator()
        self.estimator = estimator or PaceEstimator(self.calculator.phases)
        self._locks = locks or KeyedLock()
        self._max_attempts = max_attempts
        self._retry_base_delay = retry_base_delay

    @property
    def cache(self) -> ProgressCache:
        return self._cache

    def snapshot(self, payload: ProgressPayload) -> ProgressSnapshot:
        """Compute a snapshot without touching the store or the cache."""
        current = self.calculator.current_phase(payload)
        return ProgressSnapshot(
            percentage=self.calculator.percentage(payload),
            current_phase=current,
            completed_phases=self.calculator.completed_phases(payload),
            next_phase=self.calculator.next_phase(current),
            estimated_minutes_remaining=self.estimator.estimate(
                current, payload.timings()
            ),
        )

    def snapshot_for(self, raw_progress: Optional[Mapping[str, Any]]) -> ProgressSnapshot:
        return self.snapshot(parse_progress(raw_progress))

    async def get_progress(self, session_id: str) -> ProgressSnapshot:
        cached = await self._cache.get(session_id)
        if cached is not None:
            return cached

        async with self._locks.hold(session_id):
            # another caller may have filled the cache while we waited
            cached = await self._cache.get(session_id)
            if cached is not None:
                return cached
            snapshot = await self._compute_and_persist(session_id)
            await self._cache.put(session_id, snapshot)
        return snapshot

    async def invalidate(self, session_id: str) -> None:
        await self._cache.invalidate(session_id)

    async def _compute_and_persist(self, session_id: str) -> ProgressSnapshot:
        for attempt in range(self._max_attempts):
            session = await self._repository.get_session(session_id)
            if session is None:
                raise SessionNotFound(session_id)

            payload = parse_progress(session.progress)
            snapshot = self.snapshot(payload)
            if snapshot.percentage <= payload.last_percentage:
                return snapshot

            progress = dict(session.progress or {})
            progress[WATERMARK_KEY] = snapshot.percentage
            if await self._repository.compare_and_set_progress(
                session_id, progress, session.version, touch=False
            ):
                return snapshot

            logger.info(
                f"Watermark write for session {session_id} lost a race "
                f"(attempt {attempt + 1}/{self._max_attempts}); recomputing"
            )
            await schedule_retry(attempt, base=self._retry_base_delay)

        raise ProgressConflict(session_id, self._max_attempts)
