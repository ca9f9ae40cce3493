"""High level entry point tying the lifecycle and progress engines together."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, List, Mapping, Optional

from .audit import AuditLog, RepositoryAuditLog
from .cache import BaseCache, get_cache
from .config import OnboardkitConfig, load_config
from .contracts import ProgressSnapshot, RequestContext, SessionStatus, TransitionResult
from .jobs import expire_sessions, purge_retained_sessions
from .lifecycle import StateMachine, StatusLike, can_transition
from .persistence import SessionRecord, SessionRepository, get_repository
from .persistence.models import utcnow
from .progress import (
    PaceEstimator,
    PhaseTable,
    ProgressCache,
    ProgressCalculator,
    ProgressService,
)
from .utils import KeyedLock
from .workflow import SessionWorkflow

logger = logging.getLogger(__name__)


class OnboardingEngine:
    """Facade over session lifecycle, progress and maintenance operations.

    Collaborators default to whatever the configuration selects: the
    repository from ``database_url`` and the cache store from
    ``cache.backend``. One :class:`KeyedLock` is shared by every component so
    status changes, payload writes and progress computation for a session
    never interleave within this process.
    """

    def __init__(
        self,
        repository: Optional[SessionRepository] = None,
        cache_store: Optional[BaseCache] = None,
        config: Optional[OnboardkitConfig] = None,
        audit_log: Optional[AuditLog] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config or load_config()
        self.repository = repository or get_repository(config=self.config)
        self.cache_store = cache_store or get_cache(config=self.config)
        self.audit_log = audit_log or RepositoryAuditLog(self.repository)
        self._clock = clock
        self._locks = KeyedLock()

        phases = PhaseTable(self.config.progress.phases)
        self.progress_cache = ProgressCache(
            self.cache_store,
            ttl_seconds=self.config.cache.ttl_seconds,
            key_prefix=self.config.cache.key_prefix,
        )
        self.state_machine = StateMachine(
            self.repository,
            self.audit_log,
            progress_cache=self.progress_cache,
            locks=self._locks,
        )
        self.progress = ProgressService(
            self.repository,
            self.progress_cache,
            calculator=ProgressCalculator(phases),
            estimator=PaceEstimator(phases),
            locks=self._locks,
            max_attempts=self.config.progress.watermark_max_attempts,
            retry_base_delay=self.config.progress.retry_base_delay,
        )

        self.workflow = SessionWorkflow(
            self.repository,
            self.state_machine,
            self.progress_cache,
            self.audit_log,
            locks=self._locks,
            activity_extension=timedelta(
                minutes=self.config.sessions.activity_extension_minutes
            ),
            max_attempts=self.config.progress.watermark_max_attempts,
            retry_base_delay=self.config.progress.retry_base_delay,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    @staticmethod
    def can_transition(current: StatusLike, target: StatusLike) -> bool:
        return can_transition(current, target)

    async def apply_transition(
        self,
        session_id: str,
        target: StatusLike,
        context: Optional[RequestContext] = None,
    ) -> TransitionResult:
        return await self.state_machine.apply_transition(session_id, target, context)

    async def abandon_session(
        self, session_id: str, context: Optional[RequestContext] = None
    ) -> TransitionResult:
        return await self.workflow.abandon_session(session_id, context)

    # ------------------------------------------------------------------
    # Progress
    async def get_progress(self, session_id: str) -> ProgressSnapshot:
        return await self.progress.get_progress(session_id)

    async def invalidate_progress_cache(self, session_id: str) -> None:
        await self.progress.invalidate(session_id)

    async def record_phase_timing(
        self,
        session_id: str,
        phase: str,
        started_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
        context: Optional[RequestContext] = None,
    ) -> None:
        await self.workflow.record_phase_timing(
            session_id, phase, started_at, completed_at, context
        )

    # ------------------------------------------------------------------
    # Sessions
    async def create_session(
        self,
        context: Optional[RequestContext] = None,
        session_id: Optional[str] = None,
    ) -> SessionRecord:
        return await self.workflow.create_session(context, session_id=session_id)

    async def update_progress(
        self,
        session_id: str,
        patch: Mapping[str, Any],
        context: Optional[RequestContext] = None,
    ) -> SessionRecord:
        return await self.workflow.update_progress(session_id, patch, context)

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        return await self.repository.get_session(session_id)

    async def list_sessions(
        self, statuses: Optional[List[SessionStatus]] = None
    ) -> List[SessionRecord]:
        return await self.repository.list_sessions(statuses=statuses)

    # ------------------------------------------------------------------
    # Maintenance
    async def expire_sessions(
        self, context: Optional[RequestContext] = None
    ) -> int:
        return await expire_sessions(
            self.repository, self.state_machine, now=self._clock(), context=context
        )

    async def purge_retained_sessions(self) -> int:
        return await purge_retained_sessions(
            self.repository,
            self.audit_log,
            retention_days=self.config.sessions.retention_days,
            now=self._clock(),
        )

    async def close(self) -> None:
        try:
            await self.cache_store.disconnect()
        finally:
            await self.repository.close()
