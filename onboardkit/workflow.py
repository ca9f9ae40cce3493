"""Write path for session progress."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional

from .audit import AuditLog
from .constants import (
    ACTION_PROGRESS_UPDATED,
    ACTION_SESSION_CREATED,
    DEFAULT_ACTIVITY_EXTENSION_MINUTES,
    DEFAULT_RETRY_BASE_DELAY,
    DEFAULT_WATERMARK_MAX_ATTEMPTS,
    PHASE_TIMINGS_KEY,
    SESSION_RESOURCE,
)
from .contracts import AuditEvent, RequestContext, SessionStatus, TransitionResult
from .errors import ProgressConflict, SessionExpired, SessionNotActive, SessionNotFound
from .lifecycle import StateMachine
from .persistence.models import SessionRecord, utcnow
from .progress.cache import ProgressCache
from .progress.payload import merge_progress, validate_patch
from .progress.phases import normalize_phase_name
from .utils import KeyedLock, schedule_retry

if TYPE_CHECKING:
    from .persistence import SessionRepository

logger = logging.getLogger(__name__)

PayloadMutation = Callable[[Dict[str, Any]], Dict[str, Any]]


class SessionWorkflow:
    """Creates sessions and applies upstream writes to their progress payload.

    Every payload write moves a ``started`` session to ``in_progress`` first,
    extends the session's expiry, and drops the cached progress snapshot.
    """

    def __init__(
        self,
        repository: "SessionRepository",
        state_machine: StateMachine,
        progress_cache: ProgressCache,
        audit_log: AuditLog,
        locks: Optional[KeyedLock] = None,
        activity_extension: timedelta = timedelta(
            minutes=DEFAULT_ACTIVITY_EXTENSION_MINUTES
        ),
        max_attempts: int = DEFAULT_WATERMARK_MAX_ATTEMPTS,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._state_machine = state_machine
        self._progress_cache = progress_cache
        self._audit_log = audit_log
        self._locks = locks or KeyedLock()
        self._activity_extension = activity_extension
        self._max_attempts = max_attempts
        self._retry_base_delay = retry_base_delay
        self._clock = clock

    async def create_session(
        self,
        context: Optional[RequestContext] = None,
        session_id: Optional[str] = None,
    ) -> SessionRecord:
        session_id = session_id or str(uuid.uuid4())
        session = await self._repository.create_session(
            session_id, expires_at=self._clock() + self._activity_extension
        )
        logger.info(f"Created onboarding session {session_id}")
        await self._audit_log.record_safely(
            AuditEvent.for_session(
                action=ACTION_SESSION_CREATED,
                resource=SESSION_RESOURCE,
                session_id=session_id,
                details={"status": session.status.value},
                context=context,
            )
        )
        return session

    async def update_progress(
        self,
        session_id: str,
        patch: Mapping[str, Any],
        context: Optional[RequestContext] = None,
    ) -> SessionRecord:
        """Deep-merge a client progress patch into the stored payload.

        Raises:
            InvalidProgressPatch: ``patch`` has an unusable shape.
            SessionNotFound: No such session.
            SessionExpired: The session is past its expiry time.
            SessionNotActive: The session is in a terminal status.
        """
        patch = validate_patch(patch)
        session = await self._write_payload(
            session_id, lambda existing: merge_progress(existing, patch), context
        )
        await self._audit_log.record_safely(
            AuditEvent.for_session(
                action=ACTION_PROGRESS_UPDATED,
                resource=SESSION_RESOURCE,
                session_id=session_id,
                # key names only; values may hold PHI
                details={"fields": sorted(patch.keys())},
                context=context,
            )
        )
        return session

    async def record_phase_timing(
        self,
        session_id: str,
        phase: str,
        started_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
        context: Optional[RequestContext] = None,
    ) -> None:
        """Record when ``phase`` was entered and/or completed.

        A timestamp left as ``None`` keeps whatever was recorded before.
        """
        name = normalize_phase_name(phase)
        if name is None:
            raise ValueError("phase cannot be blank")

        def mutate(existing: Dict[str, Any]) -> Dict[str, Any]:
            progress = dict(existing)
            timings = dict(progress.get(PHASE_TIMINGS_KEY) or {})
            record = dict(timings.get(name) or {})
            if started_at is not None:
                record["started_at"] = started_at.isoformat()
            if completed_at is not None:
                record["completed_at"] = completed_at.isoformat()
            timings[name] = record
            progress[PHASE_TIMINGS_KEY] = timings
            return progress

        await self._write_payload(session_id, mutate, context)
        logger.debug(f"Recorded timing for phase {name} on session {session_id}")

    async def abandon_session(
        self, session_id: str, context: Optional[RequestContext] = None
    ) -> TransitionResult:
        """Abandon a session. Abandoning it again is a no-op."""
        return await self._state_machine.apply_transition(
            session_id, SessionStatus.ABANDONED, context
        )

    async def _write_payload(
        self,
        session_id: str,
        mutate: PayloadMutation,
        context: Optional[RequestContext],
    ) -> SessionRecord:
        async with self._locks.hold(session_id):
            for attempt in range(self._max_attempts):
                session = await self._load_writable(session_id)

                if session.status == SessionStatus.STARTED:
                    await self._state_machine.apply_transition(
                        session_id, SessionStatus.IN_PROGRESS, context
                    )
                    session = await self._load_writable(session_id)

                progress = mutate(dict(session.progress or {}))
                expires_at = self._clock() + self._activity_extension
                if await self._repository.compare_and_set_progress(
                    session_id, progress, session.version, expires_at=expires_at
                ):
                    break

                logger.info(
                    f"Progress write for session {session_id} lost a race "
                    f"(attempt {attempt + 1}/{self._max_attempts}); retrying"
                )
                await schedule_retry(attempt, base=self._retry_base_delay)
            else:
                raise ProgressConflict(session_id, self._max_attempts)

            await self._progress_cache.invalidate(session_id)

        updated = await self._repository.get_session(session_id)
        if updated is None:
            raise SessionNotFound(session_id)
        return updated

    async def _load_writable(self, session_id: str) -> SessionRecord:
        session = await self._repository.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        if session.past_expiration(self._clock()):
            raise SessionExpired(session_id)
        if session.is_terminal:
            raise SessionNotActive(session_id, session.status.value)
        return session
