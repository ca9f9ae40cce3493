"""Validated, ordered session status changes."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from ..audit import AuditLog
from ..constants import (
    ACTION_SESSION_ABANDONED,
    ACTION_SESSION_EXPIRED,
    ACTION_STATUS_CHANGED,
    SESSION_RESOURCE,
)
from ..contracts import AuditEvent, RequestContext, SessionStatus, TransitionResult
from ..errors import InvalidTransition, SessionNotFound
from ..utils import KeyedLock
from .graph import TRANSITION_GRAPH, StatusLike, coerce_status

if TYPE_CHECKING:
    from ..persistence import SessionRepository
    from ..progress.cache import ProgressCache

logger = logging.getLogger(__name__)

_AUDIT_ACTIONS = {
    SessionStatus.ABANDONED: ACTION_SESSION_ABANDONED,
    SessionStatus.EXPIRED: ACTION_SESSION_EXPIRED,
}


def can_transition(current: StatusLike, target: StatusLike) -> bool:
    """Return ``True`` if ``current -> target`` is allowed.

    The identity edge is always allowed. Unknown status names are never
    allowed.
    """
    try:
        current_status = coerce_status(current)
        target_status = coerce_status(target)
    except ValueError:
        return False
    if current_status == target_status:
        return True
    return target_status in TRANSITION_GRAPH[current_status]


class StateMachine:
    """Moves sessions between statuses.

    A change runs as validate, persist, audit, then invalidate the progress
    cache when the target is terminal. Only validation and persistence can
    fail the call; audit and cache problems are logged.
    """

    def __init__(
        self,
        repository: "SessionRepository",
        audit_log: AuditLog,
        progress_cache: Optional["ProgressCache"] = None,
        locks: Optional[KeyedLock] = None,
    ) -> None:
        self._repository = repository
        self._audit_log = audit_log
        self._progress_cache = progress_cache
        self._locks = locks or KeyedLock()

    can_transition = staticmethod(can_transition)

    async def apply_transition(
        self,
        session_id: str,
        target: StatusLike,
        context: Optional[RequestContext] = None,
    ) -> TransitionResult:
        """Move ``session_id`` to ``target``.

        Raises:
            SessionNotFound: No such session.
            InvalidTransition: ``target`` is not reachable from the current status.
        """
        async with self._locks.hold(session_id):
            session = await self._repository.get_session(session_id)
            if session is None:
                raise SessionNotFound(session_id)

            current = session.status
            if not can_transition(current, target):
                raise InvalidTransition(current.value, str(getattr(target, "value", target)))
            target_status = coerce_status(target)

            if target_status == current:
                return TransitionResult(
                    session_id=session_id,
                    previous_status=current,
                    status=current,
                    changed=False,
                )

            await self._repository.update_status(session_id, target_status)
            logger.info(
                f"Session {session_id} transitioned {current.value} -> {target_status.value}"
            )

            await self._audit_log.record_safely(
                AuditEvent.for_session(
                    action=_AUDIT_ACTIONS.get(target_status, ACTION_STATUS_CHANGED),
                    resource=SESSION_RESOURCE,
                    session_id=session_id,
                    details={
                        "old_status": current.value,
                        "new_status": target_status.value,
                        "previousStatus": current.value,
                    },
                    context=context,
                )
            )

            if target_status.is_terminal and self._progress_cache is not None:
                await self._progress_cache.invalidate(session_id)

        return TransitionResult(
            session_id=session_id,
            previous_status=current,
            status=target_status,
        )
