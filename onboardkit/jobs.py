"""Maintenance jobs run outside the request path."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional

from .audit import AuditLog
from .constants import ACTION_SESSION_DELETED, DEFAULT_RETENTION_DAYS, SESSION_RESOURCE
from .contracts import AuditEvent, RequestContext, SessionStatus
from .lifecycle import StateMachine
from .persistence.models import utcnow

if TYPE_CHECKING:
    from .persistence import SessionRepository

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = [status for status in SessionStatus if not status.is_terminal]


async def expire_sessions(
    repository: "SessionRepository",
    state_machine: StateMachine,
    now: Optional[datetime] = None,
    context: Optional[RequestContext] = None,
) -> int:
    """Move every active session past its ``expires_at`` to ``expired``.

    A session that fails to transition is logged and skipped. Returns the
    number of sessions expired.
    """
    now = now or utcnow()
    expired = 0
    for session in await repository.list_sessions(statuses=ACTIVE_STATUSES):
        if not session.past_expiration(now):
            continue
        try:
            result = await state_machine.apply_transition(
                session.id, SessionStatus.EXPIRED, context
            )
        except Exception as e:
            logger.error(f"Failed to expire session {session.id}: {e}")
            continue
        if result.changed:
            expired += 1

    if expired:
        logger.info(f"Expired {expired} onboarding session(s)")
    return expired


async def purge_retained_sessions(
    repository: "SessionRepository",
    audit_log: AuditLog,
    retention_days: int = DEFAULT_RETENTION_DAYS,
    now: Optional[datetime] = None,
) -> int:
    """Delete expired sessions last touched more than ``retention_days`` ago.

    A session whose delete fails is logged and left for the next run.
    """
    cutoff = (now or utcnow()) - timedelta(days=retention_days)
    deleted = 0
    for session in await repository.list_sessions(statuses=[SessionStatus.EXPIRED]):
        if session.updated_at >= cutoff:
            continue
        try:
            await audit_log.record_safely(
                AuditEvent.for_session(
                    action=ACTION_SESSION_DELETED,
                    resource=SESSION_RESOURCE,
                    session_id=session.id,
                    details={"reason": "retention", "retention_days": retention_days},
                )
            )
            await repository.delete_session(session.id)
        except Exception as e:
            logger.error(f"Failed to purge session {session.id}: {e}")
            continue
        deleted += 1

    if deleted:
        logger.info(f"Purged {deleted} expired onboarding session(s)")
    return deleted
