"""Audit sink for lifecycle and progress events."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .contracts import AuditEvent
from .errors import AuditWriteFailed

if TYPE_CHECKING:
    from .persistence import SessionRepository

logger = logging.getLogger(__name__)


class AuditLog:
    """Records audit events. Subclasses decide where they go."""

    async def record(self, event: AuditEvent) -> None:  # pragma: no cover - outline
        """Persist an audit log entry."""
        raise NotImplementedError

    async def record_safely(self, event: AuditEvent) -> bool:
        """Record ``event`` and report failure through logging only.

        Returns ``True`` when the event was stored.
        """
        try:
            await self.record(event)
        except Exception as e:
            logger.error(
                f"Audit logging failed for {event.resource}#{event.resource_id} "
                f"action={event.action}: {e}"
            )
            return False
        return True


class RepositoryAuditLog(AuditLog):
    """Appends audit events to the session repository's audit table."""

    def __init__(self, repository: "SessionRepository") -> None:
        self._repository = repository

    async def record(self, event: AuditEvent) -> None:
        try:
            await self._repository.append_audit_event(event)
        except AuditWriteFailed:
            raise
        except Exception as e:
            raise AuditWriteFailed(str(e)) from e
