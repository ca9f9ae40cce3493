"""Repository abstraction for session state persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from ..contracts import AuditEvent, SessionStatus
from .models import SessionRecord


class SessionRepository(Protocol):
    """Protocol for session store backends."""

    async def create_session(
        self,
        session_id: str,
        expires_at: Optional[datetime] = None,
        progress: dict | None = None,
    ) -> SessionRecord:
        """Persist a new session in the ``started`` status."""

    async def get_session(self, session_id: str) -> SessionRecord | None:
        """Retrieve the session by id."""

    async def list_sessions(
        self, statuses: Optional[list[SessionStatus]] = None
    ) -> list[SessionRecord]:
        """Return persisted sessions, optionally filtered by status."""

    async def update_status(self, session_id: str, status: SessionStatus) -> None:
        """Persist a new status and bump the session version."""

    async def compare_and_set_progress(
        self,
        session_id: str,
        progress: dict,
        expected_version: int,
        expires_at: Optional[datetime] = None,
        touch: bool = True,
    ) -> bool:
        """Replace the payload only if the stored version still matches.

        With ``touch=False`` the write leaves ``updated_at`` alone, so a
        derived-field write does not count as session activity.
        Returns ``False`` when another writer got there first.
        """

    async def delete_session(self, session_id: str) -> None:
        """Remove the session permanently."""

    async def append_audit_event(self, event: AuditEvent) -> None:
        """Append an audit event."""

    async def list_audit_events(
        self, session_id: Optional[str] = None
    ) -> list[AuditEvent]:
        """Return audit events, oldest first."""

    async def close(self) -> None:
        """Release any connection held by the backend."""
