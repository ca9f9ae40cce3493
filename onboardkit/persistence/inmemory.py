"""In-memory implementation of the session repository."""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime
from typing import Dict, List, Optional

from ..contracts import AuditEvent, SessionStatus
from ..errors import SessionNotFound
from .models import SessionRecord, utcnow
from .repository import SessionRepository


class InMemorySessionRepository(SessionRepository):
    """Store sessions in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, SessionRecord] = {}
        self._audit: List[AuditEvent] = []
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    async def create_session(
        self,
        session_id: str,
        expires_at: Optional[datetime] = None,
        progress: dict | None = None,
    ) -> SessionRecord:
        async with self._lock:
            if session_id in self._sessions:
                raise ValueError(f"Session already exists: {session_id}")
            record = SessionRecord(
                id=session_id,
                progress=copy.deepcopy(progress or {}),
                expires_at=expires_at,
            )
            self._sessions[session_id] = record
            return record.model_copy(deep=True)

    async def get_session(self, session_id: str) -> SessionRecord | None:
        record = self._sessions.get(session_id)
        # hand out copies so callers cannot mutate stored state
        return record.model_copy(deep=True) if record else None

    async def list_sessions(
        self, statuses: Optional[list[SessionStatus]] = None
    ) -> list[SessionRecord]:
        return [
            s.model_copy(deep=True)
            for s in self._sessions.values()
            if statuses is None or s.status in statuses
        ]

    async def update_status(self, session_id: str, status: SessionStatus) -> None:
        async with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                raise SessionNotFound(session_id)
            record.status = status
            record.version += 1
            record.updated_at = utcnow()

    async def compare_and_set_progress(
        self,
        session_id: str,
        progress: dict,
        expected_version: int,
        expires_at: Optional[datetime] = None,
        touch: bool = True,
    ) -> bool:
        async with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                raise SessionNotFound(session_id)
            if record.version != expected_version:
                return False
            record.progress = copy.deepcopy(progress)
            record.version += 1
            if touch:
                record.updated_at = utcnow()
            if expires_at is not None:
                record.expires_at = expires_at
            return True

    async def delete_session(self, session_id: str) -> None:
        async with self._lock:
            self._sessions.pop(session_id, None)

    async def append_audit_event(self, event: AuditEvent) -> None:
        self._audit.append(event.model_copy(deep=True))

    async def list_audit_events(
        self, session_id: Optional[str] = None
    ) -> list[AuditEvent]:
        return [
            e for e in self._audit if session_id is None or e.session_id == session_id
        ]

    async def close(self) -> None:
        pass
