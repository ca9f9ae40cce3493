"""SQLite implementation of the session repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from ..contracts import AuditEvent, SessionStatus
from ..errors import SessionNotFound
from .models import SessionRecord, utcnow
from .repository import SessionRepository


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteSessionRepository(SessionRepository):
    """Persist session state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn: sqlite3.Connection | None = None
        self._ensure_schema()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    async def close(self) -> None:
        """Close the connection; the next call reopens it."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        conn = self._connection()
        cur = conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS onboarding_sessions (
                id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                progress TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                expires_at TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS audit_logs (
                id TEXT PRIMARY KEY,
                action TEXT NOT NULL,
                resource TEXT NOT NULL,
                resource_id TEXT,
                details TEXT,
                session_id TEXT,
                actor_id TEXT,
                ip_address TEXT,
                user_agent TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_audit_logs_session ON audit_logs (session_id)"
        )
        conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        conn = self._connection()
        cur = conn.cursor()
        cur.execute(query, params)
        conn.commit()
        return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._connection().cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._connection().cursor()
        cur.execute(query, params)
        return cur.fetchall()

    @staticmethod
    def _to_record(row: sqlite3.Row) -> SessionRecord:
        return SessionRecord(
            id=row["id"],
            status=SessionStatus(row["status"]),
            progress=json.loads(row["progress"]) if row["progress"] else {},
            version=row["version"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
            expires_at=_parse_ts(row["expires_at"]),
        )

    # ------------------------------------------------------------------
    # Repository API
    async def create_session(
        self,
        session_id: str,
        expires_at: Optional[datetime] = None,
        progress: dict | None = None,
    ) -> SessionRecord:
        now = utcnow()
        try:
            await asyncio.to_thread(
                self._execute,
                """
                INSERT INTO onboarding_sessions
                    (id, status, progress, version, created_at, updated_at, expires_at)
                VALUES (?, ?, ?, 0, ?, ?, ?)
                """,
                session_id,
                SessionStatus.STARTED.value,
                json.dumps(progress or {}),
                _ts(now),
                _ts(now),
                _ts(expires_at),
            )
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Session already exists: {session_id}") from e
        return SessionRecord(
            id=session_id,
            progress=progress or {},
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
        )

    async def get_session(self, session_id: str) -> SessionRecord | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT * FROM onboarding_sessions WHERE id = ?",
            session_id,
        )
        return self._to_record(row) if row else None

    async def list_sessions(
        self, statuses: Optional[list[SessionStatus]] = None
    ) -> list[SessionRecord]:
        if statuses:
            placeholders = ", ".join("?" for _ in statuses)
            rows = await asyncio.to_thread(
                self._fetchall,
                f"SELECT * FROM onboarding_sessions WHERE status IN ({placeholders}) ORDER BY created_at",
                *[s.value for s in statuses],
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall, "SELECT * FROM onboarding_sessions ORDER BY created_at"
            )
        return [self._to_record(r) for r in rows]

    async def update_status(self, session_id: str, status: SessionStatus) -> None:
        updated = await asyncio.to_thread(
            self._execute,
            """
            UPDATE onboarding_sessions
            SET status = ?, version = version + 1, updated_at = ?
            WHERE id = ?
            """,
            status.value,
            _ts(utcnow()),
            session_id,
        )
        if not updated:
            raise SessionNotFound(session_id)

    async def compare_and_set_progress(
        self,
        session_id: str,
        progress: dict,
        expected_version: int,
        expires_at: Optional[datetime] = None,
        touch: bool = True,
    ) -> bool:
        updated = await asyncio.to_thread(
            self._execute,
            """
            UPDATE onboarding_sessions
            SET progress = ?, version = version + 1,
                updated_at = COALESCE(?, updated_at),
                expires_at = COALESCE(?, expires_at)
            WHERE id = ? AND version = ?
            """,
            json.dumps(progress),
            _ts(utcnow()) if touch else None,
            _ts(expires_at),
            session_id,
            expected_version,
        )
        if updated:
            return True
        if await self.get_session(session_id) is None:
            raise SessionNotFound(session_id)
        return False

    async def delete_session(self, session_id: str) -> None:
        await asyncio.to_thread(
            self._execute,
            "DELETE FROM onboarding_sessions WHERE id = ?",
            session_id,
        )

    async def append_audit_event(self, event: AuditEvent) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO audit_logs
                (id, action, resource, resource_id, details, session_id,
                 actor_id, ip_address, user_agent, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            event.id,
            event.action,
            event.resource,
            event.resource_id,
            json.dumps(event.details, default=str),
            event.session_id,
            event.actor_id,
            event.ip_address,
            event.user_agent,
            _ts(event.created_at),
        )

    async def list_audit_events(
        self, session_id: Optional[str] = None
    ) -> list[AuditEvent]:
        if session_id is None:
            rows = await asyncio.to_thread(
                self._fetchall, "SELECT * FROM audit_logs ORDER BY rowid"
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT * FROM audit_logs WHERE session_id = ? ORDER BY rowid",
                session_id,
            )
        return [
            AuditEvent(
                id=r["id"],
                action=r["action"],
                resource=r["resource"],
                resource_id=r["resource_id"],
                details=json.loads(r["details"]) if r["details"] else {},
                session_id=r["session_id"],
                actor_id=r["actor_id"],
                ip_address=r["ip_address"],
                user_agent=r["user_agent"],
                created_at=_parse_ts(r["created_at"]),
            )
            for r in rows
        ]
