"""PostgreSQL implementation of the session repository."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

import asyncpg

from ..contracts import AuditEvent, SessionStatus
from ..errors import SessionNotFound
from .models import SessionRecord, utcnow
from .repository import SessionRepository


def _json(value: Any) -> Any:
    # asyncpg hands jsonb back as text unless a codec is registered
    if isinstance(value, str):
        return json.loads(value)
    return value


def _affected(status: str) -> int:
    # command tags look like "UPDATE 1"
    return int(status.rsplit(" ", 1)[-1])


class PostgresSessionRepository(SessionRepository):
    """Persist session state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS onboarding_sessions (
                id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                progress JSONB NOT NULL DEFAULT '{}'::jsonb,
                version INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                expires_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS audit_logs (
                seq SERIAL PRIMARY KEY,
                id TEXT UNIQUE NOT NULL,
                action TEXT NOT NULL,
                resource TEXT NOT NULL,
                resource_id TEXT,
                details JSONB,
                session_id TEXT,
                actor_id TEXT,
                ip_address TEXT,
                user_agent TEXT,
                created_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_audit_logs_session ON audit_logs (session_id)"
        )

    @staticmethod
    def _to_record(row: asyncpg.Record) -> SessionRecord:
        return SessionRecord(
            id=row["id"],
            status=SessionStatus(row["status"]),
            progress=_json(row["progress"]) or {},
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            expires_at=row["expires_at"],
        )

    # ------------------------------------------------------------------
    async def create_session(
        self,
        session_id: str,
        expires_at: Optional[datetime] = None,
        progress: dict | None = None,
    ) -> SessionRecord:
        now = utcnow()
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO onboarding_sessions
                    (id, status, progress, version, created_at, updated_at, expires_at)
                VALUES ($1, $2, $3, 0, $4, $4, $5)
                """,
                session_id,
                SessionStatus.STARTED.value,
                json.dumps(progress or {}),
                now,
                expires_at,
            )
        except asyncpg.UniqueViolationError as e:
            raise ValueError(f"Session already exists: {session_id}") from e
        finally:
            await conn.close()
        return SessionRecord(
            id=session_id,
            progress=progress or {},
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
        )

    async def get_session(self, session_id: str) -> SessionRecord | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT * FROM onboarding_sessions WHERE id = $1", session_id
            )
        finally:
            await conn.close()
        return self._to_record(row) if row else None

    async def list_sessions(
        self, statuses: Optional[list[SessionStatus]] = None
    ) -> list[SessionRecord]:
        conn = await self._connect()
        try:
            if statuses:
                rows = await conn.fetch(
                    "SELECT * FROM onboarding_sessions WHERE status = ANY($1::text[]) ORDER BY created_at",
                    [s.value for s in statuses],
                )
            else:
                rows = await conn.fetch(
                    "SELECT * FROM onboarding_sessions ORDER BY created_at"
                )
        finally:
            await conn.close()
        return [self._to_record(r) for r in rows]

    async def update_status(self, session_id: str, status: SessionStatus) -> None:
        conn = await self._connect()
        try:
            result = await conn.execute(
                """
                UPDATE onboarding_sessions
                SET status = $1, version = version + 1, updated_at = $2
                WHERE id = $3
                """,
                status.value,
                utcnow(),
                session_id,
            )
        finally:
            await conn.close()
        if not _affected(result):
            raise SessionNotFound(session_id)

    async def compare_and_set_progress(
        self,
        session_id: str,
        progress: dict,
        expected_version: int,
        expires_at: Optional[datetime] = None,
        touch: bool = True,
    ) -> bool:
        conn = await self._connect()
        try:
            result = await conn.execute(
                """
                UPDATE onboarding_sessions
                SET progress = $1, version = version + 1,
                    updated_at = COALESCE($2, updated_at),
                    expires_at = COALESCE($3, expires_at)
                WHERE id = $4 AND version = $5
                """,
                json.dumps(progress),
                utcnow() if touch else None,
                expires_at,
                session_id,
                expected_version,
            )
            if _affected(result):
                return True
            exists = await conn.fetchval(
                "SELECT 1 FROM onboarding_sessions WHERE id = $1", session_id
            )
        finally:
            await conn.close()
        if not exists:
            raise SessionNotFound(session_id)
        return False

    async def delete_session(self, session_id: str) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "DELETE FROM onboarding_sessions WHERE id = $1", session_id
            )
        finally:
            await conn.close()

    async def append_audit_event(self, event: AuditEvent) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO audit_logs
                    (id, action, resource, resource_id, details, session_id,
                     actor_id, ip_address, user_agent, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
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
                event.created_at,
            )
        finally:
            await conn.close()

    async def list_audit_events(
        self, session_id: Optional[str] = None
    ) -> list[AuditEvent]:
        conn = await self._connect()
        try:
            if session_id is None:
                rows = await conn.fetch("SELECT * FROM audit_logs ORDER BY seq")
            else:
                rows = await conn.fetch(
                    "SELECT * FROM audit_logs WHERE session_id = $1 ORDER BY seq",
                    session_id,
                )
        finally:
            await conn.close()
        return [
            AuditEvent(
                id=r["id"],
                action=r["action"],
                resource=r["resource"],
                resource_id=r["resource_id"],
                details=_json(r["details"]) or {},
                session_id=r["session_id"],
                actor_id=r["actor_id"],
                ip_address=r["ip_address"],
                user_agent=r["user_agent"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    async def close(self) -> None:
        # connections are opened and closed per call
        pass
