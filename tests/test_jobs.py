import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from onboardkit.audit import RepositoryAuditLog
from onboardkit.cache import InMemoryCache
from onboardkit.contracts import SessionStatus
from onboardkit.errors import InvalidTransition
from onboardkit.jobs import expire_sessions, purge_retained_sessions
from onboardkit.lifecycle import StateMachine
from onboardkit.persistence import InMemorySessionRepository, SQLiteSessionRepository
from onboardkit.progress import ProgressCache, ProgressService

NOW = datetime.now(timezone.utc)


class PickyStateMachine(StateMachine):
    """Refuses to touch one session."""

    def __init__(self, repository, audit_log, refuse):
        super().__init__(repository, audit_log)
        self.refuse = refuse

    async def apply_transition(self, session_id, target, context=None):
        if session_id == self.refuse:
            raise InvalidTransition("in_progress", str(target))
        return await super().apply_transition(session_id, target, context)


class FlakyRepository(InMemorySessionRepository):
    """Fails every write for one session the way a locked database would."""

    def __init__(self, broken):
        super().__init__()
        self.broken = broken

    async def update_status(self, session_id, status):
        if session_id == self.broken:
            raise sqlite3.OperationalError("database is locked")
        await super().update_status(session_id, status)

    async def delete_session(self, session_id):
        if session_id == self.broken:
            raise sqlite3.OperationalError("database is locked")
        await super().delete_session(session_id)


async def _backdate(repo, session_id, when):
    if isinstance(repo, SQLiteSessionRepository):
        repo._execute(
            "UPDATE onboarding_sessions SET updated_at = ? WHERE id = ?",
            when.isoformat(),
            session_id,
        )
    else:
        repo._sessions[session_id].updated_at = when


@pytest.fixture(params=["inmemory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "sqlite":
        return SQLiteSessionRepository(tmp_path / "jobs.db")
    return InMemorySessionRepository()


@pytest.mark.asyncio
async def test_expire_sessions_only_touches_past_due_active_sessions(repo):
    audit = RepositoryAuditLog(repo)
    machine = StateMachine(repo, audit)
    await repo.create_session("overdue", expires_at=NOW - timedelta(minutes=5))
    await repo.create_session("fresh", expires_at=NOW + timedelta(minutes=5))
    await repo.create_session("no-expiry")
    await repo.create_session("done", expires_at=NOW - timedelta(days=1))
    await repo.update_status("done", SessionStatus.ABANDONED)

    count = await expire_sessions(repo, machine, now=NOW)

    assert count == 1
    assert (await repo.get_session("overdue")).status == SessionStatus.EXPIRED
    assert (await repo.get_session("fresh")).status == SessionStatus.STARTED
    assert (await repo.get_session("no-expiry")).status == SessionStatus.STARTED
    assert (await repo.get_session("done")).status == SessionStatus.ABANDONED
    events = await repo.list_audit_events("overdue")
    assert [e.action for e in events] == ["SESSION_EXPIRED"]

    # second run finds nothing left to do
    assert await expire_sessions(repo, machine, now=NOW) == 0


@pytest.mark.asyncio
async def test_expire_sessions_skips_failures(caplog):
    repo = InMemorySessionRepository()
    audit = RepositoryAuditLog(repo)
    machine = PickyStateMachine(repo, audit, refuse="stuck")
    await repo.create_session("stuck", expires_at=NOW - timedelta(minutes=1))
    await repo.create_session("overdue", expires_at=NOW - timedelta(minutes=1))

    with caplog.at_level("ERROR"):
        count = await expire_sessions(repo, machine, now=NOW)

    assert count == 1
    assert (await repo.get_session("stuck")).status == SessionStatus.STARTED
    assert (await repo.get_session("overdue")).status == SessionStatus.EXPIRED
    assert "Failed to expire session stuck" in caplog.text


@pytest.mark.asyncio
async def test_purge_deletes_only_old_expired_sessions(repo):
    audit = RepositoryAuditLog(repo)
    await repo.create_session("old-expired")
    await repo.update_status("old-expired", SessionStatus.EXPIRED)
    await repo.create_session("old-abandoned")
    await repo.update_status("old-abandoned", SessionStatus.ABANDONED)
    await repo.create_session("active")

    # nothing is old enough yet
    assert await purge_retained_sessions(repo, audit, retention_days=90, now=NOW) == 0

    later = NOW + timedelta(days=91)
    count = await purge_retained_sessions(repo, audit, retention_days=90, now=later)

    assert count == 1
    assert await repo.get_session("old-expired") is None
    assert await repo.get_session("old-abandoned") is not None
    assert await repo.get_session("active") is not None
    events = await repo.list_audit_events("old-expired")
    assert events[-1].action == "SESSION_DELETED"
    assert events[-1].details["retention_days"] == 90


@pytest.mark.asyncio
async def test_expire_sessions_survives_storage_errors(caplog):
    repo = FlakyRepository(broken="a-broken")
    machine = StateMachine(repo, RepositoryAuditLog(repo))
    await repo.create_session("a-broken", expires_at=NOW - timedelta(minutes=1))
    await repo.create_session("b-overdue", expires_at=NOW - timedelta(minutes=1))

    with caplog.at_level("ERROR"):
        count = await expire_sessions(repo, machine, now=NOW)

    assert count == 1
    assert (await repo.get_session("a-broken")).status == SessionStatus.STARTED
    assert (await repo.get_session("b-overdue")).status == SessionStatus.EXPIRED
    assert "Failed to expire session a-broken" in caplog.text


@pytest.mark.asyncio
async def test_purge_survives_storage_errors(caplog):
    repo = FlakyRepository(broken="a-broken")
    audit = RepositoryAuditLog(repo)
    await repo.create_session("a-broken")
    await repo.create_session("b-old")
    repo._sessions["a-broken"].status = SessionStatus.EXPIRED
    await repo.update_status("b-old", SessionStatus.EXPIRED)

    with caplog.at_level("ERROR"):
        count = await purge_retained_sessions(
            repo, audit, retention_days=90, now=NOW + timedelta(days=91)
        )

    assert count == 1
    assert await repo.get_session("a-broken") is not None
    assert await repo.get_session("b-old") is None
    assert "Failed to purge session a-broken" in caplog.text


@pytest.mark.asyncio
async def test_progress_read_keeps_retention_clock(repo):
    audit = RepositoryAuditLog(repo)
    await repo.create_session(
        "s1", progress={"currentStep": "child_info", "intake": {"parentInfoComplete": True}}
    )
    await repo.update_status("s1", SessionStatus.EXPIRED)
    await _backdate(repo, "s1", NOW - timedelta(days=100))
    service = ProgressService(repo, ProgressCache(InMemoryCache()), retry_base_delay=0)

    snapshot = await service.get_progress("s1")

    assert snapshot.percentage == 42
    stored = await repo.get_session("s1")
    assert stored.progress["last_percentage"] == 42
    assert stored.updated_at == NOW - timedelta(days=100)
    assert await purge_retained_sessions(repo, audit, retention_days=90, now=NOW) == 1
    assert await repo.get_session("s1") is None
