"""StateMachine.apply_transition tests."""

import uuid

import pytest

from onboardkit.audit import AuditLog, RepositoryAuditLog
from onboardkit.cache import BaseCache, InMemoryCache
from onboardkit.contracts import ProgressSnapshot, RequestContext, SessionStatus
from onboardkit.errors import AuditWriteFailed, CacheUnavailable, InvalidTransition, SessionNotFound
from onboardkit.lifecycle import TRANSITION_GRAPH, StateMachine
from onboardkit.persistence import InMemorySessionRepository
from onboardkit.progress import ProgressCache

SNAPSHOT = ProgressSnapshot(
    percentage=42,
    current_phase="child_info",
    completed_phases=["welcome", "parent_info"],
    next_phase="concerns",
    estimated_minutes_remaining=14,
)


class FailingAuditLog(AuditLog):
    def __init__(self):
        self.attempts = 0

    async def record(self, event):
        self.attempts += 1
        raise AuditWriteFailed("audit sink down")


class FailingCache(BaseCache):
    async def get(self, key):
        raise CacheUnavailable("cache down")

    async def set(self, key, value, ttl):
        raise CacheUnavailable("cache down")

    async def delete(self, key):
        raise CacheUnavailable("cache down")


class BrokenStatusRepository(InMemorySessionRepository):
    async def update_status(self, session_id, status):
        raise RuntimeError("database unavailable")


def _setup(repo=None, audit_log=None, store=None):
    repo = repo or InMemorySessionRepository()
    audit_log = audit_log or RepositoryAuditLog(repo)
    cache = ProgressCache(store or InMemoryCache())
    machine = StateMachine(repo, audit_log, progress_cache=cache)
    return repo, machine, cache


async def _session_in(repo, status):
    session_id = str(uuid.uuid4())
    await repo.create_session(session_id)
    repo._sessions[session_id].status = status
    return session_id


@pytest.mark.asyncio
async def test_valid_transition_persists_and_audits():
    repo, machine, _ = _setup()
    session_id = await _session_in(repo, SessionStatus.STARTED)
    context = RequestContext(actor_id="parent-1", ip_address="10.0.0.1", user_agent="pytest")

    result = await machine.apply_transition(session_id, "in_progress", context)

    assert result.changed
    assert result.previous_status == SessionStatus.STARTED
    assert result.status == SessionStatus.IN_PROGRESS
    session = await repo.get_session(session_id)
    assert session.status == SessionStatus.IN_PROGRESS
    assert session.version == 1

    events = await repo.list_audit_events(session_id)
    assert len(events) == 1
    event = events[0]
    assert event.action == "SESSION_STATUS_CHANGED"
    assert event.resource == "OnboardingSession"
    assert event.details["old_status"] == "started"
    assert event.details["new_status"] == "in_progress"
    assert event.actor_id == "parent-1"
    assert event.ip_address == "10.0.0.1"


@pytest.mark.asyncio
async def test_every_illegal_edge_is_rejected_without_side_effects():
    for current in SessionStatus:
        for target in SessionStatus:
            if target == current or target in TRANSITION_GRAPH[current]:
                continue
            repo, machine, cache = _setup()
            session_id = await _session_in(repo, current)
            await cache.put(session_id, SNAPSHOT)

            with pytest.raises(InvalidTransition) as exc_info:
                await machine.apply_transition(session_id, target)

            assert exc_info.value.from_status == current.value
            assert exc_info.value.to_status == target.value
            session = await repo.get_session(session_id)
            assert session.status == current
            assert session.version == 0
            assert await repo.list_audit_events(session_id) == []
            assert await cache.get(session_id) == SNAPSHOT


@pytest.mark.asyncio
async def test_every_legal_edge_succeeds():
    for current, targets in TRANSITION_GRAPH.items():
        for target in targets:
            repo, machine, _ = _setup()
            session_id = await _session_in(repo, current)
            result = await machine.apply_transition(session_id, target)
            assert result.status == target
            assert (await repo.get_session(session_id)).status == target


@pytest.mark.asyncio
async def test_identity_transition_is_a_no_op():
    repo, machine, cache = _setup()
    session_id = await _session_in(repo, SessionStatus.ABANDONED)
    await cache.put(session_id, SNAPSHOT)

    result = await machine.apply_transition(session_id, SessionStatus.ABANDONED)

    assert not result.changed
    assert (await repo.get_session(session_id)).version == 0
    assert await repo.list_audit_events(session_id) == []
    assert await cache.get(session_id) == SNAPSHOT


@pytest.mark.asyncio
async def test_unknown_session():
    _, machine, _ = _setup()
    with pytest.raises(SessionNotFound):
        await machine.apply_transition("missing", "in_progress")


@pytest.mark.asyncio
async def test_unknown_target_status_is_invalid_transition():
    repo, machine, _ = _setup()
    session_id = await _session_in(repo, SessionStatus.STARTED)
    with pytest.raises(InvalidTransition):
        await machine.apply_transition(session_id, "teleported")


@pytest.mark.asyncio
async def test_terminal_transition_evicts_cached_progress():
    repo, machine, cache = _setup()
    session_id = await _session_in(repo, SessionStatus.IN_PROGRESS)
    await cache.put(session_id, SNAPSHOT)

    await machine.apply_transition(session_id, SessionStatus.ABANDONED)

    assert await cache.get(session_id) is None
    events = await repo.list_audit_events(session_id)
    assert events[-1].action == "SESSION_ABANDONED"
    assert events[-1].details["previousStatus"] == "in_progress"


@pytest.mark.asyncio
async def test_non_terminal_transition_keeps_cached_progress():
    repo, machine, cache = _setup()
    session_id = await _session_in(repo, SessionStatus.IN_PROGRESS)
    await cache.put(session_id, SNAPSHOT)

    await machine.apply_transition(session_id, SessionStatus.INSURANCE_PENDING)

    assert await cache.get(session_id) == SNAPSHOT


@pytest.mark.asyncio
async def test_expired_transition_uses_expired_action():
    repo, machine, _ = _setup()
    session_id = await _session_in(repo, SessionStatus.INSURANCE_PENDING)

    await machine.apply_transition(session_id, SessionStatus.EXPIRED)

    events = await repo.list_audit_events(session_id)
    assert [e.action for e in events] == ["SESSION_EXPIRED"]


@pytest.mark.asyncio
async def test_audit_failure_does_not_fail_transition(caplog):
    audit_log = FailingAuditLog()
    repo, machine, _ = _setup(audit_log=audit_log)
    session_id = await _session_in(repo, SessionStatus.STARTED)

    with caplog.at_level("ERROR"):
        result = await machine.apply_transition(session_id, SessionStatus.IN_PROGRESS)

    assert result.changed
    assert audit_log.attempts == 1
    assert (await repo.get_session(session_id)).status == SessionStatus.IN_PROGRESS
    assert "Audit logging failed" in caplog.text


@pytest.mark.asyncio
async def test_cache_failure_does_not_fail_terminal_transition(caplog):
    repo, machine, _ = _setup(store=FailingCache())
    session_id = await _session_in(repo, SessionStatus.ASSESSMENT_COMPLETE)

    with caplog.at_level("ERROR"):
        result = await machine.apply_transition(session_id, SessionStatus.SUBMITTED)

    assert result.status == SessionStatus.SUBMITTED
    assert (await repo.get_session(session_id)).status == SessionStatus.SUBMITTED
    assert "Failed to invalidate progress cache" in caplog.text


@pytest.mark.asyncio
async def test_persistence_failure_aborts_before_audit():
    repo = BrokenStatusRepository()
    repo, machine, _ = _setup(repo=repo)
    session_id = await _session_in(repo, SessionStatus.STARTED)

    with pytest.raises(RuntimeError):
        await machine.apply_transition(session_id, SessionStatus.IN_PROGRESS)

    assert (await repo.get_session(session_id)).status == SessionStatus.STARTED
    assert await repo.list_audit_events(session_id) == []


def test_can_transition_exposed_on_machine():
    assert StateMachine.can_transition("started", "in_progress")
    assert not StateMachine.can_transition("submitted", "abandoned")
