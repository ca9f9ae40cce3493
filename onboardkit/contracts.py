"""Core contracts shared by the lifecycle and progress engines."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SessionStatus(str, Enum):
    """Lifecycle status of an onboarding session."""

    STARTED = "started"
    IN_PROGRESS = "in_progress"
    INSURANCE_PENDING = "insurance_pending"
    ASSESSMENT_COMPLETE = "assessment_complete"
    APPOINTMENT_BOOKED = "appointment_booked"
    SUBMITTED = "submitted"
    ABANDONED = "abandoned"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return self.value


TERMINAL_STATUSES = frozenset(
    {SessionStatus.ABANDONED, SessionStatus.EXPIRED, SessionStatus.SUBMITTED}
)


class RequestContext(BaseModel):
    """Who is acting and from where.

    Passed explicitly into every lifecycle and audit call so nothing has to be
    read from request-global state.
    """

    model_config = ConfigDict(frozen=True)

    actor_id: Optional[str] = None
    session_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class PhaseTiming(BaseModel):
    """Start and completion timestamps recorded for one phase."""

    phase: str
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_complete(self) -> bool:
        return self.started_at is not None and self.completed_at is not None

    def elapsed_minutes(self) -> float:
        """Minutes between start and completion; only valid when complete."""
        return (self.completed_at - self.started_at).total_seconds() / 60.0


class ProgressSnapshot(BaseModel):
    """Derived view of how far a session is through onboarding."""

    percentage: int = Field(..., ge=0, le=100)
    current_phase: str
    completed_phases: List[str] = Field(default_factory=list)
    next_phase: Optional[str] = None
    estimated_minutes_remaining: int = Field(..., ge=0)


class AuditEvent(BaseModel):
    """Append-only audit fact emitted by the engine."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: str
    resource: str
    resource_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    session_id: Optional[str] = None
    actor_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def for_session(
        cls,
        action: str,
        resource: str,
        session_id: str,
        details: Optional[Dict[str, Any]] = None,
        context: Optional[RequestContext] = None,
    ) -> "AuditEvent":
        """Build an event about ``session_id`` carrying the caller's context."""
        context = context or RequestContext()
        return cls(
            action=action,
            resource=resource,
            resource_id=session_id,
            details=details or {},
            session_id=session_id,
            actor_id=context.actor_id,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )


class TransitionResult(BaseModel):
    """Outcome of a successful status change."""

    session_id: str
    previous_status: SessionStatus
    status: SessionStatus
    changed: bool = True
