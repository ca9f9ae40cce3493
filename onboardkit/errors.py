"""Exception hierarchy for onboardkit.

Only :class:`InvalidTransition` and the session lookup/guard errors reach
callers. Cache and audit failures are raised by their backends and handled
where they are consumed.
"""

from __future__ import annotations


class OnboardkitError(Exception):
    """Base class for all onboardkit errors."""


class InvalidTransition(OnboardkitError):
    """Attempted status change that is not an edge of the transition graph."""

    def __init__(self, from_status: str, to_status: str) -> None:
        self.from_status = str(from_status)
        self.to_status = str(to_status)
        super().__init__(
            f"cannot transition from {self.from_status} to {self.to_status}"
        )


class SessionNotFound(OnboardkitError, LookupError):
    """No session exists with the given identifier."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class SessionNotActive(OnboardkitError):
    """Progress write attempted against a session in a terminal status."""

    def __init__(self, session_id: str, status: str) -> None:
        self.session_id = session_id
        self.status = str(status)
        super().__init__(f"Session {session_id} is not active (status={self.status})")


class SessionExpired(OnboardkitError):
    """Progress write attempted after the session's expiry time."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id} has expired")


class InvalidProgressPatch(OnboardkitError, ValueError):
    """Progress patch with an unusable top-level shape."""


class CacheUnavailable(OnboardkitError):
    """Cache store read, write or delete failed."""


class AuditWriteFailed(OnboardkitError):
    """Audit sink rejected or failed to persist an event."""


class MalformedProgressData(OnboardkitError, ValueError):
    """Raw progress payload does not match the expected structure."""


class ProgressConflict(OnboardkitError):
    """Compare-and-set on the session payload kept losing to concurrent writers."""

    def __init__(self, session_id: str, attempts: int) -> None:
        self.session_id = session_id
        self.attempts = attempts
        super().__init__(
            f"Could not write progress for session {session_id} "
            f"after {attempts} attempts"
        )
