"""Static table of legal session status changes."""

from __future__ import annotations

from typing import Dict, FrozenSet, Union

from ..contracts import TERMINAL_STATUSES, SessionStatus

StatusLike = Union[SessionStatus, str]

# Forward edges only; abandoned/expired are added for every non-terminal status below
_FORWARD_EDGES: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    SessionStatus.STARTED: frozenset({SessionStatus.IN_PROGRESS}),
    SessionStatus.IN_PROGRESS: frozenset({SessionStatus.INSURANCE_PENDING}),
    SessionStatus.INSURANCE_PENDING: frozenset({SessionStatus.ASSESSMENT_COMPLETE}),
    SessionStatus.ASSESSMENT_COMPLETE: frozenset(
        {SessionStatus.APPOINTMENT_BOOKED, SessionStatus.SUBMITTED}
    ),
    SessionStatus.APPOINTMENT_BOOKED: frozenset({SessionStatus.SUBMITTED}),
}

_BYPASS_TARGETS = frozenset({SessionStatus.ABANDONED, SessionStatus.EXPIRED})


def _build_graph() -> Dict[SessionStatus, FrozenSet[SessionStatus]]:
    graph: Dict[SessionStatus, FrozenSet[SessionStatus]] = {}
    for status in SessionStatus:
        if status in TERMINAL_STATUSES:
            graph[status] = frozenset()
        else:
            graph[status] = _FORWARD_EDGES.get(status, frozenset()) | _BYPASS_TARGETS
    return graph


TRANSITION_GRAPH: Dict[SessionStatus, FrozenSet[SessionStatus]] = _build_graph()


def coerce_status(value: StatusLike) -> SessionStatus:
    """Return ``value`` as a :class:`SessionStatus`.

    Raises:
        ValueError: If ``value`` names no known status.
    """
    if isinstance(value, SessionStatus):
        return value
    return SessionStatus(str(value).strip().lower())


def next_statuses(current: StatusLike) -> FrozenSet[SessionStatus]:
    """Legal targets from ``current``, excluding the identity edge."""
    return TRANSITION_GRAPH[coerce_status(current)]


def is_terminal(status: StatusLike) -> bool:
    return coerce_status(status) in TERMINAL_STATUSES
