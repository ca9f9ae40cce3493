"""Session status lifecycle."""

from .graph import TRANSITION_GRAPH, StatusLike, coerce_status, is_terminal, next_statuses
from .machine import StateMachine, can_transition

__all__ = [
    "TRANSITION_GRAPH",
    "StateMachine",
    "StatusLike",
    "can_transition",
    "coerce_status",
    "is_terminal",
    "next_statuses",
]
