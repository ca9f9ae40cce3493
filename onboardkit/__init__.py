"""Session lifecycle and progress tracking for guided onboarding."""

from .audit import AuditLog, RepositoryAuditLog
from .cache import BaseCache, InMemoryCache, get_cache
from .config import OnboardkitConfig, load_config
from .contracts import (
    AuditEvent,
    PhaseTiming,
    ProgressSnapshot,
    RequestContext,
    SessionStatus,
    TransitionResult,
)
from .engine import OnboardingEngine
from .errors import (
    InvalidProgressPatch,
    InvalidTransition,
    OnboardkitError,
    ProgressConflict,
    SessionExpired,
    SessionNotActive,
    SessionNotFound,
)
from .lifecycle import StateMachine, can_transition
from .persistence import get_repository
from .progress import ProgressCalculator, PaceEstimator, ProgressService

__version__ = "0.1.0"

__all__ = [
    "AuditEvent",
    "AuditLog",
    "BaseCache",
    "InMemoryCache",
    "InvalidProgressPatch",
    "InvalidTransition",
    "OnboardingEngine",
    "OnboardkitConfig",
    "OnboardkitError",
    "PaceEstimator",
    "PhaseTiming",
    "ProgressCalculator",
    "ProgressConflict",
    "ProgressService",
    "ProgressSnapshot",
    "RepositoryAuditLog",
    "RequestContext",
    "SessionExpired",
    "SessionNotActive",
    "SessionNotFound",
    "SessionStatus",
    "StateMachine",
    "TransitionResult",
    "can_transition",
    "get_cache",
    "get_repository",
    "load_config",
]
