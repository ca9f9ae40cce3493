"""Progress computation pipeline."""

from .cache import ProgressCache
from .calculator import ProgressCalculator
from .pace import PaceEstimator
from .payload import ProgressPayload, merge_progress, parse_progress, validate_patch
from .phases import PhaseTable, normalize_phase_name
from .service import ProgressService

__all__ = [
    "PaceEstimator",
    "PhaseTable",
    "ProgressCache",
    "ProgressCalculator",
    "ProgressPayload",
    "ProgressService",
    "merge_progress",
    "normalize_phase_name",
    "parse_progress",
    "validate_patch",
]
