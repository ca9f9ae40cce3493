"""Adaptive time-remaining estimate."""

from __future__ import annotations

import math
from typing import Iterable, Optional

from ..contracts import PhaseTiming
from .phases import PhaseTable

MIN_PACE_MULTIPLIER = 0.5
MAX_PACE_MULTIPLIER = 2.0


class PaceEstimator:
    """Scales the baseline estimate by how fast the family has actually moved.

    A multiplier above 1.0 means phases are taking longer than their
    baseline. Only phases with both timestamps recorded count, and the
    multiplier is clamped to [0.5, 2.0].
    """

    def __init__(self, phases: Optional[PhaseTable] = None) -> None:
        self.phases = phases or PhaseTable()

    def baseline_estimate(self, current_phase: str) -> int:
        return sum(p.baseline_minutes for p in self.phases.phases_after(current_phase))

    def pace_multiplier(self, timings: Iterable[PhaseTiming]) -> float:
        total_actual = 0.0
        total_baseline = 0
        for timing in timings:
            phase = self.phases.get(timing.phase)
            if phase is None or not timing.is_complete:
                continue
            actual = timing.elapsed_minutes()
            if actual < 0:
                continue
            total_actual += actual
            total_baseline += phase.baseline_minutes

        if total_baseline == 0:
            return 1.0
        multiplier = total_actual / total_baseline
        return min(max(multiplier, MIN_PACE_MULTIPLIER), MAX_PACE_MULTIPLIER)

    def estimate(self, current_phase: str, timings: Iterable[PhaseTiming]) -> int:
        baseline = self.baseline_estimate(current_phase)
        if baseline == 0:
            return 0
        # round off float noise so 25 * 1.4 stays 35
        return math.ceil(round(baseline * self.pace_multiplier(timings), 6))
