"""Completion percentage and phase bookkeeping."""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from .payload import ProgressPayload, is_present
from .phases import PhaseTable, dedupe, normalize_phase_name

logger = logging.getLogger(__name__)

# (payload, required_field_count) -> completed field count for one phase
FieldCounter = Callable[[ProgressPayload, int], int]


def count_parent_info(payload: ProgressPayload, required: int) -> int:
    if payload.intake.parent_info_complete:
        return required
    return payload.intake.parent.count_present()


def count_child_info(payload: ProgressPayload, required: int) -> int:
    if payload.intake.child_info_complete:
        return required
    return payload.intake.child.count_present()


def count_concerns(payload: ProgressPayload, required: int) -> int:
    if is_present(payload.intake.concerns.primary_concerns):
        return required
    return 0


def count_insurance(payload: ProgressPayload, required: int) -> int:
    insurance = payload.insurance
    # self-pay or an externally verified policy satisfies the whole phase
    if insurance.self_pay or insurance.is_verified:
        return required
    return insurance.count_present()


DEFAULT_FIELD_COUNTERS: Dict[str, FieldCounter] = {
    "parent_info": count_parent_info,
    "child_info": count_child_info,
    "concerns": count_concerns,
    "insurance": count_insurance,
}


class ProgressCalculator:
    """Derives percentage and phase fields from a progress payload.

    Phases without a registered counter contribute their required fields to
    the denominator but never to the numerator. ``assessment`` has a variable
    field count and is left out of both by default.
    """

    def __init__(
        self,
        phases: Optional[PhaseTable] = None,
        counters: Optional[Dict[str, FieldCounter]] = None,
    ) -> None:
        self.phases = phases or PhaseTable()
        self._counters = dict(DEFAULT_FIELD_COUNTERS if counters is None else counters)
        for phase in self.phases:
            if self.phases.required_fields(phase.name) and phase.name not in self._counters:
                logger.warning(
                    f"Phase {phase.name!r} requires fields but has no counter; "
                    "it will never count as complete"
                )

    def count_completed_fields(self, payload: ProgressPayload) -> int:
        completed = 0
        for phase in self.phases:
            required = self.phases.required_fields(phase.name)
            counter = self._counters.get(phase.name)
            if not required or counter is None:
                continue
            completed += min(max(counter(payload, required), 0), required)
        return completed

    def raw_percentage(self, payload: ProgressPayload) -> int:
        required = self.phases.total_required
        if required == 0:
            return 0
        return (self.count_completed_fields(payload) * 100) // required

    def percentage(self, payload: ProgressPayload) -> int:
        """Raw percentage raised to the stored watermark so it never drops."""
        return min(max(self.raw_percentage(payload), payload.last_percentage), 100)

    def current_phase(self, payload: ProgressPayload) -> str:
        return normalize_phase_name(payload.current_step) or self.phases.first

    def completed_phases(self, payload: ProgressPayload) -> List[str]:
        names = (normalize_phase_name(step) for step in payload.completed_steps)
        return dedupe(name for name in names if name)

    def next_phase(self, current_phase: str) -> Optional[str]:
        return self.phases.next_after(current_phase)
