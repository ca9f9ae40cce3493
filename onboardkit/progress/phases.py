"""Onboarding phase table and phase-name normalization."""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Sequence, Tuple

from ..config import PhaseConfig, default_phases

PHASE_ALIASES = {
    "welcome": "welcome",
    "intro": "welcome",
    "start": "welcome",
    "parent_info": "parent_info",
    "parent": "parent_info",
    "guardian_info": "parent_info",
    "child_info": "child_info",
    "child": "child_info",
    "concerns": "concerns",
    "primary_concerns": "concerns",
    "insurance": "insurance",
    "insurance_info": "insurance",
    "assessment": "assessment",
    "screening": "assessment",
    "questionnaire": "assessment",
}

_ACRONYM_BOUNDARY = re.compile(r"([A-Z]+)([A-Z][a-z])")
_WORD_BOUNDARY = re.compile(r"([a-z\d])([A-Z])")
_SEPARATORS = re.compile(r"[\s\-./]+")
_REPEATED_UNDERSCORES = re.compile(r"_+")


def underscore(name: str) -> str:
    """Convert camelCase, kebab-case or spaced words to snake_case."""
    value = _ACRONYM_BOUNDARY.sub(r"\1_\2", name.strip())
    value = _WORD_BOUNDARY.sub(r"\1_\2", value)
    value = _SEPARATORS.sub("_", value)
    value = _REPEATED_UNDERSCORES.sub("_", value)
    return value.strip("_").lower()


def normalize_phase_name(name: object) -> Optional[str]:
    """Map a step marker onto a canonical phase identifier.

    Unknown names come back snake_cased rather than rejected. Blank input
    returns ``None``.
    """
    if name is None:
        return None
    normalized = underscore(str(name))
    if not normalized:
        return None
    return PHASE_ALIASES.get(normalized, normalized)


class PhaseTable:
    """Ordered phase configuration."""

    def __init__(self, phases: Optional[Sequence[PhaseConfig]] = None) -> None:
        phases = list(phases) if phases is not None else default_phases()
        if not phases:
            raise ValueError("Phase table needs at least one phase")
        names = [p.name for p in phases]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate phase names in table: {names}")
        self._phases: Tuple[PhaseConfig, ...] = tuple(phases)
        self._index = {p.name: i for i, p in enumerate(self._phases)}

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def __iter__(self):
        return iter(self._phases)

    def __len__(self) -> int:
        return len(self._phases)

    @property
    def order(self) -> List[str]:
        return [p.name for p in self._phases]

    @property
    def first(self) -> str:
        return self._phases[0].name

    def get(self, name: str) -> Optional[PhaseConfig]:
        idx = self._index.get(name)
        return self._phases[idx] if idx is not None else None

    def index(self, name: str) -> Optional[int]:
        return self._index.get(name)

    def required_fields(self, name: str) -> int:
        phase = self.get(name)
        if phase is None or phase.required_fields is None:
            return 0
        return phase.required_fields

    @property
    def total_required(self) -> int:
        return sum(self.required_fields(p.name) for p in self._phases)

    def next_after(self, name: str) -> Optional[str]:
        idx = self._index.get(name)
        if idx is None or idx >= len(self._phases) - 1:
            return None
        return self._phases[idx + 1].name

    def phases_after(self, name: str) -> List[PhaseConfig]:
        """Phases strictly after ``name``; empty when ``name`` is unknown."""
        idx = self._index.get(name)
        if idx is None:
            return []
        return list(self._phases[idx + 1:])


def dedupe(names: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for name in names:
        if name not in seen:
            seen.add(name)
            result.append(name)
    return result
