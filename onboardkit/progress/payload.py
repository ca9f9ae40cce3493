"""Typed view over the raw session progress payload.

The raw payload is stored as loosely structured JSON written by the client.
:func:`parse_progress` turns it into a :class:`ProgressPayload` with every
section present and defaulted, so the calculator never does dynamic key
lookups. Structurally broken sections are replaced with their defaults and
logged instead of failing the computation.

Expected raw shape (camelCase keys as sent by the client)::

    {
      "currentStep": "parent_info",
      "completedSteps": ["welcome"],
      "intake": {
        "parentInfoComplete": false,
        "childInfoComplete": false,
        "parent": {"firstName": ..., "lastName": ..., "email": ...,
                   "phone": ..., "relationship": ..., "isGuardian": ...},
        "child": {"firstName": ..., "lastName": ..., "dateOfBirth": ...,
                  "concerns": ...},
        "concerns": {"primaryConcerns": ...}
      },
      "insurance": {"selfPay": false, "verificationStatus": null,
                    "payerName": ..., "memberId": ..., "groupNumber": ...},
      "assessment": {"screeningComplete": false, "riskFlags": []},
      "phaseTimings": {"parent_info": {"started_at": ..., "completed_at": ...}},
      "last_percentage": 42
    }
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..constants import PAYLOAD_VERSION, PHASE_TIMINGS_KEY, WATERMARK_KEY
from ..contracts import PhaseTiming
from ..errors import InvalidProgressPatch, MalformedProgressData
from .phases import normalize_phase_name

logger = logging.getLogger(__name__)

# Keys owned by the engine; client patches may not set them
PROTECTED_KEYS = frozenset({WATERMARK_KEY, PHASE_TIMINGS_KEY})


def is_present(value: Any) -> bool:
    """``False`` for None, False, blank strings and empty collections."""
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, set, dict)):
        return bool(value)
    return True


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes"}
    return bool(value)


class _Section(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = ()

    def count_present(self) -> int:
        return sum(1 for name in self.REQUIRED_FIELDS if is_present(getattr(self, name)))


class ParentSection(_Section):
    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = (
        "first_name",
        "last_name",
        "email",
        "phone",
        "relationship",
        "is_guardian",
    )

    first_name: Any = Field(default=None, alias="firstName")
    last_name: Any = Field(default=None, alias="lastName")
    email: Any = None
    phone: Any = None
    relationship: Any = None
    is_guardian: Any = Field(default=None, alias="isGuardian")


class ChildSection(_Section):
    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = ("first_name", "last_name", "date_of_birth", "concerns")

    first_name: Any = Field(default=None, alias="firstName")
    last_name: Any = Field(default=None, alias="lastName")
    date_of_birth: Any = Field(default=None, alias="dateOfBirth")
    concerns: Any = None


class ConcernsSection(_Section):
    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = ("primary_concerns",)

    primary_concerns: Any = Field(default=None, alias="primaryConcerns")


class IntakeSection(_Section):
    parent_info_complete: bool = Field(default=False, alias="parentInfoComplete")
    child_info_complete: bool = Field(default=False, alias="childInfoComplete")
    parent: ParentSection = Field(default_factory=ParentSection)
    child: ChildSection = Field(default_factory=ChildSection)
    concerns: ConcernsSection = Field(default_factory=ConcernsSection)

    @field_validator("parent_info_complete", "child_info_complete", mode="before")
    @classmethod
    def _flag(cls, value: Any) -> bool:
        return _truthy(value)

    @field_validator("parent", "child", "concerns", mode="before")
    @classmethod
    def _section_or_default(cls, value: Any) -> Any:
        return value if isinstance(value, Mapping) else {}


class InsuranceSection(_Section):
    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = ("payer_name", "member_id", "group_number")

    self_pay: bool = Field(default=False, alias="selfPay")
    verification_status: Optional[str] = Field(default=None, alias="verificationStatus")
    card_uploaded: bool = Field(default=False, alias="cardUploaded")
    payer_name: Any = Field(default=None, alias="payerName")
    member_id: Any = Field(default=None, alias="memberId")
    group_number: Any = Field(default=None, alias="groupNumber")

    @field_validator("self_pay", "card_uploaded", mode="before")
    @classmethod
    def _flag(cls, value: Any) -> bool:
        return _truthy(value)

    @field_validator("verification_status", mode="before")
    @classmethod
    def _status_text(cls, value: Any) -> Any:
        if value is None:
            return None
        return str(value).strip().lower() or None

    @property
    def is_verified(self) -> bool:
        return self.verification_status == "verified"


class AssessmentSection(_Section):
    screening_complete: bool = Field(default=False, alias="screeningComplete")
    risk_flags: List[str] = Field(default_factory=list, alias="riskFlags")

    @field_validator("screening_complete", mode="before")
    @classmethod
    def _flag(cls, value: Any) -> bool:
        return _truthy(value)

    @field_validator("risk_flags", mode="before")
    @classmethod
    def _flag_list(cls, value: Any) -> Any:
        if not isinstance(value, (list, tuple)):
            return []
        return [str(v) for v in value if v is not None]


class TimingRecord(BaseModel):
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @field_validator("started_at", "completed_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class ProgressPayload(BaseModel):
    """Validated, fully defaulted progress payload."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    version: int = PAYLOAD_VERSION
    current_step: Optional[str] = Field(default=None, alias="currentStep")
    completed_steps: List[str] = Field(default_factory=list, alias="completedSteps")
    intake: IntakeSection = Field(default_factory=IntakeSection)
    insurance: InsuranceSection = Field(default_factory=InsuranceSection)
    assessment: AssessmentSection = Field(default_factory=AssessmentSection)
    phase_timings: Dict[str, TimingRecord] = Field(
        default_factory=dict, alias=PHASE_TIMINGS_KEY
    )
    last_percentage: int = Field(default=0, alias=WATERMARK_KEY)

    @field_validator("current_step", mode="before")
    @classmethod
    def _step_text(cls, value: Any) -> Any:
        if value is None:
            return None
        return str(value)

    @field_validator("completed_steps", mode="before")
    @classmethod
    def _step_list(cls, value: Any) -> Any:
        if not isinstance(value, (list, tuple)):
            return []
        return [str(v) for v in value if v is not None]

    @field_validator("intake", "insurance", "assessment", mode="before")
    @classmethod
    def _section_or_default(cls, value: Any) -> Any:
        return value if isinstance(value, Mapping) else {}

    @field_validator("phase_timings", mode="before")
    @classmethod
    def _valid_timings(cls, value: Any) -> Any:
        if not isinstance(value, Mapping):
            return {}
        timings = {}
        for phase, record in value.items():
            try:
                timings[str(phase)] = TimingRecord.model_validate(record)
            except ValidationError:
                logger.warning(f"Ignoring malformed timing record for phase {phase!r}")
        return timings

    @field_validator("last_percentage", mode="before")
    @classmethod
    def _watermark(cls, value: Any) -> Any:
        try:
            return min(max(int(value), 0), 100)
        except (TypeError, ValueError):
            return 0

    def timings(self) -> List[PhaseTiming]:
        """Phase timings keyed by canonical phase name."""
        result = []
        for phase, record in self.phase_timings.items():
            name = normalize_phase_name(phase)
            if name is None:
                continue
            result.append(
                PhaseTiming(
                    phase=name,
                    started_at=record.started_at,
                    completed_at=record.completed_at,
                )
            )
        return result


def parse_progress(raw: Any, strict: bool = False) -> ProgressPayload:
    """Validate ``raw`` into a :class:`ProgressPayload`.

    In the default lenient mode absent or broken fields fall back to their
    defaults. With ``strict=True`` structural problems raise
    :class:`MalformedProgressData` instead.
    """
    if raw is None:
        return ProgressPayload()
    if not isinstance(raw, Mapping):
        if strict:
            raise MalformedProgressData("progress payload must be an object")
        logger.warning(f"Progress payload is {type(raw).__name__}, not an object; using defaults")
        return ProgressPayload()
    try:
        return ProgressPayload.model_validate(raw)
    except ValidationError as e:
        if strict:
            raise MalformedProgressData(str(e)) from e
        logger.warning(f"Malformed progress payload, falling back per field: {e.error_count()} error(s)")
    return _parse_per_field(raw)


def _parse_per_field(raw: Mapping) -> ProgressPayload:
    data = {}
    for name, field in ProgressPayload.model_fields.items():
        key = field.alias or name
        if key not in raw:
            continue
        try:
            ProgressPayload.model_validate({key: raw[key]})
        except ValidationError:
            logger.warning(f"Dropping malformed progress field {key!r}")
            continue
        data[key] = raw[key]
    return ProgressPayload.model_validate(data)


def validate_patch(patch: Any) -> Dict[str, Any]:
    """Check the top-level shape of a client progress patch."""
    if patch is None:
        return {}
    if not isinstance(patch, Mapping):
        raise InvalidProgressPatch("Progress must be a JSON object")
    if "currentStep" in patch and not is_present(patch["currentStep"]):
        raise InvalidProgressPatch("currentStep cannot be blank")
    if "completedSteps" in patch and not isinstance(patch["completedSteps"], list):
        raise InvalidProgressPatch("completedSteps must be an array")
    return {str(k): v for k, v in patch.items()}


def merge_progress(existing: Mapping, patch: Mapping) -> Dict[str, Any]:
    """Deep-merge ``patch`` into ``existing`` and return a new payload.

    Nested objects merge recursively, ``completedSteps`` lists are unioned in
    first-seen order, and anything else in ``patch`` replaces the old value.
    Engine-owned keys in ``patch`` are ignored.
    """
    patch = {k: v for k, v in patch.items() if k not in PROTECTED_KEYS}
    return _deep_merge(copy.deepcopy(dict(existing or {})), patch)


def _deep_merge(existing: Dict[str, Any], new_data: Mapping) -> Dict[str, Any]:
    for key, new_val in new_data.items():
        old_val = existing.get(key)
        if key == "completedSteps" and isinstance(old_val, list) and isinstance(new_val, list):
            merged = list(old_val)
            merged.extend(v for v in new_val if v not in merged)
            existing[key] = merged
        elif isinstance(old_val, dict) and isinstance(new_val, Mapping):
            existing[key] = _deep_merge(old_val, new_val)
        else:
            existing[key] = copy.deepcopy(new_val)
    return existing
