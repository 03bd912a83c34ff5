"""
RCM Data Models — Pydantic schemas for records, proposals, and saved studies.

RPN (Risk Priority Number) = Severity × Occurrence × Detection
Each score is an integer on the 1–10 scale, so RPN ranges 1–1000.

Criticality, when not supplied, is derived from severity:
  - High:   severity ≥ 8
  - Medium: severity 5–7
  - Low:    severity < 5

Field names are snake_case in Python and camelCase on the wire
(generation output, saved studies), e.g. ``failure_mode`` <-> ``failureMode``.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


ConsequenceCategory = Literal[
    "Hidden - Safety/Env",
    "Hidden - Operational",
    "Evident - Safety/Env",
    "Evident - Operational",
    "Evident - Non-Operational",
]
CONSEQUENCE_CATEGORIES: tuple[str, ...] = (
    "Hidden - Safety/Env",
    "Hidden - Operational",
    "Evident - Safety/Env",
    "Evident - Operational",
    "Evident - Non-Operational",
)

Criticality = Literal["High", "Medium", "Low"]
CRITICALITIES: tuple[str, ...] = ("High", "Medium", "Low")

TaskType = Literal[
    "Condition Monitoring",
    "Time-Based",
    "Run-to-Failure",
    "Redesign",
    "Failure Finding",
    "Lubrication",
    "Servicing",
    "Restoration",
    "Replacement",
]
TASK_TYPES: tuple[str, ...] = (
    "Condition Monitoring",
    "Time-Based",
    "Run-to-Failure",
    "Redesign",
    "Failure Finding",
    "Lubrication",
    "Servicing",
    "Restoration",
    "Replacement",
)

ProposalType = Literal["ADD", "UPDATE", "DELETE"]

SCORE_MIN = 1
SCORE_MAX = 10


def compute_rpn(severity: int, occurrence: int, detection: int) -> int:
    """RPN = S × O × D per IEC 60812:2018."""
    return severity * occurrence * detection


def clamp_score(value: int) -> int:
    """Pin a rating onto the 1–10 scale."""
    return max(SCORE_MIN, min(SCORE_MAX, value))


def derive_criticality(severity: int) -> Criticality:
    """Qualitative priority from severity alone."""
    if severity >= 8:
        return "High"
    elif severity >= 5:
        return "Medium"
    else:
        return "Low"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ComponentIntel(CamelModel):
    """Plain-language identification aid for a component."""
    description: str = Field(..., description="What the part is")
    location: str = Field(..., description="Where it is typically found on the asset")
    visual_cues: str = Field(..., description="Colours, shapes, textures that identify it")


class InspectionStep(CamelModel):
    step: int = Field(..., ge=1, description="1-based position within the sheet")
    description: str
    criteria: str
    technique: str


class InspectionSheet(CamelModel):
    """Technical inspection procedure attached to a single record."""
    responsibility: str
    estimated_time: str
    safety_precautions: str
    tools_required: str
    steps: list[InspectionStep] = Field(default_factory=list)

    # Single-checkpoint sheets saved before step lists existed
    check_point_description: Optional[str] = None
    type: Optional[Literal["Qualitative", "Quantitative"]] = None
    criteria_limits: Optional[str] = None
    normal_condition: Optional[str] = None

    @model_validator(mode="after")
    def validate_step_numbering(self) -> "InspectionSheet":
        numbers = [s.step for s in self.steps]
        expected = list(range(1, len(self.steps) + 1))
        if numbers != expected:
            raise ValueError(f"Inspection steps must be numbered {expected}, got {numbers}")
        return self


def repack_steps(steps: list[InspectionStep]) -> list[InspectionStep]:
    """Renumber steps densely from 1, keeping their order."""
    return [s.model_copy(update={"step": i}) for i, s in enumerate(steps, start=1)]


class RCMRecord(CamelModel):
    """A single failure-mode row in the RCM/FMECA table."""
    id: str = Field(..., min_length=1, description="Opaque unique identifier")
    component: str
    function: str
    functional_failure: str
    failure_mode: str = Field(..., description="[Mechanism] due to [Cause]")
    failure_effect: str
    consequence_category: ConsequenceCategory = Field(..., description="SAE JA1011 classification")
    iso14224_code: str = Field(..., description="ISO 14224 failure mechanism label")
    criticality: Criticality
    severity: int = Field(..., ge=SCORE_MIN, le=SCORE_MAX)
    occurrence: int = Field(..., ge=SCORE_MIN, le=SCORE_MAX)
    detection: int = Field(..., ge=SCORE_MIN, le=SCORE_MAX)
    rpn: int = Field(..., ge=1, le=1000, description="Risk Priority Number = S × O × D")
    maintenance_task: str
    interval: str
    task_type: TaskType
    is_new: bool = False
    component_intel: Optional[ComponentIntel] = None
    inspection_sheet: Optional[InspectionSheet] = None

    @model_validator(mode="after")
    def validate_rpn_consistency(self) -> "RCMRecord":
        expected_rpn = compute_rpn(self.severity, self.occurrence, self.detection)
        if self.rpn != expected_rpn:
            raise ValueError(
                f"RPN {self.rpn} does not match S×O×D = "
                f"{self.severity}×{self.occurrence}×{self.detection} = {expected_rpn}"
            )
        return self

    @classmethod
    def create(cls, *, severity: int, occurrence: int, detection: int, **fields: Any) -> "RCMRecord":
        """Factory method that auto-computes RPN."""
        return cls(
            severity=severity,
            occurrence=occurrence,
            detection=detection,
            rpn=compute_rpn(severity, occurrence, detection),
            **fields,
        )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Proposal(CamelModel):
    """A create/update/delete instruction, consumed once by the reconciliation engine."""
    id: str
    type: ProposalType
    item: dict[str, Any] = Field(default_factory=dict, description="Partial record in wire form")
    reason: str = ""

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("reason", mode="before")
    @classmethod
    def coerce_reason(cls, v: Any) -> str:
        return "" if v is None else str(v)


class SavedStudy(CamelModel):
    """A named, persisted snapshot of an analysis."""
    id: str
    name: str
    timestamp: int = Field(..., description="Milliseconds since the epoch")
    items: list[RCMRecord] = Field(default_factory=list)
    context_text: str = ""
    file_name: Optional[str] = None


class AnalysisStats(CamelModel):
    """Aggregate counts over a dataset."""
    total_items: int
    high_risk: int
    medium_risk: int
    low_risk: int
    task_type_counts: dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_records(cls, records: list[RCMRecord]) -> "AnalysisStats":
        counts: dict[str, int] = {}
        for r in records:
            counts[r.task_type] = counts.get(r.task_type, 0) + 1
        return cls(
            total_items=len(records),
            high_risk=sum(1 for r in records if r.criticality == "High"),
            medium_risk=sum(1 for r in records if r.criticality == "Medium"),
            low_risk=sum(1 for r in records if r.criticality == "Low"),
            task_type_counts=counts,
        )
