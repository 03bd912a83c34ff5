"""
Record Normalizer — turns loosely-typed candidate objects into canonical RCMRecords.

Generation output and copilot proposals are untrusted: fields may be missing,
mistyped, or out of range. Nothing here raises on bad content. Missing text
falls back to short placeholders, scores are coerced to integers and clamped
onto 1–10, and RPN is always recomputed from the clamped scores.

Two default profiles exist because the two generation paths lean differently:
single-record additions assume a conservative mid-risk estimate (5/3/3), bulk
generation assumes the service already flags criticality (8/5/6).
"""

from __future__ import annotations

import logging
import math
import time
import uuid
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from rcm_schema import (
    CONSEQUENCE_CATEGORIES,
    CRITICALITIES,
    TASK_TYPES,
    ComponentIntel,
    InspectionSheet,
    InspectionStep,
    RCMRecord,
    clamp_score,
    compute_rpn,
    derive_criticality,
)

logger = logging.getLogger(__name__)


class NormalizeProfile(BaseModel):
    """Fallback scores and identity scheme for one creation path."""
    severity: int
    occurrence: int
    detection: int
    id_prefix: str
    always_intel: bool = False


FRESH_PROFILE = NormalizeProfile(severity=5, occurrence=3, detection=3, id_prefix="rcm-ai", always_intel=True)
BATCH_PROFILE = NormalizeProfile(severity=8, occurrence=5, detection=6, id_prefix="rcm")


TEXT_PLACEHOLDERS: dict[str, str] = {
    "component": "Auxiliary Component",
    "function": "General design function.",
    "functionalFailure": "Total loss of operational function.",
    "failureMode": "Wear due to Cause",
    "failureEffect": "Local system operational impact.",
    "iso14224Code": "UNC",
    "maintenanceTask": "Visual Inspection",
    "interval": "Annually",
}

INTEL_PLACEHOLDERS: dict[str, str] = {
    "description": "Synchronized via MIRA Intelligence synthesis.",
    "location": "Refer to asset structural diagram.",
    "visualCues": "Standard industrial physical cues.",
}

SHEET_PLACEHOLDERS: dict[str, str] = {
    "responsibility": "Operator",
    "estimatedTime": "10m",
    "safetyPrecautions": "Standard PPE",
    "toolsRequired": "None",
}

STEP_PLACEHOLDERS: dict[str, str] = {
    "description": "New inspection action",
    "criteria": "Pass/Fail criteria",
    "technique": "Visual",
}

DEFAULT_CONSEQUENCE = "Evident - Operational"
DEFAULT_TASK_TYPE = "Condition Monitoring"

# Wire keys a caller may never overwrite through a merge
_PROTECTED_KEYS = {"id", "rpn", "isNew"}


class NormalizeResult(BaseModel):
    """Either a canonical record or the reason one could not be produced."""
    record: Optional[RCMRecord] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.record is not None


def new_record_id(prefix: str, index: Optional[int] = None) -> str:
    """Globally unique record id: prefix, millisecond clock, optional batch index, random tail."""
    millis = int(time.time() * 1000)
    tail = uuid.uuid4().hex[:9]
    if index is None:
        return f"{prefix}-{millis}-{tail}"
    return f"{prefix}-{millis}-{index}-{tail}"


def coerce_score(value: Any, default: int) -> int:
    """Integer on 1–10; missing or unparseable values take ``default``."""
    if value is None or isinstance(value, bool):
        return clamp_score(default)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return clamp_score(default)
    if math.isnan(number) or math.isinf(number):
        return clamp_score(default)
    return clamp_score(int(number))


def coerce_text(value: Any, placeholder: str) -> str:
    if isinstance(value, str):
        return value if value.strip() else placeholder
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return placeholder


def _coerce_choice(value: Any, choices: tuple[str, ...]) -> Optional[str]:
    """Case-insensitive match against a fixed enumeration."""
    if not isinstance(value, str):
        return None
    wanted = value.strip().lower()
    for choice in choices:
        if choice.lower() == wanted:
            return choice
    return None


def normalize_component_intel(raw: Any, fill_missing: bool = False) -> Optional[ComponentIntel]:
    if not isinstance(raw, dict):
        if not fill_missing:
            return None
        raw = {}
    return ComponentIntel(
        description=coerce_text(raw.get("description"), INTEL_PLACEHOLDERS["description"]),
        location=coerce_text(raw.get("location"), INTEL_PLACEHOLDERS["location"]),
        visual_cues=coerce_text(raw.get("visualCues", raw.get("visual_cues")), INTEL_PLACEHOLDERS["visualCues"]),
    )


def normalize_inspection_sheet(raw: Any) -> Optional[InspectionSheet]:
    """Canonical sheet with steps renumbered 1..n in the order received."""
    if not isinstance(raw, dict):
        return None
    steps: list[InspectionStep] = []
    raw_steps = raw.get("steps")
    if isinstance(raw_steps, list):
        for raw_step in raw_steps:
            if not isinstance(raw_step, dict):
                continue
            steps.append(InspectionStep(
                step=len(steps) + 1,
                description=coerce_text(raw_step.get("description"), STEP_PLACEHOLDERS["description"]),
                criteria=coerce_text(raw_step.get("criteria"), STEP_PLACEHOLDERS["criteria"]),
                technique=coerce_text(raw_step.get("technique"), STEP_PLACEHOLDERS["technique"]),
            ))

    legacy_type = _coerce_choice(raw.get("type"), ("Qualitative", "Quantitative"))
    return InspectionSheet(
        responsibility=coerce_text(raw.get("responsibility"), SHEET_PLACEHOLDERS["responsibility"]),
        estimated_time=coerce_text(raw.get("estimatedTime"), SHEET_PLACEHOLDERS["estimatedTime"]),
        safety_precautions=coerce_text(raw.get("safetyPrecautions"), SHEET_PLACEHOLDERS["safetyPrecautions"]),
        tools_required=coerce_text(raw.get("toolsRequired"), SHEET_PLACEHOLDERS["toolsRequired"]),
        steps=steps,
        check_point_description=_optional_text(raw.get("checkPointDescription")),
        type=legacy_type,
        criteria_limits=_optional_text(raw.get("criteriaLimits")),
        normal_condition=_optional_text(raw.get("normalCondition")),
    )


def _optional_text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value.strip() else None


def _build_record(
    raw: dict[str, Any],
    record_id: str,
    defaults: tuple[int, int, int],
    is_new: bool,
    always_intel: bool,
    default_criticality: Optional[str] = None,
) -> RCMRecord:
    severity = coerce_score(raw.get("severity"), defaults[0])
    occurrence = coerce_score(raw.get("occurrence"), defaults[1])
    detection = coerce_score(raw.get("detection"), defaults[2])

    criticality = _coerce_choice(raw.get("criticality"), CRITICALITIES)
    if criticality is None:
        criticality = default_criticality or derive_criticality(severity)

    return RCMRecord(
        id=record_id,
        component=coerce_text(raw.get("component"), TEXT_PLACEHOLDERS["component"]),
        function=coerce_text(raw.get("function"), TEXT_PLACEHOLDERS["function"]),
        functional_failure=coerce_text(raw.get("functionalFailure"), TEXT_PLACEHOLDERS["functionalFailure"]),
        failure_mode=coerce_text(raw.get("failureMode"), TEXT_PLACEHOLDERS["failureMode"]),
        failure_effect=coerce_text(raw.get("failureEffect"), TEXT_PLACEHOLDERS["failureEffect"]),
        consequence_category=_coerce_choice(raw.get("consequenceCategory"), CONSEQUENCE_CATEGORIES) or DEFAULT_CONSEQUENCE,
        iso14224_code=coerce_text(raw.get("iso14224Code"), TEXT_PLACEHOLDERS["iso14224Code"]),
        criticality=criticality,
        severity=severity,
        occurrence=occurrence,
        detection=detection,
        rpn=compute_rpn(severity, occurrence, detection),
        maintenance_task=coerce_text(raw.get("maintenanceTask"), TEXT_PLACEHOLDERS["maintenanceTask"]),
        interval=coerce_text(raw.get("interval"), TEXT_PLACEHOLDERS["interval"]),
        task_type=_coerce_choice(raw.get("taskType"), TASK_TYPES) or DEFAULT_TASK_TYPE,
        is_new=is_new,
        component_intel=normalize_component_intel(raw.get("componentIntel"), fill_missing=always_intel),
        inspection_sheet=normalize_inspection_sheet(raw.get("inspectionSheet")),
    )


def normalize_new_record(
    raw: Any,
    profile: NormalizeProfile = FRESH_PROFILE,
    index: Optional[int] = None,
    is_new: bool = True,
) -> NormalizeResult:
    """
    Normalize a candidate for insertion. Always assigns a fresh id;
    any id or rpn carried by the candidate is ignored.
    """
    if not isinstance(raw, dict):
        return NormalizeResult(error=f"Expected an object, got {type(raw).__name__}")
    try:
        record = _build_record(
            raw,
            record_id=new_record_id(profile.id_prefix, index),
            defaults=(profile.severity, profile.occurrence, profile.detection),
            is_new=is_new,
            always_intel=profile.always_intel,
        )
    except ValidationError as e:
        logger.warning("Dropping candidate record: %s", e)
        return NormalizeResult(error=str(e))
    return NormalizeResult(record=record)


def merge_into_record(existing: RCMRecord, item: dict[str, Any]) -> NormalizeResult:
    """
    Shallow-merge the present fields of ``item`` over ``existing``.

    The existing id is kept, scores are re-coerced and clamped, RPN is
    recomputed and ``isNew`` is cleared. Keys whose value is null are
    treated as absent.
    """
    if not isinstance(item, dict):
        return NormalizeResult(error=f"Expected an object, got {type(item).__name__}")
    merged = existing.model_dump(by_alias=True)
    for key, value in item.items():
        if key in _PROTECTED_KEYS or value is None:
            continue
        merged[key] = value
    try:
        record = _build_record(
            merged,
            record_id=existing.id,
            defaults=(existing.severity, existing.occurrence, existing.detection),
            is_new=False,
            always_intel=False,
            default_criticality=existing.criticality,
        )
    except ValidationError as e:
        logger.warning("Rejecting merge into %s: %s", existing.id, e)
        return NormalizeResult(error=str(e))
    return NormalizeResult(record=record)


def restore_record(raw: Any) -> NormalizeResult:
    """Normalize a record loaded from storage, keeping its id and flags."""
    if not isinstance(raw, dict):
        return NormalizeResult(error=f"Expected an object, got {type(raw).__name__}")
    record_id = raw.get("id")
    if not isinstance(record_id, str) or not record_id:
        record_id = new_record_id(BATCH_PROFILE.id_prefix)
    try:
        record = _build_record(
            raw,
            record_id=record_id,
            defaults=(BATCH_PROFILE.severity, BATCH_PROFILE.occurrence, BATCH_PROFILE.detection),
            is_new=bool(raw.get("isNew", False)),
            always_intel=False,
        )
    except ValidationError as e:
        return NormalizeResult(error=str(e))
    return NormalizeResult(record=record)
