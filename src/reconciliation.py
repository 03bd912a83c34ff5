"""
Reconciliation Engine — applies proposals and edits to the canonical dataset.

The engine is the single owner of the dataset. Every caller-initiated swap
goes through ``update``, which snapshots the previous value into the
HistoryManager first. Readers get deep copies, never the live list.

Proposal semantics:
  - ADD:    normalize with fresh-record defaults, assign a new id, mark isNew.
  - UPDATE: resolve strictly by ``item.id`` whenever it is present and not
            null; without an id, fall back to the first record with the
            same component name (legacy, see ``allow_component_fallback``).
            Merge present fields, recompute RPN, clear isNew. No match is
            a no-op.
  - DELETE: remove the record with ``item.id``. Unknown or missing id is a no-op.
"""

from __future__ import annotations

import logging
from typing import Any, Literal, Optional

from history import HistoryManager, copy_records
from normalizer import (
    FRESH_PROFILE,
    STEP_PLACEHOLDERS,
    SHEET_PLACEHOLDERS,
    merge_into_record,
    new_record_id,
    normalize_new_record,
)
from rcm_schema import (
    ComponentIntel,
    InspectionSheet,
    InspectionStep,
    Proposal,
    RCMRecord,
    repack_steps,
)

logger = logging.getLogger(__name__)

# Edits to these fields invalidate an existing inspection sheet
SHEET_SENSITIVE_FIELDS = ("component", "failure_mode", "maintenance_task")
EDITABLE_STEP_FIELDS = ("description", "criteria", "technique")


def find_update_target(
    records: list[RCMRecord],
    item: dict[str, Any],
    allow_component_fallback: bool = True,
) -> Optional[int]:
    """Index of the record an UPDATE item refers to, or None."""
    target_id = item.get("id")
    if target_id is not None:
        # An explicit id never falls back, even when it is malformed
        for i, record in enumerate(records):
            if record.id == target_id:
                return i
        return None

    component = item.get("component")
    if not allow_component_fallback or not isinstance(component, str):
        return None
    for i, record in enumerate(records):
        if record.component == component:
            logger.warning(
                "UPDATE without id matched record %s by component name %r; "
                "other records sharing this name were left untouched",
                record.id,
                component,
            )
            return i
    return None


def ensure_unique_ids(records: list[RCMRecord]) -> list[RCMRecord]:
    """Re-key any record whose id already appeared earlier in the list."""
    seen: set[str] = set()
    result: list[RCMRecord] = []
    for record in records:
        if record.id in seen:
            fresh = new_record_id(FRESH_PROFILE.id_prefix)
            while fresh in seen:
                fresh = new_record_id(FRESH_PROFILE.id_prefix)
            logger.warning("Duplicate record id %s re-keyed as %s", record.id, fresh)
            record = record.model_copy(update={"id": fresh})
        seen.add(record.id)
        result.append(record)
    return result


def apply_proposal(
    records: list[RCMRecord],
    proposal: Proposal,
    allow_component_fallback: bool = True,
) -> list[RCMRecord]:
    """
    Return the dataset that results from applying one proposal.

    The input list is never modified. A proposal that cannot be applied
    yields an equal copy of the input.
    """
    current = list(records)

    if proposal.type == "ADD":
        result = normalize_new_record(proposal.item, FRESH_PROFILE)
        if not result.ok:
            logger.warning("ADD proposal %s dropped: %s", proposal.id, result.error)
            return current
        return ensure_unique_ids(current + [result.record])

    if proposal.type == "UPDATE":
        index = find_update_target(current, proposal.item, allow_component_fallback)
        if index is None:
            logger.info("UPDATE proposal %s matched no record", proposal.id)
            return current
        result = merge_into_record(current[index], proposal.item)
        if not result.ok:
            logger.warning("UPDATE proposal %s dropped: %s", proposal.id, result.error)
            return current
        current[index] = result.record
        return current

    if proposal.type == "DELETE":
        target_id = proposal.item.get("id")
        if not isinstance(target_id, str) or not target_id:
            logger.info("DELETE proposal %s carries no id", proposal.id)
            return current
        remaining = [r for r in current if r.id != target_id]
        if len(remaining) == len(current):
            logger.info("DELETE proposal %s matched no record", proposal.id)
        return remaining

    return current


class ReconciliationEngine:
    """Owner of the canonical dataset and its undo history."""

    def __init__(
        self,
        records: Optional[list[RCMRecord]] = None,
        history: Optional[HistoryManager] = None,
        allow_component_fallback: bool = True,
    ):
        self._records: list[RCMRecord] = ensure_unique_ids(copy_records(records or []))
        self.history = history or HistoryManager()
        self.allow_component_fallback = allow_component_fallback

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> list[RCMRecord]:
        """Read view: a deep copy of the dataset."""
        return copy_records(self._records)

    @property
    def can_undo(self) -> bool:
        return self.history.can_undo

    def get(self, record_id: str) -> Optional[RCMRecord]:
        for record in self._records:
            if record.id == record_id:
                return record.model_copy(deep=True)
        return None

    # ── Dataset swaps ─────────────────────────────────────────────────────────

    def update(self, new_records: list[RCMRecord]) -> list[RCMRecord]:
        """Public update entry point: snapshot, then replace the dataset."""
        self.history.push(self._records)
        self._records = ensure_unique_ids(copy_records(new_records))
        return self.records

    def reset(self, records: Optional[list[RCMRecord]] = None) -> None:
        """Replace the dataset and discard all history (new study, full regeneration, load)."""
        self.history.clear()
        self._records = ensure_unique_ids(copy_records(records or []))

    def undo(self) -> bool:
        snapshot = self.history.pop()
        if snapshot is None:
            return False
        self._records = snapshot
        return True

    def clear_new_flags(self) -> None:
        """Drop the transient isNew marker everywhere. Not an edit: no snapshot."""
        self._records = [
            r.model_copy(update={"is_new": False}) if r.is_new else r
            for r in self._records
        ]

    # ── Proposals ─────────────────────────────────────────────────────────────

    def apply(self, proposal: Proposal) -> list[RCMRecord]:
        """Apply one proposal atomically. No-ops leave dataset and history untouched."""
        result = apply_proposal(self._records, proposal, self.allow_component_fallback)
        if result == self._records:
            return self.records
        return self.update(result)

    # ── Record-level edits ────────────────────────────────────────────────────

    def _index_of(self, record_id: str) -> Optional[int]:
        for i, record in enumerate(self._records):
            if record.id == record_id:
                return i
        return None

    def _replace(self, index: int, record: RCMRecord) -> RCMRecord:
        new_records = list(self._records)
        new_records[index] = record
        self.update(new_records)
        return record.model_copy(deep=True)

    def edit_record(self, record_id: str, changes: dict[str, Any]) -> tuple[Optional[RCMRecord], bool]:
        """
        Commit a manual edit of one record.

        Returns the updated record and whether its inspection sheet was
        dropped because a sheet-sensitive field changed.
        """
        index = self._index_of(record_id)
        if index is None:
            return None, False
        original = self._records[index]
        result = merge_into_record(original, changes)
        if not result.ok:
            logger.warning("Edit of %s rejected: %s", record_id, result.error)
            return None, False

        updated = result.record
        sensitive_change = any(
            getattr(updated, field) != getattr(original, field) for field in SHEET_SENSITIVE_FIELDS
        )
        sheet_dropped = sensitive_change and original.inspection_sheet is not None
        if sheet_dropped:
            updated = updated.model_copy(update={"inspection_sheet": None})
        return self._replace(index, updated), sheet_dropped

    def set_interval(self, record_id: str, interval: str) -> Optional[RCMRecord]:
        index = self._index_of(record_id)
        if index is None or not interval.strip():
            return None
        return self._replace(index, self._records[index].model_copy(update={"interval": interval}))

    def set_inspection_sheet(self, record_id: str, sheet: InspectionSheet) -> Optional[RCMRecord]:
        index = self._index_of(record_id)
        if index is None:
            return None
        return self._replace(index, self._records[index].model_copy(update={"inspection_sheet": sheet}))

    def merge_batch_results(
        self,
        field: Literal["inspection_sheet", "component_intel"],
        results: dict[str, InspectionSheet | ComponentIntel],
    ) -> int:
        """
        Attach generated sub-documents to the records still present.

        Commits once for the whole group; returns how many records changed.
        """
        changed = 0
        new_records = []
        for record in self._records:
            if record.id in results:
                record = record.model_copy(update={field: results[record.id]})
                changed += 1
            new_records.append(record)
        if changed:
            self.update(new_records)
        return changed

    # ── Inspection steps ──────────────────────────────────────────────────────

    def _with_steps(self, record_id: str, edit) -> Optional[RCMRecord]:
        index = self._index_of(record_id)
        if index is None:
            return None
        record = self._records[index]
        sheet = record.inspection_sheet
        steps = edit(list(sheet.steps) if sheet else [])
        if steps is None:
            return None
        if sheet is None:
            sheet = InspectionSheet(
                responsibility=SHEET_PLACEHOLDERS["responsibility"],
                estimated_time=SHEET_PLACEHOLDERS["estimatedTime"],
                safety_precautions=SHEET_PLACEHOLDERS["safetyPrecautions"],
                tools_required=SHEET_PLACEHOLDERS["toolsRequired"],
            )
        sheet = sheet.model_copy(update={"steps": repack_steps(steps)})
        return self._replace(index, record.model_copy(update={"inspection_sheet": sheet}))

    def add_step(self, record_id: str) -> Optional[RCMRecord]:
        def edit(steps: list[InspectionStep]) -> list[InspectionStep]:
            return steps + [InspectionStep(step=len(steps) + 1, **STEP_PLACEHOLDERS)]

        return self._with_steps(record_id, edit)

    def delete_step(self, record_id: str, index: int) -> Optional[RCMRecord]:
        def edit(steps: list[InspectionStep]) -> Optional[list[InspectionStep]]:
            if not 0 <= index < len(steps):
                return None
            return steps[:index] + steps[index + 1:]

        return self._with_steps(record_id, edit)

    def update_step(self, record_id: str, index: int, field: str, value: str) -> Optional[RCMRecord]:
        if field not in EDITABLE_STEP_FIELDS:
            raise ValueError(f"Step field must be one of {EDITABLE_STEP_FIELDS}, got {field!r}")

        def edit(steps: list[InspectionStep]) -> Optional[list[InspectionStep]]:
            if not 0 <= index < len(steps):
                return None
            steps[index] = steps[index].model_copy(update={field: value})
            return steps

        return self._with_steps(record_id, edit)
