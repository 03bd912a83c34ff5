"""
Analysis Session — the single controller behind one open study.

Owns the ReconciliationEngine (and through it the dataset and undo history)
and reaches the outside world only through two collaborators: a generation
service and a study store. All dataset mutation happens on one logical thread;
asynchronous completions are folded in one group at a time.

Bulk sheet and component-intel generation run in fixed-size groups. Requests
inside a group run concurrently, the group is awaited as a whole, and its
successes are committed before the next group starts. A failed request is
logged and leaves its record without the result; it never cancels siblings.

Autosave is suppressed while such a batch is in flight so a partially
completed dataset is never persisted behind the user's back.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Literal, Optional, Protocol, Union

from pydantic import BaseModel, Field

from action_parser import IntervalRecommendation, parse_action_blocks, parse_interval_reply
from config import Settings
from errors import ServiceError, StorageError
from export import to_classical_tsv, to_flat_tsv
from history import HistoryManager
from merge import MergeCoordinator, prepare_for_save
from normalizer import normalize_component_intel, normalize_inspection_sheet
from rcm_schema import AnalysisStats, ComponentIntel, InspectionSheet, Proposal, RCMRecord, SavedStudy
from reconciliation import ReconciliationEngine
from study_store import StudyStore
from view import (
    FilterState,
    SortState,
    clear_filters,
    project,
    request_sort,
    set_search,
    toggle_isolation,
    toggle_matrix_cell,
)

logger = logging.getLogger(__name__)

DEFAULT_STUDY_NAME = "Untitled Analysis"


class GenerationService(Protocol):
    async def generate_analysis(self, context_text: str, avoid: str = "") -> list[Any]:
        ...

    async def ask_copilot(self, records: list[RCMRecord], user_message: str) -> str:
        ...

    async def generate_inspection_sheet(self, record: RCMRecord) -> dict[str, Any]:
        ...

    async def generate_component_intel(self, component: str) -> dict[str, Any]:
        ...

    async def optimize_interval(self, record: RCMRecord, user_message: str) -> str:
        ...


class CopilotReply(BaseModel):
    text: str
    proposals: list[Proposal] = Field(default_factory=list)


class BatchProgress(BaseModel):
    current: int = 0
    total: int = 0


def _now_ms() -> int:
    return int(time.time() * 1000)


class AnalysisSession:
    def __init__(self, service: GenerationService, store: StudyStore, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self.service = service
        self.store = store
        self.engine = ReconciliationEngine(
            history=HistoryManager(self.settings.history_limit),
            allow_component_fallback=self.settings.update_by_component,
        )
        self.merge = MergeCoordinator(self.engine, service)

        self.study_id: Optional[str] = None
        self.study_name = DEFAULT_STUDY_NAME
        self.context_text = ""
        self.file_name: Optional[str] = None
        self._saved_timestamp: Optional[int] = None

        self.filters = FilterState()
        self.sort = SortState()
        self.progress = BatchProgress()
        self._pending: dict[str, Proposal] = {}
        self._batches_in_flight = 0

    # ── Dataset access ────────────────────────────────────────────────────────

    @property
    def records(self) -> list[RCMRecord]:
        return self.engine.records

    @property
    def can_undo(self) -> bool:
        return self.engine.can_undo

    @property
    def batch_in_flight(self) -> bool:
        return self._batches_in_flight > 0

    def undo(self) -> bool:
        return self.engine.undo()

    def stats(self) -> AnalysisStats:
        return AnalysisStats.from_records(self.engine.records)

    # ── Generation ────────────────────────────────────────────────────────────

    async def generate(self, merge: bool = False) -> list[RCMRecord]:
        if not self.context_text.strip():
            raise ValueError("Please provide operational context text before generating.")
        added = await self.merge.generate(self.context_text, merge=merge and len(self.engine) > 0)
        if not merge:
            self._pending.clear()
        return added

    # ── Copilot ───────────────────────────────────────────────────────────────

    async def ask_copilot(self, message: str) -> CopilotReply:
        text = await self.service.ask_copilot(self.engine.records, message.strip())
        parsed = parse_action_blocks(text)
        for proposal in parsed.proposals:
            self._pending[proposal.id] = proposal
        return CopilotReply(text=parsed.clean_text or "Directives synthesized.", proposals=parsed.proposals)

    def apply_proposal(self, proposal: Union[Proposal, str]) -> bool:
        """
        Apply a copilot proposal (or one built by the caller) exactly once.

        Proposals from ``ask_copilot`` are consumed on first application;
        returns False when the id is unknown or already consumed.
        """
        if isinstance(proposal, str):
            found = self._pending.pop(proposal, None)
            if found is None:
                return False
            proposal = found
        else:
            self._pending.pop(proposal.id, None)
        self.engine.apply(proposal)
        return True

    # ── Record edits ──────────────────────────────────────────────────────────

    async def edit_record(self, record_id: str, changes: dict[str, Any]) -> Optional[RCMRecord]:
        """
        Commit a manual edit. When a sheet-sensitive field changed, the stale
        inspection sheet is dropped and a fresh one requested.
        """
        updated, sheet_dropped = self.engine.edit_record(record_id, changes)
        if updated is None or not sheet_dropped:
            return updated
        try:
            raw = await self.service.generate_inspection_sheet(updated)
        except ServiceError as e:
            logger.error("Failed to auto-regenerate sheet for %s: %s", record_id, e)
            return updated
        sheet = normalize_inspection_sheet(raw)
        if sheet is None:
            return updated
        return self.engine.set_inspection_sheet(record_id, sheet) or updated

    def delete_record(self, record_id: str) -> bool:
        before = len(self.engine)
        self.engine.apply(Proposal(id=f"delete-{record_id}", type="DELETE", item={"id": record_id}))
        return len(self.engine) < before

    def apply_interval(self, record_id: str, interval: str) -> Optional[RCMRecord]:
        return self.engine.set_interval(record_id, interval)

    async def optimize_interval(
        self, record_id: str, message: str, apply: bool = False
    ) -> Optional[IntervalRecommendation]:
        """
        Ask the interval optimizer about one record. The recommendation is
        only committed when ``apply`` is set and the reply tagged an interval.
        Returns None for an unknown record; service failures propagate.
        """
        record = self.engine.get(record_id)
        if record is None:
            return None
        text = await self.service.optimize_interval(record, message.strip())
        recommendation = parse_interval_reply(text)
        if apply and recommendation.interval:
            self.apply_interval(record_id, recommendation.interval)
        return recommendation

    def add_step(self, record_id: str) -> Optional[RCMRecord]:
        return self.engine.add_step(record_id)

    def delete_step(self, record_id: str, index: int) -> Optional[RCMRecord]:
        return self.engine.delete_step(record_id, index)

    def update_step(self, record_id: str, index: int, field: str, value: str) -> Optional[RCMRecord]:
        return self.engine.update_step(record_id, index, field, value)

    # ── Chunked batches ───────────────────────────────────────────────────────

    async def _run_in_groups(
        self,
        targets: list[RCMRecord],
        group_size: int,
        fetch: Callable[[RCMRecord], Awaitable[Any]],
        field: Literal["inspection_sheet", "component_intel"],
    ) -> int:
        self._batches_in_flight += 1
        self.progress = BatchProgress(current=0, total=len(targets))
        merged = 0
        try:
            for start in range(0, len(targets), group_size):
                group = targets[start : start + group_size]
                outcomes = await asyncio.gather(*(fetch(r) for r in group), return_exceptions=True)
                results: dict[str, Union[InspectionSheet, ComponentIntel]] = {}
                for record, outcome in zip(group, outcomes):
                    if isinstance(outcome, Exception):
                        logger.error("Generation for %s (%s) failed: %s", record.id, record.component, outcome)
                        continue
                    if isinstance(outcome, BaseException):
                        raise outcome
                    if outcome is not None:
                        results[record.id] = outcome
                merged += self.engine.merge_batch_results(field, results)
                self.progress = BatchProgress(current=min(len(targets), start + group_size), total=len(targets))
        finally:
            self._batches_in_flight -= 1
        return merged

    async def _fetch_sheet(self, record: RCMRecord) -> Optional[InspectionSheet]:
        return normalize_inspection_sheet(await self.service.generate_inspection_sheet(record))

    async def _fetch_intel(self, record: RCMRecord) -> Optional[ComponentIntel]:
        return normalize_component_intel(await self.service.generate_component_intel(record.component))

    async def generate_all_sheets(self) -> int:
        """Generate inspection sheets for every record lacking one. Returns how many were attached."""
        targets = [r for r in self.engine.records if r.inspection_sheet is None]
        if not targets:
            logger.info("All items already have inspection sheets generated.")
            return 0
        return await self._run_in_groups(targets, self.settings.sheet_batch_size, self._fetch_sheet, "inspection_sheet")

    async def generate_missing_intel(self) -> int:
        """Generate component intel for every record lacking a description."""
        targets = [
            r for r in self.engine.records
            if r.component_intel is None or not r.component_intel.description.strip()
        ]
        if not targets:
            logger.info("All components already have physical intelligence metadata.")
            return 0
        return await self._run_in_groups(targets, self.settings.intel_batch_size, self._fetch_intel, "component_intel")

    async def generate_sheet(self, record_id: str) -> Optional[RCMRecord]:
        """Generate (or regenerate) a single record's sheet. Service failures propagate."""
        record = self.engine.get(record_id)
        if record is None:
            return None
        sheet = await self._fetch_sheet(record)
        if sheet is None:
            return None
        return self.engine.set_inspection_sheet(record_id, sheet)

    # ── Persistence ───────────────────────────────────────────────────────────

    def _has_content(self) -> bool:
        return len(self.engine) > 0 or bool(self.context_text.strip()) or bool(self.file_name)

    def save(self, autosave: bool = False) -> Optional[SavedStudy]:
        """
        Persist the study with every isNew flag cleared, then clear them in memory.

        A StorageError propagates and leaves the in-memory dataset untouched.
        Autosaves keep the study's original timestamp so it holds its place in
        the study list.
        """
        if not self._has_content():
            return None
        study_id = self.study_id or f"study-{_now_ms()}"
        if autosave and self._saved_timestamp is not None:
            timestamp = self._saved_timestamp
        else:
            timestamp = _now_ms()

        study = SavedStudy(
            id=study_id,
            name=self.study_name.strip() or DEFAULT_STUDY_NAME,
            timestamp=timestamp,
            items=prepare_for_save(self.engine.records),
            context_text=self.context_text,
            file_name=self.file_name,
        )
        self.store.save(study)

        self.study_id = study_id
        self._saved_timestamp = timestamp
        self.engine.clear_new_flags()
        return study

    def autosave(self) -> Optional[SavedStudy]:
        """Periodic save. Skipped while a batch is running; failures are logged only."""
        if self.batch_in_flight:
            logger.info("Autosave skipped: batch generation in progress")
            return None
        if len(self.engine) == 0 and not self.context_text.strip():
            return None
        try:
            return self.save(autosave=True)
        except StorageError as e:
            logger.error("Autosave failed: %s", e)
            return None

    async def autosave_loop(self, stop: asyncio.Event) -> None:
        """Autosave every ``settings.autosave_interval`` seconds until ``stop`` is set."""
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.settings.autosave_interval)
            except asyncio.TimeoutError:
                self.autosave()

    def list_studies(self) -> list[SavedStudy]:
        return self.store.list_all()

    def load_study(self, study: SavedStudy) -> None:
        self.engine.reset([r.model_copy(update={"is_new": False}) for r in study.items])
        self.context_text = study.context_text
        self.study_id = study.id
        self.study_name = study.name
        self.file_name = None
        self._saved_timestamp = study.timestamp
        self._pending.clear()
        self.filters, self.sort = clear_filters()

    def new_study(self) -> None:
        self.engine.reset()
        self.context_text = ""
        self.study_id = None
        self.study_name = DEFAULT_STUDY_NAME
        self.file_name = None
        self._saved_timestamp = None
        self._pending.clear()
        self.filters, self.sort = clear_filters()

    def delete_study(self, study_id: str) -> None:
        self.store.delete(study_id)
        if study_id == self.study_id:
            self.new_study()

    # ── Views and export ──────────────────────────────────────────────────────

    def view(self) -> list[RCMRecord]:
        return project(self.engine.records, self.filters, self.sort)

    def toggle_matrix_cell(self, severity: int, occurrence: int) -> None:
        self.filters = toggle_matrix_cell(self.filters, severity, occurrence)

    def toggle_isolation(self, record_id: str) -> None:
        self.filters = toggle_isolation(self.filters, record_id)

    def search(self, field: str, text: str) -> None:
        self.filters = set_search(self.filters, field, text)

    def sort_by(self, key: str) -> None:
        self.sort = request_sort(self.sort, key)

    def clear_filters(self) -> None:
        self.filters, self.sort = clear_filters()

    def export_flat(self) -> str:
        return to_flat_tsv(self.view())

    def export_classical(self) -> str:
        return to_classical_tsv(self.view())
