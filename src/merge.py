"""
Merge Coordinator — full and incremental (non-duplicating) bulk generation.

A merge generation sends the service an avoidance summary of what already
exists, then appends whatever comes back tagged ``isNew``. Existing records
are never reconciled against, overwritten, or removed by a merge, but their
``isNew`` flags from any earlier merge are cleared. A full regeneration
replaces the dataset and discards its history.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from normalizer import BATCH_PROFILE, normalize_new_record
from rcm_schema import RCMRecord
from reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)


class AnalysisGenerator(Protocol):
    async def generate_analysis(self, context_text: str, avoid: str = "") -> list[Any]:
        ...


def build_avoidance_summary(records: list[RCMRecord]) -> str:
    """Advisory list of what already exists: ``"{component} ({failureMode})"`` joined by ``", "``."""
    return ", ".join(f"{r.component} ({r.failure_mode})" for r in records)


def normalize_batch(raw_items: list[Any], tag_new: bool) -> list[RCMRecord]:
    """Normalize bulk-generation output, dropping candidates that are not objects."""
    records: list[RCMRecord] = []
    for index, raw in enumerate(raw_items):
        result = normalize_new_record(raw, BATCH_PROFILE, index=index, is_new=tag_new)
        if result.ok:
            records.append(result.record)
        else:
            logger.warning("Generated item %d skipped: %s", index + 1, result.error)
    return records


def prepare_for_save(records: list[RCMRecord]) -> list[RCMRecord]:
    """Copies of ``records`` with the transient isNew marker cleared."""
    return [r.model_copy(update={"is_new": False}, deep=True) for r in records]


class MergeCoordinator:
    def __init__(self, engine: ReconciliationEngine, generator: AnalysisGenerator):
        self.engine = engine
        self.generator = generator

    async def generate(self, context_text: str, merge: bool = False) -> list[RCMRecord]:
        """
        Run one bulk generation and fold it into the dataset.

        Returns the records that were added. Service failures propagate and
        leave the dataset as it was.
        """
        if merge:
            existing = self.engine.records
            avoid = build_avoidance_summary(existing)
            raw_items = await self.generator.generate_analysis(context_text, avoid=avoid)
            added = normalize_batch(raw_items, tag_new=True)
            logger.info("Merge generation appended %d record(s) to %d existing", len(added), len(existing))
            # Only the latest merge's additions stay flagged as new
            self.engine.update(prepare_for_save(existing) + added)
            return added

        raw_items = await self.generator.generate_analysis(context_text)
        records = normalize_batch(raw_items, tag_new=False)
        logger.info("Full generation produced %d record(s)", len(records))
        self.engine.reset(records)
        return records
