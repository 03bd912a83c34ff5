"""
Unit tests for proposal application, record edits and undo history.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from history import HistoryManager
from normalizer import BATCH_PROFILE, normalize_new_record
from rcm_schema import Proposal
from reconciliation import ReconciliationEngine, apply_proposal, ensure_unique_ids


def seed(n=3, **overrides):
    records = []
    for i in range(n):
        raw = {
            "component": f"Component {i}",
            "failureMode": f"Mode {i}",
            "severity": 4,
            "occurrence": 4,
            "detection": 4,
        }
        raw.update(overrides)
        records.append(normalize_new_record(raw, BATCH_PROFILE, index=i, is_new=False).record)
    return records


def proposal(kind, item=None, pid="p-1"):
    return Proposal(id=pid, type=kind, item=item or {})


# ── ADD ───────────────────────────────────────────────────────────────────────

class TestAdd:
    def test_add_test_bearing(self):
        engine = ReconciliationEngine(seed(1))
        engine.apply(proposal("ADD", {"component": "Test Bearing", "severity": 9, "occurrence": 4, "detection": 7}))
        assert len(engine) == 2
        added = engine.records[-1]
        assert added.component == "Test Bearing"
        assert added.rpn == 252
        assert added.is_new is True
        assert added.criticality == "High"

    def test_add_assigns_fresh_id(self):
        existing = seed(1)
        engine = ReconciliationEngine(existing)
        engine.apply(proposal("ADD", {"id": existing[0].id, "component": "Clone"}))
        ids = [r.id for r in engine.records]
        assert len(set(ids)) == 2

    def test_add_uses_fresh_defaults(self):
        engine = ReconciliationEngine()
        engine.apply(proposal("ADD", {"component": "Valve"}))
        r = engine.records[0]
        assert (r.severity, r.occurrence, r.detection, r.rpn) == (5, 3, 3, 45)


# ── UPDATE ────────────────────────────────────────────────────────────────────

class TestUpdate:
    def test_update_by_id_changes_only_given_fields(self):
        records = seed(3)
        target = records[1]
        engine = ReconciliationEngine(records)
        engine.apply(proposal("UPDATE", {"id": target.id, "severity": 9, "maintenanceTask": "Thermography"}))
        updated = engine.get(target.id)
        assert updated.severity == 9
        assert updated.maintenance_task == "Thermography"
        assert updated.rpn == 9 * 4 * 4
        assert updated.is_new is False
        assert updated.component == target.component
        assert updated.failure_mode == target.failure_mode
        assert engine.records[0] == records[0]
        assert engine.records[2] == records[2]

    def test_update_clears_is_new(self):
        engine = ReconciliationEngine()
        engine.apply(proposal("ADD", {"component": "Rotor"}))
        rid = engine.records[0].id
        engine.apply(proposal("UPDATE", {"id": rid, "interval": "Quarterly"}))
        assert engine.get(rid).is_new is False

    def test_update_idempotent(self):
        records = seed(2)
        p = proposal("UPDATE", {"id": records[0].id, "occurrence": 7, "failureEffect": "Trip"})
        once = apply_proposal(records, p)
        twice = apply_proposal(once, p)
        assert once == twice

    def test_update_unknown_id_is_noop(self):
        records = seed(2)
        engine = ReconciliationEngine(records)
        engine.apply(proposal("UPDATE", {"id": "missing", "severity": 10}))
        assert engine.records == records
        assert not engine.can_undo

    def test_unknown_id_does_not_fall_back_to_component(self):
        records = seed(2)
        engine = ReconciliationEngine(records)
        engine.apply(proposal("UPDATE", {"id": "missing", "component": "Component 0", "severity": 10}))
        assert engine.records == records

    def test_non_string_id_is_strict(self):
        records = seed(2, component="Pump", severity=5)
        engine = ReconciliationEngine(records)
        engine.apply(proposal("UPDATE", {"id": 12345, "component": "Pump", "severity": 9}))
        assert [r.severity for r in engine.records] == [5, 5]
        assert not engine.can_undo

    def test_empty_id_is_strict(self):
        records = seed(2, component="Pump", severity=5)
        engine = ReconciliationEngine(records)
        engine.apply(proposal("UPDATE", {"id": "", "component": "Pump", "severity": 9}))
        assert engine.records == records

    def test_null_id_uses_component_fallback(self):
        records = seed(2, component="Pump", severity=5)
        engine = ReconciliationEngine(records)
        engine.apply(proposal("UPDATE", {"id": None, "component": "Pump", "severity": 9}))
        assert [r.severity for r in engine.records] == [9, 5]

    def test_component_fallback_hits_first_match_only(self):
        records = seed(3, component="Shared Pump")
        engine = ReconciliationEngine(records)
        engine.apply(proposal("UPDATE", {"component": "Shared Pump", "detection": 9}))
        after = engine.records
        assert after[0].detection == 9
        assert after[1].detection == 4
        assert after[2].detection == 4

    def test_component_fallback_can_be_disabled(self):
        records = seed(1)
        engine = ReconciliationEngine(records, allow_component_fallback=False)
        engine.apply(proposal("UPDATE", {"component": "Component 0", "detection": 9}))
        assert engine.records == records


# ── DELETE ────────────────────────────────────────────────────────────────────

class TestDelete:
    def test_delete_by_id(self):
        records = seed(3)
        engine = ReconciliationEngine(records)
        engine.apply(proposal("DELETE", {"id": records[1].id}))
        assert [r.id for r in engine.records] == [records[0].id, records[2].id]

    def test_delete_nonexistent_keeps_length(self):
        engine = ReconciliationEngine(seed(3))
        engine.apply(proposal("DELETE", {"id": "rcm-nope"}))
        assert len(engine) == 3

    def test_delete_without_id_is_noop(self):
        engine = ReconciliationEngine(seed(2))
        engine.apply(proposal("DELETE", {"component": "Component 0"}))
        assert len(engine) == 2


# ── Identity ──────────────────────────────────────────────────────────────────

class TestIdentity:
    def test_duplicate_ids_rekeyed(self):
        a, b = seed(2)
        b = b.model_copy(update={"id": a.id})
        result = ensure_unique_ids([a, b])
        assert result[0].id == a.id
        assert result[1].id != a.id

    def test_ids_pairwise_distinct_after_many_operations(self):
        engine = ReconciliationEngine(seed(2))
        for i in range(20):
            engine.apply(proposal("ADD", {"component": f"New {i}"}, pid=f"p{i}"))
            if i % 3 == 0:
                engine.apply(proposal("DELETE", {"id": engine.records[0].id}, pid=f"d{i}"))
        ids = [r.id for r in engine.records]
        assert len(ids) == len(set(ids))

    def test_readers_get_copies(self):
        engine = ReconciliationEngine(seed(1))
        view = engine.records
        view[0].component = "Tampered"
        assert engine.records[0].component == "Component 0"


# ── History ───────────────────────────────────────────────────────────────────

class TestHistory:
    def test_limit_must_be_positive(self):
        with pytest.raises(ValueError):
            HistoryManager(0)

    def test_undo_on_empty_is_noop(self):
        engine = ReconciliationEngine(seed(1))
        assert engine.undo() is False
        assert len(engine) == 1

    @pytest.mark.parametrize("n", [1, 5, 30])
    def test_n_mutations_then_n_undos_restore(self, n):
        original = seed(2)
        engine = ReconciliationEngine(original)
        for i in range(n):
            engine.apply(proposal("ADD", {"component": f"Added {i}"}, pid=f"p{i}"))
        for _ in range(n):
            assert engine.undo() is True
        assert engine.records == original
        assert engine.undo() is False

    def test_thirty_first_mutation_not_recoverable(self):
        original = seed(2)
        engine = ReconciliationEngine(original)
        for i in range(31):
            engine.apply(proposal("ADD", {"component": f"Added {i}"}, pid=f"p{i}"))
        undone = 0
        while engine.undo():
            undone += 1
        assert undone == 30
        assert len(engine) == 3
        assert engine.records[:2] == original
        assert engine.records[2].component == "Added 0"

    def test_reset_discards_history(self):
        engine = ReconciliationEngine(seed(1))
        engine.apply(proposal("ADD", {"component": "X"}))
        engine.reset(seed(4))
        assert not engine.can_undo
        assert len(engine) == 4

    def test_snapshots_are_immutable(self):
        engine = ReconciliationEngine(seed(1))
        rid = engine.records[0].id
        engine.apply(proposal("UPDATE", {"id": rid, "severity": 9}))
        engine.apply(proposal("UPDATE", {"id": rid, "severity": 2}))
        engine.undo()
        assert engine.get(rid).severity == 9
        engine.undo()
        assert engine.get(rid).severity == 4

    def test_clear_new_flags_takes_no_snapshot(self):
        engine = ReconciliationEngine()
        engine.apply(proposal("ADD", {"component": "X"}))
        depth = len(engine.history)
        engine.clear_new_flags()
        assert len(engine.history) == depth
        assert engine.records[0].is_new is False


# ── Record edits and steps ────────────────────────────────────────────────────

SHEET = {
    "responsibility": "Mechanic",
    "estimatedTime": "20m",
    "safetyPrecautions": "LOTO",
    "toolsRequired": "Feeler gauge",
    "steps": [{"description": "Isolate"}, {"description": "Measure"}, {"description": "Record"}],
}


class TestEdits:
    def _engine_with_sheet(self):
        records = seed(1, inspectionSheet=SHEET)
        return ReconciliationEngine(records), records[0].id

    def test_edit_recomputes_rpn(self):
        engine, rid = self._engine_with_sheet()
        updated, dropped = engine.edit_record(rid, {"detection": 10})
        assert updated.rpn == 4 * 4 * 10
        assert dropped is False
        assert updated.inspection_sheet is not None

    def test_sensitive_edit_drops_sheet(self):
        engine, rid = self._engine_with_sheet()
        updated, dropped = engine.edit_record(rid, {"maintenanceTask": "Borescope"})
        assert dropped is True
        assert updated.inspection_sheet is None

    def test_edit_unknown_record(self):
        engine, _ = self._engine_with_sheet()
        assert engine.edit_record("nope", {"detection": 2}) == (None, False)

    def test_delete_step_repacks(self):
        engine, rid = self._engine_with_sheet()
        record = engine.delete_step(rid, 0)
        steps = record.inspection_sheet.steps
        assert [s.step for s in steps] == [1, 2]
        assert [s.description for s in steps] == ["Measure", "Record"]

    def test_delete_step_out_of_range(self):
        engine, rid = self._engine_with_sheet()
        assert engine.delete_step(rid, 9) is None
        assert not engine.can_undo

    def test_add_step_numbers_next(self):
        engine, rid = self._engine_with_sheet()
        record = engine.add_step(rid)
        assert [s.step for s in record.inspection_sheet.steps] == [1, 2, 3, 4]
        assert record.inspection_sheet.steps[-1].description == "New inspection action"

    def test_add_step_creates_default_sheet(self):
        engine = ReconciliationEngine(seed(1))
        rid = engine.records[0].id
        record = engine.add_step(rid)
        assert record.inspection_sheet.responsibility == "Operator"
        assert [s.step for s in record.inspection_sheet.steps] == [1]

    def test_update_step_field(self):
        engine, rid = self._engine_with_sheet()
        record = engine.update_step(rid, 1, "criteria", "< 0.05 mm")
        assert record.inspection_sheet.steps[1].criteria == "< 0.05 mm"

    def test_step_number_not_editable(self):
        engine, rid = self._engine_with_sheet()
        with pytest.raises(ValueError):
            engine.update_step(rid, 0, "step", "5")

    def test_set_interval(self):
        engine, rid = self._engine_with_sheet()
        assert engine.set_interval(rid, "Every 2000 h").interval == "Every 2000 h"
        assert engine.can_undo

    def test_merge_batch_results_skips_removed_records(self):
        records = seed(2)
        engine = ReconciliationEngine(records)
        from normalizer import normalize_inspection_sheet

        sheet = normalize_inspection_sheet(SHEET)
        changed = engine.merge_batch_results("inspection_sheet", {records[0].id: sheet, "gone": sheet})
        assert changed == 1
        assert engine.get(records[0].id).inspection_sheet == sheet
        assert engine.get(records[1].id).inspection_sheet is None
