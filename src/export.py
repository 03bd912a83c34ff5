"""
Export Serializer — tab-delimited renderings of a view for spreadsheet paste.

Two layouts, both a header row followed by one row per inspection step
(or a single row when a record has no steps):

  Flat:      every record column repeated on every step row.
  Classical: record columns shown on the first step row only, left blank on
             the record's following step rows.

Cell escaping is shared: a value containing a tab, newline or double quote is
wrapped in double quotes with inner quotes doubled. Falsy values render as an
empty cell. Rows are joined with ``\\n``.
"""

from __future__ import annotations

import re
from typing import Any

from rcm_schema import RCMRecord

FLAT_HEADERS = [
    "Component", "Function", "Functional Failure", "Failure Mode", "Effect",
    "Consequence Cat.", "ISO 14224 Code",
    "Criticality", "S", "O", "D", "RPN",
    "Proposed Task", "Interval", "Task Type",
    "Step #", "Action", "Method/Technique", "Acceptance Criteria",
]

CLASSICAL_HEADERS = [
    "Component", "Explanation", "Failure mode", "Proposed Task", "Frequency", "Type of task", "Step number", "Actions",
]

MISSING_EXPLANATION = "Technical metadata unavailable."

_NEEDS_QUOTING = re.compile(r'[\t\n"]')


def escape_cell(value: Any) -> str:
    text = str(value) if value else ""
    if _NEEDS_QUOTING.search(text):
        return '"' + text.replace('"', '""') + '"'
    return text


def _row(values: list[Any]) -> str:
    return "\t".join(escape_cell(v) for v in values)


def _flat_base(r: RCMRecord) -> list[Any]:
    return [
        r.component, r.function, r.functional_failure, r.failure_mode, r.failure_effect,
        r.consequence_category, r.iso14224_code,
        r.criticality, r.severity, r.occurrence, r.detection, r.rpn,
        r.maintenance_task, r.interval, r.task_type,
    ]


def to_flat_tsv(records: list[RCMRecord]) -> str:
    rows = ["\t".join(FLAT_HEADERS)]
    for record in records:
        base = _flat_base(record)
        sheet = record.inspection_sheet
        if sheet and sheet.steps:
            for step in sheet.steps:
                rows.append(_row(base + [step.step, step.description, step.technique, step.criteria]))
        else:
            # Single-checkpoint sheets still carry their description, type and limits
            rows.append(_row(base + [
                "",
                sheet.check_point_description if sheet else "",
                sheet.type if sheet else "",
                sheet.criteria_limits if sheet else "",
            ]))
    return "\n".join(rows)


def to_classical_tsv(records: list[RCMRecord]) -> str:
    rows = ["\t".join(CLASSICAL_HEADERS)]
    blank = [""] * 6
    for record in records:
        explanation = (record.component_intel.description if record.component_intel else "") or MISSING_EXPLANATION
        base = [
            record.component,
            explanation,
            record.failure_mode,
            record.maintenance_task,
            record.interval,
            record.task_type,
        ]
        sheet = record.inspection_sheet
        if sheet and sheet.steps:
            for i, step in enumerate(sheet.steps):
                rows.append(_row((base if i == 0 else blank) + [step.step, step.description]))
        else:
            rows.append(_row(base + ["", ""]))
    return "\n".join(rows)
