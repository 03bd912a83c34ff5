"""
View Projector — filtered, sorted read views over the dataset.

``project`` is pure: it never reorders or modifies the dataset it is given.

Filters compose with AND:
  - risk-matrix cell: exact (severity, occurrence) pair
  - isolation: a single record id (chart bar click)
  - per-field search: case-insensitive substring on five text columns

Sorting is by one key. Strings compare case- and accent-insensitively under
the process collation locale (ties broken on the raw text), numbers in
numeric order, and records missing the key always sort last whatever the
direction. The
synthetic ``status_color`` key ranks ``isNew * 1000 + rpn`` so freshly merged
records come first, riskiest first within each group.
"""

from __future__ import annotations

import locale
import unicodedata
from functools import cmp_to_key
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from rcm_schema import RCMRecord

SortDirection = Literal["asc", "desc"]

STATUS_KEY = "status_color"
SEARCH_FIELDS = ("component", "function", "failure_mode", "consequence_category", "iso14224_code")
# Keys whose first click sorts descending
DESCENDING_FIRST_KEYS = ("rpn", STATUS_KEY)


class FilterState(BaseModel):
    matrix_cell: Optional[tuple[int, int]] = None
    isolated_id: Optional[str] = None
    search: dict[str, str] = Field(default_factory=dict)

    @property
    def is_filtered(self) -> bool:
        return (
            self.matrix_cell is not None
            or self.isolated_id is not None
            or any(v for v in self.search.values())
        )


class SortState(BaseModel):
    key: str = "component"
    direction: SortDirection = "asc"


def toggle_matrix_cell(filters: FilterState, severity: int, occurrence: int) -> FilterState:
    """Select a risk-matrix cell, or clear it when it is already selected."""
    cell = (severity, occurrence)
    return filters.model_copy(update={"matrix_cell": None if filters.matrix_cell == cell else cell})


def toggle_isolation(filters: FilterState, record_id: str) -> FilterState:
    """Isolate one record, or clear the isolation when it is already on that record."""
    return filters.model_copy(update={"isolated_id": None if filters.isolated_id == record_id else record_id})


def set_search(filters: FilterState, field: str, text: str) -> FilterState:
    if field not in SEARCH_FIELDS:
        raise ValueError(f"Search field must be one of {SEARCH_FIELDS}, got {field!r}")
    search = dict(filters.search)
    search[field] = text
    return filters.model_copy(update={"search": search})


def clear_filters() -> tuple[FilterState, SortState]:
    return FilterState(), SortState()


def request_sort(current: SortState, key: str) -> SortState:
    """Column-header click: same key ascending flips to descending, risk keys start descending."""
    if current.key == key and current.direction == "asc":
        return SortState(key=key, direction="desc")
    if key in DESCENDING_FIRST_KEYS:
        return SortState(key=key, direction="desc")
    return SortState(key=key, direction="asc")


def _matches(record: RCMRecord, filters: FilterState) -> bool:
    if filters.matrix_cell is not None:
        if (record.severity, record.occurrence) != filters.matrix_cell:
            return False
    if filters.isolated_id is not None and record.id != filters.isolated_id:
        return False
    for field, needle in filters.search.items():
        if not needle:
            continue
        haystack = getattr(record, field, None) or ""
        if needle.lower() not in str(haystack).lower():
            return False
    return True


def _sort_value(record: RCMRecord, key: str) -> Any:
    if key == STATUS_KEY:
        return (1 if record.is_new else 0) * 1000 + (record.rpn or 0)
    return getattr(record, key, None)


def collation_key(text: str) -> str:
    """Case- and accent-insensitive form of ``text`` ("Étoile" -> "etoile")."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c)).casefold()


def _compare(a: Any, b: Any, multiplier: int) -> int:
    if a == b:
        return 0
    if a is None:
        return 1
    if b is None:
        return -1
    if isinstance(a, str) and isinstance(b, str):
        return (locale.strcoll(collation_key(a), collation_key(b)) or locale.strcoll(a, b)) * multiplier
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return (-1 if a < b else 1) * multiplier
    return locale.strcoll(str(a), str(b)) * multiplier


def project(
    records: list[RCMRecord],
    filters: Optional[FilterState] = None,
    sort: Optional[SortState] = None,
) -> list[RCMRecord]:
    """Filtered, sorted view; the input list is left as it was."""
    filters = filters or FilterState()
    sort = sort or SortState()
    multiplier = 1 if sort.direction == "asc" else -1

    view = [r for r in records if r is not None and _matches(r, filters)]

    def compare(a: RCMRecord, b: RCMRecord) -> int:
        return _compare(_sort_value(a, sort.key), _sort_value(b, sort.key), multiplier)

    return sorted(view, key=cmp_to_key(compare))


def top_risks(records: list[RCMRecord], limit: int = 5, label_length: int = 20) -> list[dict[str, Any]]:
    """Highest-RPN records for the risk bar chart, labels truncated to ``label_length``."""
    ranked = sorted(records, key=lambda r: r.rpn or 0, reverse=True)[:limit]
    bars = []
    for r in ranked:
        name = r.failure_mode or ""
        if len(name) > label_length:
            name = name[:label_length] + "..."
        bars.append({"id": r.id, "name": name, "rpn": r.rpn or 0})
    return bars
