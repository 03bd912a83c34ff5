"""
History Manager — bounded undo stack of dataset snapshots.

A snapshot is taken immediately before every dataset swap made through the
public update entry point. When the stack is full the oldest snapshot is
discarded. There is no redo.
"""

from __future__ import annotations

from collections import deque
from typing import Optional

from rcm_schema import RCMRecord

DEFAULT_HISTORY_LIMIT = 30


def copy_records(records: list[RCMRecord]) -> list[RCMRecord]:
    return [r.model_copy(deep=True) for r in records]


class HistoryManager:
    def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT):
        if limit < 1:
            raise ValueError("History limit must be at least 1")
        self.limit = limit
        self._snapshots: deque[list[RCMRecord]] = deque(maxlen=limit)

    def __len__(self) -> int:
        return len(self._snapshots)

    @property
    def can_undo(self) -> bool:
        return bool(self._snapshots)

    def push(self, records: list[RCMRecord]) -> None:
        """Store an immutable copy of the pre-mutation dataset."""
        self._snapshots.append(copy_records(records))

    def pop(self) -> Optional[list[RCMRecord]]:
        """Most recent snapshot, or None when there is nothing to undo."""
        if not self._snapshots:
            return None
        return copy_records(self._snapshots.pop())

    def clear(self) -> None:
        self._snapshots.clear()
