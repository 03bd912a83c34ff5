"""
Study Store — create-or-update persistence for named analyses.

Two implementations of the same repository interface:
  - JsonFileStudyStore: one ``<id>.json`` file per study in a directory
  - InMemoryStudyStore: process-local, for tests and dry runs

``list_all`` returns studies newest first. Every failure is raised as a
StorageError so callers can keep their in-memory state unchanged.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from errors import StorageError
from normalizer import restore_record
from rcm_schema import SavedStudy

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9._-]+$")


class StudyStore(Protocol):
    def list_all(self) -> list[SavedStudy]:
        ...

    def save(self, study: SavedStudy) -> None:
        ...

    def delete(self, study_id: str) -> None:
        ...


def _newest_first(studies: list[SavedStudy]) -> list[SavedStudy]:
    return sorted(studies, key=lambda s: s.timestamp, reverse=True)


def _load_study(data: Any) -> SavedStudy:
    """
    Validate a stored document. Items go through the normalizer so files
    written by older versions (stale RPN, missing fields) still load.
    """
    if not isinstance(data, dict):
        return SavedStudy.model_validate(data)
    items = []
    for raw in data.get("items") or []:
        result = restore_record(raw)
        if result.ok:
            items.append(result.record)
        else:
            logger.warning("Dropping unreadable item in study %s: %s", data.get("id"), result.error)
    return SavedStudy.model_validate({**data, "items": items})


class InMemoryStudyStore:
    def __init__(self):
        self._studies: dict[str, SavedStudy] = {}

    def list_all(self) -> list[SavedStudy]:
        return _newest_first([s.model_copy(deep=True) for s in self._studies.values()])

    def save(self, study: SavedStudy) -> None:
        self._studies[study.id] = study.model_copy(deep=True)

    def delete(self, study_id: str) -> None:
        self._studies.pop(study_id, None)


class JsonFileStudyStore:
    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, study_id: str) -> Path:
        if not _SAFE_ID.match(study_id):
            raise StorageError(f"Study id {study_id!r} is not usable as a file name")
        return self.directory / f"{study_id}.json"

    def list_all(self) -> list[SavedStudy]:
        if not self.directory.exists():
            return []
        studies: list[SavedStudy] = []
        try:
            paths = sorted(self.directory.glob("*.json"))
        except OSError as e:
            raise StorageError(f"Cannot read study directory {self.directory}: {e}") from e
        for path in paths:
            try:
                with open(path, encoding="utf-8") as f:
                    studies.append(_load_study(json.load(f)))
            except (OSError, json.JSONDecodeError, ValidationError) as e:
                logger.warning("Skipping unreadable study file %s: %s", path, e)
        return _newest_first(studies)

    def save(self, study: SavedStudy) -> None:
        path = self._path(study.id)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(study.model_dump(by_alias=True, exclude_none=True), f, indent=2)
            tmp_path.replace(path)
        except OSError as e:
            raise StorageError(f"Failed to save study {study.id}: {e}") from e
        logger.info("Study saved: %s", path)

    def delete(self, study_id: str) -> None:
        path = self._path(study_id)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete study {study_id}: {e}") from e
