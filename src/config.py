"""
Runtime settings, read from the environment (and an optional .env file).

  RCM_MODEL                  Model used for every generation call
  RCM_MAX_TOKENS             Response budget for bulk generation
  RCM_HISTORY_LIMIT          Undo snapshots kept (oldest dropped first)
  RCM_SHEET_BATCH_SIZE       Concurrent inspection-sheet requests per group
  RCM_INTEL_BATCH_SIZE       Concurrent component-intel requests per group
  RCM_AUTOSAVE_INTERVAL      Seconds between autosaves
  RCM_STORE_DIR              Directory holding saved studies
  RCM_UPDATE_BY_COMPONENT    Allow UPDATE proposals without an id to match by component name
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class Settings(BaseModel):
    model: str = "claude-haiku-4-5"
    max_tokens: int = Field(default=8096, ge=256)
    history_limit: int = Field(default=30, ge=1)
    sheet_batch_size: int = Field(default=3, ge=1)
    intel_batch_size: int = Field(default=4, ge=1)
    autosave_interval: float = Field(default=30.0, gt=0)
    store_dir: Path = Path("studies")
    update_by_component: bool = True


_ENV_KEYS = {
    "model": "RCM_MODEL",
    "max_tokens": "RCM_MAX_TOKENS",
    "history_limit": "RCM_HISTORY_LIMIT",
    "sheet_batch_size": "RCM_SHEET_BATCH_SIZE",
    "intel_batch_size": "RCM_INTEL_BATCH_SIZE",
    "autosave_interval": "RCM_AUTOSAVE_INTERVAL",
    "store_dir": "RCM_STORE_DIR",
    "update_by_component": "RCM_UPDATE_BY_COMPONENT",
}


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """Build Settings from the process environment, after loading ``env_file`` if given."""
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()

    values = {}
    for field, key in _ENV_KEYS.items():
        raw = os.environ.get(key)
        if raw is None or raw == "":
            continue
        if field == "update_by_component":
            values[field] = raw.strip().lower() not in ("0", "false", "no", "off")
        else:
            values[field] = raw
    return Settings(**values)
