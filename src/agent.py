"""
Generation Service — uses the Anthropic Python SDK for every generative call.

Five requests are made against the same model:
  - bulk analysis: a JSON array of candidate records (optionally told what to avoid)
  - copilot: free text that may embed <ACTION> blocks
  - inspection sheet: a JSON object for one record
  - component intel: a JSON object for one component name
  - interval optimization: free text with tagged interval and P-F estimate

Responses are returned raw (parsed JSON or text). Normalization into
canonical records happens downstream. Any transport failure or unusable
response is raised as ServiceError.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

import anthropic

from config import Settings
from errors import ServiceError
from prompts import (
    COPILOT_SYSTEM_PROMPT,
    INSPECTION_SYSTEM_PROMPT,
    INTEL_SYSTEM_PROMPT,
    INTERVAL_SYSTEM_PROMPT,
    SYSTEM_PROMPT,
    analysis_request,
    copilot_request,
    inspection_request,
    intel_request,
    interval_request,
)
from rcm_schema import RCMRecord

logger = logging.getLogger(__name__)

COPILOT_CONTEXT_SIZE = 20
SMALL_RESPONSE_TOKENS = 2048


def _strip_fences(raw: str) -> str:
    cleaned = re.sub(r"^```(?:json)?\s*", "", raw, flags=re.MULTILINE)
    cleaned = re.sub(r"\s*```$", "", cleaned, flags=re.MULTILINE)
    return cleaned.strip()


def extract_json(raw: str, opener: str = "[") -> Any:
    """
    Extract a JSON array (``opener="["``) or object (``opener="{"``) from a model response.

    The model is instructed to return only JSON, but may occasionally
    include markdown fences or a sentence of preamble.
    """
    closer = "]" if opener == "[" else "}"
    cleaned = _strip_fences(raw)
    start = cleaned.find(opener)
    end = cleaned.rfind(closer)
    if start == -1 or end == -1 or end < start:
        kind = "array" if opener == "[" else "object"
        raise ServiceError(
            f"Response does not contain a JSON {kind}.\n"
            f"Response (first 500 chars): {raw[:500]}"
        )
    json_str = cleaned[start : end + 1]
    try:
        return json.loads(json_str)
    except json.JSONDecodeError as e:
        raise ServiceError(f"Failed to parse JSON from response: {e}\nJSON: {json_str[:500]}") from e


def copilot_context(records: list[RCMRecord]) -> str:
    """Compact summary of the most recent records for the copilot prompt."""
    summary = [
        {
            "id": r.id,
            "comp": r.component,
            "fail": r.failure_mode,
            "task": r.maintenance_task,
            "iso": r.iso14224_code,
        }
        for r in records[-COPILOT_CONTEXT_SIZE:]
    ]
    return json.dumps(summary)


class AnthropicGenerationService:
    def __init__(self, settings: Optional[Settings] = None, client: Optional[anthropic.AsyncAnthropic] = None):
        self.settings = settings or Settings()
        self.client = client or anthropic.AsyncAnthropic()

    async def _complete(self, system: str, user_message: str, max_tokens: int) -> str:
        try:
            message = await self.client.messages.create(
                model=self.settings.model,
                max_tokens=max_tokens,
                system=system,
                messages=[
                    {"role": "user", "content": user_message},
                ],
            )
        except anthropic.APIError as e:
            raise ServiceError(f"Generation request failed: {e}") from e

        text = "".join(getattr(block, "text", "") for block in message.content).strip()
        if not text:
            raise ServiceError("Generation service returned an empty response")
        return text

    async def generate_analysis(self, context_text: str, avoid: str = "") -> list[Any]:
        """Bulk generation: the raw candidate array."""
        logger.info("Requesting %s analysis from %s", "incremental" if avoid else "full", self.settings.model)
        raw = await self._complete(SYSTEM_PROMPT, analysis_request(context_text, avoid), self.settings.max_tokens)
        logger.info("Received response (%d chars). Parsing...", len(raw))
        items = extract_json(raw, "[")
        if not isinstance(items, list):
            raise ServiceError(f"Expected a JSON array, got {type(items).__name__}")
        return items

    async def ask_copilot(self, records: list[RCMRecord], user_message: str) -> str:
        """Free-text copilot reply; may contain <ACTION> blocks."""
        prompt = copilot_request(copilot_context(records), user_message)
        return await self._complete(COPILOT_SYSTEM_PROMPT, prompt, SMALL_RESPONSE_TOKENS * 2)

    async def generate_inspection_sheet(self, record: RCMRecord) -> dict[str, Any]:
        raw = await self._complete(
            INSPECTION_SYSTEM_PROMPT,
            inspection_request(record.component, record.maintenance_task),
            SMALL_RESPONSE_TOKENS,
        )
        sheet = extract_json(raw, "{")
        if not isinstance(sheet, dict):
            raise ServiceError(f"Expected a JSON object, got {type(sheet).__name__}")
        return sheet

    async def generate_component_intel(self, component: str) -> dict[str, Any]:
        raw = await self._complete(INTEL_SYSTEM_PROMPT, intel_request(component), SMALL_RESPONSE_TOKENS // 2)
        intel = extract_json(raw, "{")
        if not isinstance(intel, dict):
            raise ServiceError(f"Expected a JSON object, got {type(intel).__name__}")
        return intel

    async def optimize_interval(self, record: RCMRecord, user_message: str) -> str:
        """Free-text interval recommendation; may contain <INTERVAL>, <PF_VAL> and <PF_UNIT> tags."""
        logger.info("Requesting interval optimization for %s", record.id)
        return await self._complete(
            INTERVAL_SYSTEM_PROMPT,
            interval_request(record, user_message),
            SMALL_RESPONSE_TOKENS,
        )
