"""
Action Block Parser — extracts <ACTION>...</ACTION> directives from copilot replies,
and the <INTERVAL>/<PF_VAL>/<PF_UNIT> tags from interval optimizer replies.

A reply is free text that may embed any number of action blocks. Each block
holds a JSON object or an array of objects shaped like
``{"type": "ADD"|"UPDATE"|"DELETE", "item": {...}, "reason": "..."}``.

Parsing is pure: it never touches a dataset. A malformed block is dropped on
its own and never prevents extraction of its siblings.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from rcm_schema import Proposal

logger = logging.getLogger(__name__)

ACTION_PATTERN = re.compile(r"<ACTION>(.*?)</ACTION>", re.DOTALL)
_FENCE_OPEN = re.compile(r"^\s*```(?:json)?\s*")
_FENCE_CLOSE = re.compile(r"\s*```\s*$")


class ParsedReply(BaseModel):
    """Commentary with action blocks removed, plus the proposals they carried."""
    clean_text: str
    proposals: list[Proposal] = Field(default_factory=list)


def new_proposal_id() -> str:
    return f"proposal-{uuid.uuid4().hex[:9]}"


def _decode_payload(payload: str) -> Any:
    # Models sometimes fence the JSON even inside the tags
    cleaned = _FENCE_OPEN.sub("", payload)
    cleaned = _FENCE_CLOSE.sub("", cleaned)
    return json.loads(cleaned.strip())


def _to_proposal(candidate: Any) -> Optional[Proposal]:
    if not isinstance(candidate, dict):
        return None
    kind = candidate.get("type")
    is_delete = isinstance(kind, str) and kind.strip().upper() == "DELETE"
    if candidate.get("item") is None and not is_delete:
        return None
    try:
        return Proposal(
            id=new_proposal_id(),
            type=kind,
            item=candidate.get("item") or {},
            reason=candidate.get("reason"),
        )
    except ValidationError as e:
        logger.warning("Skipping malformed action: %s", e.errors()[0].get("msg", e))
        return None


def parse_action_blocks(text: str) -> ParsedReply:
    """
    Split a copilot reply into commentary and proposals.

    Blocks are read in document order; every block (valid or not) is
    removed from the commentary.
    """
    if not text:
        return ParsedReply(clean_text="")

    proposals: list[Proposal] = []
    for match in ACTION_PATTERN.finditer(text):
        try:
            payload = _decode_payload(match.group(1))
        except json.JSONDecodeError as e:
            logger.warning("Failed to parse action block JSON: %s", e)
            continue

        candidates = payload if isinstance(payload, list) else [payload]
        for candidate in candidates:
            proposal = _to_proposal(candidate)
            if proposal is not None:
                proposals.append(proposal)

    clean_text = ACTION_PATTERN.sub("", text).strip()
    return ParsedReply(clean_text=clean_text, proposals=proposals)


# ── Interval optimizer replies ────────────────────────────────────────────────

INTERVAL_PATTERN = re.compile(r"<INTERVAL>(.*?)</INTERVAL>", re.DOTALL)
PF_VALUE_PATTERN = re.compile(r"<PF_VAL>(.*?)</PF_VAL>", re.DOTALL)
PF_UNIT_PATTERN = re.compile(r"<PF_UNIT>(.*?)</PF_UNIT>", re.DOTALL)
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


class IntervalRecommendation(BaseModel):
    """Optimizer commentary plus the values it tagged. Missing tags stay None."""
    clean_text: str
    interval: Optional[str] = None
    pf_value: Optional[int] = None
    pf_unit: Optional[str] = None


def _first_tag(pattern: re.Pattern, text: str) -> Optional[str]:
    match = pattern.search(text)
    if match is None:
        return None
    return match.group(1).strip() or None


def parse_interval_reply(text: str) -> IntervalRecommendation:
    """
    Pull the recommended interval and P-F estimate out of an optimizer reply.

    The first occurrence of each tag wins. A P-F value is read as its leading
    integer ("6 to 8" gives 6); anything else leaves it unset. Every tag is
    removed from the commentary.
    """
    if not text:
        return IntervalRecommendation(clean_text="")

    pf_value = None
    raw_value = _first_tag(PF_VALUE_PATTERN, text)
    if raw_value is not None:
        match = _LEADING_INT.match(raw_value)
        if match:
            pf_value = int(match.group(1))
        else:
            logger.warning("Ignoring non-numeric P-F value: %r", raw_value)

    clean_text = text
    for pattern in (INTERVAL_PATTERN, PF_VALUE_PATTERN, PF_UNIT_PATTERN):
        clean_text = pattern.sub("", clean_text)

    return IntervalRecommendation(
        clean_text=clean_text.strip(),
        interval=_first_tag(INTERVAL_PATTERN, text),
        pf_value=pf_value,
        pf_unit=_first_tag(PF_UNIT_PATTERN, text),
    )
