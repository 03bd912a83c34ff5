"""
Unit tests for the generation service.

The Anthropic client is replaced with a mock; no network calls are made.
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from agent import AnthropicGenerationService, copilot_context, extract_json
from config import Settings
from errors import ServiceError
from rcm_schema import RCMRecord


def make_client(*responses: str) -> MagicMock:
    client = MagicMock()
    messages = []
    for text in responses:
        message = MagicMock()
        message.content = [MagicMock(text=text)]
        messages.append(message)
    client.messages.create = AsyncMock(side_effect=messages)
    return client


def rec(i: int) -> RCMRecord:
    return RCMRecord.create(
        severity=5, occurrence=5, detection=5,
        id=f"rcm-{i}",
        component=f"Component {i}",
        function="f",
        functional_failure="ff",
        failure_mode=f"Mode {i}",
        failure_effect="e",
        consequence_category="Evident - Operational",
        iso14224_code="VIB",
        criticality="Medium",
        maintenance_task="Vibration route",
        interval="Monthly",
        task_type="Condition Monitoring",
    )


# ── JSON extraction ───────────────────────────────────────────────────────────

class TestExtractJson:
    def test_clean_array(self):
        assert extract_json('[{"component": "Shaft"}]') == [{"component": "Shaft"}]

    def test_markdown_fences(self):
        raw = "```json\n" + json.dumps([{"a": 1}]) + "\n```"
        assert extract_json(raw) == [{"a": 1}]

    def test_preamble_ignored(self):
        assert extract_json('Here is the sheet:\n{"steps": []}', "{") == {"steps": []}

    def test_missing_array_raises(self):
        with pytest.raises(ServiceError, match="does not contain a JSON array"):
            extract_json("No structured data here.")

    def test_broken_json_raises(self):
        with pytest.raises(ServiceError, match="Failed to parse JSON"):
            extract_json("[{'single': 'quotes'}]")


class TestCopilotContext:
    def test_only_last_twenty_records(self):
        summary = json.loads(copilot_context([rec(i) for i in range(25)]))
        assert len(summary) == 20
        assert summary[0]["id"] == "rcm-5"
        assert set(summary[0]) == {"id", "comp", "fail", "task", "iso"}


# ── Service calls ─────────────────────────────────────────────────────────────

class TestAnthropicGenerationService:
    def test_generate_analysis_returns_raw_items(self):
        client = make_client(json.dumps([{"component": "Pump"}, {"component": "Motor"}]))
        service = AnthropicGenerationService(Settings(model="test-model"), client=client)

        items = asyncio.run(service.generate_analysis("Cooling water pump", avoid="Pump (Seal leak)"))

        assert [i["component"] for i in items] == ["Pump", "Motor"]
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["max_tokens"] == 8096
        assert "Pump (Seal leak)" in kwargs["messages"][0]["content"]

    def test_generate_analysis_rejects_object(self):
        service = AnthropicGenerationService(client=make_client('{"component": "Pump"}'))
        with pytest.raises(ServiceError):
            asyncio.run(service.generate_analysis("ctx"))

    def test_ask_copilot_returns_text(self):
        reply = 'Adding one.\n<ACTION>{"type": "ADD", "item": {}}</ACTION>'
        client = make_client(reply)
        service = AnthropicGenerationService(client=client)

        text = asyncio.run(service.ask_copilot([rec(1)], "Add a coupling item"))

        assert text == reply
        prompt = client.messages.create.call_args.kwargs["messages"][0]["content"]
        assert "rcm-1" in prompt
        assert "Add a coupling item" in prompt

    def test_inspection_sheet_object(self):
        client = make_client('```json\n{"responsibility": "Fitter", "steps": []}\n```')
        service = AnthropicGenerationService(client=client)
        sheet = asyncio.run(service.generate_inspection_sheet(rec(2)))
        assert sheet["responsibility"] == "Fitter"

    def test_component_intel_object(self):
        service = AnthropicGenerationService(client=make_client('{"description": "Cast iron volute"}'))
        intel = asyncio.run(service.generate_component_intel("Volute"))
        assert intel == {"description": "Cast iron volute"}

    def test_optimize_interval_returns_raw_text(self):
        reply = "Halve the P-F interval.<PF_VAL>6</PF_VAL><PF_UNIT>Weeks</PF_UNIT><INTERVAL>Every 3 Weeks</INTERVAL>"
        client = make_client(reply)
        service = AnthropicGenerationService(client=client)

        text = asyncio.run(service.optimize_interval(rec(3), "Defects visible about 6 weeks ahead"))

        assert text == reply
        kwargs = client.messages.create.call_args.kwargs
        assert "Interval Optimization" in kwargs["system"]
        prompt = kwargs["messages"][0]["content"]
        assert "Component: Component 3" in prompt
        assert "Current Interval: Monthly" in prompt
        assert "RPN: 125 (S:5, O:5, D:5)" in prompt
        assert "USER INPUT: Defects visible about 6 weeks ahead" in prompt
        assert "<INTERVAL>" in prompt

    def test_empty_response_is_service_error(self):
        service = AnthropicGenerationService(client=make_client("   "))
        with pytest.raises(ServiceError, match="empty response"):
            asyncio.run(service.generate_component_intel("Volute"))
