"""
Prompts for the generative text service.

Embeds the RCM/FMECA conventions directly so that every generation path
(bulk analysis, copilot, inspection sheets, component intel, interval
optimization) applies the same rating scales, enumerations and output shapes.

Standards basis:
  - SAE JA1011 — Evaluation Criteria for Reliability-Centered Maintenance
  - ISO 14224 — Collection and exchange of reliability and maintenance data
  - IEC 60812:2018 — Failure modes and effects analysis (FMEA and FMECA)
"""

from rcm_schema import CONSEQUENCE_CATEGORIES, TASK_TYPES, RCMRecord

_CONSEQUENCES = ", ".join(CONSEQUENCE_CATEGORIES)
_TASK_TYPES = ", ".join(TASK_TYPES)

RECORD_SHAPE = f"""{{
    "component": "Standard component name at Level 3/4 (e.g. 'Main Shaft', 'Mechanical Seal')",
    "componentIntel": {{
      "description": "Plain-English explanation of what this part is",
      "location": "Where it is typically found on the asset",
      "visualCues": "What to look for (colours, shapes, textures) to identify it"
    }},
    "function": "The primary function of the component",
    "functionalFailure": "How the component fails to fulfil its function",
    "failureMode": "Strictly: [Mechanism] due to [Cause]",
    "failureEffect": "Immediate impact on safety, environment and operations",
    "consequenceCategory": "One of: {_CONSEQUENCES}",
    "iso14224Code": "Standard failure code (e.g. Wear, Corrosion, Fatigue, Overheating, Leakage)",
    "criticality": "High, Medium or Low",
    "severity": integer_1_to_10,
    "occurrence": integer_1_to_10,
    "detection": integer_1_to_10,
    "maintenanceTask": "Recommended maintenance action (e.g. 'Vibration Analysis')",
    "interval": "Maintenance frequency (e.g. 'Monthly', 'Annual')",
    "taskType": "One of: {_TASK_TYPES}"
  }}"""

SYSTEM_PROMPT = f"""You are a Senior Maintenance Engineer. You provide professional, comprehensive RCM reports that strike a balance between high-level summaries and exhaustive audits. Your risk assessments are realistic and favour safety and availability.

## Your Task
Given an operational context, perform a comprehensive and rigorous RCM/FMECA study compliant with SAE JA1011 and ISO 14224.

## Analysis Scope
- Target volume: approximately 30–35 distinct failure mode items
- Component level: Level 3 or 4 (e.g. 'Drive Motor', 'Main Coupling', 'Discharge Valve'). Not too granular (screws), not too broad (the whole machine)
- For every component, provide a layman physical description, typical location, and visual identification cues

## Risk Scoring
- Severity: if a failure stops production or risks injury, use 8–10
- Occurrence: typical frequency in industrial settings
- Detection: 10 is impossible to detect visually; internal failures use 8–10
- Aim for RPNs (S × O × D) that clearly highlight criticalities (range 150–500)

## Output Format

You MUST respond with a valid JSON array and nothing else. Each element represents one failure mode entry:

```json
[
  {RECORD_SHAPE}
]
```

## Rules
1. Do NOT add any explanation, preamble, or markdown around the JSON array
2. Return ONLY the JSON array, starting with [ and ending with ]
"""

COPILOT_SYSTEM_PROMPT = (
    "You are MIRA, a world-class RCM specialist. You strictly adhere to industrial RCM/FMECA schemas. "
    "You provide high-fidelity technical data for every column in the table. "
    "You never use double quotes in your technical strings."
)

COPILOT_INSTRUCTIONS = f"""STRICT INSTRUCTIONS FOR MIRA:
1. Action Requirement: If the user asks to add, change or remove something, you MUST provide a JSON block inside <ACTION></ACTION> tags.
2. Component Naming: Provide a specific, professional technical name for any component added (e.g. 'Primary Discharge Impeller' instead of 'Impeller').
3. Format: Act as a Senior Reliability Engineer. Use plain text for explanation and valid JSON for actions.
4. Logic: All added items MUST follow the table's structural logic exactly.
5. Required Metadata: For 'ADD' items, populate 'componentIntel' with a physical description, location and visual cues.
6. Updates and deletions MUST reference the record 'id' from the data context.

JSON shape for actions (a single object or an array of them):
   {{
     "type": "ADD" | "UPDATE" | "DELETE",
     "item": {RECORD_SHAPE},
     "reason": "Engineering justification"
   }}
For 'UPDATE', include "id" and only the fields that change. For 'DELETE', "item" only needs "id".
7. DO NOT use double quotes in descriptions or meta fields.
"""

INSPECTION_SYSTEM_PROMPT = """Technical Procedure Author. Professional and actionable.

Respond with a single JSON object and nothing else:
{
  "responsibility": "Role that performs the inspection",
  "estimatedTime": "e.g. 30m",
  "safetyPrecautions": "PPE and isolation requirements",
  "toolsRequired": "Comma-separated tool list",
  "steps": [
    {"step": 1, "description": "Action", "criteria": "Pass/fail acceptance criteria", "technique": "Method"}
  ]
}
"""

INTEL_SYSTEM_PROMPT = """Industrial equipment field guide author. Write for a technician who has never seen the asset.

Respond with a single JSON object and nothing else:
{
  "description": "Plain-English explanation of what this part is (2 sentences max)",
  "location": "Where it is typically found on the asset",
  "visualCues": "What to look for (colours, shapes, textures) to identify it"
}
"""


def analysis_request(context_text: str, avoid: str = "") -> str:
    message = f"Operational Context:\n{context_text}\n\nPerform a COMPREHENSIVE and RIGOROUS RCM/FMECA study."
    if avoid:
        message += (
            "\n\nINCREMENTAL MODE: the study already contains the following items. "
            "Do NOT repeat them; return only NEW component/failure mode combinations.\n"
            f"Existing items: {avoid}"
        )
    return message


def copilot_request(data_context: str, user_message: str) -> str:
    return f"RCM DATA CONTEXT: {data_context}\nUSER REQUEST: {user_message}\n\n{COPILOT_INSTRUCTIONS}"


def inspection_request(component: str, maintenance_task: str) -> str:
    return (
        f"Create a technical inspection procedure for: {maintenance_task} on {component}.\n"
        "Ensure 5 clear technical steps with pass/fail criteria."
    )


def intel_request(component: str) -> str:
    return f"Describe the industrial component '{component}': what it is, where it sits, and how to recognise it."


INTERVAL_SYSTEM_PROMPT = (
    "You are an RCM Interval Optimization Engine. You use technical lead times and reliability "
    "statistics to calculate effective maintenance frequencies. You avoid all markdown formatting, "
    "bolding, and special characters in your output."
)

INTERVAL_INSTRUCTIONS = """STRICT INSTRUCTIONS:
1. DO NOT use markdown characters like ** for bolding or # for headers.
2. Respond in plain, professional English text.
3. Analyze the user's input regarding P-F interval or MTBF.
4. Apply SAE JA1011 logic: a task interval should typically be no more than half the P-F interval to be effective.
5. Recommend a specific optimized interval.
6. Wrap ONLY the final recommended interval value in <INTERVAL>Value</INTERVAL> tags (e.g. <INTERVAL>Monthly</INTERVAL>).
7. Wrap a numeric P-F duration estimate in <PF_VAL>Number</PF_VAL> and its unit in <PF_UNIT>Unit</PF_UNIT> tags.
8. Explain why this frequency is more efficient, without bolding or special symbols.
"""


def interval_request(record: RCMRecord, user_message: str) -> str:
    return (
        "FAILURE MODE CONTEXT:\n"
        f"Component: {record.component}\n"
        f"Failure Mode: {record.failure_mode}\n"
        f"Current Task: {record.maintenance_task}\n"
        f"Current Interval: {record.interval}\n"
        f"RPN: {record.rpn} (S:{record.severity}, O:{record.occurrence}, D:{record.detection})\n\n"
        f"USER INPUT: {user_message}\n\n"
        f"{INTERVAL_INSTRUCTIONS}"
    )
