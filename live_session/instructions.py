"""
System instruction and background nudge text for the live session.

Supports scenario-based configuration:
- Different system prompts per scenario
- Nudge text sent as a background context refresh while the session is open
- Optional voice override
- Scenario selection via argument or AGENT_SCENARIO env var

Scenarios are stored as YAML (preferred) or JSON and read with PyYAML's
safe_load, which parses both.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


SYSTEM_INSTRUCTION = """
You are a Neural Driving Assistant.
Be concise, clear, and alert.
Assist the driver with routing and with managing traffic infrastructure through your tools.
""".strip()

NUDGE_TEXT = "Background check: read the infrastructure telemetry and report only if something needs attention."


def _get_scenarios_dir() -> Path:
    return Path(__file__).parent / "scenarios"


def _load_file(path: Path) -> Dict[str, Any]:
    """Load a scenario file; the top level must be a mapping."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Scenario file {path} must contain a mapping at top-level")
        return data


def load_scenario(scenario_name: str) -> Dict[str, Any]:
    """
    Load scenario configuration from YAML or JSON file.

    Resolution order:
    1) <name>.yaml / <name>.yml / <name>.json
    2) default.yaml / default.yml / default.json
    3) built-in fallback
    """
    scenarios_dir = _get_scenarios_dir()

    for name in (scenario_name, "default"):
        for suffix in (".yaml", ".yml", ".json"):
            candidate = scenarios_dir / f"{name}{suffix}"
            if candidate.exists():
                return _load_file(candidate)

    return {
        "name": "default",
        "prompt": SYSTEM_INSTRUCTION,
        "nudge_text": NUDGE_TEXT,
        "voice": None,
    }


def get_scenario(scenario: Optional[str] = None) -> Dict[str, Any]:
    """
    Scenario by explicit name, else AGENT_SCENARIO, else "default".
    """
    scenario_name = scenario or os.getenv("AGENT_SCENARIO", "default")
    return load_scenario(scenario_name)


def get_instructions(scenario: Optional[str] = None, custom_instructions: Optional[str] = None) -> str:
    """
    System instruction for the given scenario.

    Args:
        scenario: Scenario name
        custom_instructions: Optional text appended after the prompt

    Returns:
        Complete instruction string
    """
    data = get_scenario(scenario)
    prompt = (data.get("prompt") or SYSTEM_INSTRUCTION).strip()

    if custom_instructions:
        return f"{prompt}\n\n{custom_instructions}"
    return prompt


def get_nudge_text(scenario: Optional[str] = None) -> Optional[str]:
    """
    Background nudge text, or None when the scenario disables nudges
    with an empty `nudge_text`.
    """
    data = get_scenario(scenario)
    text = data.get("nudge_text", NUDGE_TEXT)
    if text is None:
        return None
    text = str(text).strip()
    return text or None


def get_voice(scenario: Optional[str] = None, default: str = "Kore") -> str:
    data = get_scenario(scenario)
    return data.get("voice") or default
