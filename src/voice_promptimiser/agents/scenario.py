"""Scenario definitions for the simulated target agent."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class QualityCheck:
    """Satisfied when the prompt contains any of the phrases (case-insensitive),
    or, for a length check, when the prompt is longer than `min_length` characters."""
    any_of: list[str] = field(default_factory=list)
    min_length: int | None = None

    def passes(self, prompt: str) -> bool:
        if self.min_length is not None:
            return len(prompt) > self.min_length
        lowered = prompt.lower()
        return any(phrase.lower() in lowered for phrase in self.any_of)


@dataclass
class ResponseRule:
    """Fires when the message contains any trigger and every `requires` phrase.

    The good reply is given only if the prompt's quality reaches `threshold`.
    """
    name: str
    triggers: list[str]
    good: str
    bad: str
    threshold: float = 0.5
    requires: list[str] = field(default_factory=list)

    def matches(self, message: str) -> bool:
        lowered = message.lower()
        if not all(r.lower() in lowered for r in self.requires):
            return False
        return any(t.lower() in lowered for t in self.triggers)


@dataclass
class SimulatedScenario:
    name: str
    initial_prompt: str
    metadata: dict[str, Any]
    checks: list[QualityCheck]
    rules: list[ResponseRule]
    default_good: str
    default_bad: str
    default_threshold: float = 0.5

    def quality(self, prompt: str) -> float:
        if not self.checks:
            return 1.0
        return sum(1 for c in self.checks if c.passes(prompt)) / len(self.checks)

    def reply(self, message: str, quality: float) -> str:
        for rule in self.rules:
            if rule.matches(message):
                return rule.good if quality >= rule.threshold else rule.bad
        return self.default_good if quality >= self.default_threshold else self.default_bad


def scenario_from_dict(data: dict[str, Any]) -> SimulatedScenario:
    for key in ("name", "initial_prompt", "default_good", "default_bad"):
        if key not in data:
            raise ValueError(f"Scenario is missing required field '{key}'")

    checks = []
    for check in data.get("checks", []):
        if isinstance(check, dict):
            checks.append(QualityCheck(any_of=list(check.get("any_of", [])), min_length=check.get("min_length")))
        else:
            checks.append(QualityCheck(any_of=[str(p) for p in check]))

    rules = [
        ResponseRule(
            name=rule["name"],
            triggers=list(rule["triggers"]),
            good=rule["good"],
            bad=rule["bad"],
            threshold=float(rule.get("threshold", 0.5)),
            requires=list(rule.get("requires", [])),
        )
        for rule in data.get("rules", [])
    ]

    return SimulatedScenario(
        name=data["name"],
        initial_prompt=data["initial_prompt"],
        metadata=dict(data.get("metadata", {})),
        checks=checks,
        rules=rules,
        default_good=data["default_good"],
        default_bad=data["default_bad"],
        default_threshold=float(data.get("default_threshold", 0.5)),
    )


def load_scenario(file_path: str | Path) -> SimulatedScenario:
    """
    Load a simulated-agent scenario from a YAML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        yaml.YAMLError: If the YAML is malformed
        ValueError: If required fields are missing
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Scenario file not found: {file_path}")

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Expected YAML root to be a dict, got {type(data)}")

    return scenario_from_dict(data)
