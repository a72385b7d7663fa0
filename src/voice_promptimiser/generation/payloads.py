"""Pydantic models for the structured payloads the generator returns.

Each stage validates the generator's JSON against one of these. Field names follow the
camelCase keys the generator is asked for (as aliases); list fields tolerate a bare string
or a list of objects where a list of strings was requested.
"""

from typing import Any, Literal

from pydantic import Field, field_validator, model_validator

from voice_promptimiser.core.eval_entities import clamp_unit
from voice_promptimiser.core.llm_payload import LLMPayload
from voice_promptimiser.core.optimisation_entities import ChangeType, PromptChange

Severity = Literal["critical", "high", "medium", "low"]


def _coerce_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, (list, tuple)):
        return [str(value)]
    items = []
    for item in value:
        if isinstance(item, str):
            items.append(item)
        elif isinstance(item, dict):
            text = " - ".join(str(v) for v in item.values() if isinstance(v, (str, int, float)))
            if text:
                items.append(text)
        elif item is not None:
            items.append(str(item))
    return items


def _coerce_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value if v is not None)
    return str(value)


class PromptAnalysis(LLMPayload):
    intents: list[str] = Field(default_factory=list)
    constraints: list[str] = Field(default_factory=list)
    expected_behaviors: list[str] = Field(default_factory=list, alias="expectedBehaviors")
    data_to_collect: list[str] = Field(default_factory=list, alias="dataToCollect")
    tone: str = "professional"
    summary: str = ""

    @field_validator("intents", "constraints", "expected_behaviors", "data_to_collect", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> list[str]:
        return _coerce_str_list(value)

    @field_validator("tone", "summary", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return _coerce_text(value)


class JudgePayload(LLMPayload):
    passed: Any = None
    score: Any = None
    reasoning: Any = None
    metrics: dict[str, Any] = Field(default_factory=dict)

    @field_validator("metrics", mode="before")
    @classmethod
    def _metrics(cls, value: Any) -> dict[str, Any]:
        return value if isinstance(value, dict) else {}


class FailurePattern(LLMPayload):
    description: str = ""
    affected_test_cases: list[str] = Field(default_factory=list, alias="affectedTestCases")
    frequency: float = 0.0
    severity: Severity = "medium"
    suggested_fix: str = Field(default="", alias="suggestedFix")

    @model_validator(mode="before")
    @classmethod
    def _description_synonyms(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("description"):
            for key in ("pattern", "name", "issue"):
                if data.get(key):
                    return {**data, "description": data[key]}
        return data

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, value: Any) -> str:
        return _coerce_text(value)

    @field_validator("affected_test_cases", mode="before")
    @classmethod
    def _affected(cls, value: Any) -> list[str]:
        return _coerce_str_list(value)

    @field_validator("frequency", mode="before")
    @classmethod
    def _frequency(cls, value: Any) -> float:
        return clamp_unit(value)

    @field_validator("severity", mode="before")
    @classmethod
    def _severity(cls, value: Any) -> str:
        text = str(value or "").strip().lower()
        return text if text in ("critical", "high", "medium", "low") else "medium"

    @field_validator("suggested_fix", mode="before")
    @classmethod
    def _fix(cls, value: Any) -> str:
        return _coerce_text(value)


class FailureInsights(LLMPayload):
    failure_patterns: list[FailurePattern] = Field(default_factory=list, alias="failurePatterns")
    recommendations: list[str] = Field(default_factory=list)
    prioritized_fixes: list[str] = Field(default_factory=list, alias="prioritizedFixes")

    @field_validator("recommendations", "prioritized_fixes", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> list[str]:
        return _coerce_str_list(value)


class ProposedChange(LLMPayload):
    type: str = "modification"
    description: str = ""
    targeted_failure: str = Field(default="", alias="targetedFailure")
    before: str | None = None
    after: str | None = None

    @field_validator("type", "description", "targeted_failure", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return _coerce_text(value)

    @field_validator("before", "after", mode="before")
    @classmethod
    def _snippet(cls, value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, (list, tuple)):
            return "\n".join(str(v) for v in value if v is not None)
        return str(value)

    def to_prompt_change(self) -> PromptChange:
        return PromptChange(
            type=ChangeType.coerce(self.type),
            description=self.description,
            targeted_failure=self.targeted_failure,
            before=self.before,
            after=self.after,
        )


class PromptProposal(LLMPayload):
    optimized_prompt: str = Field(alias="optimizedPrompt", min_length=1)
    changes: list[ProposedChange] = Field(default_factory=list)
    explanation: str = ""

    @field_validator("changes", mode="before")
    @classmethod
    def _changes(cls, value: Any) -> list[Any]:
        if not isinstance(value, list):
            return []
        return [c for c in value if isinstance(c, dict)]

    @field_validator("explanation", mode="before")
    @classmethod
    def _explanation(cls, value: Any) -> str:
        return _coerce_text(value)

    @property
    def prompt_changes(self) -> list[PromptChange]:
        return [c.to_prompt_change() for c in self.changes]
