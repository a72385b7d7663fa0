from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import yaml

WEIGHT_SUM_TOLERANCE = 0.01
REQUIRED_MIN_WEIGHT = 0.5


class TestCategory(str, Enum):
    __test__ = False

    HAPPY_PATH = "happy-path"
    EDGE_CASE = "edge-case"
    ADVERSARIAL = "adversarial"
    COMPLIANCE = "compliance"
    INTERRUPTION = "interruption"
    CLARIFICATION = "clarification"


class Priority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class CriteriaType(str, Enum):
    CONTAINS = "contains"
    NOT_CONTAINS = "not-contains"
    SENTIMENT = "sentiment"
    ACTION_TAKEN = "action-taken"
    INFORMATION_COLLECTED = "information-collected"
    TONE = "tone"
    CUSTOM_JUDGED = "custom-judged"


class EvaluatorType(str, Enum):
    REGEX = "regex"
    KEYWORD = "keyword"
    LLM = "llm"
    FUNCTION = "function"


class SuiteStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class TurnRole(str, Enum):
    USER = "user"
    EXPECTED_AGENT = "expected-agent"


@dataclass
class ConversationTurn:
    """One scripted turn of a test conversation."""
    role: TurnRole
    content: str

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConversationTurn":
        return cls(role=TurnRole(data["role"]), content=data["content"])


@dataclass
class EvaluatorConfig:
    """How a criterion is scored.

    The config keys depend on the type:
        regex:    {"pattern": str, "flags": str}
        keyword:  {"keywords": list[str], "match_all": bool}
        llm:      {"prompt": str, "threshold": float}
        function: {"function_name": str, "params": dict}
    """
    type: EvaluatorType
    config: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "config": dict(self.config)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EvaluatorConfig":
        return cls(type=EvaluatorType(data["type"]), config=dict(data.get("config", {})))


@dataclass
class SuccessCriterion:
    id: str
    name: str
    description: str
    type: CriteriaType
    evaluator: EvaluatorConfig
    weight: float
    required: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.type.value,
            "evaluator": self.evaluator.to_dict(),
            "weight": self.weight,
            "required": self.required,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SuccessCriterion":
        return cls(
            id=data["id"],
            name=data["name"],
            description=data["description"],
            type=CriteriaType(data["type"]),
            evaluator=EvaluatorConfig.from_dict(data["evaluator"]),
            weight=float(data["weight"]),
            required=bool(data.get("required", False)),
        )


@dataclass
class TestCase:
    __test__ = False

    id: str
    suite_id: str
    name: str
    description: str
    category: TestCategory
    conversation_script: list[ConversationTurn]
    success_criteria: list[SuccessCriterion]
    priority: Priority = Priority.MEDIUM
    tags: list[str] = field(default_factory=list)

    @property
    def user_turns(self) -> list[str]:
        """The scripted user utterances, in order."""
        return [t.content for t in self.conversation_script if t.role == TurnRole.USER]

    @property
    def total_weight(self) -> float:
        return sum(c.weight for c in self.success_criteria)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "suite_id": self.suite_id,
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "conversation_script": [t.to_dict() for t in self.conversation_script],
            "success_criteria": [c.to_dict() for c in self.success_criteria],
            "priority": self.priority.value,
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TestCase":
        return cls(
            id=data["id"],
            suite_id=data["suite_id"],
            name=data["name"],
            description=data["description"],
            category=TestCategory(data["category"]),
            conversation_script=[ConversationTurn.from_dict(t) for t in data["conversation_script"]],
            success_criteria=[SuccessCriterion.from_dict(c) for c in data["success_criteria"]],
            priority=Priority(data.get("priority", Priority.MEDIUM.value)),
            tags=list(data.get("tags", [])),
        )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class TestSuite:
    __test__ = False

    id: str
    agent_id: str
    name: str
    description: str
    test_cases: list[TestCase]
    global_criteria: list[SuccessCriterion] = field(default_factory=list)
    version: int = 1
    status: SuiteStatus = SuiteStatus.DRAFT
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    def get_test_case(self, test_case_id: str) -> TestCase | None:
        for test_case in self.test_cases:
            if test_case.id == test_case_id:
                return test_case
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "name": self.name,
            "description": self.description,
            "test_cases": [tc.to_dict() for tc in self.test_cases],
            "global_criteria": [c.to_dict() for c in self.global_criteria],
            "version": self.version,
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TestSuite":
        return cls(
            id=data["id"],
            agent_id=data["agent_id"],
            name=data["name"],
            description=data["description"],
            test_cases=[TestCase.from_dict(tc) for tc in data["test_cases"]],
            global_criteria=[SuccessCriterion.from_dict(c) for c in data.get("global_criteria", [])],
            version=int(data.get("version", 1)),
            status=SuiteStatus(data.get("status", SuiteStatus.DRAFT.value)),
            created_at=data.get("created_at", _now()),
            updated_at=data.get("updated_at", _now()),
        )

    def to_yaml(self) -> str:
        return yaml.dump(self.to_dict(), sort_keys=False)
