from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import yaml

from voice_promptimiser.core.errors import AuditViolation
from voice_promptimiser.core.eval_entities import PerformanceMetrics


class OptimisationStatus(str, Enum):
    PENDING = "pending"
    APPLIED = "applied"
    VALIDATED = "validated"
    ROLLED_BACK = "rolled-back"


VALID_TRANSITIONS: dict[OptimisationStatus, set[OptimisationStatus]] = {
    OptimisationStatus.PENDING: {OptimisationStatus.APPLIED},
    OptimisationStatus.APPLIED: {OptimisationStatus.VALIDATED, OptimisationStatus.ROLLED_BACK},
    OptimisationStatus.VALIDATED: set(),
    OptimisationStatus.ROLLED_BACK: set(),
}


class ChangeType(str, Enum):
    ADDITION = "addition"
    MODIFICATION = "modification"
    REMOVAL = "removal"
    RESTRUCTURE = "restructure"

    @classmethod
    def coerce(cls, value: Any) -> "ChangeType":
        """Map a loosely worded change type onto the four canonical kinds."""
        text = str(value or "").strip().lower()
        for member in cls:
            if text == member.value:
                return member
        if text.startswith("add") or text in ("new", "insert", "insertion"):
            return cls.ADDITION
        if text.startswith("remov") or text.startswith("delet"):
            return cls.REMOVAL
        if text.startswith("restruct") or text in ("reorder", "reorganize", "reorganise"):
            return cls.RESTRUCTURE
        return cls.MODIFICATION


class LoopStatus(str, Enum):
    CONVERGED = "converged"
    STOPPED_NO_IMPROVEMENT = "stopped-no-improvement"
    STOPPED_MAX_ITERATIONS = "stopped-max-iterations"
    STOPPED_BY_CALLER = "stopped-by-caller"
    ABORTED_ERROR = "aborted-error"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class PromptChange:
    type: ChangeType
    description: str
    targeted_failure: str
    before: str | None = None
    after: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "description": self.description,
            "targeted_failure": self.targeted_failure,
            "before": self.before,
            "after": self.after,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PromptChange":
        return cls(
            type=ChangeType.coerce(data.get("type")),
            description=data.get("description", ""),
            targeted_failure=data.get("targeted_failure", ""),
            before=data.get("before"),
            after=data.get("after"),
        )


@dataclass
class OptimisationRecord:
    """Audit record for one optimisation attempt.

    Status only moves along VALID_TRANSITIONS; use `advance` rather than assigning `status`.
    """
    id: str
    agent_id: str
    run_id: str
    iteration: int
    original_prompt: str
    optimized_prompt: str
    changes: list[PromptChange]
    before_metrics: PerformanceMetrics
    after_metrics: PerformanceMetrics | None = None
    status: OptimisationStatus = OptimisationStatus.PENDING
    explanation: str = ""
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    def can_advance_to(self, new_status: OptimisationStatus) -> bool:
        return new_status in VALID_TRANSITIONS[self.status]

    def advance(self, new_status: OptimisationStatus) -> None:
        if not self.can_advance_to(new_status):
            raise AuditViolation(
                f"Invalid status transition for record {self.id}: {self.status.value} -> {new_status.value}"
            )
        self.status = new_status
        self.updated_at = _now()

    @property
    def is_deletable(self) -> bool:
        return self.status != OptimisationStatus.APPLIED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "run_id": self.run_id,
            "iteration": self.iteration,
            "original_prompt": self.original_prompt,
            "optimized_prompt": self.optimized_prompt,
            "changes": [c.to_dict() for c in self.changes],
            "before_metrics": self.before_metrics.to_dict(),
            "after_metrics": self.after_metrics.to_dict() if self.after_metrics else None,
            "status": self.status.value,
            "explanation": self.explanation,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OptimisationRecord":
        after = data.get("after_metrics")
        return cls(
            id=data["id"],
            agent_id=data["agent_id"],
            run_id=data["run_id"],
            iteration=data["iteration"],
            original_prompt=data["original_prompt"],
            optimized_prompt=data["optimized_prompt"],
            changes=[PromptChange.from_dict(c) for c in data.get("changes", [])],
            before_metrics=PerformanceMetrics.from_dict(data["before_metrics"]),
            after_metrics=PerformanceMetrics.from_dict(after) if after else None,
            status=OptimisationStatus(data.get("status", OptimisationStatus.PENDING.value)),
            explanation=data.get("explanation", ""),
            created_at=data.get("created_at", _now()),
            updated_at=data.get("updated_at", _now()),
        )


@dataclass
class BestPromptRecord:
    """The best prompt found so far for an agent. One per agent, upserted."""
    agent_id: str
    original_prompt: str
    optimized_prompt: str
    score: float
    iterations: int
    updated_at: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "original_prompt": self.original_prompt,
            "optimized_prompt": self.optimized_prompt,
            "score": self.score,
            "iterations": self.iterations,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BestPromptRecord":
        return cls(
            agent_id=data["agent_id"],
            original_prompt=data["original_prompt"],
            optimized_prompt=data["optimized_prompt"],
            score=data["score"],
            iterations=data["iterations"],
            updated_at=data.get("updated_at", _now()),
        )


@dataclass
class OptimisationResult:
    """What an optimisation run reports back to its caller."""
    agent_id: str
    run_id: str
    status: LoopStatus
    original_prompt: str
    optimized_prompt: str
    initial_score: float
    final_score: float
    best_score: float
    iterations: int
    before_metrics: PerformanceMetrics | None
    after_metrics: PerformanceMetrics | None
    changes: list[PromptChange] = field(default_factory=list)
    record_ids: list[str] = field(default_factory=list)
    persisted: bool = False
    aborted_stage: str | None = None
    error_kind: str | None = None
    error_message: str | None = None

    @property
    def improvement(self) -> float:
        return self.best_score - self.initial_score

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "run_id": self.run_id,
            "status": self.status.value,
            "original_prompt": self.original_prompt,
            "optimized_prompt": self.optimized_prompt,
            "initial_score": self.initial_score,
            "final_score": self.final_score,
            "best_score": self.best_score,
            "iterations": self.iterations,
            "before_metrics": self.before_metrics.to_dict() if self.before_metrics else None,
            "after_metrics": self.after_metrics.to_dict() if self.after_metrics else None,
            "changes": [c.to_dict() for c in self.changes],
            "record_ids": list(self.record_ids),
            "persisted": self.persisted,
            "aborted_stage": self.aborted_stage,
            "error_kind": self.error_kind,
            "error_message": self.error_message,
        }

    def to_yaml(self) -> str:
        data = {
            "status": self.status.value,
            "iterations": self.iterations,
            "initial_score": f"{self.initial_score * 100:.1f}%",
            "final_score": f"{self.final_score * 100:.1f}%",
            "best_score": f"{self.best_score * 100:.1f}%",
            "persisted": self.persisted,
        }
        if self.aborted_stage:
            data["aborted_stage"] = self.aborted_stage
            data["error_kind"] = self.error_kind
        return yaml.dump(data, sort_keys=False)
