from dataclasses import dataclass, field
from typing import Any

import yaml

PASS_THRESHOLD = 0.70
DEFAULT_CONFIDENCE = 0.85


def clamp_unit(value: Any) -> float:
    """Coerce a value into [0, 1]; anything non-numeric becomes 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number:  # NaN
        return 0.0
    return max(0.0, min(1.0, number))


@dataclass
class TranscriptTurn:
    role: str  # "user" | "assistant"
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class Transcript:
    """Full record of one simulated conversation with the target agent."""
    turns: list[TranscriptTurn]
    conversation_id: str | None = None

    @property
    def agent_replies(self) -> list[str]:
        return [t.content for t in self.turns if t.role == "assistant"]

    def to_text(self) -> str:
        return "\n".join(f"{t.role.upper()}: {t.content}" for t in self.turns)

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "turns": [t.to_dict() for t in self.turns],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Transcript":
        return cls(
            turns=[TranscriptTurn(**t) for t in data.get("turns", [])],
            conversation_id=data.get("conversation_id"),
        )


@dataclass
class PerformanceMetrics:
    relevance: float = 0.0
    accuracy: float = 0.0
    completeness: float = 0.0
    helpfulness: float = 0.0

    @property
    def overall(self) -> float:
        return (self.relevance + self.accuracy + self.completeness + self.helpfulness) / 4

    @classmethod
    def uniform(cls, value: float) -> "PerformanceMetrics":
        return cls(relevance=value, accuracy=value, completeness=value, helpfulness=value)

    @classmethod
    def mean_of(cls, metrics: list["PerformanceMetrics"], weights: list[float] | None = None) -> "PerformanceMetrics":
        """Weighted mean of each sub-metric. Equal weights when none are given."""
        if not metrics:
            raise ValueError("Cannot average an empty list of metrics")
        weights = weights or [1.0] * len(metrics)
        total = sum(weights)
        if total <= 0:
            weights = [1.0] * len(metrics)
            total = float(len(metrics))
        return cls(
            relevance=sum(m.relevance * w for m, w in zip(metrics, weights)) / total,
            accuracy=sum(m.accuracy * w for m, w in zip(metrics, weights)) / total,
            completeness=sum(m.completeness * w for m, w in zip(metrics, weights)) / total,
            helpfulness=sum(m.helpfulness * w for m, w in zip(metrics, weights)) / total,
        )

    def to_dict(self) -> dict[str, float]:
        return {
            "relevance": self.relevance,
            "accuracy": self.accuracy,
            "completeness": self.completeness,
            "helpfulness": self.helpfulness,
            "overall": self.overall,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PerformanceMetrics":
        return cls(
            relevance=data.get("relevance", 0.0),
            accuracy=data.get("accuracy", 0.0),
            completeness=data.get("completeness", 0.0),
            helpfulness=data.get("helpfulness", 0.0),
        )

    def to_formatted_string(self) -> str:
        return (
            f"Relevance: {self.relevance * 100:.0f}%, Accuracy: {self.accuracy * 100:.0f}%, "
            f"Completeness: {self.completeness * 100:.0f}%, Helpfulness: {self.helpfulness * 100:.0f}%"
        )


@dataclass
class CriterionResult:
    criterion_id: str
    criterion_name: str
    passed: bool
    score: float
    reasoning: str
    weight: float = 1.0
    required: bool = False
    metrics: PerformanceMetrics | None = None  # only set for judged criteria
    confidence: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "criterion_id": self.criterion_id,
            "criterion_name": self.criterion_name,
            "passed": self.passed,
            "score": self.score,
            "reasoning": self.reasoning,
            "weight": self.weight,
            "required": self.required,
            "metrics": self.metrics.to_dict() if self.metrics else None,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CriterionResult":
        metrics = data.get("metrics")
        return cls(
            criterion_id=data["criterion_id"],
            criterion_name=data.get("criterion_name", ""),
            passed=data["passed"],
            score=data["score"],
            reasoning=data.get("reasoning", ""),
            weight=data.get("weight", 1.0),
            required=data.get("required", False),
            metrics=PerformanceMetrics.from_dict(metrics) if metrics else None,
            confidence=data.get("confidence", 1.0),
        )


@dataclass
class Evaluation:
    """Result of judging one test case's transcript under one prompt version."""
    test_case_id: str
    test_case_name: str
    criteria_results: list[CriterionResult]
    overall_score: float
    metrics: PerformanceMetrics
    reasoning: str
    confidence: float
    transcript: Transcript
    threshold: float = PASS_THRESHOLD

    @property
    def passed(self) -> bool:
        """Derived: an evaluation passes iff its overall score reaches the threshold."""
        return self.overall_score >= self.threshold

    def to_dict(self) -> dict[str, Any]:
        return {
            "test_case_id": self.test_case_id,
            "test_case_name": self.test_case_name,
            "passed": self.passed,
            "criteria_results": [r.to_dict() for r in self.criteria_results],
            "overall_score": self.overall_score,
            "metrics": self.metrics.to_dict(),
            "reasoning": self.reasoning,
            "confidence": self.confidence,
            "transcript": self.transcript.to_dict(),
            "threshold": self.threshold,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Evaluation":
        return cls(
            test_case_id=data["test_case_id"],
            test_case_name=data.get("test_case_name", ""),
            criteria_results=[CriterionResult.from_dict(r) for r in data.get("criteria_results", [])],
            overall_score=data["overall_score"],
            metrics=PerformanceMetrics.from_dict(data.get("metrics", {})),
            reasoning=data.get("reasoning", ""),
            confidence=data.get("confidence", DEFAULT_CONFIDENCE),
            transcript=Transcript.from_dict(data.get("transcript", {})),
            threshold=data.get("threshold", PASS_THRESHOLD),
        )

    def to_yaml(self) -> str:
        return yaml.dump({
            "test_case_name": self.test_case_name,
            "passed": self.passed,
            "overall_score": round(self.overall_score, 4),
            "reasoning": self.reasoning,
        })


class ResultsSummary:
    def __init__(self, num_passed: int, num_failed: int, average_score: float):
        self.num_passed = num_passed
        self.num_failed = num_failed
        self.average_score = average_score

    @property
    def total(self) -> int:
        return self.num_passed + self.num_failed

    @property
    def pass_rate(self) -> float:
        """Fraction of evaluations that passed (0-1)."""
        if self.total == 0:
            return 0.0
        return self.num_passed / self.total

    def to_yaml(self) -> str:
        return yaml.dump({
            "total_tests": self.total,
            "num_passed": self.num_passed,
            "num_failed": self.num_failed,
            "pass_rate": f"{self.pass_rate * 100:.2f}%",
            "average_score": f"{self.average_score * 100:.2f}%",
        })


@dataclass
class BatchResult:
    """All evaluations from one run of a suite's test cases against one prompt."""
    evaluations: list[Evaluation]
    prompt: str = ""
    metrics: PerformanceMetrics = field(init=False)

    def __post_init__(self):
        if not self.evaluations:
            raise ValueError("A batch result needs at least one evaluation")
        self.metrics = PerformanceMetrics.mean_of([e.metrics for e in self.evaluations])

    @property
    def pass_rate(self) -> float:
        return sum(1 for e in self.evaluations if e.passed) / len(self.evaluations)

    @property
    def overall_score(self) -> float:
        return sum(e.overall_score for e in self.evaluations) / len(self.evaluations)

    @property
    def failures(self) -> list[Evaluation]:
        return [e for e in self.evaluations if not e.passed]

    def summarise(self) -> ResultsSummary:
        num_passed = sum(1 for e in self.evaluations if e.passed)
        return ResultsSummary(
            num_passed=num_passed,
            num_failed=len(self.evaluations) - num_passed,
            average_score=self.overall_score,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "pass_rate": self.pass_rate,
            "overall_score": self.overall_score,
            "metrics": self.metrics.to_dict(),
            "evaluations": [e.to_dict() for e in self.evaluations],
        }

    def to_yaml(self) -> str:
        return yaml.dump({
            "summary": yaml.safe_load(self.summarise().to_yaml()),
            "results": [yaml.safe_load(e.to_yaml()) for e in self.evaluations],
        })

    def to_formatted_string(self, iteration_number: int) -> str:
        summary = self.summarise()

        lines = [
            "# Test Results",
            f"## Iteration: {iteration_number}",
            "",
            "### Summary",
            f"- Total: {summary.total}",
            f"- Passed: {summary.num_passed}/{summary.total} ({summary.pass_rate * 100:.2f}%)",
            f"- Overall score: {self.overall_score * 100:.1f}%",
            f"- {self.metrics.to_formatted_string()}",
            "",
            "### Individual Results",
        ]

        for i, evaluation in enumerate(self.evaluations, start=1):
            status = "PASS" if evaluation.passed else "FAIL"
            lines.append(f"{i}. {evaluation.test_case_name} - {status} (Score: {evaluation.overall_score * 100:.1f}%)")
            lines.append(f"   Reasoning: {evaluation.reasoning}")
            for result in evaluation.criteria_results:
                criterion_status = "PASS" if result.passed else "FAIL"
                lines.append(
                    f"   - {result.criterion_name}: {criterion_status} "
                    f"(Score: {result.score * 100:.1f}%, weight {result.weight:.2f})"
                )
            lines.append("")

        return "\n".join(lines)
