from abc import ABC, abstractmethod
from dataclasses import dataclass

from voice_promptimiser.core.eval_entities import BatchResult
from voice_promptimiser.core.optimisation_entities import OptimisationResult


@dataclass
class IterationMetrics:
    """Metrics captured at the end of each iteration (including iteration 0 for the initial run)."""
    run_id: str
    iteration_number: int
    changelog: str | None  # None for the initial run (iteration 0)
    batch: BatchResult

    @property
    def pass_rate(self) -> float:
        """Pass rate as a percentage."""
        return self.batch.pass_rate * 100

    @property
    def num_passed(self) -> int:
        return self.batch.summarise().num_passed

    @property
    def total_tests(self) -> int:
        return self.batch.summarise().total

    @property
    def overall_score(self) -> float:
        """Overall score across all evaluations (0-1 range)."""
        return self.batch.overall_score


class BaseMonitor(ABC):
    """Abstract base class for monitoring optimisation progress."""

    @abstractmethod
    def on_optimization_start(self, run_id: str, agent_id: str) -> None:
        pass

    @abstractmethod
    def on_iteration_start(self, run_id: str, iteration_number: int) -> None:
        pass

    @abstractmethod
    def on_iteration_complete(self, metrics: IterationMetrics) -> None:
        pass

    @abstractmethod
    def on_optimization_complete(self, result: OptimisationResult) -> None:
        pass

    @abstractmethod
    def on_error(self, run_id: str, iteration_number: int, error: Exception) -> None:
        pass
