from abc import ABC, abstractmethod

from voice_promptimiser.core.eval_entities import BatchResult, Evaluation


class BaseEvalStorage(ABC):
    """Abstract base class for storing and retrieving evaluation results."""

    @abstractmethod
    async def store_iteration_results(
        self,
        run_id: str,
        iteration_number: int,
        batch: BatchResult,
        suite_id: str | None = None,
    ) -> None:
        """Store the evaluations of one batch run."""
        pass

    @abstractmethod
    async def get_run_results(self, run_id: str) -> list[tuple[int, list[Evaluation]]]:
        """Retrieve all results for a run. Returns list of (iteration_number, evaluations) tuples."""
        pass

    @abstractmethod
    async def get_iteration_results(self, run_id: str, iteration_number: int) -> list[Evaluation] | None:
        """Retrieve results for a specific iteration. Returns None if not found."""
        pass
