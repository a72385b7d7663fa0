import logging

from voice_promptimiser.core.base_monitor import BaseMonitor, IterationMetrics
from voice_promptimiser.core.optimisation_entities import OptimisationResult

logger = logging.getLogger(__name__)


class LoggingMonitor(BaseMonitor):
    """Simple monitor that logs progress using Python's logging module."""

    def __init__(self):
        self.best_score = 0.0
        self.best_iteration = 0

    def on_optimization_start(self, run_id: str, agent_id: str) -> None:
        self.best_score = 0.0
        self.best_iteration = 0
        logger.info(f"🚀 Starting optimisation run {run_id} for agent {agent_id}")

    def on_iteration_start(self, run_id: str, iteration_number: int) -> None:
        logger.info(f"📝 Starting iteration {iteration_number}")

    def on_iteration_complete(self, metrics: IterationMetrics) -> None:
        if metrics.iteration_number == 0 or metrics.overall_score > self.best_score:
            improved = metrics.iteration_number > 0
            self.best_score = metrics.overall_score
            self.best_iteration = metrics.iteration_number
        else:
            improved = False

        if metrics.iteration_number == 0:
            logger.info(
                f"✅ Initial run complete - "
                f"Score: {metrics.overall_score * 100:.1f}% "
                f"({metrics.num_passed}/{metrics.total_tests} passed)"
            )
            return

        logger.info(
            f"✅ Iteration {metrics.iteration_number} complete - "
            f"Score: {metrics.overall_score * 100:.1f}% "
            f"({metrics.num_passed}/{metrics.total_tests} passed) "
            f"| Best: {self.best_score * 100:.1f}% (iter {self.best_iteration})"
            f"{' 🎯 NEW BEST!' if improved else ''}"
        )
        if metrics.changelog:
            logger.info(f"   Changes: {metrics.changelog}")

    def on_optimization_complete(self, result: OptimisationResult) -> None:
        logger.info(
            f"🏁 Optimisation {result.status.value} after {result.iterations} iteration(s) | "
            f"{result.initial_score * 100:.1f}% -> best {result.best_score * 100:.1f}% "
            f"(iteration {self.best_iteration})"
        )

    def on_error(self, run_id: str, iteration_number: int, error: Exception) -> None:
        logger.error(
            f"❌ Error in iteration {iteration_number}: {str(error)}",
            exc_info=error
        )
