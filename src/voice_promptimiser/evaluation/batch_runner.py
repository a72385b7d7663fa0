import asyncio
import logging
from typing import Any

from voice_promptimiser.core.cancellation import CancellationToken
from voice_promptimiser.core.errors import ValidationError
from voice_promptimiser.core.eval_entities import (
    PASS_THRESHOLD,
    BatchResult,
    CriterionResult,
    Evaluation,
    PerformanceMetrics,
    Transcript,
)
from voice_promptimiser.core.suite_entities import SuccessCriterion, TestCase
from voice_promptimiser.evaluation.criteria_evaluators import (
    FunctionRegistry,
    can_score_locally,
    default_registry,
    score_locally,
)
from voice_promptimiser.evaluation.simulator import ConversationSimulator
from voice_promptimiser.generation.judge import Judge

logger = logging.getLogger(__name__)


def aggregate_score(results: list[CriterionResult], pass_threshold: float = PASS_THRESHOLD) -> float:
    """Weighted sum of criterion scores, capped by the worst failing required criterion."""
    total_weight = sum(r.weight for r in results)
    if total_weight > 0:
        overall = sum(r.weight * r.score for r in results) / total_weight
    else:
        overall = sum(r.score for r in results) / len(results)

    for r in results:
        if r.required and r.score < pass_threshold:
            overall = min(overall, r.score)

    return max(0.0, min(1.0, overall))


def aggregate_metrics(results: list[CriterionResult], overall: float) -> PerformanceMetrics:
    judged = [r for r in results if r.metrics is not None]
    if not judged:
        return PerformanceMetrics.uniform(overall)
    return PerformanceMetrics.mean_of([r.metrics for r in judged], [r.weight for r in judged])


class BatchRunner:
    """Simulates and scores test cases, then aggregates them into a BatchResult.

    With max_concurrency > 1 test cases run in parallel; results keep the input order,
    and the first failure cancels the remaining test cases and propagates.
    """

    def __init__(
        self,
        simulator: ConversationSimulator,
        judge: Judge,
        registry: FunctionRegistry | None = None,
        pass_threshold: float = PASS_THRESHOLD,
        max_concurrency: int = 1,
    ):
        self.simulator = simulator
        self.judge = judge
        self.registry = registry or default_registry()
        self.pass_threshold = pass_threshold
        self.max_concurrency = max(1, max_concurrency)

    async def _score_criterion(
        self,
        criterion: SuccessCriterion,
        transcript: Transcript,
        test_case: TestCase,
        business_context: dict[str, Any] | None,
    ) -> CriterionResult:
        if can_score_locally(criterion, self.registry):
            local = score_locally(criterion, transcript, self.registry)
            return CriterionResult(
                criterion_id=criterion.id,
                criterion_name=criterion.name,
                passed=local.passed,
                score=local.score,
                reasoning=local.reasoning,
                weight=criterion.weight,
                required=criterion.required,
            )

        verdict = await self.judge.evaluate(criterion, transcript, test_case, business_context)
        return CriterionResult(
            criterion_id=criterion.id,
            criterion_name=criterion.name,
            passed=verdict.passed,
            score=verdict.score,
            reasoning=verdict.reasoning,
            weight=criterion.weight,
            required=criterion.required,
            metrics=verdict.metrics,
            confidence=verdict.confidence,
        )

    async def evaluate_test_case(
        self,
        agent_id: str,
        test_case: TestCase,
        business_context: dict[str, Any] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> Evaluation:
        transcript = await self.simulator.simulate(agent_id, test_case.user_turns, cancel_token)

        results = []
        for criterion in test_case.success_criteria:
            results.append(await self._score_criterion(criterion, transcript, test_case, business_context))

        overall = aggregate_score(results, self.pass_threshold)
        if len(results) == 1:
            reasoning = results[0].reasoning
        else:
            reasoning = "\n".join(f"{r.criterion_name}: {r.reasoning}" for r in results)

        evaluation = Evaluation(
            test_case_id=test_case.id,
            test_case_name=test_case.name,
            criteria_results=results,
            overall_score=overall,
            metrics=aggregate_metrics(results, overall),
            reasoning=reasoning,
            confidence=sum(r.confidence for r in results) / len(results),
            transcript=transcript,
            threshold=self.pass_threshold,
        )
        status = "✅" if evaluation.passed else "❌"
        logger.info(f"{status} {test_case.name}: {overall * 100:.1f}%")
        return evaluation

    async def _run_parallel(
        self,
        agent_id: str,
        test_cases: list[TestCase],
        business_context: dict[str, Any] | None,
        cancel_token: CancellationToken | None,
    ) -> list[Evaluation]:
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def bounded(test_case: TestCase) -> Evaluation:
            async with semaphore:
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()
                return await self.evaluate_test_case(agent_id, test_case, business_context, cancel_token)

        tasks = [asyncio.create_task(bounded(tc)) for tc in test_cases]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def run(
        self,
        agent_id: str,
        test_cases: list[TestCase],
        business_context: dict[str, Any] | None = None,
        cancel_token: CancellationToken | None = None,
        prompt: str = "",
    ) -> BatchResult:
        if not test_cases:
            raise ValidationError("test_cases", "cannot run an empty batch")

        logger.info(f"🏃 Running {len(test_cases)} test cases against {agent_id}")
        if self.max_concurrency == 1:
            evaluations = []
            for test_case in test_cases:
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()
                evaluations.append(
                    await self.evaluate_test_case(agent_id, test_case, business_context, cancel_token)
                )
        else:
            evaluations = await self._run_parallel(agent_id, test_cases, business_context, cancel_token)

        batch = BatchResult(evaluations=evaluations, prompt=prompt)
        logger.info(
            f"📊 Batch complete: {batch.pass_rate * 100:.1f}% passed, overall {batch.overall_score * 100:.1f}%"
        )
        return batch
