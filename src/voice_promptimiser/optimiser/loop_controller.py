import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, TypeVar

from voice_promptimiser.core.base_eval_storage import BaseEvalStorage
from voice_promptimiser.core.base_monitor import BaseMonitor, IterationMetrics
from voice_promptimiser.core.base_record_storage import BaseRecordStorage
from voice_promptimiser.core.base_target_agent import BaseTargetAgent
from voice_promptimiser.core.cancellation import CancellationToken
from voice_promptimiser.core.errors import (
    GenerationError,
    NotFoundError,
    OptimisationAborted,
    ParseError,
    RunCancelled,
    TargetAgentError,
)
from voice_promptimiser.core.eval_entities import BatchResult
from voice_promptimiser.core.optimisation_entities import (
    BestPromptRecord,
    LoopStatus,
    OptimisationRecord,
    OptimisationResult,
    OptimisationStatus,
    PromptChange,
)
from voice_promptimiser.core.run_guard import RunGuard
from voice_promptimiser.core.suite_entities import TestSuite
from voice_promptimiser.evaluation.batch_runner import BatchRunner
from voice_promptimiser.generation.insight_generator import InsightGenerator
from voice_promptimiser.generation.prompt_optimizer import PromptOptimizer
from voice_promptimiser.monitors.logging_monitor import LoggingMonitor

logger = logging.getLogger(__name__)

T = TypeVar("T")

PERFECT_SCORE = 1.0

# Failures that abort a run. Anything else is a bug and propagates unchanged.
ABORTING_ERRORS = (GenerationError, NotFoundError, ParseError, TargetAgentError)


@dataclass
class _RunState:
    """Mutable bookkeeping for one run."""
    run_id: str
    agent_id: str
    original_prompt: str
    business_context: dict[str, Any]
    current_prompt: str = ""
    best_prompt: str = ""
    initial: BatchResult | None = None
    latest: BatchResult | None = None
    best: BatchResult | None = None
    iteration: int = 0
    changes: list[PromptChange] = field(default_factory=list)
    record_ids: list[str] = field(default_factory=list)

    @property
    def best_score(self) -> float:
        return self.best.overall_score if self.best else 0.0


class LoopController:
    """Runs optimise -> simulate -> judge cycles until the suite passes perfectly,
    an iteration fails to improve, or the iteration budget runs out.

    Guarantees:
    - a perfect initial run makes no generator calls for insights or optimisation
    - only an improving candidate becomes the new best; a non-improving one ends the run
    - the persisted best-prompt record is only written with a score above the run's initial
      score and never below the score already persisted
    - generator and target-agent failures abort the run with OptimisationAborted naming the stage
    - cancellation is honoured at iteration boundaries and between conversation turns, and
      a cancelled run never persists a best-prompt record
    """

    def __init__(
        self,
        target_agent: BaseTargetAgent,
        batch_runner: BatchRunner,
        insight_generator: InsightGenerator,
        prompt_optimizer: PromptOptimizer,
        record_storage: BaseRecordStorage,
        eval_storage: BaseEvalStorage | None = None,
        monitor: BaseMonitor | None = None,
        run_guard: RunGuard | None = None,
        restore_best_on_regression: bool = True,
    ):
        self.target_agent = target_agent
        self.batch_runner = batch_runner
        self.insight_generator = insight_generator
        self.prompt_optimizer = prompt_optimizer
        self.record_storage = record_storage
        self.eval_storage = eval_storage
        self.monitor = monitor or LoggingMonitor()
        self.run_guard = run_guard or RunGuard()
        self.restore_best_on_regression = restore_best_on_regression

    @staticmethod
    async def _stage(stage: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except ABORTING_ERRORS as e:
            raise OptimisationAborted(stage, e) from e

    @staticmethod
    def _check_cancelled(cancel_token: CancellationToken | None) -> None:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

    async def _run_batch(
        self,
        stage: str,
        state: _RunState,
        suite: TestSuite,
        cancel_token: CancellationToken | None,
    ) -> BatchResult:
        batch = await self._stage(stage, self.batch_runner.run(
            state.agent_id,
            suite.test_cases,
            business_context=state.business_context,
            cancel_token=cancel_token,
            prompt=state.current_prompt,
        ))
        if self.eval_storage is not None:
            await self.eval_storage.store_iteration_results(state.run_id, state.iteration, batch, suite.id)
        return batch

    async def run(
        self,
        agent_id: str,
        suite: TestSuite,
        max_iterations: int = 2,
        cancel_token: CancellationToken | None = None,
        run_id: str | None = None,
    ) -> OptimisationResult:
        run_id = run_id or str(uuid.uuid4())
        async with self.run_guard.hold(agent_id, run_id):
            return await self._run(agent_id, suite, max_iterations, cancel_token, run_id)

    async def _run(
        self,
        agent_id: str,
        suite: TestSuite,
        max_iterations: int,
        cancel_token: CancellationToken | None,
        run_id: str,
    ) -> OptimisationResult:
        state = _RunState(run_id=run_id, agent_id=agent_id, original_prompt="", business_context={})

        try:
            config = await self._stage("initial_run", self.target_agent.get_config(agent_id))
            state.original_prompt = state.current_prompt = state.best_prompt = config.prompt
            state.business_context = config.business_context
            self.monitor.on_optimization_start(run_id, agent_id)

            self._check_cancelled(cancel_token)
            state.initial = await self._run_batch("initial_run", state, suite, cancel_token)
            state.latest = state.best = state.initial
            self.monitor.on_iteration_complete(IterationMetrics(run_id, 0, None, state.initial))

            status = await self._optimise(state, suite, max_iterations, cancel_token)

        except RunCancelled as e:
            logger.info(f"🛑 Run {run_id} stopped by caller: {e}")
            result = self._build_result(state, LoopStatus.STOPPED_BY_CALLER)
            self.monitor.on_optimization_complete(result)
            return result

        except OptimisationAborted as e:
            self.monitor.on_error(run_id, state.iteration, e)
            result = self._build_result(state, LoopStatus.ABORTED_ERROR)
            result.aborted_stage = e.stage
            result.error_kind = e.error_kind
            result.error_message = str(e.error)
            e.result = result
            raise

        if cancel_token is not None and cancel_token.cancelled:
            status = LoopStatus.STOPPED_BY_CALLER
        result = self._build_result(state, status)
        if status != LoopStatus.STOPPED_BY_CALLER:
            result.persisted = await self._persist_best(state)
        self.monitor.on_optimization_complete(result)
        return result

    async def _optimise(
        self,
        state: _RunState,
        suite: TestSuite,
        max_iterations: int,
        cancel_token: CancellationToken | None,
    ) -> LoopStatus:
        if state.initial.overall_score >= PERFECT_SCORE:
            logger.info("🎯 Initial run is already perfect, nothing to optimise")
            return LoopStatus.CONVERGED

        while state.iteration < max_iterations and state.best_score < PERFECT_SCORE:
            self._check_cancelled(cancel_token)

            failures = state.latest.failures
            if not failures:
                logger.info("🎯 No failing test cases left")
                return LoopStatus.CONVERGED

            state.iteration += 1
            self.monitor.on_iteration_start(state.run_id, state.iteration)
            current = state.latest

            insights = await self._stage("insights", self.insight_generator.analyze_failures(
                failures, current.pass_rate, current.overall_score,
            ))
            proposal = await self._stage("optimize", self.prompt_optimizer.optimize(
                state.current_prompt,
                insights.failure_patterns,
                insights.recommendations,
                state.business_context,
            ))

            record = OptimisationRecord(
                id=str(uuid.uuid4()),
                agent_id=state.agent_id,
                run_id=state.run_id,
                iteration=state.iteration,
                original_prompt=state.current_prompt,
                optimized_prompt=proposal.optimized_prompt,
                changes=proposal.prompt_changes,
                before_metrics=current.metrics,
                explanation=proposal.explanation,
            )
            await self.record_storage.save_record(record)
            state.record_ids.append(record.id)

            await self._stage("apply", self.target_agent.update_config(state.agent_id, proposal.optimized_prompt))
            record.advance(OptimisationStatus.APPLIED)
            await self.record_storage.save_record(record)
            state.current_prompt = proposal.optimized_prompt
            state.changes.extend(record.changes)

            candidate = await self._run_batch("rerun", state, suite, cancel_token)
            state.latest = candidate
            record.after_metrics = candidate.metrics

            changelog = "; ".join(c.description for c in record.changes if c.description) or proposal.explanation
            self.monitor.on_iteration_complete(IterationMetrics(state.run_id, state.iteration, changelog, candidate))

            if candidate.overall_score > state.best_score:
                record.advance(OptimisationStatus.VALIDATED)
                await self.record_storage.save_record(record)
                state.best = candidate
                state.best_prompt = proposal.optimized_prompt
                if candidate.overall_score >= PERFECT_SCORE:
                    return LoopStatus.CONVERGED
                continue

            record.advance(OptimisationStatus.ROLLED_BACK)
            await self.record_storage.save_record(record)
            logger.info(
                f"↩️ Candidate scored {candidate.overall_score * 100:.1f}%, "
                f"not above best {state.best_score * 100:.1f}%"
            )
            if self.restore_best_on_regression:
                await self._stage("restore", self.target_agent.update_config(state.agent_id, state.best_prompt))
            return LoopStatus.STOPPED_NO_IMPROVEMENT

        if state.best_score >= PERFECT_SCORE:
            return LoopStatus.CONVERGED
        return LoopStatus.STOPPED_MAX_ITERATIONS

    async def _persist_best(self, state: _RunState) -> bool:
        if state.initial is None or state.best_score <= state.initial.overall_score:
            return False

        existing = await self.record_storage.get_best(state.agent_id)
        if existing is not None and state.best_score < existing.score:
            logger.info(
                f"Keeping persisted best {existing.score * 100:.1f}% for {state.agent_id}; "
                f"this run reached {state.best_score * 100:.1f}%"
            )
            return False

        await self.record_storage.upsert_best(BestPromptRecord(
            agent_id=state.agent_id,
            original_prompt=existing.original_prompt if existing else state.original_prompt,
            optimized_prompt=state.best_prompt,
            score=state.best_score,
            iterations=state.iteration,
        ))
        logger.info(f"💾 Persisted best prompt for {state.agent_id} ({state.best_score * 100:.1f}%)")
        return True

    @staticmethod
    def _build_result(state: _RunState, status: LoopStatus) -> OptimisationResult:
        initial_score = state.initial.overall_score if state.initial else 0.0
        return OptimisationResult(
            agent_id=state.agent_id,
            run_id=state.run_id,
            status=status,
            original_prompt=state.original_prompt,
            optimized_prompt=state.current_prompt,
            initial_score=initial_score,
            final_score=state.latest.overall_score if state.latest else initial_score,
            best_score=state.best_score if state.best else initial_score,
            iterations=state.iteration,
            before_metrics=state.initial.metrics if state.initial else None,
            after_metrics=state.latest.metrics if state.latest else None,
            changes=list(state.changes),
            record_ids=list(state.record_ids),
        )
