import asyncio
import logging
import uuid
from pathlib import Path

from tinydb import TinyDB

from voice_promptimiser.agents.config_cache import CachedTargetAgent
from voice_promptimiser.agents.http_agent import HttpTargetAgent
from voice_promptimiser.agents.scenario import load_scenario
from voice_promptimiser.agents.simulated_agent import SimulatedAgent
from voice_promptimiser.config import OptimiserConfig
from voice_promptimiser.core.base_eval_storage import BaseEvalStorage
from voice_promptimiser.core.base_monitor import BaseMonitor
from voice_promptimiser.core.base_record_storage import BaseRecordStorage
from voice_promptimiser.core.base_suite_storage import BaseSuiteStorage
from voice_promptimiser.core.base_target_agent import AgentConfig, BaseTargetAgent
from voice_promptimiser.core.cancellation import CancellationToken
from voice_promptimiser.core.errors import NotFoundError, ValidationError
from voice_promptimiser.core.eval_entities import BatchResult
from voice_promptimiser.core.optimisation_entities import BestPromptRecord, OptimisationResult
from voice_promptimiser.core.prompt_cipher import cipher_from_key
from voice_promptimiser.core.run_guard import RunGuard
from voice_promptimiser.core.suite_entities import TestCategory, TestSuite
from voice_promptimiser.evaluation.batch_runner import BatchRunner
from voice_promptimiser.evaluation.simulator import ConversationSimulator
from voice_promptimiser.generation.insight_generator import InsightGenerator
from voice_promptimiser.generation.judge import Judge
from voice_promptimiser.generation.prompt_analyzer import PromptAnalyzer
from voice_promptimiser.generation.prompt_optimizer import PromptOptimizer
from voice_promptimiser.generation.resilient_caller import ResilientCaller
from voice_promptimiser.generation.test_synthesizer import TestSynthesizer
from voice_promptimiser.misc.llm_client import CompletionFn, get_llm_response
from voice_promptimiser.optimiser.loop_controller import LoopController
from voice_promptimiser.storage.eval_storage_nosql import NoSQLEvalStorage
from voice_promptimiser.storage.record_storage_nosql import NoSQLRecordStorage
from voice_promptimiser.storage.suite_storage_nosql import NoSQLSuiteStorage

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [TestCategory.HAPPY_PATH, TestCategory.EDGE_CASE, TestCategory.ADVERSARIAL]


class OptimiserService:
    """The operations a control surface (CLI, API) consumes: suites, executions,
    optimisation runs and best-prompt records."""

    def __init__(
        self,
        target_agent: BaseTargetAgent,
        analyzer: PromptAnalyzer,
        synthesizer: TestSynthesizer,
        batch_runner: BatchRunner,
        loop_controller: LoopController,
        suite_storage: BaseSuiteStorage,
        record_storage: BaseRecordStorage,
        eval_storage: BaseEvalStorage | None = None,
        categories: list[TestCategory] | None = None,
        cases_per_category: int = 2,
        min_prompt_length: int = 20,
        default_max_iterations: int = 2,
    ):
        self.target_agent = target_agent
        self.analyzer = analyzer
        self.synthesizer = synthesizer
        self.batch_runner = batch_runner
        self.loop_controller = loop_controller
        self.suite_storage = suite_storage
        self.record_storage = record_storage
        self.eval_storage = eval_storage
        self.categories = categories or list(DEFAULT_CATEGORIES)
        self.cases_per_category = cases_per_category
        self.min_prompt_length = min_prompt_length
        self.default_max_iterations = default_max_iterations
        self._generation_locks: dict[str, asyncio.Lock] = {}
        self._db: TinyDB | None = None

    @classmethod
    def from_config(
        cls,
        config: OptimiserConfig,
        completion_fn: CompletionFn = get_llm_response,
        target_agent: BaseTargetAgent | None = None,
        monitor: BaseMonitor | None = None,
    ) -> "OptimiserService":
        """Wire up the full pipeline from configuration, persisting to one TinyDB file."""
        if target_agent is None:
            if config.target_agent_mode == "http":
                target_agent = HttpTargetAgent(config.target_agent_base_url, config.target_agent_api_key)
            else:
                scenario = load_scenario(config.scenario_path) if config.scenario_path else None
                target_agent = SimulatedAgent(scenario)
        cached_agent = CachedTargetAgent(target_agent, ttl_seconds=config.agent_cache_ttl)

        Path(config.db_dir).mkdir(parents=True, exist_ok=True)
        db = TinyDB(config.db_path)
        suite_storage = NoSQLSuiteStorage(db=db)
        eval_storage = NoSQLEvalStorage(db=db)
        record_storage = NoSQLRecordStorage(cipher=cipher_from_key(config.encryption_key), db=db)

        # One caller, so every stage shares the generator's rate-limit window.
        caller = ResilientCaller(
            completion_fn=completion_fn,
            model=config.model,
            api_key=config.api_key,
            api_base=config.api_base,
            max_attempts=config.max_attempts,
            max_rate_limit_waits=config.max_rate_limit_waits,
            default_retry_after=config.default_retry_after,
        )
        batch_runner = BatchRunner(
            ConversationSimulator(cached_agent),
            Judge(caller, temperature=config.judge_temperature, pass_threshold=config.pass_threshold),
            pass_threshold=config.pass_threshold,
            max_concurrency=config.batch_concurrency,
        )
        loop_controller = LoopController(
            target_agent=cached_agent,
            batch_runner=batch_runner,
            insight_generator=InsightGenerator(caller, temperature=config.insights_temperature),
            prompt_optimizer=PromptOptimizer(
                caller, temperature=config.optimize_temperature, max_tokens=config.optimize_max_tokens,
            ),
            record_storage=record_storage,
            eval_storage=eval_storage,
            monitor=monitor,
            run_guard=RunGuard(),
            restore_best_on_regression=config.restore_best_on_regression,
        )

        service = cls(
            target_agent=cached_agent,
            analyzer=PromptAnalyzer(caller, temperature=config.analysis_temperature, max_tokens=config.max_tokens),
            synthesizer=TestSynthesizer(
                caller, temperature=config.synthesis_temperature, max_tokens=config.synthesis_max_tokens,
            ),
            batch_runner=batch_runner,
            loop_controller=loop_controller,
            suite_storage=suite_storage,
            record_storage=record_storage,
            eval_storage=eval_storage,
            categories=config.test_categories,
            cases_per_category=config.cases_per_category,
            min_prompt_length=config.min_prompt_length,
            default_max_iterations=config.max_iterations,
        )
        service._db = db
        return service

    async def aclose(self) -> None:
        agent = self.target_agent.inner if isinstance(self.target_agent, CachedTargetAgent) else self.target_agent
        if isinstance(agent, HttpTargetAgent):
            await agent.close()
        if self._db is not None:
            self._db.close()

    # --- agents ------------------------------------------------------------

    async def show_agent(self, agent_id: str) -> AgentConfig:
        return await self.target_agent.get_config(agent_id)

    # --- suites ------------------------------------------------------------

    async def generate_test_suite(self, agent_id: str) -> TestSuite:
        """Return the agent's existing suite, or generate and persist one.

        Calling this twice without a reset in between returns the same suite.
        """
        lock = self._generation_locks.setdefault(agent_id, asyncio.Lock())
        async with lock:
            existing = await self.suite_storage.get_latest_suite(agent_id)
            if existing is not None:
                logger.info(f"♻️ Reusing suite {existing.id} for agent {agent_id}")
                return existing

            config = await self.target_agent.get_config(agent_id)
            if len(config.prompt.strip()) < self.min_prompt_length:
                raise ValidationError(
                    "prompt", f"agent prompt must be at least {self.min_prompt_length} characters"
                )

            analysis = await self.analyzer.analyze(config.prompt)
            suite = await self.synthesizer.synthesize_suite(
                agent_id,
                analysis,
                self.categories,
                self.cases_per_category,
                business_context=config.business_context,
            )
            return await self.suite_storage.save_suite(suite)

    async def list_suites(self, agent_id: str, include_archived: bool = False) -> list[TestSuite]:
        return await self.suite_storage.list_suites(agent_id, include_archived=include_archived)

    async def get_suite(self, suite_id: str) -> TestSuite:
        suite = await self.suite_storage.get_suite(suite_id)
        if suite is None:
            raise NotFoundError("suite", suite_id)
        return suite

    async def execute_suite(self, suite_id: str, cancel_token: CancellationToken | None = None) -> BatchResult:
        """Run every test case of a suite once against the agent's current prompt."""
        suite = await self.get_suite(suite_id)
        config = await self.target_agent.get_config(suite.agent_id)
        batch = await self.batch_runner.run(
            suite.agent_id,
            suite.test_cases,
            business_context=config.business_context,
            cancel_token=cancel_token,
            prompt=config.prompt,
        )
        if self.eval_storage is not None:
            await self.eval_storage.store_iteration_results(f"exec-{uuid.uuid4()}", 0, batch, suite.id)
        return batch

    async def check_current_prompt(self, agent_id: str) -> BatchResult:
        """Execute the agent's latest suite against whatever prompt it has right now."""
        suite = await self.suite_storage.get_latest_suite(agent_id)
        if suite is None:
            raise NotFoundError("suite for agent", agent_id)
        return await self.execute_suite(suite.id)

    # --- optimisation ------------------------------------------------------

    async def run_optimisation(
        self,
        suite_id: str,
        max_iterations: int | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> OptimisationResult:
        suite = await self.get_suite(suite_id)
        iterations = self.default_max_iterations if max_iterations is None else max_iterations
        if iterations < 0:
            raise ValidationError("max_iterations", "must not be negative")
        return await self.loop_controller.run(suite.agent_id, suite, iterations, cancel_token)

    async def get_best_prompt(self, agent_id: str) -> BestPromptRecord:
        record = await self.record_storage.get_best(agent_id)
        if record is None:
            raise NotFoundError("optimised prompt", agent_id)
        return record

    async def delete_best_prompt(self, agent_id: str) -> None:
        if not await self.record_storage.delete_best(agent_id):
            raise NotFoundError("optimised prompt", agent_id)

    async def reset_agent(self, agent_id: str) -> int:
        """Archive the agent's suites, drop its best-prompt record and its cached config.

        Returns the number of suites archived. Audit records are kept.
        """
        archived = await self.suite_storage.archive_agent_suites(agent_id)
        await self.record_storage.delete_best(agent_id)

        agent = self.target_agent
        if isinstance(agent, CachedTargetAgent):
            agent.invalidate(agent_id)
            agent = agent.inner
        if isinstance(agent, SimulatedAgent):
            agent.reset(agent_id)

        logger.info(f"🗑️ Reset agent {agent_id}: archived {archived} suite(s)")
        return archived
