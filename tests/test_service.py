"""Tests for the service layer, wired from configuration onto TinyDB or directly onto in-memory storages."""

import asyncio

import pytest
import pytest_asyncio

from voice_promptimiser.agents.config_cache import CachedTargetAgent
from voice_promptimiser.agents.simulated_agent import SimulatedAgent
from voice_promptimiser.config import OptimiserConfig
from voice_promptimiser.core.errors import NotFoundError, ValidationError
from voice_promptimiser.core.optimisation_entities import LoopStatus
from voice_promptimiser.core.suite_entities import SuiteStatus, TestCategory
from voice_promptimiser.evaluation.batch_runner import BatchRunner
from voice_promptimiser.evaluation.simulator import ConversationSimulator
from voice_promptimiser.generation.insight_generator import InsightGenerator
from voice_promptimiser.generation.judge import Judge
from voice_promptimiser.generation.prompt_analyzer import PromptAnalyzer
from voice_promptimiser.generation.prompt_optimizer import PromptOptimizer
from voice_promptimiser.generation.resilient_caller import ResilientCaller
from voice_promptimiser.generation.test_synthesizer import TestSynthesizer
from voice_promptimiser.optimiser.loop_controller import LoopController
from voice_promptimiser.optimiser.service import OptimiserService
from tests.mocks.builders import analysis_json, generated_case, insights_json, proposal_json
from tests.mocks.in_memory_storage import InMemoryRecordStorage, InMemorySuiteStorage
from tests.mocks.scripted_llm_client import ScriptedLLMClient
from tests.mocks.scripted_target_agent import ScriptedTargetAgent

IMPROVED_PROMPT = (
    "You are a helpful voice agent for a dental clinic. "
    "Our services are cleaning ($99), whitening and fillings."
)


def knows_services(prompt: str, message: str) -> str:
    if "services" in prompt:
        return "We offer every service you need: cleaning, whitening and fillings."
    return "Sorry, I'm not sure."


def suite_responses() -> list:
    return [
        analysis_json(),
        {"testCases": [generated_case("Ask about services", "What do you offer?")]},
        {"testCases": [generated_case("Vague request", "Um, teeth stuff?")]},
    ]


@pytest.fixture
def config(tmp_path):
    return OptimiserConfig(
        db_dir=str(tmp_path / "db"),
        categories=["happy-path", "edge-case"],
        cases_per_category=1,
    )


@pytest.fixture
def agent():
    return ScriptedTargetAgent(reply=knows_services, known_agents=["agent-1"])


@pytest_asyncio.fixture
async def make_service(config, agent):
    services = []

    def factory(responses=None, target_agent=None):
        scripted = ScriptedLLMClient(responses or [])
        service = OptimiserService.from_config(
            config,
            completion_fn=scripted.get_mock_function(),
            target_agent=target_agent or agent,
        )
        services.append(service)
        return service, scripted

    yield factory
    for service in services:
        await service.aclose()


class TestSuites:
    @pytest.mark.asyncio
    async def test_generate_is_idempotent(self, make_service):
        service, scripted = make_service(suite_responses())

        first = await service.generate_test_suite("agent-1")
        second = await service.generate_test_suite("agent-1")

        assert second.id == first.id
        assert scripted.get_call_count() == 3
        assert [tc.name for tc in first.test_cases] == ["Ask about services", "Vague request"]
        assert first.status == SuiteStatus.ACTIVE
        assert len(await service.list_suites("agent-1")) == 1
        assert (await service.get_suite(first.id)).to_dict() == first.to_dict()

    @pytest.mark.asyncio
    async def test_short_prompt_is_rejected_before_any_generation(self, make_service):
        service, scripted = make_service(target_agent=ScriptedTargetAgent(prompt="  Be nice.  "))

        with pytest.raises(ValidationError) as exc_info:
            await service.generate_test_suite("agent-1")

        assert exc_info.value.field == "prompt"
        assert scripted.get_call_count() == 0

    @pytest.mark.asyncio
    async def test_unknown_agent(self, make_service):
        service, scripted = make_service(suite_responses())

        with pytest.raises(NotFoundError):
            await service.generate_test_suite("agent-404")
        with pytest.raises(NotFoundError):
            await service.show_agent("agent-404")

    @pytest.mark.asyncio
    async def test_missing_suite(self, make_service):
        service, _ = make_service()

        with pytest.raises(NotFoundError):
            await service.get_suite("nope")
        with pytest.raises(NotFoundError):
            await service.execute_suite("nope")
        with pytest.raises(NotFoundError):
            await service.run_optimisation("nope")
        with pytest.raises(NotFoundError):
            await service.check_current_prompt("agent-1")


class TestExecution:
    @pytest.mark.asyncio
    async def test_execute_suite_records_history(self, make_service, agent):
        service, scripted = make_service(suite_responses())
        suite = await service.generate_test_suite("agent-1")
        await service.target_agent.update_config("agent-1", IMPROVED_PROMPT)

        batch = await service.execute_suite(suite.id)

        assert batch.pass_rate == 1.0
        assert batch.prompt == IMPROVED_PROMPT
        assert scripted.get_call_count() == 3
        run_ids = await service.eval_storage.list_run_ids(suite.id)
        assert len(run_ids) == 1
        assert run_ids[0].startswith("exec-")

    @pytest.mark.asyncio
    async def test_check_current_prompt_uses_latest_suite(self, make_service):
        service, _ = make_service(suite_responses())
        await service.generate_test_suite("agent-1")

        batch = await service.check_current_prompt("agent-1")

        assert batch.pass_rate == 0.0


class TestOptimisation:
    @pytest.mark.asyncio
    async def test_optimise_and_read_best_prompt(self, make_service, agent):
        service, scripted = make_service(
            suite_responses() + [insights_json("Agent does not know the services"), proposal_json(IMPROVED_PROMPT)]
        )
        suite = await service.generate_test_suite("agent-1")

        result = await service.run_optimisation(suite.id, max_iterations=2)

        assert result.status == LoopStatus.CONVERGED
        assert result.initial_score == 0.0
        assert result.best_score == 1.0
        assert result.persisted is True
        assert agent.prompt == IMPROVED_PROMPT
        assert (await service.show_agent("agent-1")).prompt == IMPROVED_PROMPT

        best = await service.get_best_prompt("agent-1")
        assert best.optimized_prompt == IMPROVED_PROMPT
        assert best.original_prompt == "You are a helpful voice agent for a dental clinic."

        records = await service.record_storage.list_records("agent-1")
        assert len(records) == 1
        assert len(await service.eval_storage.get_run_results(result.run_id)) == 2

    @pytest.mark.asyncio
    async def test_negative_iterations(self, make_service):
        service, _ = make_service(suite_responses())
        suite = await service.generate_test_suite("agent-1")

        with pytest.raises(ValidationError):
            await service.run_optimisation(suite.id, max_iterations=-1)

    @pytest.mark.asyncio
    async def test_missing_best_prompt(self, make_service):
        service, _ = make_service()

        with pytest.raises(NotFoundError):
            await service.get_best_prompt("agent-1")
        with pytest.raises(NotFoundError):
            await service.delete_best_prompt("agent-1")


class TestReset:
    @pytest.mark.asyncio
    async def test_reset_archives_suites_and_drops_best_prompt(self, make_service):
        service, scripted = make_service(
            suite_responses() + [insights_json(), proposal_json(IMPROVED_PROMPT)] + suite_responses()
        )
        suite = await service.generate_test_suite("agent-1")
        await service.run_optimisation(suite.id)

        archived = await service.reset_agent("agent-1")

        assert archived == 1
        assert await service.list_suites("agent-1") == []
        assert len(await service.list_suites("agent-1", include_archived=True)) == 1
        with pytest.raises(NotFoundError):
            await service.get_best_prompt("agent-1")

        regenerated = await service.generate_test_suite("agent-1")
        assert regenerated.id != suite.id
        assert scripted.get_call_count() == 8

    @pytest.mark.asyncio
    async def test_reset_restores_simulated_agent_prompt(self, make_service):
        simulated = SimulatedAgent()
        service, _ = make_service(target_agent=simulated)
        await simulated.update_config("agent-1", "A much better prompt")

        await service.reset_agent("agent-1")

        assert isinstance(service.target_agent, CachedTargetAgent)
        assert simulated.current_prompt("agent-1") == simulated.scenario.initial_prompt


def in_memory_service(scripted: ScriptedLLMClient, agent: ScriptedTargetAgent) -> OptimiserService:
    caller = ResilientCaller(completion_fn=scripted.get_mock_function())
    batch_runner = BatchRunner(ConversationSimulator(agent), Judge(caller))
    record_storage = InMemoryRecordStorage()
    return OptimiserService(
        target_agent=agent,
        analyzer=PromptAnalyzer(caller),
        synthesizer=TestSynthesizer(caller),
        batch_runner=batch_runner,
        loop_controller=LoopController(
            agent, batch_runner, InsightGenerator(caller), PromptOptimizer(caller), record_storage,
        ),
        suite_storage=InMemorySuiteStorage(),
        record_storage=record_storage,
        categories=[TestCategory.HAPPY_PATH, TestCategory.EDGE_CASE],
        cases_per_category=1,
    )


class TestInMemoryWiring:
    @pytest.mark.asyncio
    async def test_concurrent_generation_creates_one_suite(self, agent):
        scripted = ScriptedLLMClient(suite_responses())
        service = in_memory_service(scripted, agent)

        first, second = await asyncio.gather(
            service.generate_test_suite("agent-1"),
            service.generate_test_suite("agent-1"),
        )

        assert first.id == second.id
        assert scripted.get_call_count() == 3
        assert len(await service.list_suites("agent-1")) == 1

    @pytest.mark.asyncio
    async def test_execute_without_evaluation_history(self, agent):
        service = in_memory_service(ScriptedLLMClient(suite_responses()), agent)
        suite = await service.generate_test_suite("agent-1")

        batch = await service.execute_suite(suite.id)

        assert len(batch.evaluations) == 2
        assert service.eval_storage is None
