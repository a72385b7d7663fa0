import copy
import logging
import uuid

from voice_promptimiser.agents.dental_scenario import DENTAL_SCENARIO
from voice_promptimiser.agents.scenario import SimulatedScenario
from voice_promptimiser.core.base_target_agent import AgentConfig, BaseTargetAgent, ChatReply

logger = logging.getLogger(__name__)


class SimulatedAgent(BaseTargetAgent):
    """Deterministic stand-in for a live voice agent.

    Replies depend only on the message and on how many of the scenario's quality checks
    the agent's current prompt satisfies, so a better prompt produces better answers.
    Every agent id is accepted and starts from the scenario's initial prompt.
    """

    def __init__(self, scenario: SimulatedScenario | None = None):
        self.scenario = scenario or DENTAL_SCENARIO
        self._prompts: dict[str, str] = {}
        self.update_count = 0

    def current_prompt(self, agent_id: str) -> str:
        return self._prompts.get(agent_id, self.scenario.initial_prompt)

    def prompt_quality(self, agent_id: str) -> float:
        return self.scenario.quality(self.current_prompt(agent_id))

    async def get_config(self, agent_id: str) -> AgentConfig:
        return AgentConfig(
            agent_id=agent_id,
            prompt=self.current_prompt(agent_id),
            metadata=copy.deepcopy(self.scenario.metadata),
        )

    async def update_config(self, agent_id: str, prompt: str) -> None:
        self._prompts[agent_id] = prompt
        self.update_count += 1
        logger.info(f"📝 [SIMULATED] Updated agent {agent_id} prompt ({len(prompt)} chars)")

    async def chat(self, agent_id: str, message: str, conversation_id: str | None = None) -> ChatReply:
        quality = self.prompt_quality(agent_id)
        logger.debug(f"📊 Prompt quality for {agent_id}: {quality * 100:.0f}%")
        return ChatReply(
            response_text=self.scenario.reply(message, quality),
            conversation_id=conversation_id or f"sim-conv-{uuid.uuid4().hex[:12]}",
        )

    def reset(self, agent_id: str | None = None) -> None:
        """Forget prompt updates for one agent, or for all of them."""
        if agent_id is None:
            self._prompts.clear()
        else:
            self._prompts.pop(agent_id, None)
