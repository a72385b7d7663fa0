"""Scripted target agent for testing."""

from typing import Any, Callable, Dict, List, Optional

from voice_promptimiser.core.base_target_agent import AgentConfig, BaseTargetAgent, ChatReply
from voice_promptimiser.core.errors import NotFoundError


class ScriptedTargetAgent(BaseTargetAgent):
    """Target agent whose replies come from a function of (prompt, message).

    Records every prompt update and chat call, and can be told to fail on config fetch, update or chat.
    """

    def __init__(
        self,
        prompt: str = "You are a helpful voice agent for a dental clinic.",
        reply: Optional[Callable[[str, str], str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        known_agents: Optional[List[str]] = None,
    ):
        self.prompt = prompt
        self.reply = reply or (lambda prompt, message: f"Echo: {message}")
        self.metadata = metadata if metadata is not None else {"business": {"name": "Test Clinic"}}
        self.known_agents = known_agents
        self.updates: List[str] = []
        self.chats: List[Dict[str, Any]] = []
        self.get_config_calls = 0
        self.config_error: Optional[Exception] = None
        self.update_error: Optional[Exception] = None
        self.chat_error: Optional[Exception] = None
        self._conversations = 0

    def _check_known(self, agent_id: str) -> None:
        if self.known_agents is not None and agent_id not in self.known_agents:
            raise NotFoundError("agent", agent_id)

    async def get_config(self, agent_id: str) -> AgentConfig:
        self._check_known(agent_id)
        self.get_config_calls += 1
        if self.config_error is not None:
            raise self.config_error
        return AgentConfig(agent_id=agent_id, prompt=self.prompt, metadata=dict(self.metadata))

    async def update_config(self, agent_id: str, prompt: str) -> None:
        self._check_known(agent_id)
        if self.update_error is not None:
            raise self.update_error
        self.updates.append(prompt)
        self.prompt = prompt

    async def chat(self, agent_id: str, message: str, conversation_id: Optional[str] = None) -> ChatReply:
        self._check_known(agent_id)
        self.chats.append({"message": message, "conversation_id": conversation_id})
        if self.chat_error is not None:
            raise self.chat_error
        if conversation_id is None:
            self._conversations += 1
            conversation_id = f"conv-{self._conversations}"
        return ChatReply(response_text=self.reply(self.prompt, message), conversation_id=conversation_id)
