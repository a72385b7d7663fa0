from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class AgentConfig:
    """The agent under optimisation: its current prompt plus voice/business metadata."""
    agent_id: str
    prompt: str
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def business_context(self) -> dict[str, Any]:
        return dict(self.metadata.get("business", {}))

    def to_dict(self) -> dict[str, Any]:
        return {"agent_id": self.agent_id, "prompt": self.prompt, "metadata": dict(self.metadata)}


@dataclass
class ChatReply:
    response_text: str
    conversation_id: str


class BaseTargetAgent(ABC):
    """The conversational agent being optimised.

    Implementations may be a deterministic simulator or a live networked service;
    callers cannot tell the difference.
    """

    @abstractmethod
    async def get_config(self, agent_id: str) -> AgentConfig:
        """Fetch the agent's current prompt and metadata. Raises NotFoundError for unknown agents."""
        pass

    @abstractmethod
    async def update_config(self, agent_id: str, prompt: str) -> None:
        """Replace the agent's prompt."""
        pass

    @abstractmethod
    async def chat(self, agent_id: str, message: str, conversation_id: str | None = None) -> ChatReply:
        """Send one user message and return the agent's reply plus the conversation id to carry forward."""
        pass
