import copy
import logging
import time
from typing import Callable

from cachetools import TTLCache

from voice_promptimiser.core.base_target_agent import AgentConfig, BaseTargetAgent, ChatReply

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0
MAX_CACHED_AGENTS = 1024


class CachedTargetAgent(BaseTargetAgent):
    """Read-through TTL cache of agent configs in front of any target agent.

    An agent's entry is dropped as soon as its prompt is successfully updated.
    """

    def __init__(
        self,
        inner: BaseTargetAgent,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        max_agents: int = MAX_CACHED_AGENTS,
    ):
        self.inner = inner
        self.ttl_seconds = ttl_seconds
        self._cache: TTLCache = TTLCache(maxsize=max_agents, ttl=ttl_seconds, timer=clock)

    async def get_config(self, agent_id: str) -> AgentConfig:
        cached = self._cache.get(agent_id)
        if cached is not None:
            return copy.deepcopy(cached)

        config = await self.inner.get_config(agent_id)
        self._cache[agent_id] = config
        return copy.deepcopy(config)

    async def update_config(self, agent_id: str, prompt: str) -> None:
        await self.inner.update_config(agent_id, prompt)
        self.invalidate(agent_id)

    async def chat(self, agent_id: str, message: str, conversation_id: str | None = None) -> ChatReply:
        return await self.inner.chat(agent_id, message, conversation_id)

    def invalidate(self, agent_id: str) -> None:
        self._cache.pop(agent_id, None)

    def clear(self) -> None:
        self._cache.clear()
        logger.info("🗑️ Agent config cache cleared")
