import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from voice_promptimiser.core.base_target_agent import AgentConfig, BaseTargetAgent, ChatReply
from voice_promptimiser.core.errors import NotFoundError, TargetAgentError
from voice_promptimiser.misc.rate_limit import RateLimitGate

logger = logging.getLogger(__name__)


class HttpTargetAgent(BaseTargetAgent):
    """Live voice agent reached over its REST API.

    Endpoints:
        GET  /voice-ai/agents/{id}        -> {"id", "prompt", "voiceSettings", "metadata"}
        PUT  /voice-ai/agents/{id}        <- {"prompt"}
        POST /voice-ai/agents/{id}/chat   <- {"message", "conversationId"} -> {"message", "conversationId"}

    Failures follow the generator's policy: non-429 4xx fail at once, 5xx and network errors
    back off exponentially, 429 blocks this agent's own RateLimitGate for the retry-after period.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        gate: RateLimitGate | None = None,
        max_attempts: int = 3,
        max_rate_limit_waits: int = 5,
        default_retry_after: float = 60.0,
        timeout: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = client or httpx.AsyncClient(base_url=self.base_url, headers=headers, timeout=timeout)
        self.gate = gate or RateLimitGate(name="target-agent", sleep=sleep)
        self.max_attempts = max_attempts
        self.max_rate_limit_waits = max_rate_limit_waits
        self.default_retry_after = default_retry_after
        self._sleep = sleep

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        await self.client.aclose()

    def _retry_after(self, response: httpx.Response) -> float:
        try:
            return max(0.0, float(response.headers.get("retry-after", self.default_retry_after)))
        except ValueError:
            return self.default_retry_after

    async def _request(self, method: str, path: str, agent_id: str, **kwargs: Any) -> httpx.Response:
        attempt = 0
        rate_limit_waits = 0
        while True:
            await self.gate.wait()
            try:
                response = await self.client.request(method, path, **kwargs)
            except httpx.TransportError as e:
                attempt += 1
                if attempt >= self.max_attempts:
                    raise TargetAgentError(f"{method} {path} failed after {attempt} attempts: {e}") from e
                logger.info(f"⏳ Target agent unreachable, retry {attempt}/{self.max_attempts - 1}")
                await self._sleep(2 ** (attempt - 1))
                continue

            status = response.status_code
            if status < 400:
                return response

            if status == 429:
                rate_limit_waits += 1
                if rate_limit_waits > self.max_rate_limit_waits:
                    raise TargetAgentError(f"{method} {path} still rate limited", status_code=429)
                retry_after = self._retry_after(response)
                logger.warning(f"⚠️ Target agent rate limited, retrying after {retry_after:.0f}s")
                self.gate.block_for(retry_after)
                continue

            if status == 404:
                raise NotFoundError("agent", agent_id)

            attempt += 1
            if status < 500 or attempt >= self.max_attempts:
                raise TargetAgentError(f"{method} {path} returned {status}: {response.text}", status_code=status)

            logger.info(f"⏳ Target agent returned {status}, retry {attempt}/{self.max_attempts - 1}")
            await self._sleep(2 ** (attempt - 1))

    @staticmethod
    def _json(response: httpx.Response, method: str, path: str) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise TargetAgentError(f"{method} {path} returned invalid JSON", status_code=response.status_code) from e
        if not isinstance(data, dict):
            raise TargetAgentError(
                f"{method} {path} returned {type(data).__name__}, expected an object",
                status_code=response.status_code,
            )
        return data

    async def get_config(self, agent_id: str) -> AgentConfig:
        response = await self._request("GET", f"/voice-ai/agents/{agent_id}", agent_id)
        data = self._json(response, "GET", f"/voice-ai/agents/{agent_id}")
        return AgentConfig(
            agent_id=data.get("id", agent_id),
            prompt=data.get("prompt", ""),
            metadata={
                "voice": data.get("voiceSettings") or {},
                "business": data.get("metadata") or {},
            },
        )

    async def update_config(self, agent_id: str, prompt: str) -> None:
        await self._request("PUT", f"/voice-ai/agents/{agent_id}", agent_id, json={"prompt": prompt})
        logger.info(f"📝 Updated agent {agent_id} prompt ({len(prompt)} chars)")

    async def chat(self, agent_id: str, message: str, conversation_id: str | None = None) -> ChatReply:
        response = await self._request(
            "POST",
            f"/voice-ai/agents/{agent_id}/chat",
            agent_id,
            json={"message": message, "conversationId": conversation_id},
        )
        data = self._json(response, "POST", f"/voice-ai/agents/{agent_id}/chat")
        return ChatReply(
            response_text=data.get("message", ""),
            conversation_id=data.get("conversationId") or conversation_id or "",
        )
