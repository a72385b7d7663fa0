import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx

from voice_promptimiser.core.errors import GenerationError, RateLimited
from voice_promptimiser.misc.llm_client import CompletionFn, TokenUsage, get_llm_response
from voice_promptimiser.misc.rate_limit import RateLimitGate
from voice_promptimiser.parsers.json_parser import extract_json

logger = logging.getLogger(__name__)

JSON_ONLY_INSTRUCTION = (
    "\n\nIMPORTANT: You must respond with valid JSON only. "
    "No markdown, no explanations, just the JSON object."
)
DEFAULT_TEMPERATURE = 0.7
DEFAULT_JSON_TEMPERATURE = 0.3
DEFAULT_RETRY_AFTER = 60.0


@dataclass
class GenerationRequest:
    messages: list[dict[str, str]]
    temperature: float | None = None
    max_tokens: int = 4096
    json_mode: bool = False
    stage: str = "generation"


@dataclass
class GenerationResult:
    text: str
    data: Any = None  # parsed JSON when the request was in json mode
    usage: TokenUsage = field(default_factory=TokenUsage)
    attempts: int = 1


def _status_code(error: Exception) -> int | None:
    status = getattr(error, "status_code", None)
    if status is None and isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _retry_after(error: Exception, default: float) -> float:
    """Read the retry-after header from whatever the error carries, in seconds."""
    headers = None
    response = getattr(error, "response", None)
    if response is not None:
        headers = getattr(response, "headers", None)
    if headers is None:
        headers = getattr(error, "headers", None)
    if not headers:
        return default
    value = headers.get("retry-after") or headers.get("Retry-After")
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return default


def _is_network_error(error: Exception) -> bool:
    return isinstance(error, (httpx.TransportError, asyncio.TimeoutError, TimeoutError, ConnectionError))


def _with_json_instruction(messages: list[dict[str, str]]) -> list[dict[str, str]]:
    copied = [dict(m) for m in messages]
    for msg in copied:
        if msg.get("role") == "system":
            msg["content"] = msg["content"] + JSON_ONLY_INSTRUCTION
            return copied
    return [{"role": "system", "content": JSON_ONLY_INSTRUCTION.strip()}] + copied


class ResilientCaller:
    """Wraps every generator call with retry/backoff and JSON extraction.

    Policy:
    - up to `max_attempts` attempts for 5xx, timeouts and network errors, sleeping 2**attempt s between them
    - any other 4xx fails at once
    - 429 blocks the shared RateLimitGate for the retry-after period and retries without using an attempt;
      those waits have their own budget (`max_rate_limit_waits`)
    - in json mode the response is parsed; a ParseError is not retried
    """

    def __init__(
        self,
        completion_fn: CompletionFn = get_llm_response,
        gate: RateLimitGate | None = None,
        model: str | None = None,
        api_key: str | None = None,
        api_base: str | None = None,
        max_attempts: int = 3,
        max_rate_limit_waits: int = 5,
        default_retry_after: float = DEFAULT_RETRY_AFTER,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.completion_fn = completion_fn
        self.gate = gate or RateLimitGate(sleep=sleep)
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.max_attempts = max_attempts
        self.max_rate_limit_waits = max_rate_limit_waits
        self.default_retry_after = default_retry_after
        self._sleep = sleep

    async def call(self, request: GenerationRequest) -> GenerationResult:
        messages = _with_json_instruction(request.messages) if request.json_mode else request.messages
        temperature = request.temperature
        if temperature is None:
            temperature = DEFAULT_JSON_TEMPERATURE if request.json_mode else DEFAULT_TEMPERATURE

        attempt = 0
        rate_limit_waits = 0
        while True:
            await self.gate.wait()
            try:
                response = await self.completion_fn(
                    messages=messages,
                    model=self.model,
                    temperature=temperature,
                    max_tokens=request.max_tokens,
                    api_key=self.api_key,
                    api_base=self.api_base,
                )
            except Exception as e:
                status = _status_code(e)

                if status == 429:
                    rate_limit_waits += 1
                    retry_after = _retry_after(e, self.default_retry_after)
                    if rate_limit_waits > self.max_rate_limit_waits:
                        raise RateLimited(
                            f"{request.stage}: still rate limited after {self.max_rate_limit_waits} waits",
                            retry_after=retry_after,
                            waits=rate_limit_waits - 1,
                        ) from e
                    logger.warning(f"⚠️ {request.stage}: rate limited, retrying after {retry_after:.0f}s")
                    self.gate.block_for(retry_after)
                    continue

                attempt += 1
                if status is not None and 400 <= status < 500 and status != 408:
                    logger.error(f"❌ {request.stage}: generator rejected the request ({status}): {e}")
                    raise GenerationError(
                        f"{request.stage}: generator returned {status}: {e}", status_code=status, attempts=attempt
                    ) from e

                if status is None and not _is_network_error(e):
                    raise GenerationError(
                        f"{request.stage}: generation failed: {type(e).__name__}: {e}", attempts=attempt
                    ) from e

                if attempt >= self.max_attempts:
                    logger.error(f"❌ {request.stage}: giving up after {attempt} attempts: {e}")
                    raise GenerationError(
                        f"{request.stage}: generation failed after {attempt} attempts: {e}",
                        status_code=status,
                        attempts=attempt,
                    ) from e

                delay = 2 ** (attempt - 1)
                jitter = random.uniform(0, delay * 0.1)
                logger.info(
                    f"⏳ {request.stage}: retry attempt {attempt}/{self.max_attempts - 1} in {delay + jitter:.2f}s"
                )
                await self._sleep(delay + jitter)
                continue

            text = response.text or ""
            result = GenerationResult(text=text, usage=response.usage, attempts=attempt + 1)
            if request.json_mode:
                result.data = extract_json(text)
            logger.debug(f"{request.stage}: {response.usage.total_tokens} tokens")
            return result
