import copy
import os
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from litellm import acompletion


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class LLMResponse:
    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: str | None = None


CompletionFn = Callable[..., Awaitable[LLMResponse]]


def _apply_anthropic_caching_if_possible(messages: List[Dict[str, Any]], model: str) -> List[Dict[str, Any]]:
    """Mark the system message as cacheable for Anthropic models. User messages are left alone."""
    if not (model and "anthropic/" in model):
        return messages

    cached_messages = copy.deepcopy(messages)
    for msg in cached_messages:
        if msg.get("role") == "system" and isinstance(msg.get("content"), str):
            msg["content"] = [
                {
                    "type": "text",
                    "text": msg["content"],
                    "cache_control": {"type": "ephemeral"}
                }
            ]
    return cached_messages


def _extract_usage(response: Any) -> TokenUsage:
    usage = getattr(response, "usage", None)
    if usage is None:
        return TokenUsage()
    return TokenUsage(
        prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
        completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
        total_tokens=getattr(usage, "total_tokens", 0) or 0,
    )


async def get_llm_response(
    messages: List[Dict[str, Any]],
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: int = 4096,
    api_key: Optional[str] = None,
    api_base: Optional[str] = None,
    **kwargs,
) -> LLMResponse:
    """Perform exactly one completion call. Retrying is the caller's job.

    litellm exceptions are allowed to propagate untouched; they carry `status_code`
    (and, for HTTP failures, the `response` with its headers).
    """
    model = model or os.getenv("LLM_MODEL") or os.getenv("LITELLM_MODEL")
    if not model:
        raise ValueError("Model must be specified either as argument or via LLM_MODEL / LITELLM_MODEL env var.")
    temperature = temperature if temperature is not None else float(os.getenv("LITELLM_TEMPERATURE", "0.7"))
    api_key = api_key or os.getenv("LLM_API_KEY")
    api_base = api_base or os.getenv("LLM_API_BASE")

    processed_messages = _apply_anthropic_caching_if_possible(messages, model)

    response = await acompletion(
        model=model,
        messages=processed_messages,
        temperature=temperature,
        max_tokens=max_tokens,
        api_key=api_key,
        api_base=api_base,
        **kwargs,
    )
    text = response.choices[0].message.content or ""  # type: ignore
    return LLMResponse(text=text, usage=_extract_usage(response), model=model)
