import logging
from typing import Any

from voice_promptimiser.generation.payloads import FailurePattern, PromptProposal
from voice_promptimiser.generation.resilient_caller import GenerationRequest, ResilientCaller
from voice_promptimiser.generation.sanitizer import sanitize, sanitize_lines
from voice_promptimiser.generation.sys_msgs import (
    numbered,
    optimize_sys_msg,
    optimize_user_msg,
    render_business_context,
)
from voice_promptimiser.parsers.json_parser import parse_payload

logger = logging.getLogger(__name__)


def _render_patterns(patterns: list[FailurePattern]) -> str:
    if not patterns:
        return "(none identified)"
    blocks = []
    for i, pattern in enumerate(patterns, start=1):
        block = [
            f"{i}. {sanitize(pattern.description)} [severity: {pattern.severity}]",
            f"   Affected tests: {', '.join(sanitize_lines(pattern.affected_test_cases)) or '(unspecified)'}",
        ]
        if pattern.suggested_fix:
            block.append(f"   Suggested fix: {sanitize(pattern.suggested_fix)}")
        blocks.append("\n".join(block))
    return "\n".join(blocks)


class PromptOptimizer:
    """Proposes a revised prompt plus a typed change log targeting the failure patterns.

    The proposal is not checked here; the next batch run decides whether it helped.
    """

    def __init__(self, caller: ResilientCaller, temperature: float = 0.4, max_tokens: int = 8000):
        self.caller = caller
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def optimize(
        self,
        current_prompt: str,
        failure_patterns: list[FailurePattern],
        recommendations: list[str],
        business_context: dict[str, Any] | None = None,
    ) -> PromptProposal:
        messages = [
            {"role": "system", "content": optimize_sys_msg.format(
                business_context=render_business_context(business_context),
            )},
            {"role": "user", "content": optimize_user_msg.format(
                current_prompt=sanitize(current_prompt),
                failure_patterns=_render_patterns(failure_patterns),
                recommendations=numbered(sanitize_lines(recommendations)),
            )},
        ]
        result = await self.caller.call(GenerationRequest(
            messages=messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            json_mode=True,
            stage="optimize",
        ))
        proposal = parse_payload(result.data, PromptProposal)
        logger.info(
            f"✏️ Proposed prompt with {len(proposal.changes)} changes "
            f"({len(current_prompt)} -> {len(proposal.optimized_prompt)} chars)"
        )
        return proposal
