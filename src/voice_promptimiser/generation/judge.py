import logging
from dataclasses import dataclass
from typing import Any

from voice_promptimiser.core.eval_entities import (
    DEFAULT_CONFIDENCE,
    PASS_THRESHOLD,
    PerformanceMetrics,
    Transcript,
    clamp_unit,
)
from voice_promptimiser.core.suite_entities import SuccessCriterion, TestCase, TurnRole
from voice_promptimiser.generation.payloads import JudgePayload
from voice_promptimiser.generation.resilient_caller import GenerationRequest, ResilientCaller
from voice_promptimiser.generation.sanitizer import sanitize
from voice_promptimiser.generation.sys_msgs import judge_sys_msg, judge_user_msg, render_business_context
from voice_promptimiser.parsers.json_parser import parse_payload

logger = logging.getLogger(__name__)


@dataclass
class JudgeVerdict:
    passed: bool
    score: float
    reasoning: str
    metrics: PerformanceMetrics
    confidence: float = DEFAULT_CONFIDENCE


class Judge:
    """LLM-as-judge: scores a transcript against one criterion on four sub-metrics.

    The generator's own `passed`/`score` are ignored. The score is always the mean of the
    clamped sub-metrics, and `passed` is derived from it.
    """

    def __init__(
        self,
        caller: ResilientCaller,
        temperature: float = 0.1,
        max_tokens: int = 2048,
        pass_threshold: float = PASS_THRESHOLD,
    ):
        self.caller = caller
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.pass_threshold = pass_threshold

    def _instruction_block(self, criterion: SuccessCriterion, test_case: TestCase | None) -> str:
        lines = []
        prompt = criterion.evaluator.config.get("prompt")
        if prompt and prompt != criterion.description:
            lines.append(f"JUDGE INSTRUCTION: {sanitize(str(prompt))}")
        if test_case is not None:
            expected = [t.content for t in test_case.conversation_script if t.role == TurnRole.EXPECTED_AGENT]
            if expected:
                lines.append("EXPECTED AGENT BEHAVIOUR:")
                lines.extend(f"- {sanitize(e)}" for e in expected)
        return "\n".join(lines) + "\n" if lines else ""

    async def evaluate(
        self,
        criterion: SuccessCriterion,
        transcript: Transcript,
        test_case: TestCase | None = None,
        business_context: dict[str, Any] | None = None,
    ) -> JudgeVerdict:
        messages = [
            {"role": "system", "content": judge_sys_msg.format(
                business_context=render_business_context(business_context),
            )},
            {"role": "user", "content": judge_user_msg.format(
                criterion_name=sanitize(criterion.name),
                criterion_description=sanitize(criterion.description),
                instruction=self._instruction_block(criterion, test_case),
                conversation=sanitize(transcript.to_text()),
            )},
        ]

        result = await self.caller.call(GenerationRequest(
            messages=messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            json_mode=True,
            stage="judge",
        ))
        payload = parse_payload(result.data, JudgePayload)

        metrics = PerformanceMetrics(
            relevance=clamp_unit(payload.metrics.get("relevance")),
            accuracy=clamp_unit(payload.metrics.get("accuracy")),
            completeness=clamp_unit(payload.metrics.get("completeness")),
            helpfulness=clamp_unit(payload.metrics.get("helpfulness")),
        )
        score = metrics.overall
        reasoning = str(payload.reasoning).strip() if payload.reasoning else ""

        verdict = JudgeVerdict(
            passed=score >= self.pass_threshold,
            score=score,
            reasoning=reasoning or "No reasoning provided",
            metrics=metrics,
        )
        logger.debug(f"Judged '{criterion.name}': {score:.2f} ({'pass' if verdict.passed else 'fail'})")
        return verdict
