import logging

from voice_promptimiser.core.eval_entities import Evaluation
from voice_promptimiser.generation.payloads import FailureInsights
from voice_promptimiser.generation.resilient_caller import GenerationRequest, ResilientCaller
from voice_promptimiser.generation.sanitizer import sanitize
from voice_promptimiser.generation.sys_msgs import insights_sys_msg
from voice_promptimiser.parsers.json_parser import parse_payload

logger = logging.getLogger(__name__)


class InsightGenerator:
    """Clusters failing evaluations into named failure patterns with suggested fixes."""

    def __init__(self, caller: ResilientCaller, temperature: float = 0.3, max_tokens: int = 4096):
        self.caller = caller
        self.temperature = temperature
        self.max_tokens = max_tokens

    @staticmethod
    def _render_results(evaluations: list[Evaluation]) -> str:
        lines = []
        for e in evaluations:
            status = "PASSED" if e.passed else "FAILED"
            lines.append(f"- {sanitize(e.test_case_name)}: {status} (score: {e.overall_score * 100:.1f}%)")
            lines.append(f"  Reasoning: {sanitize(e.reasoning)}")
        return "\n".join(lines)

    async def analyze_failures(
        self,
        evaluations: list[Evaluation],
        pass_rate: float,
        overall_score: float,
    ) -> FailureInsights:
        user_msg = (
            "Analyze these test results:\n\n"
            f"Overall Pass Rate: {pass_rate * 100:.1f}%\n"
            f"Overall Score: {overall_score * 100:.1f}%\n\n"
            "Test Results:\n"
            f"{self._render_results(evaluations)}"
        )
        result = await self.caller.call(GenerationRequest(
            messages=[
                {"role": "system", "content": insights_sys_msg},
                {"role": "user", "content": user_msg},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            json_mode=True,
            stage="insights",
        ))
        insights = parse_payload(result.data, FailureInsights)
        logger.info(
            f"💡 {len(insights.failure_patterns)} failure patterns, "
            f"{len(insights.recommendations)} recommendations"
        )
        return insights
