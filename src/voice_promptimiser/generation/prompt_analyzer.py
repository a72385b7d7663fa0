import logging

from voice_promptimiser.generation.payloads import PromptAnalysis
from voice_promptimiser.generation.resilient_caller import GenerationRequest, ResilientCaller
from voice_promptimiser.generation.sanitizer import sanitize
from voice_promptimiser.generation.sys_msgs import analysis_sys_msg
from voice_promptimiser.parsers.json_parser import parse_payload

logger = logging.getLogger(__name__)


class PromptAnalyzer:
    """Extracts intents, constraints, behaviours and data fields from an agent prompt."""

    def __init__(self, caller: ResilientCaller, temperature: float = 0.2, max_tokens: int = 4096):
        self.caller = caller
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def analyze(self, prompt: str) -> PromptAnalysis:
        messages = [
            {"role": "system", "content": analysis_sys_msg},
            {"role": "user", "content": f"Analyze this Voice AI agent prompt:\n\n{sanitize(prompt)}"},
        ]
        result = await self.caller.call(GenerationRequest(
            messages=messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            json_mode=True,
            stage="analyze",
        ))
        analysis = parse_payload(result.data, PromptAnalysis)
        logger.info(
            f"🔍 Prompt analysis: {len(analysis.intents)} intents, "
            f"{len(analysis.constraints)} constraints, tone '{analysis.tone}'"
        )
        return analysis
