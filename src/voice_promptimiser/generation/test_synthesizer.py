import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from voice_promptimiser.core.suite_entities import SuiteStatus, TestCase, TestCategory, TestSuite
from voice_promptimiser.generation.normaliser import extract_raw_cases, normalise_test_case
from voice_promptimiser.generation.payloads import PromptAnalysis
from voice_promptimiser.generation.resilient_caller import GenerationRequest, ResilientCaller
from voice_promptimiser.generation.sanitizer import sanitize, sanitize_lines
from voice_promptimiser.generation.suite_validator import validate_suite
from voice_promptimiser.generation.sys_msgs import (
    CATEGORY_GUIDANCE,
    render_business_context,
    synthesis_sys_msg,
    synthesis_user_msg,
)

logger = logging.getLogger(__name__)


def _unique_name(name: str, seen: set[str]) -> str:
    if name not in seen:
        return name
    n = 2
    while f"{name} ({n})" in seen:
        n += 1
    return f"{name} ({n})"


class TestSynthesizer:
    """Asks the generator for test cases per category and normalises whatever comes back."""

    __test__ = False

    def __init__(self, caller: ResilientCaller, temperature: float = 0.7, max_tokens: int = 8000):
        self.caller = caller
        self.temperature = temperature
        self.max_tokens = max_tokens

    def _build_messages(
        self,
        analysis: PromptAnalysis,
        category: TestCategory,
        count: int,
        business_context: dict[str, Any] | None,
    ) -> list[dict[str, str]]:
        system = synthesis_sys_msg.format(
            category_guidance=CATEGORY_GUIDANCE.get(category.value, ""),
            business_context=render_business_context(business_context),
            category=category.value,
        )
        user = synthesis_user_msg.format(
            count=count,
            category=category.value,
            summary=sanitize(analysis.summary),
            intents=", ".join(sanitize_lines(analysis.intents)),
            constraints=", ".join(sanitize_lines(analysis.constraints)),
            expected_behaviors=", ".join(sanitize_lines(analysis.expected_behaviors)),
            data_to_collect=", ".join(sanitize_lines(analysis.data_to_collect)),
            tone=sanitize(analysis.tone),
        )
        return [{"role": "system", "content": system}, {"role": "user", "content": user}]

    async def synthesize(
        self,
        analysis: PromptAnalysis,
        category: TestCategory,
        count: int,
        suite_id: str,
        business_context: dict[str, Any] | None = None,
    ) -> list[TestCase]:
        """One generator call for one category, normalised into at most `count` test cases."""
        result = await self.caller.call(GenerationRequest(
            messages=self._build_messages(analysis, category, count, business_context),
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            json_mode=True,
            stage=f"synthesize:{category.value}",
        ))

        raw_cases = extract_raw_cases(result.data)
        logger.info(f"📦 Generator returned {len(raw_cases)} {category.value} test cases")

        if len(raw_cases) > count:
            logger.info(f"Keeping the first {count} of {len(raw_cases)} {category.value} test cases")
            raw_cases = raw_cases[:count]
        elif len(raw_cases) < count:
            logger.warning(f"⚠️ Asked for {count} {category.value} test cases, got {len(raw_cases)}")

        return [normalise_test_case(raw, suite_id, category) for raw in raw_cases]

    async def synthesize_suite(
        self,
        agent_id: str,
        analysis: PromptAnalysis,
        categories: list[TestCategory],
        count: int,
        business_context: dict[str, Any] | None = None,
    ) -> TestSuite:
        """Build and validate a whole suite. Any failed category aborts the suite."""
        suite_id = str(uuid.uuid4())
        test_cases: list[TestCase] = []
        seen: set[str] = set()

        for category in categories:
            logger.info(f"🧪 Generating {count} {category.value} test cases")
            for test_case in await self.synthesize(analysis, category, count, suite_id, business_context):
                test_case.name = _unique_name(test_case.name, seen)
                seen.add(test_case.name)
                test_cases.append(test_case)

        suite = TestSuite(
            id=suite_id,
            agent_id=agent_id,
            name=f"Test Suite - {datetime.now(timezone.utc).strftime('%Y-%m-%d')}",
            description=analysis.summary or f"Generated tests for agent {agent_id}",
            test_cases=test_cases,
            status=SuiteStatus.ACTIVE,
        )
        validate_suite(suite)
        logger.info(f"✅ Generated suite {suite.id} with {len(test_cases)} test cases")
        return suite
